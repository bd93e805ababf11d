# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Full-schema value search.

Probes every table of a datasource for a value, one table at a time:

    INIT -> ENUMERATE_TABLES -> (PROBE_TABLE)* -> DONE | TIMEOUT | ERROR

The wall-clock deadline and consumer cancellation are both checked at table
boundaries only; a probe that has started always runs to completion. Tables
left when the deadline passes are skipped and the run ends in TIMEOUT with
the matches found so far. A failing table is logged, reported and skipped.

Two delivery modes share the loop: ``scan_all_tables`` returns a
``ScanResult``; ``stream`` publishes ``ScanEvent``s into an ``EventChannel``.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from quarry.catalog.introspector import SchemaIntrospector
from quarry.catalog.router import DataSourceRouter
from quarry.core.errors import InvalidSearchValue, NoApplicableColumn
from quarry.search.channel import EventChannel, ScanEvent, ScanEventType
from quarry.search.engine import SearchEngine
from quarry.search.predicate import SearchMode, describe_mode

logger = logging.getLogger(__name__)


class ScanState(Enum):
    INIT = "init"
    ENUMERATE_TABLES = "enumerate_tables"
    PROBE_TABLE = "probe_table"
    DONE = "done"
    TIMEOUT = "timeout"
    ERROR = "error"
    CANCELLED = "cancelled"  # consumer closed the channel


@dataclass
class TableMatch:
    """A table containing at least one matching row."""
    table: str
    row_count_estimate: Optional[int]
    comment: Optional[str]
    match_count: int
    search_value: str
    datasource: str
    mode: str
    mode_label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "row_count_estimate": self.row_count_estimate,
            "comment": self.comment,
            "match_count": self.match_count,
            "search_value": self.search_value,
            "datasource": self.datasource,
            "mode": self.mode,
            "mode_label": self.mode_label,
        }


@dataclass
class ScanResult:
    datasource: str
    search_value: str
    mode: str
    state: ScanState = ScanState.INIT
    matches: list[TableMatch] = field(default_factory=list)
    searched_count: int = 0
    total_tables: int = 0
    elapsed_ms: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.state is ScanState.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        return {
            "datasource": self.datasource,
            "search_value": self.search_value,
            "mode": self.mode,
            "state": self.state.value,
            "timed_out": self.timed_out,
            "tables": [m.to_dict() for m in self.matches],
            "searched_count": self.searched_count,
            "total_tables": self.total_tables,
            "found_count": len(self.matches),
            "elapsed_ms": self.elapsed_ms,
            "errors": self.errors,
        }


class _CollectingSink:
    """Sink for synchronous scans: accepts everything, never closes."""
    closed = False

    def send(self, event: ScanEvent) -> bool:
        return True


class SearchOrchestrator:
    """Deadline-bounded scan of every table in a datasource."""

    def __init__(
        self,
        router: DataSourceRouter,
        introspector: SchemaIntrospector,
        engine: SearchEngine,
        deadline_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.router = router
        self.introspector = introspector
        self.engine = engine
        self.deadline_seconds = deadline_seconds
        self._clock = clock

    def scan_all_tables(
        self,
        datasource: str,
        raw_value: str,
        mode: Optional[SearchMode | str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> ScanResult:
        """Scan synchronously and return every match found before completion or timeout.

        Raises:
            InvalidSearchValue, UnknownDataSource, ConnectionFailure: before any table is probed
        """
        return self._run(datasource, raw_value, mode, deadline_seconds, _CollectingSink())

    def stream(
        self,
        datasource: str,
        raw_value: str,
        channel: EventChannel,
        mode: Optional[SearchMode | str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> ScanResult:
        """Scan and publish progress into ``channel``. Never raises; failures become an error event."""
        try:
            return self._run(datasource, raw_value, mode, deadline_seconds, channel)
        except Exception as e:
            logger.error(f"Scan of '{datasource}' failed: {e}")
            channel.send(ScanEvent(ScanEventType.ERROR, {
                "error": getattr(e, "kind", "scan_error"),
                "message": str(e),
            }))
            return ScanResult(
                datasource=datasource,
                search_value=(raw_value or "").strip(),
                mode=str(getattr(mode, "value", mode) or ""),
                state=ScanState.ERROR,
            )
        finally:
            channel.finish()

    def _run(self, datasource: str, raw_value: str, mode: Optional[SearchMode | str],
             deadline_seconds: Optional[float], sink) -> ScanResult:
        started = self._clock()
        limit_seconds = self.deadline_seconds if deadline_seconds is None else deadline_seconds
        value = (raw_value or "").strip()
        if not value:
            raise InvalidSearchValue("Search value must not be blank")
        mode = SearchMode.parse(mode, self.engine.default_mode())
        label = describe_mode(mode, value)

        result = ScanResult(datasource=datasource, search_value=value, mode=mode.value)

        def elapsed_ms() -> int:
            return int((self._clock() - started) * 1000)

        def emit(event_type: ScanEventType, data: dict[str, Any]) -> None:
            if not sink.send(ScanEvent(event_type, data)):
                result.state = ScanState.CANCELLED

        emit(ScanEventType.START, {
            "search_value": value,
            "mode": mode.value,
            "datasource": datasource,
            "mode_label": label,
        })

        result.state = ScanState.ENUMERATE_TABLES
        ds = self.router.resolve(datasource)
        tables = self.introspector.list_tables(ds)
        result.total_tables = len(tables)
        emit(ScanEventType.TOTAL, {"total_tables": len(tables)})

        for index, table in enumerate(tables):
            if result.state is ScanState.CANCELLED or sink.closed:
                result.state = ScanState.CANCELLED
                logger.info(f"Scan of '{datasource}' cancelled after {result.searched_count} tables")
                break
            if self._clock() - started >= limit_seconds:
                result.state = ScanState.TIMEOUT
                logger.warning(
                    f"Scan of '{datasource}' hit its {limit_seconds}s deadline after "
                    f"{result.searched_count}/{len(tables)} tables"
                )
                break

            result.state = ScanState.PROBE_TABLE
            emit(ScanEventType.PROGRESS, {
                "current_table": table.name,
                "searched_count": index,
                "total_count": len(tables),
                "found_count": len(result.matches),
                "percentage": int(index * 100 / len(tables)),
                "elapsed_ms": elapsed_ms(),
            })

            try:
                count = self.engine.probe_table(ds, table.name, table.columns, value, mode)
            except NoApplicableColumn:
                logger.debug(f"No applicable column in {datasource}.{table.name} for mode {mode.value}")
                count = None
            except Exception as e:
                logger.warning(f"Skipping {datasource}.{table.name}: {e}")
                result.errors.append({"table": table.name, "error": str(e)})
                emit(ScanEventType.TABLE_ERROR, {"table": table.name, "error": str(e)})
                count = None
            result.searched_count += 1

            if count:
                match = TableMatch(
                    table=table.name,
                    row_count_estimate=table.row_count_estimate,
                    comment=table.comment,
                    match_count=count,
                    search_value=value,
                    datasource=datasource,
                    mode=mode.value,
                    mode_label=label,
                )
                result.matches.append(match)
                emit(ScanEventType.FOUND, {
                    "table": match.to_dict(),
                    "found_count": len(result.matches),
                })
        else:
            if result.state is not ScanState.CANCELLED:
                result.state = ScanState.DONE

        result.elapsed_ms = elapsed_ms()

        if result.state is ScanState.CANCELLED:
            return result
        if result.state is ScanState.TIMEOUT:
            emit(ScanEventType.TIMEOUT, {
                "searched_count": result.searched_count,
                "found_count": len(result.matches),
            })
        emit(ScanEventType.COMPLETE, {
            "searched_count": result.searched_count,
            "found_count": len(result.matches),
            "total_time_ms": result.elapsed_ms,
            "timed_out": result.timed_out,
            "tables": [m.to_dict() for m in result.matches],
        })
        logger.info(
            f"Scan of '{datasource}' for '{value}' ({mode.value}): {len(result.matches)} matches "
            f"in {result.searched_count}/{result.total_tables} tables, {result.elapsed_ms}ms"
        )
        return result
