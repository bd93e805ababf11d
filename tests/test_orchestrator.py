# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for full-schema scans."""

import threading
from unittest.mock import patch

import pytest

from quarry.core.errors import InvalidSearchValue, UnknownDataSource
from quarry.search.channel import EventChannel, ScanEventType
from quarry.search.orchestrator import ScanState, SearchOrchestrator
from quarry.search.predicate import SearchMode


@pytest.fixture
def orchestrator(router, introspector, engine, clock):
    return SearchOrchestrator(router, introspector, engine, deadline_seconds=600, clock=clock)


def _stream(orchestrator, datasource, value, **kwargs):
    channel = EventChannel()
    result = orchestrator.stream(datasource, value, channel, **kwargs)
    return result, list(channel)


class TestScanAllTables:
    """Tests for the synchronous scan."""

    @pytest.mark.parametrize("value", ["aspirin", "123", "active", "C9H8O4", "zzz"])
    def test_matches_brute_force(self, orchestrator, router, brute_force, value):
        """Test that the scan reports exactly the tables a row-by-row check finds."""
        result = orchestrator.scan_all_tables("chem", value)

        assert result.state is ScanState.DONE
        assert {m.table for m in result.matches} == brute_force(router, "chem", value)

    def test_match_counts(self, orchestrator):
        result = orchestrator.scan_all_tables("chem", "123")

        counts = {m.table: m.match_count for m in result.matches}
        assert counts == {"assays": 1, "compounds": 2}
        assert result.searched_count == 4
        assert result.total_tables == 4

    def test_match_metadata(self, orchestrator):
        result = orchestrator.scan_all_tables("chem", "aspirin", SearchMode.TEXT_ONLY)

        match = result.matches[0].to_dict()
        assert match["datasource"] == "chem"
        assert match["search_value"] == "aspirin"
        assert match["mode"] == "text_only"
        assert match["mode_label"] == "Text columns only"

    def test_table_without_text_columns_is_skipped_silently(self, orchestrator):
        """Test that a text search over measurements (all numeric) is not an error."""
        result = orchestrator.scan_all_tables("chem", "aspirin")

        assert result.errors == []
        assert result.searched_count == 4
        assert [m.table for m in result.matches] == ["compounds", "notes"]

    def test_user_created_database(self, orchestrator):
        result = orchestrator.scan_all_tables("lab", "aspirin")

        assert [m.table for m in result.matches] == ["samples"]

    def test_blank_value(self, orchestrator):
        with pytest.raises(InvalidSearchValue):
            orchestrator.scan_all_tables("chem", " ")

    def test_unknown_datasource(self, orchestrator):
        with pytest.raises(UnknownDataSource):
            orchestrator.scan_all_tables("nowhere", "aspirin")

    def test_deadline_checked_between_tables(self, orchestrator, engine, clock):
        """Test that a passed deadline stops the scan at the next table boundary."""
        probe = engine.probe_table

        def slow_probe(*args, **kwargs):
            clock.advance(10)
            return probe(*args, **kwargs)

        with patch.object(engine, "probe_table", side_effect=slow_probe):
            result = orchestrator.scan_all_tables("chem", "123", deadline_seconds=15)

        assert result.state is ScanState.TIMEOUT
        assert result.timed_out
        assert result.searched_count == 2
        assert [m.table for m in result.matches] == ["assays", "compounds"]
        assert result.elapsed_ms == 20000

    def test_failing_table_is_skipped(self, orchestrator, engine):
        probe = engine.probe_table

        def flaky_probe(ds, table, *args, **kwargs):
            if table == "compounds":
                raise RuntimeError("lock wait timeout")
            return probe(ds, table, *args, **kwargs)

        with patch.object(engine, "probe_table", side_effect=flaky_probe):
            result = orchestrator.scan_all_tables("chem", "aspirin")

        assert result.state is ScanState.DONE
        assert result.errors == [{"table": "compounds", "error": "lock wait timeout"}]
        assert [m.table for m in result.matches] == ["notes"]
        assert result.searched_count == 4

    def test_to_dict(self, orchestrator):
        data = orchestrator.scan_all_tables("chem", "aspirin").to_dict()

        assert data["state"] == "done"
        assert data["timed_out"] is False
        assert data["found_count"] == 2
        assert [t["table"] for t in data["tables"]] == ["compounds", "notes"]


class TestStream:
    """Tests for the progressive event stream."""

    def test_event_order(self, orchestrator):
        result, events = _stream(orchestrator, "chem", "aspirin")
        types = [e.type for e in events]

        assert types[0] is ScanEventType.START
        assert types[1] is ScanEventType.TOTAL
        assert types[-1] is ScanEventType.COMPLETE
        assert types.count(ScanEventType.PROGRESS) == 4
        assert types.count(ScanEventType.FOUND) == 2
        assert result.state is ScanState.DONE

    def test_event_payloads(self, orchestrator):
        _, events = _stream(orchestrator, "chem", "aspirin")
        by_type = {}
        for event in events:
            by_type.setdefault(event.type, []).append(event.data)

        assert by_type[ScanEventType.START][0]["mode"] == "auto"
        assert by_type[ScanEventType.TOTAL][0] == {"total_tables": 4}
        progress = by_type[ScanEventType.PROGRESS]
        assert [p["current_table"] for p in progress] == ["assays", "compounds", "measurements", "notes"]
        assert [p["percentage"] for p in progress] == [0, 25, 50, 75]
        found = by_type[ScanEventType.FOUND]
        assert [f["found_count"] for f in found] == [1, 2]
        complete = by_type[ScanEventType.COMPLETE][0]
        assert complete["found_count"] == 2
        assert complete["timed_out"] is False

    def test_found_precedes_complete(self, orchestrator):
        """Test that every match is delivered before the stream ends."""
        _, events = _stream(orchestrator, "chem", "123")
        found = [i for i, e in enumerate(events) if e.type is ScanEventType.FOUND]
        complete = [i for i, e in enumerate(events) if e.type is ScanEventType.COMPLETE]

        assert len(found) == 2
        assert max(found) < complete[0]

    def test_timeout_event(self, orchestrator, engine, clock):
        probe = engine.probe_table

        def slow_probe(*args, **kwargs):
            clock.advance(10)
            return probe(*args, **kwargs)

        with patch.object(engine, "probe_table", side_effect=slow_probe):
            _, events = _stream(orchestrator, "chem", "123", deadline_seconds=15)
        types = [e.type for e in events]

        assert types[-2:] == [ScanEventType.TIMEOUT, ScanEventType.COMPLETE]
        assert events[-1].data["timed_out"] is True
        assert events[-1].data["searched_count"] == 2

    def test_table_error_event(self, orchestrator, engine):
        probe = engine.probe_table

        def flaky_probe(ds, table, *args, **kwargs):
            if table == "notes":
                raise RuntimeError("boom")
            return probe(ds, table, *args, **kwargs)

        with patch.object(engine, "probe_table", side_effect=flaky_probe):
            _, events = _stream(orchestrator, "chem", "aspirin")

        errors = [e for e in events if e.type is ScanEventType.TABLE_ERROR]
        assert [e.data for e in errors] == [{"table": "notes", "error": "boom"}]
        assert events[-1].type is ScanEventType.COMPLETE

    def test_unknown_datasource_becomes_error_event(self, orchestrator):
        result, events = _stream(orchestrator, "nowhere", "aspirin")

        assert result.state is ScanState.ERROR
        assert events[-1].type is ScanEventType.ERROR
        assert events[-1].data["error"] == "unknown_datasource"

    def test_blank_value_becomes_error_event(self, orchestrator):
        _, events = _stream(orchestrator, "chem", "")

        assert [e.type for e in events] == [ScanEventType.ERROR]
        assert events[0].data["error"] == "invalid_search_value"

    def test_closing_channel_cancels_scan(self, orchestrator, engine):
        """Test that a consumer closing the channel stops the scan at the next table."""
        channel = EventChannel()
        probe = engine.probe_table

        def probe_then_disconnect(*args, **kwargs):
            channel.close()
            return probe(*args, **kwargs)

        with patch.object(engine, "probe_table", side_effect=probe_then_disconnect):
            result = orchestrator.stream("chem", "aspirin", channel)

        assert result.state is ScanState.CANCELLED
        assert result.searched_count == 1

    def test_stream_from_worker_thread(self, orchestrator):
        channel = EventChannel(maxsize=2)
        worker = threading.Thread(target=orchestrator.stream, args=("chem", "aspirin", channel))
        worker.start()

        events = list(channel)
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert events[-1].type is ScanEventType.COMPLETE
