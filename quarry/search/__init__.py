# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Value search: predicate synthesis, result cache, single-table and full-schema search."""

from .cache import CacheEntry, CacheKey, SearchCache
from .channel import EventChannel, ScanEvent, ScanEventType
from .engine import Page, SearchEngine, SearchResult
from .orchestrator import ScanResult, ScanState, SearchOrchestrator, TableMatch
from .predicate import Predicate, PredicateBuilder, SearchMode, build_predicate
