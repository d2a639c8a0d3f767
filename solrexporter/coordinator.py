#
# Copyright (C) 2022 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import concurrent.futures
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

from solrexporter.config import MetricQuery
from solrexporter.exceptions import NoNodesAvailableError
from solrexporter.log import get_logger_adapter
from solrexporter.metrics import FailureKind, ScrapeFailure, ScrapeResult, Snapshot, merge_families
from solrexporter.scraper import NodeScraper
from solrexporter.topology import ClusterTopology

logger = get_logger_adapter(__name__)

# timestamps of consecutive snapshots must strictly increase, even if the clock doesn't move (or goes back).
TIMESTAMP_RESOLUTION = timedelta(microseconds=1)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ScrapeCoordinator:
    """
    One tick of collection: resolve the members, scrape them all on the collection pool & build a Snapshot
    out of whatever succeeded.
    """

    def __init__(
        self,
        topology: ClusterTopology,
        scraper: NodeScraper,
        queries: Sequence[MetricQuery],
        executor: concurrent.futures.Executor,
        timeout: float,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._topology = topology
        self._scraper = scraper
        self._queries = tuple(queries)
        self._executor = executor
        self._timeout = timeout
        self._clock = clock
        self._last_timestamp: Optional[datetime] = None
        self._timestamp_lock = Lock()

    def run_once(self) -> Snapshot:
        # raises TopologyUnavailableError, nothing is submitted in that case
        members = self._topology.resolve()
        logger.debug("Resolved cluster members", members=len(members))

        futures: Dict[concurrent.futures.Future, str] = {
            self._executor.submit(self._scraper.scrape, member, self._queries, self._timeout): member
            for member in members
        }
        results: Dict[str, ScrapeResult] = {}
        for future in concurrent.futures.as_completed(futures):
            member = futures[future]
            # a bug in one scrape shouldn't lose the other members - record it as that member's failure.
            try:
                results[member] = future.result()
            except Exception as e:
                logger.exception("Unexpected error while scraping member", member=member)
                results[member] = ScrapeResult(
                    member=member,
                    elapsed=0.0,
                    failure=ScrapeFailure(member, FailureKind.NODE_UNREACHABLE, f"unexpected error: {e!r}"),
                )

        # keep topology order, regardless of completion order
        ordered = [results[member] for member in members]
        succeeded = [result for result in ordered if result.succeeded]
        failures: List[ScrapeFailure] = [result.failure for result in ordered if result.failure is not None]
        if not succeeded:
            raise NoNodesAvailableError(len(failures))

        return Snapshot(
            timestamp=self._next_timestamp(),
            families=merge_families(result.families for result in succeeded if result.families is not None),
            failures=tuple(failures),
            members=tuple(result.member for result in succeeded),
        )

    def _next_timestamp(self) -> datetime:
        with self._timestamp_lock:
            timestamp = self._clock()
            if self._last_timestamp is not None and timestamp <= self._last_timestamp:
                timestamp = self._last_timestamp + TIMESTAMP_RESOLUTION
            self._last_timestamp = timestamp
            return timestamp
