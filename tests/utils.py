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
import json
import time
from threading import Event, Lock
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from kazoo.exceptions import NoNodeError

from solrexporter.exceptions import TopologyUnavailableError
from solrexporter.metrics import (
    CLUSTER_ID_LABEL,
    MEMBER_LABEL,
    FailureKind,
    MetricFamily,
    MetricKind,
    Sample,
    SampleValue,
    ScrapeFailure,
    ScrapeResult,
    Snapshot,
)

# how long tests wait for something to happen on a background thread before giving up
WAIT_TIMEOUT = 5.0


def wait_until(predicate: Callable[[], bool], timeout: float = WAIT_TIMEOUT, interval: float = 0.005) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(interval)


class FakeResponse:
    def __init__(self, body: Union[str, Dict[str, Any], List[Any]], status_code: int = 200):
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.status_code = status_code

    def json(self) -> Any:
        # raises a ValueError subclass on bad JSON, like requests does
        return json.loads(self._body)


Route = Union[FakeResponse, Exception, Callable[[str, Any, float], FakeResponse]]


class FakeSession:
    """
    Stands in for requests.Session. Routes are keyed by full URL (without the query string).
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.headers: Dict[str, str] = {}
        self.calls: List[Tuple[str, List[Tuple[str, str]], float]] = []
        self.closed = False
        self._lock = Lock()

    def get(self, url: str, params: Any = None, timeout: float = 0) -> FakeResponse:
        with self._lock:
            self.calls.append((url, list(params or []), timeout))
            route = self.routes.get(url)
        if route is None:
            return FakeResponse({"error": "not found"}, status_code=404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return route(url, params, timeout)

    def close(self) -> None:
        self.closed = True


class FakeZkClient:
    """
    Minimal read-only KazooClient stand-in. `live_nodes` may be replaced between resolves, or be an exception.
    """

    def __init__(self, live_nodes: Union[Sequence[str], Exception], cluster_props: Optional[Dict[str, Any]] = None):
        self.live_nodes = live_nodes
        self.cluster_props = cluster_props
        self.stopped = False
        self.closed = False

    def get_children(self, path: str) -> List[str]:
        assert path == "/live_nodes"
        if isinstance(self.live_nodes, Exception):
            raise self.live_nodes
        return list(self.live_nodes)

    def get(self, path: str) -> Tuple[bytes, Any]:
        assert path == "/clusterprops.json"
        if self.cluster_props is None:
            raise NoNodeError()
        return json.dumps(self.cluster_props).encode("utf-8"), None

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


class FakeTopology:
    def __init__(self, members: Union[Sequence[str], Exception]):
        self.members = members
        self.resolve_count = 0
        self.closed = False

    def resolve(self) -> Tuple[str, ...]:
        self.resolve_count += 1
        if isinstance(self.members, Exception):
            raise self.members
        if not self.members:
            raise TopologyUnavailableError("no members")
        return tuple(self.members)

    def close(self) -> None:
        self.closed = True


def gauge_family(name: str, member: str, value: Union[int, float, str], cluster_id: str = "test") -> MetricFamily:
    if isinstance(value, str):
        sample_value = SampleValue.string(value)
    elif isinstance(value, int):
        sample_value = SampleValue.integer(value)
    else:
        sample_value = SampleValue.floating(value)
    sample = Sample({MEMBER_LABEL: member, CLUSTER_ID_LABEL: cluster_id}, sample_value)
    return MetricFamily(name, MetricKind.GAUGE, f"{name} help", (sample,))


class FakeScraper:
    """
    Scripted NodeScraper: each member either reports a gauge `up_value` = 1, fails with the given kind, or raises.
    """

    def __init__(
        self,
        failures: Optional[Dict[str, FailureKind]] = None,
        raises: Optional[Dict[str, Exception]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.failures = failures or {}
        self.raises = raises or {}
        self.delays = delays or {}
        self.scraped: List[str] = []
        self._lock = Lock()

    def scrape(self, member: str, queries: Any, timeout: float) -> ScrapeResult:
        with self._lock:
            self.scraped.append(member)
        time.sleep(self.delays.get(member, 0))
        if member in self.raises:
            raise self.raises[member]
        if member in self.failures:
            kind = self.failures[member]
            return ScrapeResult(member=member, elapsed=0.0, failure=ScrapeFailure(member, kind, "scripted"))
        return ScrapeResult(member=member, elapsed=0.0, families=(gauge_family("up_value", member, 1),))


class FakeCoordinator:
    """
    Returns (or raises) the scripted outcomes in order, repeating the last one. Tracks overlapping calls.
    """

    def __init__(self, outcomes: Sequence[Union[Snapshot, Exception]], duration: float = 0.0):
        assert outcomes
        self.outcomes = list(outcomes)
        self.duration = duration
        self.calls = 0
        self.running = 0
        self.max_running = 0
        # call index -> gate that call blocks on until set
        self.gates: Dict[int, Event] = {}
        self.started = Event()
        self._lock = Lock()

    def run_once(self) -> Snapshot:
        with self._lock:
            index = self.calls
            outcome = self.outcomes[min(index, len(self.outcomes) - 1)]
            self.calls += 1
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        self.started.set()
        try:
            gate = self.gates.get(index)
            if gate is not None:
                assert gate.wait(WAIT_TIMEOUT), "gate was never opened"
            time.sleep(self.duration)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.running -= 1


def solr_node_metrics(heap_used: int, cores: Dict[str, int]) -> Dict[str, Any]:
    """
    A trimmed-down /admin/metrics response.
    """
    return {
        "responseHeader": {"status": 0, "QTime": 3},
        "metrics": {
            "solr.jvm": {"memory.heap.used": heap_used, "threads.count": 31},
            **{f"solr.core.{core}": {"INDEX.sizeInBytes": size} for core, size in cores.items()},
        },
    }


def solr_system_info(version: str) -> Dict[str, Any]:
    return {"responseHeader": {"status": 0}, "lucene": {"solr-spec-version": version, "lucene-spec-version": version}}


def node_routes(base_url: str, heap_used: int = 1024, version: str = "9.4.0") -> Dict[str, Route]:
    return {
        f"{base_url}/admin/metrics": FakeResponse(solr_node_metrics(heap_used, {"products": 2048, "users": 512})),
        f"{base_url}/admin/info/system": FakeResponse(solr_system_info(version)),
    }
