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
from threading import Thread
from typing import Dict, Iterable, Optional, Protocol

from prometheus_client import CollectorRegistry, generate_latest, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from solrexporter.log import get_logger_adapter
from solrexporter.metrics import MetricFamily, MetricKind, Snapshot

logger = get_logger_adapter(__name__)

# string samples are exported info-style: the string goes in this label, and the value is 1.
STRING_VALUE_LABEL = "value"
DEFAULT_LISTEN_ADDRESS = "0.0.0.0"


class SnapshotSource(Protocol):
    def read(self) -> Snapshot:
        ...


class _FixedSnapshot:
    def __init__(self, snapshot: Snapshot):
        self._snapshot = snapshot

    def read(self) -> Snapshot:
        return self._snapshot


def _to_prometheus(family: MetricFamily) -> Metric:
    metric: Metric
    if family.kind is MetricKind.COUNTER:
        # CounterMetricFamily drops a trailing "_total" from the name; its samples always carry it.
        metric = CounterMetricFamily(family.name, family.help)
        sample_name = f"{metric.name}_total"
    else:
        metric = GaugeMetricFamily(family.name, family.help)
        sample_name = metric.name

    for sample in family.samples:
        labels: Dict[str, str] = dict(sample.labels)
        if sample.value.is_numeric:
            value = float(sample.value.value)
        else:
            labels[STRING_VALUE_LABEL] = str(sample.value)
            value = 1.0
        metric.add_sample(sample_name, labels, value)
    return metric


class SnapshotCollector:
    """
    prometheus_client custom collector over the cache. Each collection reads the cache exactly once, so a single
    response is always rendered from a single snapshot.
    """

    def __init__(self, cache: SnapshotSource):
        self._cache = cache

    def collect(self) -> Iterable[Metric]:
        snapshot = self._cache.read()
        for family in snapshot.families:
            yield _to_prometheus(family)


def render_snapshot(snapshot: Snapshot) -> str:
    """
    Renders a snapshot in the Prometheus text exposition format. An empty snapshot renders as an empty string.
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(_FixedSnapshot(snapshot)))
    return generate_latest(registry).decode("utf-8")


class ExporterEndpoint:
    """
    Serves the cache over HTTP. Uses its own registry, so nothing else registered in the process leaks in.
    """

    def __init__(self, cache: SnapshotSource, port: int, addr: str = DEFAULT_LISTEN_ADDRESS):
        self._port = port
        self._addr = addr
        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(SnapshotCollector(cache))
        self._server = None
        self._thread: Optional[Thread] = None

    @property
    def port(self) -> int:
        """
        The port actually listened on (useful when started with port 0).
        """
        if self._server is not None:
            return self._server.server_port
        return self._port

    def start(self) -> None:
        if self._server is not None:
            raise RuntimeError("Endpoint already started")
        self._server, self._thread = start_http_server(self._port, addr=self._addr, registry=self.registry)
        logger.info("Serving metrics", addr=self._addr, port=self.port)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None
        logger.info("Stopped serving metrics")
