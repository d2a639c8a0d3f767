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
from typing import Any, Callable, Dict, Iterator, Tuple

from pytest import fixture

from solrexporter.cache import MetricsCache
from solrexporter.client import SolrNodeClient
from solrexporter.config import ExporterConfig, MetricQuery, ScrapeMode, parse_metric_queries
from tests.utils import FakeSession

METRICS_DEFINITIONS: Dict[str, Any] = {
    "queries": [
        {
            "path": "/admin/metrics",
            "params": {"group": ["jvm", "core"]},
            "metrics": [
                {
                    "name": "solr_jvm_heap_used_bytes",
                    "type": "gauge",
                    "help": "Heap in use",
                    "path": ["metrics", "solr.jvm", "memory.heap.used"],
                },
                {
                    "name": "solr_core_index_size_bytes",
                    "type": "gauge",
                    "help": "Index size",
                    "path": ["metrics"],
                    "label": "core",
                    "field": ["INDEX.sizeInBytes"],
                },
                {
                    "name": "solr_not_reported",
                    "type": "gauge",
                    "help": "Never present in responses",
                    "path": ["metrics", "solr.jvm", "nope"],
                },
            ],
        },
        {
            "path": "admin/info/system",
            "metrics": [
                {
                    "name": "solr_node_version",
                    "help": "Solr version",
                    "path": ["lucene", "solr-spec-version"],
                    "labels": {"source": "system"},
                },
            ],
        },
    ]
}


@fixture
def metric_queries() -> Tuple[MetricQuery, ...]:
    return parse_metric_queries(METRICS_DEFINITIONS)


@fixture
def make_config(metric_queries: Tuple[MetricQuery, ...]) -> Callable[..., ExporterConfig]:
    def _make_config(
        mode: ScrapeMode = ScrapeMode.STANDALONE,
        target: str = "http://solr-a:8983/solr",
        interval: float = 0.05,
        num_threads: int = 2,
        **kwargs: Any,
    ) -> ExporterConfig:
        return ExporterConfig(
            mode=mode,
            target=target,
            interval=interval,
            num_threads=num_threads,
            queries=kwargs.pop("queries", metric_queries),
            cluster_id=kwargs.pop("cluster_id", "test"),
            **kwargs,
        )

    return _make_config


@fixture
def fake_session() -> FakeSession:
    return FakeSession()


@fixture
def solr_client(fake_session: FakeSession) -> Iterator[SolrNodeClient]:
    client = SolrNodeClient(session=fake_session)  # type: ignore[arg-type]
    yield client
    client.close()


@fixture
def executor() -> Iterator[concurrent.futures.ThreadPoolExecutor]:
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@fixture
def cache() -> MetricsCache:
    return MetricsCache()


@fixture
def member() -> str:
    return "http://solr-a:8983/solr"
