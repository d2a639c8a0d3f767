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
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from solrexporter.client import SolrNodeClient
from solrexporter.config import MetricDescriptor, MetricQuery
from solrexporter.exceptions import NodeScrapeError
from solrexporter.log import get_logger_adapter
from solrexporter.metrics import (
    CLUSTER_ID_LABEL,
    MEMBER_LABEL,
    MetricFamily,
    Sample,
    SampleValue,
    ScrapeFailure,
    ScrapeResult,
)

logger = get_logger_adapter(__name__)


def _walk(node: Any, path: Sequence[str]) -> Any:
    """
    Follows `path` down nested JSON objects. Returns None if any step is missing or isn't an object.
    """
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


class NodeScraper:
    """
    Runs the configured metric queries against one Solr node and parses the responses into metric families.
    """

    def __init__(self, client: SolrNodeClient, cluster_id: str):
        self._client = client
        self._cluster_id = cluster_id

    def scrape(self, member: str, queries: Sequence[MetricQuery], timeout: float) -> ScrapeResult:
        start_time = time.monotonic()
        try:
            families = self._collect(member, queries, timeout)
        except NodeScrapeError as e:
            elapsed = time.monotonic() - start_time
            logger.warning(
                "Failed scraping Solr node", member=member, kind=e.failure_kind.value, reason=e.reason, elapsed=elapsed
            )
            return ScrapeResult(
                member=member, elapsed=elapsed, failure=ScrapeFailure(member, e.failure_kind, e.reason)
            )

        elapsed = time.monotonic() - start_time
        logger.debug("Scraped Solr node", member=member, families=len(families), elapsed=elapsed)
        return ScrapeResult(member=member, elapsed=elapsed, families=tuple(families))

    def _collect(self, member: str, queries: Sequence[MetricQuery], timeout: float) -> List[MetricFamily]:
        families: Dict[str, MetricFamily] = {}
        samples: Dict[str, List[Sample]] = {}
        for query in queries:
            response = self._client.get_json(member, query.path, query.params, timeout=timeout)
            for descriptor in query.metrics:
                found = list(self._samples_from_json(member, response, descriptor))
                if not found:
                    # absent from the response - not an error, the node just doesn't report it
                    continue
                if descriptor.name not in families:
                    families[descriptor.name] = MetricFamily(descriptor.name, descriptor.kind, descriptor.help)
                    samples[descriptor.name] = []
                samples[descriptor.name].extend(found)

        return [
            MetricFamily(family.name, family.kind, family.help, tuple(samples[name]))
            for name, family in families.items()
        ]

    def _samples_from_json(
        self, member: str, response_json: Dict[str, Any], descriptor: MetricDescriptor
    ) -> Iterable[Sample]:
        labels = {**descriptor.labels, MEMBER_LABEL: member, CLUSTER_ID_LABEL: self._cluster_id}
        node = _walk(response_json, descriptor.path)
        if node is None:
            return

        if descriptor.label is None:
            value = SampleValue.from_json(node)
            if value is not None:
                yield Sample(labels, value)
            return

        if not isinstance(node, dict):
            logger.debug("Expected an object to expand", metric=descriptor.name, member=member)
            return
        for key, entry in node.items():
            entry_value: Optional[SampleValue] = SampleValue.from_json(_walk(entry, descriptor.entry_path))
            if entry_value is not None:
                yield Sample({**labels, descriptor.label: key}, entry_value)
