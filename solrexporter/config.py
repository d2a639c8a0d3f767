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
import hashlib
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from solrexporter.client import DEFAULT_REQUEST_TIMEOUT
from solrexporter.exceptions import ConfigInvalid
from solrexporter.metrics import CLUSTER_ID_LABEL, MEMBER_LABEL, MetricKind
from solrexporter.utils import resource_path

DEFAULT_PORT = 8989
DEFAULT_BASE_URL = "http://localhost:8983/solr"
DEFAULT_SCRAPE_INTERVAL = 60
DEFAULT_NUM_THREADS = 1
DEFAULT_CONFIG_FILE_NAME = "solr-exporter-config.json"

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
# labels every sample gets from the scraper; descriptors may not set them themselves.
RESERVED_LABELS = frozenset((MEMBER_LABEL, CLUSTER_ID_LABEL))


class ScrapeMode(Enum):
    STANDALONE = "standalone"
    CLOUD = "cloud"


@dataclass(frozen=True)
class MetricDescriptor:
    """
    Where to find one metric in a JSON response.

    `path` is walked key by key from the top of the response. When `label` is set, the value found there is
    an object and each of its entries becomes one sample, labelled with the entry's key; `entry_path` (the
    "field" key of the definition file) is then walked inside every entry.
    """

    name: str
    kind: MetricKind
    help: str
    path: Tuple[str, ...]
    label: Optional[str] = None
    entry_path: Tuple[str, ...] = ()
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricQuery:
    path: str
    params: Tuple[Tuple[str, str], ...]
    metrics: Tuple[MetricDescriptor, ...]


@dataclass(frozen=True)
class ExporterConfig:
    mode: ScrapeMode
    # base URL in standalone mode, ZooKeeper connection string in cloud mode
    target: str
    interval: float
    num_threads: int
    queries: Tuple[MetricQuery, ...]
    cluster_id: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    port: int = DEFAULT_PORT

    def problems(self) -> List[str]:
        problems = []
        if not isinstance(self.mode, ScrapeMode):
            problems.append(f"invalid mode {self.mode!r}")
        if not self.target:
            problems.append("no scrape target given (base URL or ZooKeeper host)")
        if not self.interval > 0:
            problems.append(f"scrape interval must be positive, got {self.interval!r}")
        if self.num_threads < 1:
            problems.append(f"number of threads must be at least 1, got {self.num_threads!r}")
        if not self.request_timeout > 0:
            problems.append(f"request timeout must be positive, got {self.request_timeout!r}")
        if not 0 <= self.port <= 65535:
            problems.append(f"invalid port {self.port!r}")
        if not self.queries:
            problems.append("no metric queries configured")
        seen_kinds: Dict[str, MetricKind] = {}
        for query in self.queries:
            for descriptor in query.metrics:
                problems.extend(_descriptor_problems(descriptor))
                previous = seen_kinds.setdefault(descriptor.name, descriptor.kind)
                if previous is not descriptor.kind:
                    problems.append(
                        f"metric {descriptor.name!r} is declared both as {previous.value}"
                        f" and as {descriptor.kind.value}"
                    )
        return problems

    def validate(self) -> None:
        problems = self.problems()
        if problems:
            raise ConfigInvalid(problems)


def _descriptor_problems(descriptor: MetricDescriptor) -> List[str]:
    problems = []
    if not METRIC_NAME_RE.match(descriptor.name):
        problems.append(f"invalid metric name {descriptor.name!r}")
    if not descriptor.path:
        problems.append(f"metric {descriptor.name!r} has an empty path")
    label_names = list(descriptor.labels.keys())
    if descriptor.label is not None:
        label_names.append(descriptor.label)
    elif descriptor.entry_path:
        problems.append(f"metric {descriptor.name!r} sets 'field' without 'label'")
    for label_name in label_names:
        if not LABEL_NAME_RE.match(label_name) or label_name.startswith("__"):
            problems.append(f"metric {descriptor.name!r} has an invalid label name {label_name!r}")
        elif label_name in RESERVED_LABELS:
            problems.append(f"metric {descriptor.name!r} uses the reserved label {label_name!r}")
    return problems


def make_short_hash(value: str) -> str:
    """
    Creates a short 10-char hash of a longer string, based on the first chars of its sha256 hash.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]


def default_config_file() -> str:
    return resource_path(DEFAULT_CONFIG_FILE_NAME)


def resolve_scrape_target(base_url: Optional[str], zk_host: Optional[str]) -> Tuple[ScrapeMode, str]:
    """
    A ZooKeeper host selects cloud mode; otherwise the base URL is scraped in standalone mode.
    """
    if zk_host:
        return ScrapeMode.CLOUD, zk_host
    if base_url:
        return ScrapeMode.STANDALONE, base_url.rstrip("/")
    raise ConfigInvalid(["must provide either a base URL (-b) or a ZooKeeper host (-z)"])


def _as_path(raw: Any, where: str) -> Tuple[str, ...]:
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list) and all(isinstance(key, str) for key in raw):
        return tuple(raw)
    raise ConfigInvalid([f"{where}: expected a string or a list of strings, got {raw!r}"])


def _as_params(raw: Any, where: str) -> Tuple[Tuple[str, str], ...]:
    if not isinstance(raw, dict):
        raise ConfigInvalid([f"{where}: 'params' must be an object, got {raw!r}"])
    params: List[Tuple[str, str]] = []
    for key, value in raw.items():
        # repeated request parameters (e.g. several "prefix" values) are given as lists
        values = value if isinstance(value, list) else [value]
        params.extend((key, str(v)) for v in values)
    return tuple(params)


def _parse_descriptor(raw: Any, where: str) -> MetricDescriptor:
    if not isinstance(raw, dict):
        raise ConfigInvalid([f"{where}: expected an object, got {raw!r}"])
    try:
        name = raw["name"]
        path = _as_path(raw["path"], f"{where}.path")
        kind = MetricKind.from_string(raw.get("type", MetricKind.GAUGE.value))
    except KeyError as e:
        raise ConfigInvalid([f"{where}: missing required key {e.args[0]!r}"]) from e
    except (ValueError, AttributeError) as e:
        raise ConfigInvalid([f"{where}: {e}"]) from e
    label = raw.get("label")
    if label is not None and not isinstance(label, str):
        raise ConfigInvalid([f"{where}: 'label' must be a string, got {label!r}"])
    labels = raw.get("labels", {})
    if not isinstance(labels, dict):
        raise ConfigInvalid([f"{where}: 'labels' must be an object, got {labels!r}"])
    return MetricDescriptor(
        name=str(name),
        kind=kind,
        help=str(raw.get("help", name)),
        path=path,
        label=label,
        entry_path=_as_path(raw["field"], f"{where}.field") if "field" in raw else (),
        labels={str(k): str(v) for k, v in labels.items()},
    )


def parse_metric_queries(data: Any) -> Tuple[MetricQuery, ...]:
    if not isinstance(data, dict) or not isinstance(data.get("queries"), list):
        raise ConfigInvalid(["metrics configuration must be an object with a 'queries' list"])
    queries = []
    for i, raw_query in enumerate(data["queries"]):
        where = f"queries[{i}]"
        if not isinstance(raw_query, dict) or "path" not in raw_query:
            raise ConfigInvalid([f"{where}: expected an object with a 'path'"])
        raw_metrics = raw_query.get("metrics")
        if not isinstance(raw_metrics, list) or not raw_metrics:
            raise ConfigInvalid([f"{where}: 'metrics' must be a non-empty list"])
        path = str(raw_query["path"])
        queries.append(
            MetricQuery(
                path=path if path.startswith("/") else f"/{path}",
                params=_as_params(raw_query.get("params", {}), where),
                metrics=tuple(
                    _parse_descriptor(raw_metric, f"{where}.metrics[{j}]") for j, raw_metric in enumerate(raw_metrics)
                ),
            )
        )
    return tuple(queries)


def load_metric_queries(config_path: str) -> Tuple[MetricQuery, ...]:
    try:
        data = json.loads(Path(config_path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigInvalid([f"could not read metrics configuration {config_path!r}: {e}"]) from e
    except ValueError as e:
        raise ConfigInvalid([f"metrics configuration {config_path!r} is not valid JSON: {e}"]) from e
    return parse_metric_queries(data)


def build_config(
    *,
    base_url: Optional[str],
    zk_host: Optional[str],
    config_file: str,
    interval: float,
    num_threads: int,
    request_timeout: float,
    port: int,
    cluster_id: Optional[str] = None,
) -> ExporterConfig:
    mode, target = resolve_scrape_target(base_url, zk_host)
    config = ExporterConfig(
        mode=mode,
        target=target,
        interval=interval,
        num_threads=num_threads,
        request_timeout=request_timeout,
        port=port,
        queries=load_metric_queries(config_file),
        cluster_id=cluster_id or make_short_hash(target),
    )
    config.validate()
    return config


def describe_queries(queries: Sequence[MetricQuery]) -> List[str]:
    return [f"{query.path} ({len(query.metrics)} metrics)" for query in queries]
