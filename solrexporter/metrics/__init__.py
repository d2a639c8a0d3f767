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
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

MEMBER_LABEL = "base_url"
CLUSTER_ID_LABEL = "cluster_id"


class ValueKind(Enum):
    INTEGER = "integer"
    FLOATING = "floating"
    STRING = "string"


@dataclass(frozen=True)
class SampleValue:
    """
    A sample value is exactly one of an integer, a float or a string; `kind` says which.
    """

    kind: ValueKind
    value: Union[int, float, str]

    @classmethod
    def integer(cls, value: int) -> "SampleValue":
        return cls(ValueKind.INTEGER, int(value))

    @classmethod
    def floating(cls, value: float) -> "SampleValue":
        return cls(ValueKind.FLOATING, float(value))

    @classmethod
    def string(cls, value: str) -> "SampleValue":
        return cls(ValueKind.STRING, str(value))

    @classmethod
    def from_json(cls, raw: Any) -> Optional["SampleValue"]:
        """
        Convert a decoded JSON scalar. Returns None for anything that isn't a scalar (objects, lists, null).
        """
        # bool is a subclass of int, so it has to be checked first
        if isinstance(raw, bool):
            return cls.integer(1 if raw else 0)
        if isinstance(raw, int):
            return cls.integer(raw)
        if isinstance(raw, float):
            return cls.floating(raw)
        if isinstance(raw, str):
            return cls.string(raw)
        return None

    @property
    def is_numeric(self) -> bool:
        return self.kind is not ValueKind.STRING

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Sample:
    labels: Mapping[str, str]
    value: SampleValue

    def __post_init__(self) -> None:
        # frozen dataclass, so bypass __setattr__ to store a read-only copy of the labels
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))


class MetricKind(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"

    @classmethod
    def from_string(cls, value: str) -> "MetricKind":
        value = value.lower().strip()
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Invalid metric kind: {value!r}")


@dataclass(frozen=True)
class MetricFamily:
    name: str
    kind: MetricKind
    help: str
    samples: Tuple[Sample, ...] = ()


class FailureKind(Enum):
    NODE_UNREACHABLE = "NodeUnreachable"
    NODE_TIMEOUT = "NodeTimeout"
    MALFORMED_RESPONSE = "MalformedResponse"


@dataclass(frozen=True)
class ScrapeFailure:
    member: str
    kind: FailureKind
    reason: str


@dataclass(frozen=True)
class ScrapeResult:
    member: str
    elapsed: float
    families: Optional[Tuple[MetricFamily, ...]] = None
    failure: Optional[ScrapeFailure] = None

    def __post_init__(self) -> None:
        assert (self.families is None) != (self.failure is None), "exactly one of families / failure must be set"

    @property
    def succeeded(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class Snapshot:
    timestamp: datetime
    families: Tuple[MetricFamily, ...] = ()
    failures: Tuple[ScrapeFailure, ...] = ()
    members: Tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "Snapshot":
        return EMPTY_SNAPSHOT

    @property
    def is_empty(self) -> bool:
        return not self.families

    def family(self, name: str) -> Optional[MetricFamily]:
        for family in self.families:
            if family.name == name:
                return family
        return None

    def node_metric(self, member: str, name: str) -> Optional[SampleValue]:
        """
        Typed per-member lookup: the first value of family `name` reported by `member`, if any.
        """
        family = self.family(name)
        if family is None:
            return None
        for sample in family.samples:
            if sample.labels.get(MEMBER_LABEL) == member:
                return sample.value
        return None


EMPTY_SNAPSHOT = Snapshot(timestamp=datetime.fromtimestamp(0, tz=timezone.utc))


def merge_families(family_sequences: Iterable[Sequence[MetricFamily]]) -> Tuple[MetricFamily, ...]:
    """
    Families with the same name are concatenated, in the order they were given. The first occurrence of a name
    decides the family's kind & help. Identical label sets are not deduplicated.
    """
    merged: Dict[str, MetricFamily] = {}
    samples: Dict[str, List[Sample]] = {}
    for families in family_sequences:
        for family in families:
            if family.name not in merged:
                merged[family.name] = family
                samples[family.name] = []
            samples[family.name].extend(family.samples)
    return tuple(
        MetricFamily(name=family.name, kind=family.kind, help=family.help, samples=tuple(samples[name]))
        for name, family in merged.items()
    )
