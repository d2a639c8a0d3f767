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
from typing import Iterable, List

from solrexporter.metrics import FailureKind


class ConfigInvalid(Exception):
    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class TickFailure(Exception):
    """
    A whole scrape tick failed. The cache is left untouched and the scheduler keeps ticking.
    """


class TopologyUnavailableError(TickFailure):
    pass


class NoNodesAvailableError(TickFailure):
    def __init__(self, failed_members: int):
        super().__init__(f"All {failed_members} members failed to respond")
        self.failed_members = failed_members


class NodeScrapeError(Exception):
    failure_kind: FailureKind

    def __init__(self, member: str, reason: str):
        super().__init__(f"{member}: {reason}")
        self.member = member
        self.reason = reason


class NodeUnreachableError(NodeScrapeError):
    failure_kind = FailureKind.NODE_UNREACHABLE


class NodeTimeoutError(NodeScrapeError):
    failure_kind = FailureKind.NODE_TIMEOUT


class MalformedResponseError(NodeScrapeError):
    failure_kind = FailureKind.MALFORMED_RESPONSE
