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
from solrexporter.metrics import Snapshot


class MetricsCache:
    """
    Holds the most recent Snapshot. Publishing swaps a single reference, so readers never block and never see
    a half-updated snapshot.
    """

    def __init__(self) -> None:
        self._snapshot = Snapshot.empty()

    def publish(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    # lets the cache be subscribed to the scheduler directly
    __call__ = publish

    def read(self) -> Snapshot:
        return self._snapshot
