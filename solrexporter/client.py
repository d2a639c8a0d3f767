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
from typing import Any, Dict, Optional, Sequence, Tuple

import requests
from requests import RequestException, Session, Timeout

from solrexporter import __version__
from solrexporter.exceptions import MalformedResponseError, NodeTimeoutError, NodeUnreachableError
from solrexporter.log import get_logger_adapter

logger = get_logger_adapter(__name__)

DEFAULT_REQUEST_TIMEOUT = 10


class SolrNodeClient:
    """
    Issues read-only JSON requests against single Solr nodes. One instance (and one connection pool) is shared by
    all collection workers.
    """

    def __init__(self, session: Optional[Session] = None):
        self._init_session(session)

    def _init_session(self, session: Optional[Session]) -> None:
        self._session: Session = session if session is not None else requests.Session()
        self._session.headers.update({"User-Agent": f"solr-exporter/{__version__}", "Accept": "application/json"})

    def get_json(
        self,
        base_url: str,
        path: str,
        params: Sequence[Tuple[str, str]] = (),
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> Dict[str, Any]:
        url = "{}/{}".format(base_url.rstrip("/"), path.lstrip("/"))
        try:
            resp = self._session.get(url, params=list(params) + [("wt", "json")], timeout=timeout)
        except Timeout as e:
            # ConnectTimeout is also a ConnectionError, it's classified as a timeout here
            raise NodeTimeoutError(base_url, f"request to {path} timed out after {timeout} seconds") from e
        except RequestException as e:
            raise NodeUnreachableError(base_url, f"request to {path} failed: {e}") from e

        logger.debug("Solr request done", url=url, status_code=resp.status_code)

        if resp.status_code >= 400:
            raise NodeUnreachableError(base_url, f"request to {path} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(base_url, f"response of {path} is not valid JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(base_url, f"response of {path} is not a JSON object")
        return data

    def close(self) -> None:
        self._session.close()
