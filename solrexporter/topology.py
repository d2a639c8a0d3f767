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
from abc import ABCMeta, abstractmethod
from threading import Lock
from typing import Any, Optional, Tuple
from urllib.parse import unquote

from kazoo.client import KazooClient
from kazoo.exceptions import KazooException, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError

from solrexporter.config import ExporterConfig, ScrapeMode
from solrexporter.exceptions import TopologyUnavailableError
from solrexporter.log import get_logger_adapter

logger = get_logger_adapter(__name__)

LIVE_NODES_ZKNODE = "/live_nodes"
CLUSTER_PROPS_ZKNODE = "/clusterprops.json"
DEFAULT_URL_SCHEME = "http"
ZK_CONNECT_TIMEOUT = 10


class ClusterTopology(metaclass=ABCMeta):
    @abstractmethod
    def resolve(self) -> Tuple[str, ...]:
        """
        Returns the base URLs of the members to scrape right now. Evaluated anew on every call.
        Raises TopologyUnavailableError if the members can't be determined.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class StandaloneTopology(ClusterTopology):
    def __init__(self, base_url: str):
        self._base_url = base_url.rstrip("/")

    def resolve(self) -> Tuple[str, ...]:
        return (self._base_url,)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_url={self._base_url!r})"


def node_name_to_base_url(node_name: str, url_scheme: str = DEFAULT_URL_SCHEME) -> str:
    """
    Converts a SolrCloud live node name (host:port_context, context URL-encoded) to the node's base URL.
    """
    # hostnames may contain underscores, the context starts at the first one after the port
    separator = node_name.find("_", max(node_name.find(":"), 0))
    if separator == -1:
        host_and_port, context = node_name, ""
    else:
        host_and_port, context = node_name[:separator], node_name[separator + 1 :]
    path = unquote(context)
    return f"{url_scheme}://{host_and_port}" + (f"/{path}" if path else "")


class CloudTopology(ClusterTopology):
    """
    SolrCloud members, as registered under /live_nodes in ZooKeeper.

    The ZooKeeper session is opened on the first resolve() and reused afterwards, but the list of live nodes is
    read again on every call.
    """

    def __init__(
        self, zk_host: str, zk_client: Optional[KazooClient] = None, connect_timeout: float = ZK_CONNECT_TIMEOUT
    ):
        self._zk_host = zk_host
        self._zk_client = zk_client
        self._connect_timeout = connect_timeout
        self._lock = Lock()

    def _get_client(self) -> KazooClient:
        with self._lock:
            if self._zk_client is None:
                client = KazooClient(hosts=self._zk_host, timeout=self._connect_timeout, read_only=True)
                # raises KazooTimeoutError (after cleaning up) if no server could be reached
                client.start(timeout=self._connect_timeout)
                logger.info("Connected to ZooKeeper", zk_host=self._zk_host)
                self._zk_client = client
            return self._zk_client

    def resolve(self) -> Tuple[str, ...]:
        try:
            client = self._get_client()
            live_nodes = client.get_children(LIVE_NODES_ZKNODE)
            url_scheme = self._get_url_scheme(client)
        except (KazooException, KazooTimeoutError) as e:
            raise TopologyUnavailableError(f"Failed to read live nodes from ZooKeeper {self._zk_host!r}: {e!r}") from e

        if not live_nodes:
            raise TopologyUnavailableError(f"No live nodes are registered in ZooKeeper {self._zk_host!r}")
        return tuple(node_name_to_base_url(node_name, url_scheme) for node_name in sorted(live_nodes))

    def _get_url_scheme(self, client: KazooClient) -> str:
        try:
            data, _ = client.get(CLUSTER_PROPS_ZKNODE)
        except NoNodeError:
            return DEFAULT_URL_SCHEME

        try:
            props: Any = json.loads(data.decode("utf-8")) if data else {}
        except ValueError:
            logger.warning(
                "Cluster properties are not valid JSON, assuming the default URL scheme", zk_host=self._zk_host
            )
            return DEFAULT_URL_SCHEME
        if not isinstance(props, dict):
            return DEFAULT_URL_SCHEME
        return str(props.get("urlScheme") or DEFAULT_URL_SCHEME)

    def close(self) -> None:
        with self._lock:
            if self._zk_client is not None:
                self._zk_client.stop()
                self._zk_client.close()
                self._zk_client = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(zk_host={self._zk_host!r})"


def create_topology(config: ExporterConfig) -> ClusterTopology:
    if config.mode is ScrapeMode.STANDALONE:
        return StandaloneTopology(config.target)
    elif config.mode is ScrapeMode.CLOUD:
        return CloudTopology(config.target)
    else:
        raise ValueError(f"Invalid scrape mode {config.mode!r}")
