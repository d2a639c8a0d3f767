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
import logging
import signal
import sys
import time
from threading import Event
from types import FrameType, TracebackType
from typing import Optional, Type

import configargparse
import humanfriendly

from solrexporter import __version__
from solrexporter.cache import MetricsCache
from solrexporter.client import DEFAULT_REQUEST_TIMEOUT, SolrNodeClient
from solrexporter.config import (
    DEFAULT_BASE_URL,
    DEFAULT_NUM_THREADS,
    DEFAULT_PORT,
    DEFAULT_SCRAPE_INTERVAL,
    ExporterConfig,
    build_config,
    default_config_file,
    describe_queries,
)
from solrexporter.coordinator import ScrapeCoordinator
from solrexporter.exceptions import ConfigInvalid
from solrexporter.exporter_types import port_number, positive_integer, positive_timespan
from solrexporter.exposition import DEFAULT_LISTEN_ADDRESS, ExporterEndpoint
from solrexporter.log import get_logger_adapter, initial_root_logger_setup
from solrexporter.scheduler import ScrapeScheduler, SnapshotObserver
from solrexporter.scraper import NodeScraper
from solrexporter.topology import ClusterTopology, create_topology

logger = get_logger_adapter(__name__)

# stdout only unless --log-file is given
DEFAULT_LOG_FILE: Optional[str] = None
DEFAULT_LOG_MAX_SIZE = 1024 * 1024 * 5
DEFAULT_LOG_BACKUP_COUNT = 1

# 1 KeyboardInterrupt raised per this many seconds, no matter how many signals we get.
SIGINT_RATELIMIT = 0.5

last_signal_ts: Optional[float] = None


def sigint_handler(sig: int, frame: Optional[FrameType]) -> None:
    global last_signal_ts
    ts = time.monotonic()
    if last_signal_ts is None or ts > last_signal_ts + SIGINT_RATELIMIT:
        last_signal_ts = ts
        raise KeyboardInterrupt


class SolrExporter:
    """
    Wires the pipeline together: topology -> scrapers on the collection pool -> coordinator -> scheduler -> cache,
    and the HTTP endpoint serving the cache.
    """

    def __init__(
        self,
        config: ExporterConfig,
        topology: Optional[ClusterTopology] = None,
        client: Optional[SolrNodeClient] = None,
        listen_address: str = DEFAULT_LISTEN_ADDRESS,
        serve_http: bool = True,
    ):
        self.config = config
        self.cache = MetricsCache()
        self._client = client if client is not None else SolrNodeClient()
        self._topology = topology if topology is not None else create_topology(config)
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=config.num_threads, thread_name_prefix="solrexporter-scrape"
        )
        self._coordinator = ScrapeCoordinator(
            self._topology,
            NodeScraper(self._client, config.cluster_id),
            config.queries,
            self._executor,
            config.request_timeout,
        )
        self.scheduler = ScrapeScheduler(self._coordinator, config.interval)
        self.scheduler.subscribe(self.cache)
        self.endpoint = ExporterEndpoint(self.cache, config.port, listen_address) if serve_http else None

    def __enter__(self) -> "SolrExporter":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_ctb: Optional[TracebackType],
    ) -> None:
        self.stop()

    def subscribe(self, observer: SnapshotObserver) -> None:
        self.scheduler.subscribe(observer)

    def unsubscribe(self, observer: SnapshotObserver) -> None:
        self.scheduler.unsubscribe(observer)

    def start(self) -> None:
        if self.endpoint is not None:
            self.endpoint.start()
        self.scheduler.start()

    def stop(self) -> None:
        logger.info("Stopping ...")
        # the in-flight scrape (if any) completes & publishes before the pool goes away
        self.scheduler.stop()
        self._executor.shutdown(wait=True)
        self._topology.close()
        self._client.close()
        if self.endpoint is not None:
            self.endpoint.stop()


def parse_cmd_args() -> configargparse.Namespace:
    parser = configargparse.ArgumentParser(
        description="Prometheus exporter for Apache Solr metrics, in standalone or SolrCloud mode.",
        auto_env_var_prefix="solr_exporter_",
        add_config_file_help=True,
        add_env_var_help=False,
    )
    parser.add_argument("--config", is_config_file=True, help="Config file path")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-p",
        "--port",
        type=port_number,
        dest="port",
        default=DEFAULT_PORT,
        help="Port to serve the metrics on (default: %(default)s)",
    )
    parser.add_argument(
        "--listen-address",
        type=str,
        dest="listen_address",
        default=DEFAULT_LISTEN_ADDRESS,
        help="Address to serve the metrics on (default: %(default)s)",
    )

    target_options = parser.add_mutually_exclusive_group()
    target_options.add_argument(
        "-b",
        "--baseurl",
        type=str,
        dest="base_url",
        help=f"Base URL of a standalone Solr node (default: {DEFAULT_BASE_URL}, if -z isn't given either)",
    )
    target_options.add_argument(
        "-z",
        "--zkhost",
        type=str,
        dest="zk_host",
        help="ZooKeeper connection string of a SolrCloud cluster, all of its live nodes are scraped",
    )

    parser.add_argument(
        "-f",
        "--config-file",
        type=str,
        dest="config_file",
        default=None,
        help="Metrics definition file (JSON). Defaults to the bundled definitions",
    )
    parser.add_argument(
        "-s",
        "--scrape-interval",
        type=positive_timespan,
        dest="scrape_interval",
        default=DEFAULT_SCRAPE_INTERVAL,
        help="Interval between scrapes, in seconds or as a timespan such as '30s' (default: %(default)s)",
    )
    parser.add_argument(
        "-n",
        "--num-threads",
        type=positive_integer,
        dest="num_threads",
        default=DEFAULT_NUM_THREADS,
        help="Number of nodes scraped concurrently (default: %(default)s)",
    )
    parser.add_argument(
        "-i",
        "--cluster-id",
        type=str,
        dest="cluster_id",
        default=None,
        help="Value of the cluster_id label (default: a short hash of the base URL / ZooKeeper host)",
    )
    parser.add_argument(
        "--request-timeout",
        type=positive_timespan,
        dest="request_timeout",
        default=DEFAULT_REQUEST_TIMEOUT,
        help="Timeout of each request to a Solr node (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=False, dest="verbose")

    logging_options = parser.add_argument_group("logging")
    logging_options.add_argument(
        "--log-file",
        action="store",
        type=str,
        dest="log_file",
        default=DEFAULT_LOG_FILE,
        help="Also log to this file, rotated by size (default: stdout only)",
    )
    logging_options.add_argument(
        "--log-rotate-max-size",
        action="store",
        type=str,
        dest="log_rotate_max_size",
        default=str(DEFAULT_LOG_MAX_SIZE),
        help="Size at which the log file is rotated, e.g. 5MB (default: %(default)s bytes)",
    )
    logging_options.add_argument(
        "--log-rotate-backup-count",
        action="store",
        type=positive_integer,
        dest="log_rotate_backup_count",
        default=DEFAULT_LOG_BACKUP_COUNT,
    )

    args = parser.parse_args()

    try:
        args.log_rotate_max_size = humanfriendly.parse_size(args.log_rotate_max_size, binary=True)
    except humanfriendly.InvalidSize as e:
        parser.error(f"--log-rotate-max-size: {e}")
    if args.base_url is None and args.zk_host is None:
        args.base_url = DEFAULT_BASE_URL

    return args


def config_from_args(args: configargparse.Namespace) -> ExporterConfig:
    return build_config(
        base_url=args.base_url,
        zk_host=args.zk_host,
        config_file=args.config_file or default_config_file(),
        interval=args.scrape_interval,
        num_threads=args.num_threads,
        request_timeout=args.request_timeout,
        port=args.port,
        cluster_id=args.cluster_id,
    )


def setup_signals() -> None:
    signal.signal(signal.SIGINT, sigint_handler)
    signal.signal(signal.SIGTERM, sigint_handler)


def main() -> None:
    args = parse_cmd_args()

    global logger
    logger = initial_root_logger_setup(
        logging.DEBUG if args.verbose else logging.INFO,
        args.log_file,
        args.log_rotate_max_size,
        args.log_rotate_backup_count,
    )

    try:
        config = config_from_args(args)
    except ConfigInvalid as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(
        f"Running solr-exporter (version {__version__}) in {config.mode.value} mode",
        target=config.target,
        cluster_id=config.cluster_id,
        interval=config.interval,
        num_threads=config.num_threads,
    )
    for description in describe_queries(config.queries):
        logger.debug(f"Configured query {description}")

    setup_signals()
    exporter = SolrExporter(config, listen_address=args.listen_address)
    try:
        with exporter:
            # everything happens on the scheduler & HTTP server threads; wait here for a signal.
            Event().wait()
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Unexpected error occurred")
        sys.exit(1)


if __name__ == "__main__":
    main()
