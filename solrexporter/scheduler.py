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
import threading
import time
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, List, Optional

from solrexporter.coordinator import ScrapeCoordinator
from solrexporter.exceptions import TickFailure
from solrexporter.log import get_logger_adapter
from solrexporter.metrics import Snapshot
from solrexporter.utils import get_iso8601_format_time

logger = get_logger_adapter(__name__)

SnapshotObserver = Callable[[Snapshot], None]


class SchedulerState(Enum):
    IDLE = "idle"
    SLEEPING = "sleeping"
    SCRAPING = "scraping"
    STOPPED = "stopped"


class ScrapeScheduler:
    """
    Runs the coordinator on a fixed-rate grid of `interval` seconds, on a single dedicated thread, and hands each
    new Snapshot to the subscribed observers.

    Scrapes never overlap: grid times that pass while a scrape is still running are skipped (and counted).
    """

    def __init__(
        self,
        coordinator: ScrapeCoordinator,
        interval: float,
        timefn: Callable[[], float] = time.monotonic,
    ):
        assert interval > 0, "interval must be positive"
        self._coordinator = coordinator
        self._interval = interval
        self._timefn = timefn
        self._thread: Optional[Thread] = None
        self._stop_event = Event()
        self._state = SchedulerState.IDLE
        self._state_lock = Lock()
        self._observers: List[SnapshotObserver] = []
        self._observers_lock = Lock()

        self.ticks = 0
        self.successful_ticks = 0
        self.failed_ticks = 0
        self.skipped_ticks = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    def subscribe(self, observer: SnapshotObserver) -> None:
        with self._observers_lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: SnapshotObserver) -> None:
        with self._observers_lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

    def start(self) -> None:
        with self._state_lock:
            if self._state is not SchedulerState.IDLE:
                raise RuntimeError(f"Can't start a scheduler in state {self._state.value}")
            self._state = SchedulerState.SLEEPING
            self._thread = Thread(target=self._run_loop, name="solrexporter-scheduler", daemon=True)
            self._thread.start()
        logger.info("Scrape scheduler started", interval=self._interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        No new tick begins after this is called. A scrape already in progress completes and is published.
        """
        with self._state_lock:
            if self._state is SchedulerState.IDLE:
                self._state = SchedulerState.STOPPED
                return
            if self._state is SchedulerState.STOPPED:
                return
            self._stop_event.set()
            thread = self._thread

        # an observer may stop the scheduler from within the scheduler thread; it can't join itself.
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Scrape scheduler did not stop in time", timeout=timeout)
                return
        with self._state_lock:
            self._state = SchedulerState.STOPPED
        logger.info(
            "Scrape scheduler stopped",
            ticks=self.ticks,
            failed_ticks=self.failed_ticks,
            skipped_ticks=self.skipped_ticks,
        )

    def is_running(self) -> bool:
        return self._state in (SchedulerState.SLEEPING, SchedulerState.SCRAPING)

    def _run_loop(self) -> None:
        # the first tick fires right away
        next_fire = self._timefn()
        while not self._stop_event.is_set():
            delay = next_fire - self._timefn()
            if delay > 0 and self._stop_event.wait(delay):
                break

            self._tick()

            next_fire += self._interval
            now = self._timefn()
            if next_fire <= now:
                missed = int((now - next_fire) // self._interval) + 1
                self.skipped_ticks += missed
                next_fire += missed * self._interval
                logger.debug("Scrape overran the interval, skipping ticks", skipped=missed)

        with self._state_lock:
            self._state = SchedulerState.STOPPED

    def _tick(self) -> None:
        with self._state_lock:
            self._state = SchedulerState.SCRAPING
        self.ticks += 1
        start_time = self._timefn()
        try:
            snapshot = self._coordinator.run_once()
        except TickFailure as e:
            self.failed_ticks += 1
            logger.warning("Scrape tick failed, keeping the previous snapshot", tick=self.ticks, error=str(e))
        except Exception:
            self.failed_ticks += 1
            logger.exception("Unexpected error during scrape tick", tick=self.ticks)
        else:
            self.successful_ticks += 1
            logger.debug(
                "Scrape tick completed",
                tick=self.ticks,
                timestamp=get_iso8601_format_time(snapshot.timestamp),
                members=len(snapshot.members),
                failures=len(snapshot.failures),
                elapsed=self._timefn() - start_time,
            )
            self._publish(snapshot)
        finally:
            with self._state_lock:
                if self._state is SchedulerState.SCRAPING:
                    self._state = SchedulerState.SLEEPING

    def _publish(self, snapshot: Snapshot) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Snapshot observer failed", observer=repr(observer))
