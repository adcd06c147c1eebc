# monitor.py
from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Dict, List, Sequence

from .api.client import JenkinsClient
from .api.models import WorkflowRun
from .config import DEFAULT_MONITOR_INTERVAL


class WatchState(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    FINISHED = "finished"


class BuildMonitor:
    """
    Polls a set of builds until every one of them has stopped building.

    Each build is reported exactly once, on the tick it is first seen
    finished. The caller's list of IDs is never modified; progress is tracked
    in a separate state table.
    """

    def __init__(
        self,
        client: JenkinsClient,
        pipeline: str,
        build_ids: Sequence[str],
        interval: float = DEFAULT_MONITOR_INTERVAL,
    ):
        """
        Args:
            client: API client
            pipeline: Pipeline the builds belong to
            build_ids: Builds to watch (duplicates are watched once)
            interval: Seconds between ticks
        """
        self.client = client
        self.pipeline = pipeline
        self.build_ids = tuple(dict.fromkeys(str(b) for b in build_ids))
        self.interval = interval
        self.ticks = 0
        self._states: Dict[str, WatchState] = {b: WatchState.PENDING for b in self.build_ids}
        self._stop = threading.Event()

    def state(self, build_id: str) -> WatchState:
        return self._states[str(build_id)]

    @property
    def finished(self) -> bool:
        return all(s is WatchState.FINISHED for s in self._states.values())

    def tick(self) -> List[WorkflowRun]:
        """
        Poll every build that has not finished yet.

        Returns:
            Builds that finished since the previous tick, in watch-list order

        Raises:
            JenkinsError: If any fetch fails; the monitor does not retry
        """
        console = self.client.console
        self.ticks += 1
        done: List[WorkflowRun] = []

        for build_id in self.build_ids:
            if self._states[build_id] is WatchState.FINISHED:
                continue
            build = self.client.get_build_info(self.pipeline, build_id)
            console.trace(f"build [{build.id}] is building? [{build.building}]")
            if build.building:
                self._states[build_id] = WatchState.BUILDING
                continue
            self._states[build_id] = WatchState.FINISHED
            done.append(build)

        console.trace(f"Looping [{len(done)}] new, [{self._count_finished()}] == [{len(self.build_ids)}]")
        return done

    def _count_finished(self) -> int:
        return sum(1 for s in self._states.values() if s is WatchState.FINISHED)

    def run(self, on_finished: Callable[[WorkflowRun], None]) -> bool:
        """
        Tick immediately, then every ``interval`` seconds, until all builds finish.

        Args:
            on_finished: Called once per build as it finishes

        Returns:
            True if every build finished, False if ``stop()`` ended the loop first
        """
        while not self._stop.is_set():
            for build in self.tick():
                on_finished(build)
            if self.finished:
                return True
            if self._stop.wait(self.interval):
                break
        return self.finished

    def stop(self) -> None:
        self._stop.set()
