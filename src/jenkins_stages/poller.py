# poller.py
from __future__ import annotations

import queue
import threading
import time
from typing import Optional
from urllib.parse import urlsplit

from .api.client import JenkinsClient, Response
from .api.models import QueueItem
from .config import DEFAULT_POLL_INTERVAL
from .errors import APIError, TransportError


def queue_path(location: str) -> str:
    """
    Reduce a ``Location`` header to a path the client can request.

    The server answers with an absolute URL to the queue item; only the path
    (and any query) is kept so requests keep going to the configured host.
    """
    parts = urlsplit(location)
    path = parts.path.lstrip("/")
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


class QueuePoller:
    """
    Polls a URL on a fixed interval until a request goes through.

    The first attempt happens one interval after ``start()``. Connection
    failures are retried on the next tick; the first response of any status is
    handed over through a one-slot queue and the poller stops itself.
    """

    def __init__(self, client: JenkinsClient, path: str, interval: float = DEFAULT_POLL_INTERVAL):
        self.client = client
        self.path = path
        self.interval = interval
        self._results: "queue.Queue[Response]" = queue.Queue(maxsize=1)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[Exception] = None
        self.attempts = 0

    def start(self) -> "QueuePoller":
        with self._lock:
            if self._thread is None and not self._stop.is_set():
                self._thread = threading.Thread(target=self._run, name=f"poller:{self.path}", daemon=True)
                self._thread.start()
        return self

    def _run(self) -> None:
        console = self.client.console
        try:
            self._poll(console)
        except Exception as e:  # handed to result()
            console.debug(f"QueuePoller failed for URL {self.path}: {e!r}")
            self._error = e
        finally:
            self._stop.set()
        console.debug(f"QueuePoller stopping for URL {self.path}")

    def _poll(self, console) -> None:
        # Event.wait doubles as the ticker: it returns True as soon as stop() is called
        while not self._stop.wait(self.interval):
            console.debug(f"QueuePoller querying URL {self.path}")
            self.attempts += 1
            try:
                res = self.client.request("GET", self.path)
            except TransportError as e:
                console.debug(f"QueuePoller request failed, retrying: {e}")
                continue
            if self._stop.is_set():
                return
            console.debug(f"QueuePoller got response for {self.path}")
            self._results.put(res)
            return

    def result(self, timeout: Optional[float] = None) -> Optional[Response]:
        """
        Wait for the response.

        Returns:
            The response, or None if the poller was stopped or the wait timed out

        Raises:
            Exception: Whatever unexpected error ended the polling thread
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                return self._results.get(timeout=0.05)
            except queue.Empty:
                pass
            if self._stop.is_set() and self._results.empty():
                if self._error is not None:
                    raise self._error
                return None
            if deadline is not None and time.monotonic() >= deadline:
                return None

    def stop(self) -> None:
        """
        Stop polling. Safe to call repeatedly, before or after a result.

        Once this returns no further requests are made.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "QueuePoller":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


def wait_for_build_number(
    client: JenkinsClient,
    location: str,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: Optional[float] = None,
) -> Optional[int]:
    """
    Follow a queue item until the server assigns it a build number.

    A queue item that is still waiting for an executor is polled again on the
    next interval.

    Args:
        client: API client
        location: ``Location`` header returned when the build was triggered
        interval: Seconds between polls
        timeout: Give up after this many seconds (None waits forever)

    Returns:
        The build number, or None on timeout
    """
    path = queue_path(location)
    console = client.console
    console.debug(f"Polling queue location [{path}]")
    deadline = None if timeout is None else time.monotonic() + timeout

    while True:
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        with QueuePoller(client, path, interval) as poller:
            res = poller.result(timeout=remaining)
        if res is None:
            return None

        item = None
        try:
            item = client.decode(QueueItem, res.json(), res.url)
        except APIError as e:
            console.debug(f"JSON decode error trying to parse build id [{e}]")

        if item is not None and item.build_number is not None:
            return item.build_number

        console.trace(f"queue item not ready yet [{res.status}]")
        if deadline is not None and time.monotonic() >= deadline:
            return None
