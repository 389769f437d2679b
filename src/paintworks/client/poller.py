"""Background status polling for one title at a time.

Each :class:`PollingSession` owns a cancellation event scoped to its title.
Switching titles through :class:`TitleWatcher` cancels and joins the previous
session before the next one starts, so a slow poll for an old title can never
write into the view of the new one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from paintworks.client.api_client import PaintworksClient, PaintworksClientError
from paintworks.client.reconciler import ClientReconciler, Entry

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[list[Entry]], None]


class PollingSession:
    """Polls a title's status until the reconciler settles or it is cancelled.

    Args:
        title_id: Title to poll.
        client: API client.
        reconciler: Reconciler for the same title.
        interval: Seconds between polls.
        on_update: Called with the merged view after every successful poll.
    """

    def __init__(
        self,
        title_id: int,
        client: PaintworksClient,
        reconciler: ClientReconciler,
        *,
        interval: float = 2.0,
        on_update: UpdateCallback | None = None,
    ):
        if reconciler.title_id != title_id:
            raise ValueError("reconciler belongs to a different title")
        self.title_id = title_id
        self.client = client
        self.reconciler = reconciler
        self.interval = interval
        self.on_update = on_update
        self.cancelled = threading.Event()
        self.polls = 0
        self.last_error: PaintworksClientError | None = None
        self._thread: threading.Thread | None = None

    def poll_once(self) -> list[Entry]:
        """Fetch one snapshot and merge it."""
        snapshot = self.client.get_status(self.title_id)
        view = self.reconciler.apply(snapshot.get("paintings", []))
        self.polls += 1
        if self.on_update is not None and not self.cancelled.is_set():
            self.on_update(view)
        return view

    def run(self) -> None:
        """Poll until settled or cancelled.  Transport errors are retried."""
        logger.debug(f"Polling title {self.title_id} every {self.interval}s")
        while not self.cancelled.is_set():
            try:
                self.poll_once()
            except PaintworksClientError as exc:
                self.last_error = exc
                logger.warning(f"Status poll for title {self.title_id} failed: {exc}")
            else:
                if self.reconciler.is_settled:
                    logger.info(f"Title {self.title_id} settled after {self.polls} poll(s)")
                    return
            self.cancelled.wait(self.interval)

    def start(self) -> PollingSession:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self.run, name=f"poll-title-{self.title_id}", daemon=True
            )
            self._thread.start()
        return self

    def cancel(self) -> None:
        self.cancelled.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the polling thread.  Returns True once it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class TitleWatcher:
    """Keeps at most one polling session alive, for the active title.

    Args:
        client: API client shared by every session.
        reconciler_factory: Builds the reconciler for a title id.
        interval: Seconds between polls.
        on_update: Called with ``(title_id, view)`` after every poll.
    """

    def __init__(
        self,
        client: PaintworksClient,
        reconciler_factory: Callable[[int], ClientReconciler],
        *,
        interval: float = 2.0,
        on_update: Callable[[int, list[Entry]], None] | None = None,
    ):
        self.client = client
        self.reconciler_factory = reconciler_factory
        self.interval = interval
        self.on_update = on_update
        self._lock = threading.Lock()
        self.session: PollingSession | None = None

    def activate(self, title_id: int, reconciler: ClientReconciler | None = None) -> PollingSession:
        """Stop polling the current title and start polling ``title_id``."""
        with self._lock:
            self._stop_current()
            reconciler = reconciler or self.reconciler_factory(title_id)
            callback = None
            if self.on_update is not None:
                on_update = self.on_update

                def callback(view: list[Entry]) -> None:
                    on_update(title_id, view)

            self.session = PollingSession(
                title_id,
                self.client,
                reconciler,
                interval=self.interval,
                on_update=callback,
            ).start()
            return self.session

    def _stop_current(self) -> None:
        if self.session is not None:
            self.session.cancel()
            self.session.join()
            self.session = None

    def stop(self) -> None:
        with self._lock:
            self._stop_current()
