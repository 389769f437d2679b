"""Optimistic client view of a title's paintings.

When a batch of N is submitted the client shows N placeholders straight
away, then swaps them for real paintings as polls report them.  The server
never says which painting belongs to which placeholder, so each poll simply
replaces the oldest placeholders with however many new paintings appeared
since the last accounted-for count (``baseline``).  The list length therefore
stays at the expected count for the whole batch, whatever order the
paintings finish in.

Placeholders are persisted after every change so a restarted client shows
the same in-flight batch before its first poll completes.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from typing import Union

from paintworks.client.placeholder_store import PlaceholderStore
from paintworks.core.state import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = frozenset(status.value for status in TERMINAL_STATUSES)


@dataclass(frozen=True)
class Placeholder:
    """Stand-in for a painting the server has not reported yet.

    Attributes:
        sequence: Monotonic creation order; lower is older.
        created_at: Wall-clock creation time, used only for expiry.
        batch_id: Submission the placeholder belongs to.
        acknowledged: The server confirmed the batch (the generate call
            returned), so the painting is known to exist.
    """

    sequence: int
    created_at: float
    batch_id: str
    acknowledged: bool = False

    status = "pending"
    is_terminal = False


@dataclass(frozen=True)
class Real:
    """A painting as reported by the status endpoint."""

    data: dict

    @property
    def status(self) -> str:
        return str(self.data.get("status", ""))

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_VALUES


Entry = Union[Real, Placeholder]


class ClientReconciler:
    """Merges local placeholders with polled paintings for one title.

    Call :meth:`apply` with a fresh snapshot before :meth:`submit` so that
    paintings which already exist are counted in ``baseline`` rather than
    mistaken for the new batch.

    Args:
        title_id: Title being watched.
        storage: Where placeholders are persisted.  None disables persistence.
        clock: Returns the current time in seconds.
        ttl: Unacknowledged placeholders older than this are dropped.
    """

    def __init__(
        self,
        title_id: int,
        storage: PlaceholderStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
        ttl: float = 600.0,
    ):
        self.title_id = title_id
        self.storage = storage
        self.clock = clock
        self.ttl = ttl
        self._lock = threading.RLock()
        self.expected = 0
        self.baseline = 0
        self._next_sequence = 0
        self._placeholders: list[Placeholder] = []
        # Placeholders per batch already swapped for reported paintings.
        self._replaced: dict[str, int] = {}
        self._real: list[Real] = []
        self._restore()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _restore(self) -> None:
        if self.storage is None:
            return
        state = self.storage.load(self.title_id)
        if not state:
            return
        placeholders = []
        for raw in state.get("placeholders", []):
            try:
                placeholders.append(
                    Placeholder(
                        sequence=int(raw["sequence"]),
                        created_at=float(raw["created_at"]),
                        batch_id=str(raw["batch_id"]),
                        acknowledged=bool(raw.get("acknowledged", False)),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Dropping malformed stored placeholder %r", raw)
        placeholders.sort(key=lambda placeholder: placeholder.sequence)
        self._placeholders = placeholders
        replaced = state.get("replaced", {})
        if isinstance(replaced, dict):
            batches = {placeholder.batch_id for placeholder in placeholders}
            for batch_id, count in replaced.items():
                if batch_id in batches and isinstance(count, int):
                    self._replaced[batch_id] = count
        try:
            self.baseline = max(int(state.get("baseline", 0)), 0)
            self._next_sequence = int(state.get("next_sequence", 0))
        except (TypeError, ValueError):
            self.baseline = 0
            self._next_sequence = 0
        if placeholders:
            self._next_sequence = max(self._next_sequence, placeholders[-1].sequence + 1)
        self._recount()
        logger.info(
            f"Restored {len(placeholders)} placeholder(s) for title {self.title_id}"
        )

    def _persist(self) -> None:
        live = {placeholder.batch_id for placeholder in self._placeholders}
        self._replaced = {b: n for b, n in self._replaced.items() if b in live}
        if self.storage is None:
            return
        if not self._placeholders:
            self.storage.clear(self.title_id)
            return
        self.storage.save(
            self.title_id,
            {
                "baseline": self.baseline,
                "next_sequence": self._next_sequence,
                "replaced": self._replaced,
                "placeholders": [asdict(placeholder) for placeholder in self._placeholders],
            },
        )

    def _recount(self) -> None:
        self.expected = self.baseline + len(self._placeholders)

    # ------------------------------------------------------------------
    # Batch lifecycle
    # ------------------------------------------------------------------
    def submit(self, quantity: int) -> str:
        """Add ``quantity`` placeholders for a new batch.

        Returns:
            The batch id, used with :meth:`acknowledge` and :meth:`abort`.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        batch_id = uuid.uuid4().hex[:12]
        now = self.clock()
        with self._lock:
            for _ in range(quantity):
                self._placeholders.append(
                    Placeholder(sequence=self._next_sequence, created_at=now, batch_id=batch_id)
                )
                self._next_sequence += 1
            self._recount()
            self._persist()
        logger.debug(f"Batch {batch_id}: {quantity} placeholder(s), expecting {self.expected}")
        return batch_id

    def acknowledge(self, batch_id: str) -> None:
        """Mark a batch as accepted by the server."""
        with self._lock:
            self._placeholders = [
                Placeholder(p.sequence, p.created_at, p.batch_id, True)
                if p.batch_id == batch_id
                else p
                for p in self._placeholders
            ]
            self._persist()

    def abort(self, batch_id: str, created: int = 0) -> None:
        """Shrink a batch that failed part way.

        The server created ``created`` paintings for the batch.  Those a poll
        has already reported replaced placeholders; the oldest remaining
        placeholders stand for the rest and are kept (acknowledged).  All
        other placeholders of the batch go.
        """
        with self._lock:
            kept: list[Placeholder] = []
            remaining = max(created - self._replaced.get(batch_id, 0), 0)
            for placeholder in self._placeholders:
                if placeholder.batch_id != batch_id:
                    kept.append(placeholder)
                elif remaining > 0:
                    kept.append(
                        Placeholder(placeholder.sequence, placeholder.created_at, batch_id, True)
                    )
                    remaining -= 1
            dropped = len(self._placeholders) - len(kept)
            self._placeholders = kept
            self._recount()
            self._persist()
        logger.info(f"Batch {batch_id} aborted after {created} item(s); dropped {dropped}")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def apply(self, paintings: Sequence[dict]) -> list[Entry]:
        """Merge one status snapshot and return the resulting view.

        Args:
            paintings: The ``paintings`` list of a status response.

        Returns:
            Authoritative paintings (server order) followed by the remaining
            placeholders, oldest first.
        """
        with self._lock:
            self._real = [Real(dict(item)) for item in paintings]
            count = len(self._real)

            surplus = count - self.baseline
            if surplus > 0 and self._placeholders:
                replaced = min(surplus, len(self._placeholders))
                for placeholder in self._placeholders[:replaced]:
                    self._replaced[placeholder.batch_id] = (
                        self._replaced.get(placeholder.batch_id, 0) + 1
                    )
                self._placeholders = self._placeholders[replaced:]
                self.baseline += replaced

            now = self.clock()
            self._placeholders = [
                p for p in self._placeholders if p.acknowledged or now - p.created_at <= self.ttl
            ]

            if self._real and all(entry.is_terminal for entry in self._real):
                self._placeholders = [p for p in self._placeholders if not p.acknowledged]

            if not self._placeholders:
                self.baseline = count
            self._recount()
            self._persist()
            return self._view()

    def _view(self) -> list[Entry]:
        return [*self._real, *self._placeholders]

    @property
    def entries(self) -> list[Entry]:
        with self._lock:
            return self._view()

    @property
    def placeholders(self) -> list[Placeholder]:
        with self._lock:
            return list(self._placeholders)

    @property
    def is_settled(self) -> bool:
        """No placeholders left and every reported painting is terminal."""
        with self._lock:
            return not self._placeholders and all(entry.is_terminal for entry in self._real)
