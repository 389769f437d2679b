"""SQLite persistence for titles, ideas, paintings and reference images.

The store is the only state shared between the request thread and the image
workers.  Each public method opens its own connection, runs one transaction
and closes it, so the object is safe to share across threads.  Painting
updates are compare-and-set on ``(id, status)``: a write only lands if the
row is still in the status the caller expects, which keeps the state machine
honest even when a retry races a worker.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from paintworks.core.errors import InvalidTransitionError, NotFoundError, PersistenceError
from paintworks.core.models import Idea, IdeaDraft, Painting, PaintingDetails, Reference, Title
from paintworks.core.state import PaintingStatus, ensure_transition

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS titles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    instructions TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ideas (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title_id INTEGER NOT NULL REFERENCES titles(id),
    summary TEXT NOT NULL,
    full_prompt TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ideas_title ON ideas(title_id, created_at DESC);

CREATE TABLE IF NOT EXISTS paintings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title_id INTEGER NOT NULL REFERENCES titles(id),
    idea_id INTEGER NOT NULL REFERENCES ideas(id),
    status TEXT NOT NULL,
    image_url TEXT,
    error_message TEXT,
    used_reference_ids TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_paintings_title ON paintings(title_id, created_at DESC);

CREATE TABLE IF NOT EXISTS reference_images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title_id INTEGER REFERENCES titles(id),
    image_data TEXT NOT NULL,
    is_global INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""

_PAINTING_COLUMNS = (
    "id, title_id, idea_id, status, image_url, error_message, used_reference_ids, created_at"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _parse_reference_ids(raw: str | None, painting_id: int) -> tuple[int, ...]:
    """Decode the stored JSON list of reference ids, skipping bad values."""
    if not raw:
        return ()
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Invalid used_reference_ids for painting %s: %r", painting_id, raw)
        return ()
    if not isinstance(values, list):
        return ()
    return tuple(int(value) for value in values if isinstance(value, int))


def _row_to_painting(row: sqlite3.Row) -> Painting:
    return Painting(
        id=row["id"],
        title_id=row["title_id"],
        idea_id=row["idea_id"],
        status=PaintingStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        image_url=row["image_url"],
        error_message=row["error_message"],
        used_reference_ids=_parse_reference_ids(row["used_reference_ids"], row["id"]),
    )


def _row_to_idea(row: sqlite3.Row) -> Idea:
    return Idea(
        id=row["id"],
        title_id=row["title_id"],
        summary=row["summary"],
        full_prompt=row["full_prompt"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_reference(row: sqlite3.Row) -> Reference:
    return Reference(
        id=row["id"],
        image_data=row["image_data"],
        title_id=row["title_id"],
        is_global=bool(row["is_global"]),
    )


class PaintingStore:
    """Durable record set backing the painting pipeline.

    Args:
        db_path: Path to the SQLite database file.  Parent directories are
            created when missing.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized painting store at {self.db_path}")

    # -- Connection handling ------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, translating sqlite errors.

        The transaction commits when the block exits normally and rolls back
        on any exception.  The connection is always closed.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            logger.error(f"Database error on {self.db_path}: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create the schema if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA)

    # -- Titles and references ----------------------------------------------

    def create_title(self, text: str, instructions: str = "") -> Title:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO titles (title, instructions, created_at) VALUES (?, ?, ?)",
                (text, instructions or "", _now()),
            )
            return Title(id=cursor.lastrowid, text=text, instructions=instructions or "")

    def get_title(self, title_id: int) -> Title:
        """Return the title, raising :class:`NotFoundError` if it is unknown."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, title, instructions FROM titles WHERE id = ?", (title_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Title {title_id} not found")
        return Title(id=row["id"], text=row["title"], instructions=row["instructions"] or "")

    def add_reference(
        self, image_data: str, *, title_id: int | None = None, is_global: bool = False
    ) -> Reference:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reference_images (title_id, image_data, is_global, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (title_id, image_data, int(is_global), _now()),
            )
            return Reference(
                id=cursor.lastrowid, image_data=image_data, title_id=title_id, is_global=is_global
            )

    def get_references(self, title_id: int) -> list[Reference]:
        """Return the title's own reference images plus every global one."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, title_id, image_data, is_global FROM reference_images
                WHERE title_id = ? OR is_global = 1
                ORDER BY id
                """,
                (title_id,),
            ).fetchall()
        return [_row_to_reference(row) for row in rows]

    def get_references_by_ids(self, reference_ids: Iterable[int]) -> list[Reference]:
        """Return the references that still exist among ``reference_ids``, in id order."""
        ids = sorted(set(reference_ids))
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id, title_id, image_data, is_global FROM reference_images "
                f"WHERE id IN ({placeholders}) ORDER BY id",
                ids,
            ).fetchall()
        return [_row_to_reference(row) for row in rows]

    def get_reference_data(self, reference_ids: Iterable[int]) -> dict[int, str]:
        """Map reference id to image data for the ids that exist."""
        return {ref.id: ref.image_data for ref in self.get_references_by_ids(reference_ids)}

    # -- Ideas --------------------------------------------------------------

    def get_previous_ideas(self, title_id: int) -> list[Idea]:
        """Return every idea recorded for the title, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, title_id, summary, full_prompt, created_at FROM ideas
                WHERE title_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (title_id,),
            ).fetchall()
        return [_row_to_idea(row) for row in rows]

    def get_idea(self, idea_id: int) -> Idea:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, title_id, summary, full_prompt, created_at FROM ideas WHERE id = ?",
                (idea_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Idea {idea_id} not found")
        return _row_to_idea(row)

    def _insert_idea(self, conn: sqlite3.Connection, title_id: int, draft: IdeaDraft) -> Idea:
        created_at = _now()
        cursor = conn.execute(
            "INSERT INTO ideas (title_id, summary, full_prompt, created_at) VALUES (?, ?, ?, ?)",
            (title_id, draft.summary, draft.full_prompt, created_at),
        )
        return Idea(
            id=cursor.lastrowid,
            title_id=title_id,
            summary=draft.summary,
            full_prompt=draft.full_prompt,
            created_at=datetime.fromisoformat(created_at),
        )

    def create_idea_with_painting(
        self,
        title_id: int,
        draft: IdeaDraft,
        used_reference_ids: Iterable[int] = (),
    ) -> tuple[Idea, Painting]:
        """Store an idea and its ``pending`` painting in one transaction.

        Returns:
            The stored idea and painting.
        """
        reference_ids = tuple(used_reference_ids)
        with self._connect() as conn:
            idea = self._insert_idea(conn, title_id, draft)
            created_at = _now()
            cursor = conn.execute(
                """
                INSERT INTO paintings
                    (title_id, idea_id, status, used_reference_ids, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    title_id,
                    idea.id,
                    PaintingStatus.PENDING.value,
                    json.dumps(list(reference_ids)),
                    created_at,
                    created_at,
                ),
            )
            painting = Painting(
                id=cursor.lastrowid,
                title_id=title_id,
                idea_id=idea.id,
                status=PaintingStatus.PENDING,
                created_at=datetime.fromisoformat(created_at),
                used_reference_ids=reference_ids,
            )
        return idea, painting

    # -- Paintings ----------------------------------------------------------

    def get_painting(self, painting_id: int) -> Painting:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PAINTING_COLUMNS} FROM paintings WHERE id = ?", (painting_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Painting {painting_id} not found")
        return _row_to_painting(row)

    def _compare_and_set(
        self,
        conn: sqlite3.Connection,
        painting_id: int,
        expected: PaintingStatus,
        assignments: dict[str, object],
    ) -> Painting:
        columns = ", ".join(f"{name} = ?" for name in assignments)
        cursor = conn.execute(
            f"UPDATE paintings SET {columns} WHERE id = ? AND status = ?",
            (*assignments.values(), painting_id, expected.value),
        )
        row = conn.execute(
            f"SELECT {_PAINTING_COLUMNS} FROM paintings WHERE id = ?", (painting_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Painting {painting_id} not found")
        if cursor.rowcount == 0:
            raise InvalidTransitionError(
                f"Painting {painting_id} is '{row['status']}', expected '{expected.value}'",
                current=row["status"],
            )
        return _row_to_painting(row)

    def transition_painting(
        self,
        painting_id: int,
        expected: PaintingStatus,
        new: PaintingStatus,
        *,
        image_url: str | None = None,
        error_message: str | None = None,
        refresh_created_at: bool = False,
    ) -> Painting:
        """Move a painting along one edge of the state machine.

        The update only applies if the stored status still equals
        ``expected``.  ``image_url`` and ``error_message`` are always written,
        so moving to ``pending`` clears the outcome of the previous attempt.

        Args:
            painting_id: Painting to update.
            expected: Status the caller believes the painting is in.
            new: Status to move to.
            image_url: Public URL of the generated image (``completed``).
            error_message: Failure description (``failed``/``safety_violation``).
            refresh_created_at: Stamp ``created_at`` with the current time,
                used by retries so the new attempt sorts as the newest item.

        Returns:
            The updated painting.

        Raises:
            InvalidTransitionError: ``expected -> new`` is not allowed, or the
                painting is no longer in ``expected``.  Nothing is written.
            NotFoundError: The painting does not exist.
        """
        ensure_transition(expected, new)
        now = _now()
        assignments: dict[str, object] = {
            "status": PaintingStatus(new).value,
            "image_url": image_url,
            "error_message": error_message,
            "updated_at": now,
        }
        if refresh_created_at:
            assignments["created_at"] = now
        with self._connect() as conn:
            return self._compare_and_set(conn, painting_id, PaintingStatus(expected), assignments)

    def replace_painting_idea(
        self,
        painting_id: int,
        draft: IdeaDraft,
        *,
        expected: PaintingStatus = PaintingStatus.SAFETY_VIOLATION,
    ) -> tuple[Idea, Painting]:
        """Attach a freshly generated idea to a painting and reset it to ``pending``.

        The new idea row, the painting's idea reference and the status reset
        are written in one transaction; if the painting has left ``expected``
        in the meantime nothing is stored.
        """
        ensure_transition(expected, PaintingStatus.PENDING)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT title_id FROM paintings WHERE id = ?", (painting_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Painting {painting_id} not found")
            idea = self._insert_idea(conn, row["title_id"], draft)
            now = _now()
            painting = self._compare_and_set(
                conn,
                painting_id,
                PaintingStatus(expected),
                {
                    "idea_id": idea.id,
                    "status": PaintingStatus.PENDING.value,
                    "image_url": None,
                    "error_message": None,
                    "created_at": now,
                    "updated_at": now,
                },
            )
        return idea, painting

    def list_painting_details(self, title_id: int) -> list[PaintingDetails]:
        """Return the title's paintings joined with idea and title text, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.title_id, p.idea_id, p.status, p.image_url, p.error_message,
                       p.used_reference_ids, p.created_at,
                       i.summary, i.full_prompt,
                       t.title AS title_text, t.instructions AS title_instructions
                FROM paintings p
                JOIN ideas i ON p.idea_id = i.id
                JOIN titles t ON p.title_id = t.id
                WHERE p.title_id = ?
                ORDER BY p.created_at DESC, p.id DESC
                """,
                (title_id,),
            ).fetchall()
        return [
            PaintingDetails(
                painting=_row_to_painting(row),
                summary=row["summary"] or "",
                full_prompt=row["full_prompt"] or "",
                title_text=row["title_text"] or "Unknown Title",
                title_instructions=row["title_instructions"] or "",
            )
            for row in rows
        ]

    def count_paintings(self, title_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM paintings WHERE title_id = ?", (title_id,)
            ).fetchone()
        return row[0] if row else 0
