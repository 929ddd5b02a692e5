"""
SQLite persistence gateway for business documents.

One row per entity in a single `entities` table, keyed by id:

  - kind + document number are unique (a PO number can only be ingested once)
  - the full record is stored as JSON in `payload`
  - `status` holds the stored workflow status for filtering; it is NULL for
    purchase orders, whose status is derived from the expiry date at read time
  - every write appends to `audit_log`

Cross-entity conversions use transaction() (or with_transaction(fn)) so that
all of their writes commit together or not at all.

All sqlite3 errors surface as PersistenceFailure.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from models import ENTITY_TYPES, Entity
from .errors import EntityNotFound, PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entities (
    id            TEXT PRIMARY KEY,
    kind          TEXT NOT NULL,    -- purchase_order | inquiry | quotation |
                                    -- supplier_order | delivery_document
    number        TEXT NOT NULL,    -- business document number
    party         TEXT,             -- customer or supplier name
    status        TEXT,             -- stored status (NULL when derived)
    payload       TEXT NOT NULL,    -- full record as JSON
    created_at    TEXT NOT NULL,
    updated_at    TEXT,
    UNIQUE (kind, number)
);

CREATE INDEX IF NOT EXISTS idx_entities_kind_status ON entities (kind, status);
CREATE INDEX IF NOT EXISTS idx_entities_created_at  ON entities (created_at DESC);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id   TEXT    NOT NULL,
    kind        TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- created | updated | deleted | rendered | transition:<action>
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _model_for(kind: str) -> type[Entity]:
    try:
        return ENTITY_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind {kind!r}. Must be one of {sorted(ENTITY_TYPES)}")


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return _model_for(row["kind"]).model_validate_json(row["payload"])


class Transaction:
    """
    Unit of work bound to one open connection.

    Obtained from Database.transaction(); every method writes through the same
    connection, so nothing is visible to other readers until the block exits
    cleanly.  Any exception rolls the whole block back.
    """

    def __init__(self, conn: sqlite3.Connection, actor: str = "system"):
        self._conn = conn
        self.actor = actor

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def create(self, entity: Entity) -> Entity:
        """Insert *entity*, assigning an id if it has none.  Returns the stored copy."""
        if entity.id is None:
            entity = entity.model_copy(update={"id": Database.new_id()})
        self._conn.execute(
            """
            INSERT INTO entities (id, kind, number, party, status, payload, created_at, updated_at)
            VALUES (:id, :kind, :number, :party, :status, :payload, :created_at, :updated_at)
            """,
            self._params(entity),
        )
        self.log_audit(entity, "created", detail={"number": entity.number})
        logger.info("DB created %s %s (%s)", entity.kind, entity.number, entity.id)
        return entity

    def save(self, entity: Entity, action: str = "updated", detail: Optional[dict] = None) -> Entity:
        """Replace the stored record for *entity* (which must already exist)."""
        if entity.id is None:
            raise ValueError(f"Cannot save {entity.kind} without an id")
        cur = self._conn.execute(
            """
            UPDATE entities SET
                number     = :number,
                party      = :party,
                status     = :status,
                payload    = :payload,
                updated_at = :updated_at
            WHERE id = :id AND kind = :kind
            """,
            self._params(entity),
        )
        if cur.rowcount == 0:
            raise EntityNotFound(entity.kind, entity.id)
        self.log_audit(entity, action, detail=detail)
        logger.debug("DB %s %s %s", action, entity.kind, entity.id)
        return entity

    def update(self, kind: str, entity_id: str, patch: dict[str, Any]) -> Entity:
        """Merge *patch* into the stored record and re-validate it."""
        current = self.get(kind, entity_id)
        data = current.model_dump()
        data.update(patch)
        data["id"] = entity_id
        data["updated_at"] = datetime.now(timezone.utc)
        updated = type(current).model_validate(data)
        return self.save(updated, detail={"fields": sorted(patch)})

    def delete(self, kind: str, entity_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM entities WHERE id = ? AND kind = ?", (entity_id, kind),
        )
        if cur.rowcount:
            self._conn.execute(
                """INSERT INTO audit_log (entity_id, kind, timestamp, action, actor)
                   VALUES (?, ?, ?, 'deleted', ?)""",
                (entity_id, kind, _now(), self.actor),
            )
        return cur.rowcount > 0

    def log_audit(self, entity: Entity, action: str, detail: Optional[dict] = None) -> None:
        """Append one entry to the audit log."""
        self._conn.execute(
            """INSERT INTO audit_log (entity_id, kind, timestamp, action, actor, detail)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                entity.id,
                entity.kind,
                _now(),
                action,
                self.actor,
                json.dumps(detail) if detail is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, kind: str, entity_id: str) -> Entity:
        row = self._conn.execute(
            "SELECT kind, payload FROM entities WHERE id = ? AND kind = ?", (entity_id, kind),
        ).fetchone()
        if row is None:
            raise EntityNotFound(kind, entity_id)
        return _row_to_entity(row)

    def find(self, kind: str, entity_id: str) -> Optional[Entity]:
        try:
            return self.get(kind, entity_id)
        except EntityNotFound:
            return None

    def get_by_number(self, kind: str, number: str) -> Optional[Entity]:
        row = self._conn.execute(
            "SELECT kind, payload FROM entities WHERE kind = ? AND number = ?", (kind, number),
        ).fetchone()
        return _row_to_entity(row) if row else None

    def numbers(self, kind: str, prefix: str = "") -> list[str]:
        """Document numbers of *kind* starting with *prefix*."""
        rows = self._conn.execute(
            "SELECT number FROM entities WHERE kind = ? AND substr(number, 1, ?) = ?",
            (kind, len(prefix), prefix),
        ).fetchall()
        return [r["number"] for r in rows]

    def list(
        self,
        kind: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = 500,
        offset: int = 0,
    ) -> list[Entity]:
        """
        Return records of *kind*, newest first.

        Args:
            status:  Filter on the status as read now.  Derived statuses (PO
                     expiry, lapsed quotations) are evaluated per record rather
                     than trusted from the stored column.
            search:  Case-insensitive substring match on number or party name.
            limit:   Max rows to return (None for all).
            offset:  Pagination offset.
        """
        _model_for(kind)
        clauses = ["kind = ?"]
        params: list = [kind]
        if search:
            clauses.append("(number LIKE ? OR party LIKE ?)")
            like = f"%{search}%"
            params.extend([like, like])

        rows = self._conn.execute(
            f"""
            SELECT kind, payload FROM entities
            WHERE {' AND '.join(clauses)}
            ORDER BY created_at DESC, rowid DESC
            """,
            params,
        ).fetchall()
        entities = [_row_to_entity(r) for r in rows]
        if status:
            entities = [e for e in entities if current_status(e) == status]
        end = None if limit is None else offset + limit
        return entities[offset:end]

    def audit_log(self, entity_id: str) -> list[dict]:
        """Return all audit entries for one entity, oldest first."""
        rows = self._conn.execute(
            """SELECT id, kind, timestamp, action, actor, detail
               FROM audit_log WHERE entity_id = ?
               ORDER BY timestamp ASC, id ASC""",
            (entity_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _params(entity: Entity) -> dict:
        return {
            "id":         entity.id,
            "kind":       entity.kind,
            "number":     entity.number,
            "party":      entity.party,
            "status":     entity.stored_status,
            "payload":    entity.model_dump_json(),
            "created_at": entity.created_at.isoformat(),
            "updated_at": entity.updated_at.isoformat() if entity.updated_at else None,
        }


def current_status(entity: Entity) -> Optional[str]:
    """Status as of now, with derived statuses recomputed."""
    effective = getattr(entity, "effective_status", None)
    if callable(effective):
        return effective()
    return getattr(entity, "status", None)


class Database:
    """
    Thin wrapper around an SQLite database file for business documents.

    Each public call runs in its own short transaction; use transaction() to
    group several writes atomically.
    """

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as e:
            raise PersistenceFailure(str(e)) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            for statement in _SCHEMA.split(";"):
                if statement.strip():
                    conn.execute(statement)
        logger.debug("Database schema ready: %s", self.db_path)

    @contextmanager
    def transaction(self, actor: str = "system") -> Iterator[Transaction]:
        """
        Open a unit of work.  All writes made through the yielded Transaction
        commit together when the block exits, or roll back on any exception.
        """
        with self._conn() as conn:
            yield Transaction(conn, actor=actor)

    def with_transaction(self, fn: Callable[[Transaction], T], actor: str = "system") -> T:
        """Run fn(tx) inside one transaction and return its result."""
        with self.transaction(actor=actor) as tx:
            return fn(tx)

    # ------------------------------------------------------------------
    # Single-call operations
    # ------------------------------------------------------------------

    def create(self, entity: Entity, actor: str = "system") -> Entity:
        with self.transaction(actor) as tx:
            return tx.create(entity)

    def save(self, entity: Entity, action: str = "updated", actor: str = "system") -> Entity:
        with self.transaction(actor) as tx:
            return tx.save(entity, action=action)

    def update(self, kind: str, entity_id: str, patch: dict[str, Any], actor: str = "system") -> Entity:
        with self.transaction(actor) as tx:
            return tx.update(kind, entity_id, patch)

    def delete(self, kind: str, entity_id: str, actor: str = "system") -> bool:
        """Delete a record entirely.  Returns True if it existed."""
        with self.transaction(actor) as tx:
            return tx.delete(kind, entity_id)

    def get(self, kind: str, entity_id: str) -> Entity:
        with self.transaction() as tx:
            return tx.get(kind, entity_id)

    def find(self, kind: str, entity_id: str) -> Optional[Entity]:
        with self.transaction() as tx:
            return tx.find(kind, entity_id)

    def get_by_number(self, kind: str, number: str) -> Optional[Entity]:
        with self.transaction() as tx:
            return tx.get_by_number(kind, number)

    def list(
        self,
        kind: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = 500,
        offset: int = 0,
    ) -> list[Entity]:
        with self.transaction() as tx:
            return tx.list(kind, status=status, search=search, limit=limit, offset=offset)

    def get_audit_log(self, entity_id: str) -> list[dict]:
        with self.transaction() as tx:
            return tx.audit_log(entity_id)

    def get_stats(self) -> dict:
        """Return record counts per kind."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT kind, COUNT(*) AS n FROM entities GROUP BY kind"
            ).fetchall()
        return {r["kind"]: r["n"] for r in rows}
