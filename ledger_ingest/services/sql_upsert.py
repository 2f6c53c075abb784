"""
Dialect-aware INSERT ... ON CONFLICT DO UPDATE.

Concurrent workers may write the same keys; a native upsert keeps those
writes from failing on the unique constraint. Dialects without ON CONFLICT
fall back to query-then-update inside the caller's transaction.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

# Keeps multi-row VALUES under SQLite's bound-parameter limit.
CHUNK_SIZE = 100


def dialect_insert(db: Session):
    name = db.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def upsert_rows(
    db: Session,
    model,
    rows: List[Dict[str, Any]],
    conflict_cols: Sequence[str],
    update_cols: Sequence[str],
) -> None:
    """Upsert `rows` (dicts with identical keys) into `model`; does not commit."""
    if not rows:
        return
    insert = dialect_insert(db)
    if insert is None:
        _upsert_by_query(db, model, rows, conflict_cols, update_cols)
        return

    for start in range(0, len(rows), CHUNK_SIZE):
        chunk = rows[start:start + CHUNK_SIZE]
        stmt = insert(model).values(chunk)
        set_ = {c: stmt.excluded[c] for c in update_cols}
        if hasattr(model, "updated_at"):
            set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=set_)
        db.execute(stmt)


def _upsert_by_query(db, model, rows, conflict_cols, update_cols) -> None:
    for values in rows:
        q = db.query(model)
        for c in conflict_cols:
            q = q.filter(getattr(model, c) == values[c])
        existing = q.first()
        if existing:
            for c in update_cols:
                setattr(existing, c, values[c])
        else:
            db.add(model(**values))
        db.flush()
