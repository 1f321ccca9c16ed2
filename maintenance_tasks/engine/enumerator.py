"""
Collection enumerator — turns a task's collection into resumable batches.

Two shapes are supported:

    sliceable   anything with slice access (list, tuple, range, custom objects
                implementing __getitem__(slice)); the cursor is the offset of the
                next item. Objects without __len__ are treated as unbounded and
                read until a slice comes back empty.

    relational  a SQLAlchemy Select of a mapped entity (or a Relation wrapper
                naming the key columns); the cursor is the key tuple of the last
                item processed, so rows inserted or deleted ahead of a paused run
                are neither skipped nor repeated.

Only one batch is ever materialized at a time.
"""
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import Select, and_, or_, select, func, inspect as sa_inspect
from sqlalchemy.orm import Query

from maintenance_tasks.engine.cursor import Position
from maintenance_tasks.errors import CursorCorruptError, InvalidCollectionError

Batch = List[Tuple[Any, Position]]


@dataclass
class Relation:
    """A Select plus the columns that give it a stable total order."""
    statement: Select
    keys: Optional[Sequence] = None  # ORM attributes or attribute names; default: primary key


def key_after(keys, values):
    """Lexicographic `keys > values`, expanded so every backend can run it."""
    clauses = []
    for i, key in enumerate(keys):
        equal_prefix = [keys[j] == values[j] for j in range(i)]
        clauses.append(and_(*equal_prefix, key > values[i]))
    return or_(*clauses)


class CollectionEnumerator:
    """Produces batches of (item, cursor-after-item) pairs starting from a cursor."""

    def __init__(self, batch_size: int, session=None):
        if batch_size < 1:
            raise ValueError(f'batch_size must be >= 1, got {batch_size}')
        self.batch_size = batch_size
        self.session = session

    # ── Public API ───────────────────────────────────────────────────────

    def batches(self, collection, cursor: Optional[Position] = None) -> Iterator[Batch]:
        """
        Validate the collection shape and cursor eagerly, then return a lazy
        iterator of non-empty batches.

        Raises InvalidCollectionError for unsupported shapes and
        CursorCorruptError when the cursor does not fit the shape.
        """
        relation = self._as_relation(collection)
        if relation is not None:
            if self.session is None:
                raise InvalidCollectionError('relational collections need a session')
            _, keys = self._resolve_keys(relation)
            if cursor is not None and (not isinstance(cursor, tuple) or len(cursor) != len(keys)):
                raise CursorCorruptError(cursor, f'expected a {len(keys)}-part key')
            return self._relation_batches(relation.statement, keys, cursor)

        if self._is_sliceable(collection):
            if cursor is not None and not isinstance(cursor, int):
                raise CursorCorruptError(cursor, 'expected an integer offset')
            return self._slice_batches(collection, cursor or 0)

        raise InvalidCollectionError(
            f'collection() must return a sliceable sequence or a SQLAlchemy Select, '
            f'got {type(collection).__name__}'
        )

    def count(self, collection) -> Optional[int]:
        """Size of the collection when it can be known cheaply, else None."""
        relation = self._as_relation(collection)
        if relation is not None:
            if self.session is None:
                return None
            stmt = select(func.count()).select_from(relation.statement.order_by(None).subquery())
            return self.session.execute(stmt).scalar()
        if self._is_sliceable(collection):
            try:
                return len(collection)
            except TypeError:
                return None
        return None

    # ── Sliceable ────────────────────────────────────────────────────────

    @staticmethod
    def _is_sliceable(collection) -> bool:
        if isinstance(collection, (str, bytes, Mapping)):
            return False
        return hasattr(collection, '__getitem__')

    def _slice_batches(self, collection, offset: int) -> Iterator[Batch]:
        try:
            size = len(collection)
        except TypeError:
            size = None

        while size is None or offset < size:
            chunk = list(collection[offset:offset + self.batch_size])
            if not chunk:
                return
            yield [(item, offset + i + 1) for i, item in enumerate(chunk)]
            offset += len(chunk)

    # ── Relational ───────────────────────────────────────────────────────

    @staticmethod
    def _as_relation(collection) -> Optional[Relation]:
        if isinstance(collection, Relation):
            return collection
        if isinstance(collection, Select):
            return Relation(collection)
        if isinstance(collection, Query):
            return Relation(collection.statement)
        return None

    @staticmethod
    def _resolve_keys(relation: Relation):
        descriptions = relation.statement.column_descriptions
        entity = descriptions[0].get('entity') if descriptions else None
        if entity is None:
            raise InvalidCollectionError('relational collections must select a mapped entity')

        if relation.keys:
            keys = [getattr(entity, k) if isinstance(k, str) else k for k in relation.keys]
        else:
            mapper = sa_inspect(entity)
            keys = [getattr(entity, mapper.get_property_by_column(col).key) for col in mapper.primary_key]
        return entity, keys

    def _relation_batches(self, statement: Select, keys, cursor) -> Iterator[Batch]:
        last = cursor
        while True:
            stmt = statement.order_by(None).order_by(*keys).limit(self.batch_size)
            if last is not None:
                stmt = stmt.where(key_after(keys, last))
            rows = self.session.scalars(stmt).all()
            if not rows:
                return
            batch = []
            for row in rows:
                last = tuple(getattr(row, key.key) for key in keys)
                batch.append((row, last))
            yield batch
            if len(rows) < self.batch_size:
                return
