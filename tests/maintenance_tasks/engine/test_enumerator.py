"""Tests for maintenance_tasks.engine.enumerator — batching collections from a cursor."""
import pytest
from sqlalchemy import select

from conftest import Post
from maintenance_tasks.engine.enumerator import CollectionEnumerator, Relation
from maintenance_tasks.errors import CursorCorruptError, InvalidCollectionError


class Unbounded:
    """Slice-only collection with no __len__; records every slice requested."""

    def __init__(self, size):
        self._items = list(range(size))
        self.requests = []

    def __getitem__(self, key):
        self.requests.append((key.start, key.stop))
        return self._items[key]


def _flatten(batches):
    return [pair for batch in batches for pair in batch]


# ── Sliceable ────────────────────────────────────────────────────────────────

class TestSliceableBatches:

    def test_batches_with_offsets(self):
        batches = list(CollectionEnumerator(2).batches(['a', 'b', 'c']))
        assert batches == [[('a', 1), ('b', 2)], [('c', 3)]]

    def test_starts_at_cursor(self):
        pairs = _flatten(CollectionEnumerator(2).batches(['a', 'b', 'c', 'd'], 2))
        assert pairs == [('c', 3), ('d', 4)]

    def test_cursor_past_end_yields_nothing(self):
        assert list(CollectionEnumerator(2).batches([1, 2], 5)) == []

    def test_empty_collection_yields_no_batches(self):
        assert list(CollectionEnumerator(10).batches([])) == []

    def test_range_and_tuple_supported(self):
        assert [item for item, _ in _flatten(CollectionEnumerator(3).batches(range(4)))] == [0, 1, 2, 3]
        assert len(_flatten(CollectionEnumerator(3).batches((1, 2)))) == 2

    def test_unbounded_collection_read_until_empty(self):
        collection = Unbounded(5)
        pairs = _flatten(CollectionEnumerator(2).batches(collection))
        assert [item for item, _ in pairs] == [0, 1, 2, 3, 4]
        assert collection.requests[-1] == (5, 7)

    def test_only_one_batch_materialized_at_a_time(self):
        collection = Unbounded(100)
        batches = CollectionEnumerator(10).batches(collection)
        next(batches)
        assert collection.requests == [(0, 10)]

    def test_key_cursor_on_sliceable_is_corrupt(self):
        with pytest.raises(CursorCorruptError):
            CollectionEnumerator(2).batches([1, 2], (1,))

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            CollectionEnumerator(0)


class TestInvalidCollections:

    @pytest.mark.parametrize('collection', [
        None,
        42,
        'abc',
        {'a': 1},
        (x for x in range(3)),
    ])
    def test_unsupported_shapes_rejected_eagerly(self, collection):
        with pytest.raises(InvalidCollectionError):
            CollectionEnumerator(2).batches(collection)

    def test_relational_without_session_rejected(self):
        with pytest.raises(InvalidCollectionError):
            CollectionEnumerator(2).batches(select(Post))


# ── Relational ───────────────────────────────────────────────────────────────

@pytest.fixture
def posts(db_session):
    rows = [Post(title=title) for title in ['b', 'a', 'b', 'a', 'c']]
    db_session.add_all(rows)
    db_session.commit()
    return rows


class TestRelationalBatches:

    def test_batches_by_primary_key(self, db_session, posts):
        enumerator = CollectionEnumerator(2, session=db_session)
        batches = list(enumerator.batches(select(Post)))
        assert [[post.id for post, _ in batch] for batch in batches] == [[1, 2], [3, 4], [5]]
        assert batches[0][1][1] == (2,)

    def test_resumes_after_key(self, db_session, posts):
        pairs = _flatten(CollectionEnumerator(2, session=db_session).batches(select(Post), (3,)))
        assert [post.id for post, _ in pairs] == [4, 5]

    def test_filters_preserved(self, db_session, posts):
        stmt = select(Post).where(Post.title == 'b')
        pairs = _flatten(CollectionEnumerator(10, session=db_session).batches(stmt))
        assert [post.id for post, _ in pairs] == [1, 3]

    def test_composite_keys(self, db_session, posts):
        relation = Relation(select(Post), keys=['title', 'id'])
        pairs = _flatten(CollectionEnumerator(2, session=db_session).batches(relation))
        assert [position for _, position in pairs] == [('a', 2), ('a', 4), ('b', 1), ('b', 3), ('c', 5)]

    def test_composite_keys_resume(self, db_session, posts):
        relation = Relation(select(Post), keys=[Post.title, Post.id])
        pairs = _flatten(CollectionEnumerator(2, session=db_session).batches(relation, ('a', 4)))
        assert [post.id for post, _ in pairs] == [1, 3, 5]

    def test_rows_inserted_ahead_are_picked_up(self, db_session, posts):
        enumerator = CollectionEnumerator(2, session=db_session)
        db_session.add(Post(title='late'))
        db_session.delete(posts[3])
        db_session.commit()
        pairs = _flatten(enumerator.batches(select(Post), (2,)))
        assert [post.id for post, _ in pairs] == [3, 5, 6]

    def test_empty_table_yields_no_batches(self, db_session):
        assert list(CollectionEnumerator(2, session=db_session).batches(select(Post))) == []

    def test_offset_cursor_on_relation_is_corrupt(self, db_session):
        with pytest.raises(CursorCorruptError):
            CollectionEnumerator(2, session=db_session).batches(select(Post), 4)

    def test_wrong_key_arity_is_corrupt(self, db_session):
        with pytest.raises(CursorCorruptError):
            CollectionEnumerator(2, session=db_session).batches(select(Post), (1, 2))


class TestCount:

    def test_sliceable(self):
        assert CollectionEnumerator(2).count([1, 2, 3]) == 3

    def test_unbounded_is_unknown(self):
        assert CollectionEnumerator(2).count(Unbounded(3)) is None

    def test_relational(self, db_session, posts):
        enumerator = CollectionEnumerator(2, session=db_session)
        assert enumerator.count(select(Post).where(Post.title == 'a')) == 2
