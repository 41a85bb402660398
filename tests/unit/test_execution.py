from __future__ import annotations

import pytest

from sqla_relselect import (
    InvalidStateError,
    MissingDatabaseError,
    RowCollection,
    Schema,
    Select,
    SelectState,
)

from ..fakes import RecordingDatabase

TAG_ROWS = [{"id": 1, "name": "python"}, {"id": 2, "name": "sqlalchemy"}, {"id": 3, "name": "testing"}]


class TestFetchAll:
    def test_materializes_rows_keyed_by_id(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        result = Select(schema["tag"], db).fetch_all()

        assert isinstance(result, RowCollection)
        assert result.ids() == [1, 2, 3]
        assert result[2].name == "sqlalchemy"

    def test_insertion_ordered(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        result = Select(schema["tag"], db).fetch_all(key_by_id=False)

        assert result[0].name == "python"
        assert result.get("name") == ["python", "sqlalchemy", "testing"]

    def test_re_executes_each_time(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        query = Select(schema["tag"], db)
        query.fetch_all()
        query.fetch_all()

        assert len(db.calls) == 2
        assert all(cursor.closed for cursor in db.cursors)

    def test_submits_rendered_statement(self, schema: Schema) -> None:
        db = RecordingDatabase()
        query = Select(schema["tag"], db).by("name", "python")
        query.fetch_all()

        assert db.calls == [tuple(query.render())]

    def test_state_materialized(self, schema: Schema) -> None:
        query = Select(schema["tag"], RecordingDatabase(TAG_ROWS))
        query.fetch_all()

        assert query.state is SelectState.MATERIALIZED

    def test_without_id_falls_back_to_order(self, schema: Schema) -> None:
        db = RecordingDatabase([{"post_id": 1, "note": "a"}, {"post_id": 1, "note": "b"}])

        with pytest.warns(UserWarning, match="no id field"):
            result = Select(schema["audit"], db).fetch_all()

        assert [row.note for row in result] == ["a", "b"]


class TestFetchNext:
    def test_executes_once(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        query = Select(schema["tag"], db)
        names = [query.fetch_next().name for _ in range(3)]  # type: ignore[union-attr]

        assert names == ["python", "sqlalchemy", "testing"]
        assert len(db.calls) == 1
        assert query.state is SelectState.EXECUTING

    def test_exhaustion_is_sticky(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS[:1])
        query = Select(schema["tag"], db)

        assert query.fetch_next() is not None
        assert query.fetch_next() is None
        assert query.fetch_next() is None
        assert query.fetch_next() is None
        assert len(db.calls) == 1
        assert db.cursors[0].closed
        assert query.state is SelectState.EXHAUSTED

    def test_after_fetch_all_is_an_error(self, schema: Schema) -> None:
        query = Select(schema["tag"], RecordingDatabase(TAG_ROWS))
        query.fetch_all()

        with pytest.raises(InvalidStateError, match="after fetch_all"):
            query.fetch_next()

    def test_failed_execute_stays_configuring(self, schema: Schema) -> None:
        db = RecordingDatabase(error=RuntimeError("syntax error"))
        query = Select(schema["tag"], db)

        with pytest.raises(RuntimeError, match="syntax error"):
            query.fetch_next()

        assert query.state is SelectState.CONFIGURING

        db.error = None
        db.rows = TAG_ROWS
        assert query.fetch_next().name == "python"  # type: ignore[union-attr]
        assert len(db.calls) == 2


class TestFetchOne:
    def test_sets_limit_one(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        query = Select(schema["tag"], db)
        row = query.fetch_one()

        assert row is not None
        assert row.name == "python"
        assert str(query).endswith(" LIMIT 1")
        assert db.calls[0][0].endswith(" LIMIT 1")

    def test_keeps_explicit_limit(self, schema: Schema) -> None:
        query = Select(schema["tag"], RecordingDatabase(TAG_ROWS)).limit(5)
        query.fetch_one()

        assert str(query).endswith(" LIMIT 5")

    def test_always_fresh(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        query = Select(schema["tag"], db)

        assert query.fetch_one().id == 1  # type: ignore[union-attr]
        assert query.fetch_one().id == 1  # type: ignore[union-attr]
        assert len(db.calls) == 2
        assert db.cursors[0].closed

    def test_allowed_after_fetch_all(self, schema: Schema) -> None:
        query = Select(schema["tag"], RecordingDatabase(TAG_ROWS))
        query.fetch_all()

        assert query.fetch_one() is not None

    def test_empty_result(self, schema: Schema) -> None:
        assert Select(schema["tag"], RecordingDatabase()).fetch_one() is None


class TestClose:
    def test_close_aborts_cursor(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        query = Select(schema["tag"], db)
        query.fetch_next()
        query.close()

        assert db.cursors[0].closed
        assert query.state is SelectState.EXHAUSTED
        assert query.fetch_next() is None
        assert len(db.calls) == 1

    def test_context_manager_closes(self, schema: Schema) -> None:
        db = RecordingDatabase(TAG_ROWS)
        with Select(schema["tag"], db) as query:
            query.fetch_next()

        assert db.cursors[0].closed
        assert query.state is SelectState.EXHAUSTED


class TestMissingDatabase:
    def test_execute_without_database(self, schema: Schema) -> None:
        with pytest.raises(MissingDatabaseError, match="'tag'"):
            Select(schema["tag"]).fetch_all()

    def test_render_without_database(self, schema: Schema) -> None:
        assert str(Select(schema["tag"])).startswith("SELECT")

    def test_schema_database_used_by_default(self) -> None:
        from ..models import Base

        db = RecordingDatabase(TAG_ROWS)
        schema = Schema.from_base(Base, db)  # type: ignore[arg-type]
        query = schema.select("tag")

        assert query.database is db
        assert len(query.fetch_all()) == 3  # type: ignore[arg-type]
