"""Storage engine behaviour against a real SQLite file."""

import asyncio
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from learnstore.core.database import Database
from learnstore.core.exceptions import ConnectionNotReadyError, MissingTableError, NotFoundError
from learnstore.models.schema import ColumnSchema, ColumnType, ForeignKeySchema, TableSchema

ITEMS = TableSchema(
    name="items",
    columns=(
        ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),
        ColumnSchema(name="v", type=ColumnType.TEXT, check="v IS NULL OR v <> 'bad'"),
        ColumnSchema(name="course", type=ColumnType.INTEGER),
    ),
)


async def _with_items(database, records=()):
    await database.create_table_from_schema(ITEMS)
    await database.insert_records("items", records)


def test_connection_is_not_available_before_ready(settings):
    database = Database("test.db", settings=settings)
    with pytest.raises(ConnectionNotReadyError):
        database.connection


def test_ready_is_shared_and_opens_the_file(settings, run_db):
    async def scenario(database):
        first = database.ready()
        assert database.ready() is first
        await first
        assert database.connection is not None

    run_db(scenario)
    assert Path(settings.database_path("test.db")).is_file()


def test_create_table_is_idempotent(run_db):
    async def scenario(database):
        await database.create_tables_from_schema([ITEMS, ITEMS])
        await database.create_table_from_schema(ITEMS)
        return await database.table_exists("items")

    assert run_db(scenario) is True


def test_insert_and_get_record(run_db):
    async def scenario(database):
        await _with_items(database)
        await database.insert_record("items", {"id": 1, "v": "x", "course": 2})
        record = await database.get_record("items", {"id": 1})
        field = await database.get_field("items", "v", {"id": 1})
        return record, field

    record, field = run_db(scenario)
    assert record == {"id": 1, "v": "x", "course": 2}
    assert field == "x"


def test_singular_get_fails_and_plural_get_returns_empty(run_db):
    async def scenario(database):
        await _with_items(database)
        with pytest.raises(NotFoundError):
            await database.get_record("items", {"id": 42})
        with pytest.raises(NotFoundError):
            await database.get_field("items", "v", {"id": 42})
        with pytest.raises(NotFoundError):
            await database.record_exists("items", {"id": 42})
        return await database.get_records("items", {"id": 42})

    assert run_db(scenario) == []


def test_insert_replaces_by_primary_key(run_db):
    async def scenario(database):
        await _with_items(database)
        await database.insert_record("items", {"id": 1, "v": "x"})
        await database.insert_record("items", {"id": 1, "v": "y"})
        return await database.get_all_records("items")

    assert run_db(scenario) == [{"id": 1, "v": "y", "course": None}]


def test_insert_records_is_atomic(run_db):
    async def scenario(database):
        await _with_items(database)
        with pytest.raises(IntegrityError):
            await database.insert_records("items", [{"id": 1, "v": "ok"}, {"id": 2, "v": "bad"}])
        return await database.count_records("items")

    assert run_db(scenario) == 0


def test_execute_batch_rolls_back_ddl_too(run_db):
    async def scenario(database):
        with pytest.raises(OperationalError):
            await database.execute_batch([
                "CREATE TABLE scratch (id INTEGER)",
                ("INSERT INTO missing_table VALUES (?)", [1]),
            ])
        return await database.table_exists("scratch")

    assert run_db(scenario) is False


def test_insert_records_from_copies_every_row(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}])
        await database.create_table_from_schema(ITEMS.model_copy(update={"name": "items_copy"}))
        await database.insert_records_from("items_copy", "items")
        return await database.get_records("items_copy", sort="id")

    assert [record["v"] for record in run_db(scenario)] == ["a", "b"]


def test_update_records(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1, "v": "a", "course": 1}, {"id": 2, "v": "b", "course": 2}])
        updated = await database.update_records("items", {"v": "z"}, {"course": 2})
        nothing = await database.update_records("items", {}, {"course": 2})
        everything = await database.update_records_where("items", {"course": 9})
        return updated, nothing, everything, await database.get_records("items", sort="id")

    updated, nothing, everything, records = run_db(scenario)
    assert updated == 1
    assert nothing == 0
    assert everything == 2
    assert records == [{"id": 1, "v": "a", "course": 9}, {"id": 2, "v": "z", "course": 9}]


def test_delete_records_with_null_condition(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1, "course": None}, {"id": 2, "course": 5}])
        deleted = await database.delete_records("items", {"course": None})
        return deleted, await database.get_all_records("items")

    deleted, records = run_db(scenario)
    assert deleted == 1
    assert [record["id"] for record in records] == [2]


def test_delete_records_without_conditions_empties_the_table(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1}, {"id": 2}, {"id": 3}])
        deleted = await database.delete_records("items")
        return deleted, await database.count_records("items")

    assert run_db(scenario) == (3, 0)


def test_empty_value_lists_match_no_rows(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1}, {"id": 2}])
        found = await database.get_records_list("items", "id", [])
        deleted = await database.delete_records_list("items", "id", [])
        return found, deleted, await database.count_records("items")

    assert run_db(scenario) == ([], 0, 2)


def test_records_list_and_select(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": i, "course": i % 2} for i in range(1, 7)])
        listed = await database.get_records_list("items", "id", [2, 4, 99], sort="id")
        where, params = database.get_in_or_equal([1, 3])
        selected = await database.get_records_select("items", f"id {where}", params, sort="id DESC")
        deleted = await database.delete_records_list("items", "id", [5, 6])
        return listed, selected, deleted

    listed, selected, deleted = run_db(scenario)
    assert [record["id"] for record in listed] == [2, 4]
    assert [record["id"] for record in selected] == [3, 1]
    assert deleted == 2


def test_limits(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": i} for i in range(1, 11)])
        page = await database.get_records("items", sort="id", limit_from=2, limit_num=3)
        rest = await database.get_records("items", sort="id", limit_from=8)
        return page, rest

    page, rest = run_db(scenario)
    assert [record["id"] for record in page] == [3, 4, 5]
    assert [record["id"] for record in rest] == [9, 10]


def test_counts(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1, "course": 1}, {"id": 2, "course": 1}, {"id": 3, "course": 2}])
        return (
            await database.count_records("items"),
            await database.count_records("items", {"course": 1}),
            await database.count_records_select("items", "course > ?", [5]),
        )

    assert run_db(scenario) == (3, 2, 0)


def test_add_column_twice_is_a_no_op(run_db):
    async def scenario(database):
        await _with_items(database)
        await database.add_column("items", "grade", ColumnType.REAL)
        await database.add_column("items", "grade", ColumnType.REAL)
        await database.insert_record("items", {"id": 1, "grade": 7.5})
        return await database.get_field("items", "grade", {"id": 1})

    assert run_db(scenario) == 7.5


def test_add_column_propagates_other_failures(run_db):
    async def scenario(database):
        with pytest.raises(OperationalError):
            await database.add_column("no_such_table", "grade", "REAL")

    run_db(scenario)


def test_migrate_table_with_mapping(run_db):
    async def scenario(database):
        await database.create_table("old", [
            ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),
            ColumnSchema(name="v", type=ColumnType.TEXT),
        ])
        await database.insert_record("old", {"id": 1, "v": "x"})
        await database.create_table("new", [
            ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),
            ColumnSchema(name="v", type=ColumnType.TEXT),
        ])

        await database.migrate_table("old", "new", lambda record: {**record, "v": record["v"].upper()})

        return await database.get_all_records("new"), await database.table_exists("old")

    records, old_exists = run_db(scenario)
    assert records == [{"id": 1, "v": "X"}]
    assert old_exists is False


def test_migrate_table_without_source_is_a_no_op(run_db):
    async def scenario(database):
        await _with_items(database, [{"id": 1}])
        await database.migrate_table("never_created", "items")
        with pytest.raises(MissingTableError):
            await database.ensure_table_exists("never_created")
        return await database.count_records("items")

    assert run_db(scenario) == 1


def test_foreign_keys_are_enforced(run_db):
    async def scenario(database):
        await database.create_tables_from_schema([
            TableSchema(name="courses", columns=(ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),)),
        ])
        await database.create_table_from_schema(TableSchema(
            name="modules",
            columns=(
                ColumnSchema(name="id", type=ColumnType.INTEGER, primary_key=True),
                ColumnSchema(name="courseid", type=ColumnType.INTEGER),
            ),
            foreign_keys=(ForeignKeySchema(columns=("courseid",), table="courses", foreign_columns=("id",)),),
        ))
        with pytest.raises(IntegrityError):
            await database.insert_record("modules", {"id": 1, "courseid": 404})

    run_db(scenario)


def test_close_then_reopen_keeps_data(settings):
    async def main():
        database = Database("reopen.db", settings=settings)
        await _with_items(database, [{"id": 1, "v": "kept"}])
        await database.close()
        with pytest.raises(ConnectionNotReadyError):
            database.connection

        record = await database.get_record("items", {"id": 1})
        await database.close()
        return record

    assert asyncio.run(main())["v"] == "kept"


def test_concurrent_operations_share_one_connection(run_db):
    async def scenario(database):
        await _with_items(database)
        await asyncio.gather(*(database.insert_record("items", {"id": i}) for i in range(20)))
        return await database.count_records("items")

    assert run_db(scenario) == 20


def test_in_memory_database(settings):
    async def main():
        database = Database(":memory:", settings=settings)
        try:
            await _with_items(database, [{"id": 1}])
            return await database.count_records("items")
        finally:
            await database.close()

    assert asyncio.run(main()) == 1


def test_failed_open_is_retried(settings):
    async def main():
        database = Database("later/test.db", settings=settings)
        with pytest.raises(OperationalError):
            await database.ready()
        with pytest.raises(ConnectionNotReadyError):
            database.connection

        (Path(settings.database_dir) / "later").mkdir()
        try:
            await database.ready()
            await _with_items(database, [{"id": 1}])
            return await database.count_records("items")
        finally:
            await database.close()

    assert asyncio.run(main()) == 1


def test_create_tables_stops_at_the_first_failure(run_db):
    async def scenario(database):
        broken = TableSchema(
            name="broken",
            columns=(ColumnSchema(name="id", type=ColumnType.INTEGER),),
            table_check="id >",
        )
        with pytest.raises(OperationalError):
            await database.create_tables_from_schema([ITEMS, broken, ITEMS.model_copy(update={"name": "after"})])
        return (
            await database.table_exists("items"),
            await database.table_exists("broken"),
            await database.table_exists("after"),
        )

    assert run_db(scenario) == (True, False, False)
