"""Shared fixtures: a temporary datastore directory and a coroutine runner."""

import asyncio

import pytest

from learnstore.core.config import Settings
from learnstore.core.database import Database


@pytest.fixture
def settings(tmp_path):
    return Settings(database_dir=str(tmp_path / "data"))


@pytest.fixture
def run_db(settings):
    """Run ``scenario(database)`` on a fresh database and always close it."""

    def runner(scenario, name="test.db", **kwargs):
        async def main():
            database = Database(name, settings=settings, **kwargs)
            try:
                return await scenario(database)
            finally:
                await database.close()

        return asyncio.run(main())

    return runner
