"""Dependency injection container for the storage layer."""

from dependency_injector import containers, providers

from learnstore.core.config import Settings
from learnstore.core.database import Database
from learnstore.core.logging import configure_logging
from learnstore.services.entry_cache import EntryCache


class Container(containers.DeclarativeContainer):
    """Storage layer dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Structured logging, set up by container.init_resources()
    logging = providers.Resource(
        configure_logging,
        settings=settings,
    )

    # One handle per process owns the datastore file
    database = providers.Singleton(
        Database,
        name=settings.provided.database_name,
        settings=settings,
    )

    # Entry caches need a table name: container.entry_cache(table_name="...")
    entry_cache = providers.Factory(
        EntryCache,
        database=database,
    )


# Global container instance
container = Container()
