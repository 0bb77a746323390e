"""
Alembic migration environment for the raffle inventory schema.

Migrations run synchronously. The URL comes from DATABASE_URL_SYNC, or is
derived from DATABASE_URL by dropping the async driver, so a single
DATABASE_URL is enough for local SQLite setups.
"""

from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from raffle.db.base import Base
from raffle.models import Order, TicketHold, PaymentClaim  # noqa: F401 - registers tables on Base.metadata
from raffle.core.config import get_settings

ASYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql://",
    "sqlite+aiosqlite://": "sqlite://",
}


def sync_url(settings) -> str:
    if settings.DATABASE_URL_SYNC:
        return settings.DATABASE_URL_SYNC
    url = settings.DATABASE_URL
    for async_prefix, sync_prefix in ASYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return url.replace(async_prefix, sync_prefix, 1)
    return url


config = context.config
config.set_main_option("sqlalchemy.url", sync_url(get_settings()))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure_kwargs(url: str) -> dict:
    # SQLite cannot ALTER most constraints in place
    return dict(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )


def run_migrations_offline() -> None:
    """Emit the SQL script instead of running it."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            **_configure_kwargs(str(connection.engine.url)),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
