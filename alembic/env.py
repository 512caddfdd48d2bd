import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from app.config import Settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Fresh Settings so DATABASE_URL set after app.config was imported still wins
db_url = Settings().database_url
config.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
version_table_schema = os.getenv("ALEMBIC_VERSION_TABLE_SCHEMA")

target_metadata = None


def _configure_kwargs(**kwargs):
    kwargs["target_metadata"] = target_metadata
    if version_table_schema:
        kwargs["version_table_schema"] = version_table_schema
    return kwargs


def run_migrations_offline() -> None:
    context.configure(
        **_configure_kwargs(
            url=config.get_main_option("sqlalchemy.url"),
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
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
        context.configure(**_configure_kwargs(connection=connection))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
