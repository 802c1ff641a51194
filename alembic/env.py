import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# alembic.ini puts the project root on sys.path via prepend_sys_path.
from config import get_settings
from database import Base
import models  # noqa: F401  registers tables on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# `alembic -x db_url=sqlite:///other.db upgrade head` migrates another database.
database_url = context.get_x_argument(as_dictionary=True).get(
    "db_url", get_settings().database_url
)
config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata
is_sqlite = database_url.startswith("sqlite")


def _skip_empty_autogenerate(context, revision, directives) -> None:
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No schema changes detected; no revision written")


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=is_sqlite,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    # Plain engine without the app's pragmas: batch table rebuilds on SQLite
    # must not run with foreign_keys=ON.
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=is_sqlite,
            compare_type=True,
            process_revision_directives=_skip_empty_autogenerate,
        )

        with context.begin_transaction():
            logger.info(f"Running migrations against {connection.engine.url!r}")
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
