# alembic/env.py
import os
import sys
from logging.config import fileConfig

from alembic import context

# Make top-level package imports work when running Alembic from the project root
cwd = os.getcwd()
if cwd not in sys.path:
    sys.path.insert(0, cwd)

import config as app_config  # noqa: E402  (loads .env)
from database.connection import Database  # noqa: E402
from database.models import Base  # noqa: E402

# Alembic Config object
config = context.config

# Configure Python logging from alembic.ini (if present)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Reuse the application's engine so URL normalization and SQLite pragmas match
engine = Database(app_config.DATABASE_URL).engine
config.set_main_option("sqlalchemy.url", engine.url.render_as_string(hide_password=False))

target_metadata = Base.metadata


def _is_sqlite() -> bool:
    return engine.url.get_backend_name() == "sqlite"


def include_object(object, name, type_, reflected, compare_to):
    """Skip Alembic's own version table during autogenerate."""
    if type_ == "table" and name == "alembic_version":
        return False
    return True


def process_revision_directives(context, revision, directives):
    """Drop empty autogenerate revisions."""
    if getattr(context.config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []


def run_migrations_offline():
    """Run migrations in 'offline' mode."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        include_object=include_object,
        render_as_batch=_is_sqlite(),  # SQLite-friendly ALTER TABLE
        process_revision_directives=process_revision_directives,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode using the application engine."""
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            include_object=include_object,
            render_as_batch=_is_sqlite(),
            process_revision_directives=process_revision_directives,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
