"""Alembic environment for the fee ledger (async engine, PostgreSQL or SQLite)."""

import asyncio
from logging.config import fileConfig

# ruff: noqa: F401

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from src.core.config import settings
from src.core.database.base import Base

# Every mapped table must be imported so autogenerate sees it
from src.core.audit.models import AuditLog
from src.core.documents.models import DocumentSequence
from src.modules.students.models import Student
from src.modules.terms.models import Term
from src.modules.fees.models import FeeItem
from src.modules.invoices.models import Invoice, InvoiceLineItem
from src.modules.payments.models import Payment

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

DATABASE_URL = settings.database_url
# SQLite cannot ALTER constraints in place
RENDER_AS_BATCH = DATABASE_URL.startswith("sqlite")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=RENDER_AS_BATCH,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of touching a database."""
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = DATABASE_URL
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
