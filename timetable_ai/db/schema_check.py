import asyncio
import logging
from typing import List

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

import timetable_ai.core.models  # noqa: F401  (registers tables on Base.metadata)
from timetable_ai.core.logging_config import configure_logging
from timetable_ai.db.session import SCHEMA, Base, engine

logger = logging.getLogger(__name__)


CREATE_SCHEMA_SQL: str = f"CREATE SCHEMA IF NOT EXISTS {SCHEMA};"


def _existing_tables(sync_conn) -> List[str]:
    schema = sync_conn.get_execution_options().get("schema_translate_map", {}).get(SCHEMA, SCHEMA)
    return inspect(sync_conn).get_table_names(schema=schema)


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Ensure the scheduler schema and all its tables exist. Missing tables are
    created; existing ones are left untouched. Returns the created table names.
    """
    async with db_engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text(CREATE_SCHEMA_SQL))

        existing = set(await conn.run_sync(_existing_tables))
        await conn.run_sync(Base.metadata.create_all)

    missing = [t.name for t in Base.metadata.sorted_tables if t.name not in existing]
    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All scheduler tables already exist in the database.")
    return missing


async def main() -> None:
    configure_logging()
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
