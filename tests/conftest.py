import os
import uuid
from typing import AsyncGenerator, Callable, List, Optional

# Settings are read at import time; tests never touch the configured database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from timetable_ai.core.models import TeacherSubjectAssignment
from timetable_ai.db.schema_check import ensure_tables
from timetable_ai.db.session import SCHEMA
from timetable_ai.timetables.schemas import Assignment


@pytest.fixture()
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test; the "school" schema maps to SQLite's default."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'timetable.db'}", echo=False, future=True)
    translated = engine.execution_options(schema_translate_map={SCHEMA: None})
    await ensure_tables(translated)
    yield translated
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def school_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def class_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def make_assignment() -> Callable[..., Assignment]:
    def _make(
        class_id: uuid.UUID,
        subject_name: str = "Mathematics",
        teacher_id: Optional[uuid.UUID] = None,
        subject_id: Optional[uuid.UUID] = None,
    ) -> Assignment:
        return Assignment(
            teacher_id=teacher_id or uuid.uuid4(),
            class_id=class_id,
            subject_id=subject_id or uuid.uuid4(),
            teacher_name=f"{subject_name} Teacher",
            subject_name=subject_name,
            class_name="Grade 5",
        )

    return _make


@pytest.fixture()
async def roster(
    db_session: AsyncSession,
    school_id: uuid.UUID,
    class_id: uuid.UUID,
    make_assignment: Callable[..., Assignment],
) -> List[Assignment]:
    """Three active roster assignments for the class, persisted."""
    assignments = [make_assignment(class_id, name) for name in ("Mathematics", "English", "Science")]
    for a in assignments:
        db_session.add(
            TeacherSubjectAssignment(
                school_id=school_id,
                teacher_id=a.teacher_id,
                class_id=a.class_id,
                subject_id=a.subject_id,
                teacher_name=a.teacher_name,
                subject_name=a.subject_name,
                class_name=a.class_name,
            )
        )
    await db_session.commit()
    return assignments
