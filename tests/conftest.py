"""
Pytest fixtures for assessment engine tests.

Uses a temp-file SQLite database so the app and the fixtures share one
database (in-memory SQLite is per-connection).
"""

import os
import tempfile

_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
TEST_DB_PATH = _tmp.name
TEST_SECRET_KEY = "test-secret-key-for-testing-only-0123456789"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = TEST_SECRET_KEY
os.environ["LOG_LEVEL"] = "WARNING"

# Force config reload so the app uses the test DB
from competency.config import get_settings  # noqa: E402

get_settings.cache_clear()

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import AsyncGenerator, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from competency.engines.assessment.notifications import SessionCompleted  # noqa: E402
from competency.engines.assessment.question_selector import QuestionBank  # noqa: E402
from competency.engines.assessment.types import (  # noqa: E402
    STEP_LEVELS,
    AssessmentLevel,
    DigitalCompetency,
    Question,
    QuestionOption,
    QuestionType,
    SessionQuestion,
)
from competency.kernel.models import Base  # noqa: E402

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

COMPETENCIES = [
    DigitalCompetency.INFORMATION_SEARCH,
    DigitalCompetency.DIGITAL_COMMUNICATION,
    DigitalCompetency.DEVICE_PROTECTION,
    DigitalCompetency.OFFICE_PRODUCTIVITY,
]


def make_question(
    step: int = 1,
    level: Optional[AssessmentLevel] = None,
    competency: DigitalCompetency = DigitalCompetency.INFORMATION_SEARCH,
    difficulty: int = 3,
    question_id: str = "",
    is_active: bool = True,
    times_answered: int = 0,
    points: int = 1,
    time_allowed: int = 60,
) -> Question:
    """A valid multiple-choice bank question; option_2 is correct."""
    return Question(
        id=question_id,
        text=f"Which tool is best suited for task {question_id or 'x'}?",
        question_type=QuestionType.MULTIPLE_CHOICE,
        competency=competency,
        level=level or STEP_LEVELS[step][0],
        step=step,
        options=[
            QuestionOption(id="option_1", text="A search engine", order=1),
            QuestionOption(id="option_2", text="A spreadsheet", order=2),
            QuestionOption(id="option_3", text="A word processor", order=3),
        ],
        correct_answers=["option_2"],
        difficulty=difficulty,
        is_active=is_active,
        times_answered=times_answered,
        points=points,
        time_allowed=time_allowed,
    )


def make_session_questions(
    count: int,
    competencies: Optional[List[DigitalCompetency]] = None,
    level: AssessmentLevel = AssessmentLevel.A1,
) -> List[SessionQuestion]:
    """Snapshot questions q1..qN with option_2 correct, competencies round-robin."""
    competencies = competencies or [DigitalCompetency.INFORMATION_SEARCH]
    questions = []
    for i in range(1, count + 1):
        questions.append(
            SessionQuestion(
                question_id=f"q{i}",
                order=i,
                competency=competencies[(i - 1) % len(competencies)],
                level=level,
                points=1,
                time_allowed=60,
                text=f"Question number {i}?",
                question_type=QuestionType.MULTIPLE_CHOICE,
                options=(
                    QuestionOption(id="option_1", text="Wrong", order=1, is_correct=False),
                    QuestionOption(id="option_2", text="Right", order=2, is_correct=True),
                ),
                correct_answers=("option_2",),
            )
        )
    return questions


class RecordingNotifier:
    """Notifier that keeps every completion it receives."""

    def __init__(self, fail: bool = False):
        self.events: List[SessionCompleted] = []
        self.fail = fail

    async def session_completed(self, event: SessionCompleted) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("notification channel down")


def make_token(user_id: str, role: str = "user", expires_in: int = 900, token_type: str = "access") -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role,
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, TEST_SECRET_KEY, algorithm="HS256")


def auth_headers(user_id: str, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest_asyncio.fixture
async def db_engine():
    """Fresh schema per test on the shared temp-file database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{TEST_DB_PATH}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


async def seed_bank(session_maker, step: int, count: int, **kwargs) -> List[Question]:
    """Insert `count` questions for a step, cycling through a few competencies."""
    async with session_maker() as db:
        bank = QuestionBank(db)
        added = await bank.add_many(
            make_question(step=step, competency=COMPETENCIES[i % len(COMPETENCIES)], **kwargs)
            for i in range(count)
        )
        await db.commit()
    return added


def pytest_sessionfinish(session, exitstatus):
    """Clean up temp DB file after the test run."""
    try:
        if os.path.exists(TEST_DB_PATH):
            os.unlink(TEST_DB_PATH)
    except OSError:
        pass
