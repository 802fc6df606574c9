import os
import sys
from pathlib import Path

# must be in place before planner.* reads its settings
os.environ.setdefault("SECRET", "test-secret-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from planner import background  # noqa: E402
from planner.database import Base  # noqa: E402
from planner.models import Module, Question, User  # noqa: E402
from planner.services import scheduler  # noqa: E402
from planner.services.progress import EngineRegistry  # noqa: E402

SEED_MODULES = [
    ("Practice Overview", "practice-overview", ["What does your practice do today?", "Who are your best clients?"]),
    ("Capabilities Inventory", "capabilities-inventory",
     ["List your core skills.", "Which tools do you master?", "What have clients thanked you for?"]),
    ("Strategy Framework", "strategy-framework", ["Where do you want to be in 3 years?", "What is your edge?"]),
    ("Opportunity Map", "opportunity-map", ["Which markets are underserved?"]),
    ("Final Report", "final-report", []),
]


class FakeLLM:
    """Stands in for the chat-completions call; records every prompt."""

    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"summary": "ok", "recommendations": ["a", "b"]}
        self.error = error
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> dict:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.result


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    # a file, not :memory:, so concurrent sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'planner.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    # stop timers and pollers before their connections go away
    scheduler.shutdown_scheduler()
    await background.shutdown(timeout=1.0)
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def seeded(session_maker):
    """slug -> {"id": module id, "questions": [question ids in order]}"""
    out = {}
    async with session_maker() as db:
        for order, (title, slug, questions) in enumerate(SEED_MODULES):
            m = Module(title=title, slug=slug, order=order)
            db.add(m)
            await db.flush()
            qs = []
            for q_order, text in enumerate(questions):
                q = Question(module_id=m.id, content=text, order=q_order)
                db.add(q)
                await db.flush()
                qs.append(q.id)
            out[slug] = {"id": m.id, "questions": qs}
        await db.commit()
    return out


@pytest.fixture
def make_user(session_maker):
    async def _make(email: str, *, is_superuser: bool = False, is_approved: bool = True,
                    password: str | None = None) -> User:
        if password is not None:
            from fastapi_users.password import PasswordHelper

            hashed = PasswordHelper().hash(password)
        else:
            hashed = "not-a-real-hash"
        async with session_maker() as db:
            u = User(
                email=email,
                hashed_password=hashed,
                is_active=True,
                is_verified=True,
                is_superuser=is_superuser,
                is_approved=is_approved,
            )
            db.add(u)
            await db.commit()
            await db.refresh(u)
            return u

    return _make


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def registry(session_maker, fake_llm):
    return EngineRegistry(session_maker, generate=fake_llm, autosave_delay=0.05)


@pytest_asyncio.fixture(autouse=True)
async def _cleanup_background():
    yield
    scheduler.shutdown_scheduler()
    await background.shutdown(timeout=1.0)
