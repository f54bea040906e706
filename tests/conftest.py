"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from turnstream.core.config import TurnConfig, reset_config
from turnstream.core.context_builder import ContextBuilder
from turnstream.core.debate import DebateScheduler
from turnstream.core.emitter import BufferingEmitter
from turnstream.core.messages import MessageService
from turnstream.core.orchestrator import TurnOrchestrator
from turnstream.core.persistence import InMemorySessionStore, InMemoryStore
from turnstream.core.profiles import ProfileService
from turnstream.core.suggestions import SuggestionGenerator
from turnstream.llm.client import reset_llm_client
from turnstream.models.contracts import Caller
from turnstream.models.entities import Conversation, User
from turnstream.models.enums import Plan
from turnstream.tools import build_default_tools

from helpers import FakeLLMClient


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset process-wide singletons around every test."""
    reset_config()
    reset_llm_client()
    yield
    reset_config()
    reset_llm_client()


@pytest.fixture
def config():
    return TurnConfig(
        api_key="test-key",
        suggestion_max_attempts=1,
        suggestion_timeout_seconds=2.0,
        tool_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def tools(fake_llm, config):
    return build_default_tools(fake_llm, config)


@pytest.fixture
def context_builder(store, config):
    return ContextBuilder(store, history_window=config.history_window)


@pytest.fixture
def orchestrator(config, store, sessions, fake_llm, tools):
    return TurnOrchestrator(
        config,
        store,
        sessions,
        fake_llm,
        tools,
        suggestions=SuggestionGenerator(fake_llm, config),
    )


@pytest.fixture
def debate_scheduler(config, store, fake_llm):
    return DebateScheduler(config, store, fake_llm)


@pytest.fixture
def message_service(store):
    return MessageService(store)


@pytest.fixture
def profile_service(config, store):
    return ProfileService(config, store)


@pytest.fixture
def emitter():
    return BufferingEmitter()


@pytest.fixture
def anonymous_caller():
    return Caller(user_id=None, session_id="session-anon")


@pytest_asyncio.fixture
async def free_user(store):
    return await store.upsert_user(User(id="user-free", plan=Plan.FREE))


@pytest_asyncio.fixture
async def paid_user(store):
    return await store.upsert_user(User(id="user-pro", plan=Plan.PRO, memory=["Prefers metric units"]))


@pytest.fixture
def free_caller(free_user):
    return Caller(user_id=free_user.id, session_id="session-free")


@pytest.fixture
def paid_caller(paid_user):
    return Caller(user_id=paid_user.id, session_id="session-pro")


@pytest_asyncio.fixture
async def anonymous_conversation(store):
    return await store.create_conversation(Conversation())


@pytest_asyncio.fixture
async def free_conversation(store, free_user):
    return await store.create_conversation(Conversation(user_id=free_user.id))


@pytest_asyncio.fixture
async def paid_conversation(store, paid_user):
    return await store.create_conversation(Conversation(user_id=paid_user.id))


@pytest.fixture
def temp_dir():
    """Temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
