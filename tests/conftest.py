import pytest

from config.settings import Settings
from fakes import FakeChainClient, FakeConversationFactory
from memory.conversation import ConversationStore
from memory.database import init_database
from world.binder import RuntimeBinder
from world.registry import AgentRegistry
from world.router import MessageRouter


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "agents.db")


@pytest.fixture
def settings(db_path, tmp_path):
    return Settings(
        _env_file=None,
        ANTHROPIC_API_KEY="test-key",
        DB_PATH=db_path,
        LOG_PATH=str(tmp_path / "service.log"),
        JANITOR_INTERVAL=0,
        DEV_MODE=False,
        ENVIRONMENT="development",
    )


@pytest.fixture
async def conversations(db_path):
    await init_database(db_path)
    return ConversationStore(db_path)


@pytest.fixture
def registry(conversations):
    return AgentRegistry(conversations)


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def factory():
    return FakeConversationFactory()


@pytest.fixture
def binder(chain, factory):
    return RuntimeBinder(chain, factory)


@pytest.fixture
def router(registry, binder, conversations):
    return MessageRouter(registry, binder, conversations, context_window=10)
