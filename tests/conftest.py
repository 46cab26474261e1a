import pytest

from roundtable.domain.context.memory.memory_store import MemoryStore
from roundtable.domain.models.conversation import Agent, ChatSession
from roundtable.domain.sandbox.sandbox_manager import SandboxManager
from roundtable.domain.streaming.streaming_handler import StreamingHandler

from tests.fakes import FakeSandboxRuntime, FakeSearchProvider, RecordingSleep, ScriptedGenerationClient


@pytest.fixture
def agents():
    return [
        Agent(id="agent-1", name="Atlas", role="Logic", system_prompt="You are Atlas.", model="model-a"),
        Agent(id="agent-2", name="Luna", role="Vision", system_prompt="You are Luna.", model="model-b"),
        Agent(id="agent-3", name="Sage", role="Ethics", system_prompt="You are Sage.", model="model-c"),
    ]


@pytest.fixture
def session():
    return ChatSession(topic="Quantum computing ethics")


@pytest.fixture
def client():
    return ScriptedGenerationClient()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def search_provider():
    return FakeSearchProvider()


@pytest.fixture
def streaming_handler():
    return StreamingHandler()


@pytest.fixture
def sandbox_runtime():
    return FakeSandboxRuntime()


@pytest.fixture
def sandbox_manager(sandbox_runtime):
    return SandboxManager(sandbox_runtime, execution_timeout=0.2)
