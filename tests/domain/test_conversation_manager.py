import asyncio
import pytest

from roundtable.domain.context.memory.runtime_memory import RuntimeMemory
from roundtable.domain.errors import SessionNotFoundError
from roundtable.domain.models.sandbox import SandboxState
from roundtable.domain.orchestration.agents import default_agents
from roundtable.domain.orchestration.core.conversation_manager import ConversationManager
from roundtable.infrastructure.config.settings import SchedulerConfig
from tests.fakes import Gate, RecordingSleep, ScriptedGenerationClient

pytestmark = pytest.mark.asyncio


@pytest.fixture
def runtime_memory():
    return RuntimeMemory()


def build_manager(runtime_memory, client, agents, sleeper, **kwargs):
    return ConversationManager(
        runtime_memory,
        client,
        agents_factory=lambda: agents,
        sleep=sleeper,
        **kwargs
    )


async def test_start_spawns_loop_and_stop_ends_it(runtime_memory, agents, sleeper):
    session = await runtime_memory.create_session("rough topic")
    gate = Gate()
    client = ScriptedGenerationClient(["Refined topic", gate])
    manager = build_manager(runtime_memory, client, agents, sleeper)

    scheduler = await manager.start(session.id)
    await asyncio.wait_for(gate.entered.wait(), timeout=5)

    assert session.topic == "Refined topic"
    assert manager.active_count() == 1
    assert manager.snapshot(session.id)["active"] is True

    await manager.stop(session.id)
    gate.release()
    await asyncio.wait_for(manager.tasks[session.id], timeout=5)

    assert session.messages == []
    assert manager.active_count() == 0
    assert not scheduler.state.active


async def wait_for_messages(session, count, turns=500):
    for _ in range(turns):
        if len(session.messages) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} messages, got {len(session.messages)}")


class HoldingSleep(RecordingSleep):
    """Blocks the first speaking delay until resumed"""

    def __init__(self, hold_delay: float):
        super().__init__()
        self.hold_delay = hold_delay
        self.holding = asyncio.Event()
        self.resumed = asyncio.Event()

    async def __call__(self, delay: float):
        if delay == self.hold_delay and not self.holding.is_set():
            self.holding.set()
            await self.resumed.wait()
        await super().__call__(delay)


async def test_restart_during_generation_keeps_turns_running(runtime_memory, agents, sleeper):
    session = await runtime_memory.create_session("rough topic")
    gate = Gate()
    client = ScriptedGenerationClient(["Refined topic", gate, "Refined topic"])
    manager = build_manager(runtime_memory, client, agents, sleeper)

    scheduler = await manager.start(session.id)
    await asyncio.wait_for(gate.entered.wait(), timeout=5)
    stale_task = manager.tasks[session.id]

    await manager.stop(session.id)
    await manager.start(session.id)
    gate.release()

    await wait_for_messages(session, 1)

    assert scheduler.state.active
    assert stale_task.done()
    assert not manager.tasks[session.id].done()
    assert gate.text not in [m.content for m in session.messages]
    assert session.messages[0].agent_id == agents[0].id

    await asyncio.wait_for(manager.shutdown(), timeout=5)


async def test_restart_during_speaking_delay_moves_to_next_agent(runtime_memory, agents):
    session = await runtime_memory.create_session("Topic")
    sleeper = HoldingSleep(hold_delay=SchedulerConfig().speaking_delay)
    client = ScriptedGenerationClient(["Topic"])
    manager = build_manager(runtime_memory, client, agents, sleeper)

    scheduler = await manager.start(session.id)
    await asyncio.wait_for(sleeper.holding.wait(), timeout=5)

    await manager.stop(session.id)
    await manager.start(session.id)
    sleeper.resumed.set()

    await wait_for_messages(session, 2)

    assert scheduler.state.active
    assert [m.agent_id for m in session.messages[:2]] == [agents[0].id, agents[1].id]

    await asyncio.wait_for(manager.shutdown(), timeout=5)


async def test_start_while_running_does_not_spawn_second_loop(runtime_memory, agents, sleeper):
    session = await runtime_memory.create_session("Topic")
    gate = Gate()
    manager = build_manager(runtime_memory, ScriptedGenerationClient(["Topic", gate]), agents, sleeper)

    await manager.start(session.id)
    await asyncio.wait_for(gate.entered.wait(), timeout=5)
    task = manager.tasks[session.id]

    await manager.start(session.id)

    assert manager.tasks[session.id] is task

    await asyncio.wait_for(manager.shutdown(), timeout=5)


async def test_scheduler_is_reused_per_session(runtime_memory, agents, client, sleeper):
    session = await runtime_memory.create_session("Topic")
    manager = build_manager(runtime_memory, client, agents, sleeper)

    assert await manager.get_scheduler(session.id) is await manager.get_scheduler(session.id)


async def test_unknown_session(runtime_memory, agents, client, sleeper):
    manager = build_manager(runtime_memory, client, agents, sleeper)

    with pytest.raises(SessionNotFoundError):
        await manager.start("missing")


async def test_inject_and_set_topic(runtime_memory, agents, client, sleeper):
    session = await runtime_memory.create_session()
    manager = build_manager(runtime_memory, client, agents, sleeper)

    await manager.set_topic(session.id, "  Urban farming ")
    message = await manager.inject(session.id, "Start with rooftops")

    assert session.topic == "Urban farming"
    assert session.messages == [message]


async def test_delete_session_tears_down_sandbox(runtime_memory, agents, client, sleeper, sandbox_manager):
    session = await runtime_memory.create_session("Topic")
    manager = build_manager(runtime_memory, client, agents, sleeper, sandbox_manager=sandbox_manager)
    await manager.get_scheduler(session.id)
    handle = await sandbox_manager.create(session.id)

    replacement = await manager.delete_session(session.id)

    assert replacement is not None
    assert handle.state == SandboxState.DESTROYED
    assert session.id not in manager.schedulers
    with pytest.raises(SessionNotFoundError):
        await runtime_memory.get_session(session.id)


async def test_shutdown_cancels_running_loops(runtime_memory, agents, sleeper):
    session = await runtime_memory.create_session("Topic")
    gate = Gate()
    client = ScriptedGenerationClient(["Topic", gate])
    manager = build_manager(runtime_memory, client, agents, sleeper)

    await manager.start(session.id)
    await asyncio.wait_for(gate.entered.wait(), timeout=5)

    await asyncio.wait_for(manager.shutdown(), timeout=5)

    assert manager.tasks == {}
    assert manager.active_count() == 0


async def test_default_agents_are_independent_copies():
    first, second = default_agents(), default_agents()

    assert [a.name for a in first] == ["Atlas", "Luna", "Sage"]
    first[0].name = "Changed"
    assert second[0].name == "Atlas"
