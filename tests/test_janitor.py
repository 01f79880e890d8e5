import asyncio
from datetime import timedelta

from core.agent import utcnow
from memory.conversation import ConversationStore, Role
from world.janitor import LivenessJanitor
from world.registry import AgentRegistry


def age(registry, agent_id, delta, now):
    record = registry.get(agent_id)
    record.created_at = now - delta
    record.last_active_at = now - delta


class FlakyStore(ConversationStore):
    """Fails the cascade for one agent."""

    def __init__(self, db_path, broken_agent):
        super().__init__(db_path)
        self.broken_agent = broken_agent

    async def delete_for_agent(self, user_id, agent_id):
        if agent_id == self.broken_agent:
            raise RuntimeError("disk on fire")
        return await super().delete_for_agent(user_id, agent_id)


class TestSweep:
    async def test_removes_only_idle_agents(self, registry):
        now = utcnow()
        old = registry.create("userA", "secret1")
        fresh = registry.create("userA", "secret2")
        age(registry, old, timedelta(hours=25), now)
        age(registry, fresh, timedelta(hours=1), now)

        janitor = LivenessJanitor(registry)
        assert await janitor.sweep(timedelta(hours=24), now=now) == 1
        assert registry.get(old) is None
        assert registry.get(fresh) is not None

    async def test_boundary_is_strict(self, registry):
        now = utcnow()
        max_age = timedelta(hours=24)
        exact = registry.create("userA", "secret1")
        older = registry.create("userA", "secret2")
        age(registry, exact, max_age, now)
        age(registry, older, max_age + timedelta(microseconds=1), now)

        janitor = LivenessJanitor(registry)
        assert await janitor.sweep(max_age, now=now) == 1
        assert registry.get(exact) is not None
        assert registry.get(older) is None

    async def test_cascades_conversation(self, registry, conversations):
        now = utcnow()
        agent_id = registry.create("userA", "secret1")
        entry = await conversations.get_or_create("userA", agent_id)
        await conversations.append(entry, Role.USER, "hi")
        age(registry, agent_id, timedelta(days=2), now)

        await LivenessJanitor(registry).sweep(timedelta(hours=24), now=now)
        assert await conversations.get("userA", agent_id) is None
        assert registry.list_by_owner("userA") == []

    async def test_continues_past_failure(self, conversations, db_path):
        now = utcnow()
        registry = AgentRegistry(conversations)
        first = registry.create("userA", "secret1")
        second = registry.create("userA", "secret2")
        registry.conversations = FlakyStore(db_path, broken_agent=first)
        age(registry, first, timedelta(hours=30), now)
        age(registry, second, timedelta(hours=30), now)

        removed = await LivenessJanitor(registry).sweep(timedelta(hours=24), now=now)
        assert removed == 1
        assert registry.get(second) is None

    async def test_next_sweep_finishes_failed_cascade(self, conversations, db_path):
        now = utcnow()
        registry = AgentRegistry(conversations)
        agent_id = registry.create("userA", "secret1")
        entry = await conversations.get_or_create("userA", agent_id)
        await conversations.append(entry, Role.USER, "hi")
        age(registry, agent_id, timedelta(hours=30), now)

        registry.conversations = FlakyStore(db_path, broken_agent=agent_id)
        janitor = LivenessJanitor(registry)
        assert await janitor.sweep(timedelta(hours=24), now=now) == 0
        assert registry.get(agent_id) is None
        assert registry.pending_cascades() == [agent_id]

        registry.conversations = conversations
        await janitor.sweep(timedelta(hours=24), now=now)
        assert registry.pending_cascades() == []
        assert await conversations.get("userA", agent_id) is None

    async def test_default_max_age(self, registry):
        now = utcnow()
        agent_id = registry.create("userA", "secret1")
        age(registry, agent_id, timedelta(hours=2), now)

        janitor = LivenessJanitor(registry, max_age=timedelta(hours=1))
        assert await janitor.sweep(now=now) == 1


class TestBackground:
    async def test_loop_sweeps_periodically(self, registry):
        agent_id = registry.create("userA", "secret1")
        age(registry, agent_id, timedelta(hours=48), utcnow())

        janitor = LivenessJanitor(registry, interval=0.01)
        janitor.start()
        await asyncio.sleep(0.1)
        await janitor.stop()

        assert registry.get(agent_id) is None

    async def test_zero_interval_disables_loop(self, registry):
        janitor = LivenessJanitor(registry, interval=0)
        janitor.start()
        assert janitor._task is None
        await janitor.stop()

    async def test_prunes_old_conversations(self, registry, conversations):
        entry = await conversations.get_or_create("userA", "ghost-agent")
        await conversations.append(entry, Role.USER, "hi")

        janitor = LivenessJanitor(registry, conversations, retention=timedelta(days=30))
        assert await janitor.prune_conversations(now=utcnow()) == 0
        assert await janitor.prune_conversations(now=utcnow() + timedelta(days=31)) == 1
