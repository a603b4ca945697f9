"""
Tests for the target registry.

Verifies rules are only redeployed when they change and that the target
lock serializes sequences in submission order.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from drivers.targets import TargetRegistry, get_target_registry, reset_target_registry


class TestEnsureRules:
    """Tests for rule deployment caching."""

    @pytest.mark.asyncio
    async def test_deploys_once(self):
        """Identical rules are deployed once."""
        registry = TargetRegistry()
        deploy = AsyncMock()

        assert await registry.ensure_rules("p", {"rules": {}}, deploy) is True
        assert await registry.ensure_rules("p", {"rules": {}}, deploy) is False

        deploy.assert_awaited_once()
        assert registry.deployed_hash("p") is not None

    @pytest.mark.asyncio
    async def test_redeploys_changed_rules(self):
        """Changed rules are deployed."""
        registry = TargetRegistry()
        deploy = AsyncMock()

        await registry.ensure_rules("p", {"rules": {".read": True}}, deploy)
        await registry.ensure_rules("p", {"rules": {".read": False}}, deploy)

        assert deploy.await_count == 2

    @pytest.mark.asyncio
    async def test_targets_are_independent(self):
        """Each target has its own cache entry."""
        registry = TargetRegistry()
        deploy = AsyncMock()

        await registry.ensure_rules("a", {"rules": {}}, deploy)
        await registry.ensure_rules("b", {"rules": {}}, deploy)

        assert deploy.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_deployment_is_retried(self):
        """A failed deployment does not poison the cache."""
        registry = TargetRegistry()
        deploy = AsyncMock(side_effect=[RuntimeError("network"), None])

        with pytest.raises(RuntimeError):
            await registry.ensure_rules("p", {"rules": {}}, deploy)

        assert registry.deployed_hash("p") is None
        assert await registry.ensure_rules("p", {"rules": {}}, deploy) is True
        assert deploy.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_deployment_restores_previous_hash(self):
        """The previously deployed hash is kept after a failure."""
        registry = TargetRegistry()
        await registry.ensure_rules("p", {"rules": {}}, AsyncMock())
        previous = registry.deployed_hash("p")

        with pytest.raises(RuntimeError):
            await registry.ensure_rules("p", {"rules": {".read": True}}, AsyncMock(side_effect=RuntimeError()))

        assert registry.deployed_hash("p") == previous


class TestLock:
    """Tests for the target lock."""

    @pytest.mark.asyncio
    async def test_serializes_in_submission_order(self):
        """Blocks holding the same target never interleave."""
        registry = TargetRegistry()
        events = []

        async def sequence(name):
            async with registry.lock("p"):
                events.append(f"{name}:start")
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                events.append(f"{name}:end")

        await asyncio.gather(sequence("a"), sequence("b"), sequence("c"))

        assert events == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]

    @pytest.mark.asyncio
    async def test_released_on_failure(self):
        """The lock is released when the block raises."""
        registry = TargetRegistry()

        with pytest.raises(ValueError):
            async with registry.lock("p"):
                raise ValueError("boom")

        async with registry.lock("p"):
            pass

    @pytest.mark.asyncio
    async def test_other_targets_are_not_blocked(self):
        """Different targets can run concurrently."""
        registry = TargetRegistry()
        events = []

        async def sequence(target):
            async with registry.lock(target):
                events.append(f"{target}:start")
                await asyncio.sleep(0)
                events.append(f"{target}:end")

        await asyncio.gather(sequence("a"), sequence("b"))

        assert events == ["a:start", "b:start", "a:end", "b:end"]


class TestRegistry:
    """Tests for the process-wide registry."""

    def test_singleton(self):
        """The process-wide registry is shared."""
        assert get_target_registry() is get_target_registry()

    @pytest.mark.asyncio
    async def test_reset(self):
        """reset forgets deployed rules."""
        registry = get_target_registry()
        await registry.ensure_rules("p", {"rules": {}}, AsyncMock())

        reset_target_registry()

        assert registry.deployed_hash("p") is None

    @pytest.mark.asyncio
    async def test_reset_keeps_held_locks(self):
        """A sequence submitted after a reset still waits for the running one."""
        registry = TargetRegistry()
        events = []

        async def running():
            async with registry.lock("p"):
                events.append("running:start")
                registry.reset()
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                events.append("running:end")

        async def submitted_after_reset():
            await asyncio.sleep(0)
            async with registry.lock("p"):
                events.append("next")

        await asyncio.gather(running(), submitted_after_reset())

        assert events == ["running:start", "running:end", "next"]

    @pytest.mark.asyncio
    async def test_reset_drops_idle_locks(self):
        """Locks nobody holds are forgotten."""
        registry = TargetRegistry()
        async with registry.lock("p"):
            pass

        registry.reset()

        assert registry._locks == {}


class TestEventLoops:
    """The registry outlives the event loops using it."""

    def test_lock_on_successive_loops(self):
        """Each event loop gets a working lock for the target."""
        registry = TargetRegistry()
        events = []

        async def sequence(name):
            async with registry.lock("p"):
                events.append(f"{name}:start")
                await asyncio.sleep(0)
                events.append(f"{name}:end")

        async def contended():
            await asyncio.gather(sequence("a"), sequence("b"))

        asyncio.run(contended())
        asyncio.run(contended())

        assert events == ["a:start", "a:end", "b:start", "b:end"] * 2

    def test_deployed_rules_survive_loops(self):
        """Rules deployed from one loop are not redeployed from the next."""
        registry = TargetRegistry()
        deploy = AsyncMock()

        async def deploy_once():
            async with registry.lock("p"):
                return await registry.ensure_rules("p", {"rules": {}}, deploy)

        assert asyncio.run(deploy_once()) is True
        assert asyncio.run(deploy_once()) is False
        deploy.assert_awaited_once()
