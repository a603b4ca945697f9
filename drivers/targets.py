"""
Target Registry - shared state of the live databases under test.

Tracks, per target (project id):
- the hash of the rules last deployed, so identical rules are not redeployed
- a FIFO lock, so sequences against one database never interleave

The registry is process-wide by default and can be reset between tests.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from auth.tokens import stable_hash

logger = logging.getLogger(__name__)


class TargetRegistry:
    """Rule-deployment cache and execution locks keyed by target id."""

    def __init__(self):
        self._deployed: Dict[str, str] = {}
        # asyncio locks belong to one event loop: keep the loop with the lock
        self._locks: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}

    def deployed_hash(self, target: str) -> Optional[str]:
        """Hash of the rules currently considered deployed on the target."""
        return self._deployed.get(target)

    def _lock_for(self, target: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        entry = self._locks.get(target)
        if entry is None or entry[0] is not loop:
            if entry is not None:
                logger.debug(f"Creating a new lock for {target} on another event loop")
            entry = self._locks[target] = (loop, asyncio.Lock())
        return entry[1]

    @asynccontextmanager
    async def lock(self, target: str) -> AsyncIterator[None]:
        """
        Hold the target exclusively.

        Waiters on the same event loop are served in submission order; the
        lock is released whether the guarded block succeeds or fails.
        """
        async with self._lock_for(target):
            logger.debug(f"Acquired target {target}")
            try:
                yield
            finally:
                logger.debug(f"Released target {target}")

    async def ensure_rules(
        self,
        target: str,
        rules: Any,
        deploy: Callable[[], Awaitable[Any]],
    ) -> bool:
        """
        Deploy the rules unless they are already deployed on the target.

        On deployment failure the previous hash is restored, so the next call
        retries, and the error is raised.

        Returns:
            True if the rules were deployed
        """
        digest = stable_hash(rules)
        previous = self._deployed.get(target)

        if previous == digest:
            logger.debug(f"Rules already deployed on {target}")
            return False

        self._deployed[target] = digest
        try:
            await deploy()
        except Exception as e:
            logger.warning(f"Rules deployment on {target} failed: {e}")
            if previous is None:
                self._deployed.pop(target, None)
            else:
                self._deployed[target] = previous
            raise

        logger.info(f"Deployed rules on {target}")
        return True

    def reset(self) -> None:
        """
        Forget deployed rules and idle locks.

        Held locks are kept so sequences submitted after the reset still
        wait for the running one.
        """
        self._deployed.clear()
        self._locks = {
            target: entry for target, entry in self._locks.items() if entry[1].locked()
        }


# Singleton instance
_registry: Optional[TargetRegistry] = None


def get_target_registry() -> TargetRegistry:
    """Get or create the process-wide target registry."""
    global _registry
    if _registry is None:
        _registry = TargetRegistry()
    return _registry


def reset_target_registry() -> None:
    """Reset the process-wide target registry."""
    get_target_registry().reset()
