"""
Live Driver - replays operations against a live database.

Each execution:
1. holds the target database exclusively
2. deploys the context rules if they changed
3. writes the seed as an admin
4. replays the operations in order, each with its user token

The first failed operation aborts the sequence.
"""

import logging
from typing import Any, Dict, Optional

from auth.tokens import TokenCache, TokenGenerator
from config.settings import settings
from drivers.base import Driver
from drivers.targets import TargetRegistry, get_target_registry
from sequence.context import OperationKind
from sequence.errors import ConfigurationError, UnknownOperation
from transport.rest import create_client

logger = logging.getLogger(__name__)

# Admin auth data
ADMIN_AUTH: Dict[str, Any] = {"uid": "DB Admin"}
ADMIN_OPTIONS: Dict[str, Any] = {"admin": True}

WRITE_KINDS = {
    OperationKind.SET: "set",
    OperationKind.UPDATE: "update",
    OperationKind.PUSH: "push",
}


class LiveDriver(Driver):
    """Test operations by applying them to a live database."""

    def __init__(
        self,
        secret: Optional[str] = None,
        project_id: Optional[str] = None,
        client: Any = None,
        token_generator: Any = None,
        targets: Optional[TargetRegistry] = None,
        base_url: Optional[str] = None,
    ):
        """
        Create the token generator and REST client.

        Args:
            secret: Legacy database secret, used to deploy rules and sign tokens
            project_id: ID of the project to target
            client: REST client to use instead of the default one
            token_generator: Token generator to use instead of the default one
            targets: Registry of deployed rules and locks (process-wide by default)
            base_url: Database URL for the default REST client
        """
        if not secret:
            raise ConfigurationError("No Firebase secret provided.")

        if client is None:
            client = create_client(project_id=project_id, base_url=base_url)
        else:
            logger.debug("Live driver will use the provided client.")

        if token_generator is None:
            token_generator = TokenGenerator(secret)
        else:
            logger.debug("Live driver will use the provided token generator.")

        self.client = client
        self.generator = token_generator
        self.secret = secret
        self.targets = targets or get_target_registry()

    @property
    def id(self) -> str:
        return "live"

    @property
    def target(self) -> str:
        return getattr(self.client, "project_id", None) or str(id(self.client))

    def initialize(self, context: Any) -> None:
        """Nothing to prepare on the context."""
        pass

    async def execute(self, context: Any) -> None:
        """
        Run the operations on the live database.

        Args:
            context: Context holding the rules, the seed and the operations
        """
        tokens = TokenCache(self.generator)

        async with self.targets.lock(self.target):
            await self.targets.ensure_rules(
                self.target,
                context.rules,
                lambda: self.client.rules(rules=context.rules, secret=self.secret),
            )

            admin_token = tokens.get(ADMIN_AUTH, ADMIN_OPTIONS)
            await self.client.set(paths="", payload=context.seed, auth=admin_token, silent=True)

            for operation in context.operations:
                await self._apply(operation, tokens)

    async def _apply(self, operation: Any, tokens: TokenCache) -> Any:
        kind = operation.kind
        debug = operation.options.debug
        auth = None if operation.identity is None else tokens.get(operation.identity, {"debug": debug})

        if kind == OperationKind.GET:
            return await self.client.get(paths=operation.path, auth=auth, silent=operation.options.silent)

        if kind in WRITE_KINDS:
            write = getattr(self.client, WRITE_KINDS[kind])
            return await write(paths=operation.path, payload=operation.value, auth=auth, silent=True)

        if kind == OperationKind.REMOVE:
            return await self.client.remove(paths=operation.path, auth=auth, silent=True)

        raise UnknownOperation(f'Unknown operation type "{kind}"')


def create(
    secret: Optional[str] = None,
    project_id: Optional[str] = None,
    client: Any = None,
    token_generator: Any = None,
    targets: Optional[TargetRegistry] = None,
    base_url: Optional[str] = None,
) -> LiveDriver:
    """
    Create the live driver.

    Missing credentials are read from the FIREBASE_TEST_* settings.
    """
    return LiveDriver(
        secret=secret or settings.live.SECRET,
        project_id=project_id or settings.live.PROJECT_ID,
        client=client,
        token_generator=token_generator,
        targets=targets,
        base_url=base_url or settings.live.BASE_URL,
    )
