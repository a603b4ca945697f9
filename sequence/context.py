"""
Execution Context - records a sequence of database operations.

A context holds the rules under test, the driver running them, the current
user, the initial database content and the operations logged so far. Every
chain call returns a new context and leaves the previous one untouched, so a
shared setup can be branched safely:

    ctx = create(rules, simulated.create()).start_with({"moderators": {"alice": True}})

    await ctx.as_("alice").set("/rooms/1", room).ok()
    await ctx.as_("bob").set("/rooms/1", room).should_fail()

Nothing runs until the context (or one of its assertions) is awaited.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sequence import path as path_helper
from sequence.deferred import Thenable, resolve
from sequence.errors import AssertionFailure, ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_OK_MESSAGE = "Operation should not have failed"
DEFAULT_FAIL_MESSAGE = "Operation should have failed"


class OperationKind(Enum):
    """Supported database operations."""
    GET = "get"
    SET = "set"
    UPDATE = "update"
    PUSH = "push"
    REMOVE = "remove"


@dataclass(frozen=True)
class OperationOptions:
    """Per-operation flags."""
    debug: bool = False
    silent: bool = True


@dataclass(frozen=True)
class Operation:
    """A logged operation, bound to the identity current when it was logged."""
    kind: OperationKind
    path: str
    value: Any = None
    identity: Optional[Dict[str, Any]] = None
    options: OperationOptions = field(default_factory=OperationOptions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "path": self.path,
            "value": self.value,
            "identity": self.identity,
            "options": dataclasses.asdict(self.options),
        }


def make_identity(identity: Any = None, **claims: Any) -> Optional[Dict[str, Any]]:
    """
    Build the auth data of a user.

    A uid string is merged with the extra claims; a mapping is copied and must
    include a uid. A falsy identity means unauthenticated.
    """
    if not identity:
        return None

    if isinstance(identity, Mapping):
        auth = dict(claims)
        auth.update(identity)
        if auth.get("uid") is None:
            raise ConfigurationError("Auth data requires a uid.")
        return auth

    auth = dict(claims)
    auth["uid"] = identity
    return auth


@dataclass(frozen=True)
class Context:
    """Immutable record of a sequence of operations."""
    rules: Any
    driver: Any
    identity: Optional[Dict[str, Any]] = None
    seed: Any = None
    operations: Tuple[Operation, ...] = ()

    # Private driver data set by Driver.initialize; shared by every fork.
    driver_state: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def fork(self, **overrides: Any) -> "Context":
        """
        Fork the sequence.

        Only the identity, the seed and the operations can be overridden;
        the rules, the driver and its private state are always kept.
        """
        allowed = {"identity", "seed", "operations"}
        unknown = set(overrides) - allowed
        if unknown:
            raise TypeError(f"Cannot override context field(s): {', '.join(sorted(unknown))}")

        overrides.setdefault("operations", tuple(self.operations))
        return dataclasses.replace(self, **overrides)

    def start_with(self, seed: Any) -> "Context":
        """Set the database initial data and drop any logged operation."""
        return self.fork(seed=seed, operations=())

    def as_(self, identity: Any = None, **claims: Any) -> "Context":
        """
        Fork the sequence to authenticate the following operations.

            ctx.as_("bob", role="admin")
            ctx.as_({"uid": "bob", "role": "admin"})
        """
        auth = make_identity(identity, **claims)
        if auth is None:
            return self.as_guest()
        return self.fork(identity=auth)

    def as_guest(self) -> "Context":
        """Fork the sequence to run the following operations unauthenticated."""
        return self.fork(identity=None)

    def append(
        self,
        kind: OperationKind,
        paths: Any,
        value: Any = None,
        *,
        debug: bool = False,
        silent: bool = True,
    ) -> "Context":
        """Fork and log a new operation."""
        operation = Operation(
            kind=OperationKind(kind),
            path=path_helper.join(paths),
            value=value,
            identity=self.identity,
            options=OperationOptions(debug=debug, silent=silent),
        )
        return self.fork(operations=self.operations + (operation,))

    def get(self, paths: Any, *, debug: bool = False, silent: bool = True) -> "Context":
        """
        Log a read of the database location.

        The location can be a path ("/users/bob") or a list of segments
        (["users", uid]).
        """
        return self.append(OperationKind.GET, paths, debug=debug, silent=silent)

    def set(self, paths: Any, value: Any = None, *, debug: bool = False, silent: bool = True) -> "Context":
        """Log an operation replacing the location value."""
        return self.append(OperationKind.SET, paths, value, debug=debug, silent=silent)

    def update(self, paths: Any, patch: Optional[Mapping[str, Any]] = None, *, debug: bool = False, silent: bool = True) -> "Context":
        """Log a multi-location update relative to the location."""
        return self.append(
            OperationKind.UPDATE, paths, dict(patch or {}), debug=debug, silent=silent
        )

    def push(self, paths: Any, value: Any = None, *, debug: bool = False, silent: bool = True) -> "Context":
        """Log an operation adding a child with a generated key."""
        return self.append(OperationKind.PUSH, paths, value, debug=debug, silent=silent)

    def remove(self, paths: Any, *, debug: bool = False, silent: bool = True) -> "Context":
        """Log an operation deleting the location."""
        return self.set(paths, None, debug=debug, silent=silent)

    async def chain(self) -> Any:
        """Run the operations in sequence and return the driver result."""
        return await resolve(self.driver.execute(self))

    def __await__(self):
        return self.chain().__await__()

    async def then(
        self,
        on_fulfilled: Optional[Callable[[Any], Any]] = None,
        on_rejected: Optional[Callable[[Exception], Any]] = None,
    ) -> Any:
        """Run the sequence and hand its outcome to the callbacks."""
        try:
            value = await self.chain()
        except Exception as e:
            if on_rejected is None:
                raise
            return await resolve(on_rejected(e))

        if on_fulfilled is None:
            return value
        return await resolve(on_fulfilled(value))

    async def catch(self, on_rejected: Callable[[Exception], Any]) -> Any:
        """Run the sequence and hand a failure to the callback."""
        return await self.then(None, on_rejected)

    async def _assert_ok(self, msg: str) -> None:
        try:
            await self.chain()
        except Exception as e:
            logger.debug(f"Sequence failed: {e}")
            raise AssertionFailure(msg, e) from e

    async def _assert_fails(self, msg: str) -> None:
        try:
            await self.chain()
        except Exception as e:
            logger.debug(f"Sequence failed as expected: {e}")
            return None
        raise AssertionFailure(msg)

    def ok(self, msg: Optional[str] = None) -> Thenable:
        """
        Assert that no operation of the sequence fails.

        The sequence only runs once the returned thenable is awaited.
        """
        return Thenable(lambda: self._assert_ok(msg or DEFAULT_OK_MESSAGE))

    def should_fail(self, msg: Optional[str] = None) -> Thenable:
        """
        Assert that one of the operations fails.

        The sequence only runs once the returned thenable is awaited.
        """
        return Thenable(lambda: self._assert_fails(msg or DEFAULT_FAIL_MESSAGE))

    def ok_callback(self, done: Callable[[Optional[Exception]], Any], msg: Optional[str] = None) -> None:
        """Run the `ok` assertion and report its outcome to `done`."""
        self.ok(msg).as_callback(done)

    def should_fail_callback(self, done: Callable[[Optional[Exception]], Any], msg: Optional[str] = None) -> None:
        """Run the `should_fail` assertion and report its outcome to `done`."""
        self.should_fail(msg).as_callback(done)


def create(rules: Any = None, driver: Any = None) -> Context:
    """
    Create a root context.

    The driver is initialized with the new context before it is returned.
    """
    if rules is None:
        raise ConfigurationError("No rules provided.")

    if driver is None:
        raise ConfigurationError("No driver provided to the context.")

    context = Context(rules=rules, driver=driver)
    driver.initialize(context)
    return context
