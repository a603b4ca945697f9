"""
Simulated Driver - replays operations against the rule simulator.

Runs in memory and synchronously: each operation is evaluated against the
database resulting from the previous one, under the identity it was logged
with. The first denied operation aborts the sequence.
"""

import itertools
import logging
from typing import Any, Callable, Optional

from drivers.base import Driver
from rules import simulator as default_simulator
from sequence import path as path_helper
from sequence.context import OperationKind
from sequence.errors import PermissionDenied, UnknownOperation

logger = logging.getLogger(__name__)

RULESET_KEY = "simulated.ruleset"

_id_counter = itertools.count()


def default_uniq_id() -> str:
    """Return a new push key, unique within the process."""
    return f"--firebase-test-id-{next(_id_counter)}--"


def assert_allowed(result: Any, operation: Any, log: Callable[[str], Any]) -> Any:
    """Return the database after the operation or raise PermissionDenied."""
    if operation.options.debug:
        log(result.info)

    if result.allowed is not True:
        raise PermissionDenied(
            f"Operation failed: {operation.kind.value} /{operation.path}", info=result.info
        )

    return result.database if result.new_database is None else result.new_database


class SimulatedDriver(Driver):
    """
    Simulate database operations.

    The options are mostly useful for testing.
    """

    def __init__(
        self,
        uniq_id: Optional[Callable[[], str]] = None,
        log: Optional[Callable[[str], Any]] = None,
        simulator: Any = None,
    ):
        """
        Initialize the driver.

        Args:
            uniq_id: Function returning a unique key for push operations
            log: Function receiving the debug info of operations
            simulator: Rule simulator module or object
        """
        self.uniq_id = uniq_id or default_uniq_id
        self.log = log or logger.info
        self.simulator = simulator or default_simulator

    @property
    def id(self) -> str:
        return "simulated"

    def initialize(self, context: Any) -> None:
        """Check the rules are valid and keep the parsed ruleset."""
        context.driver_state[RULESET_KEY] = self.simulator.ruleset(context.rules)

    def execute(self, context: Any) -> Any:
        """
        Simulate the operations.

        Returns the database content at the end of the sequence, or the seed
        when there is no operation to run.
        """
        seed, operations = context.seed, context.operations

        if not operations:
            return seed

        rules = context.driver_state.get(RULESET_KEY)
        if rules is None:
            rules = self.simulator.ruleset(context.rules)

        database = self.simulator.database(rules, seed)

        for operation in operations:
            db = database.as_(operation.identity).with_debug(operation.options.debug)
            kind = operation.kind

            if kind == OperationKind.GET:
                result = db.read(operation.path)
            elif kind == OperationKind.PUSH:
                child = path_helper.join(operation.path, self.uniq_id())
                result = db.write(child, operation.value)
            elif kind == OperationKind.SET:
                result = db.write(operation.path, operation.value)
            elif kind == OperationKind.REMOVE:
                result = db.write(operation.path, None)
            elif kind == OperationKind.UPDATE:
                result = db.update(operation.path, operation.value)
            else:
                raise UnknownOperation(f'Unknown operation type "{kind}"')

            database = assert_allowed(result, operation, self.log)

        return database.value()


def create(
    uniq_id: Optional[Callable[[], str]] = None,
    log: Optional[Callable[[str], Any]] = None,
    simulator: Any = None,
) -> SimulatedDriver:
    """Create a driver simulating a sequence of operations."""
    return SimulatedDriver(uniq_id=uniq_id, log=log, simulator=simulator)
