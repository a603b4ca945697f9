"""
Driver contract.

A driver turns the operation log of a context into real effects, either
against a rule simulator or a live database. Contexts only depend on this
interface.
"""

from abc import ABC, abstractmethod
from typing import Any


class Driver(ABC):
    """Abstract base class for execution drivers."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Short driver name, used in logs."""
        pass

    @abstractmethod
    def initialize(self, context: Any) -> None:
        """
        Prepare a freshly created root context.

        Called once, synchronously, by `sequence.context.create`. A driver may
        store private data in `context.driver_state`.
        """
        pass

    @abstractmethod
    def execute(self, context: Any) -> Any:
        """
        Replay the context operations.

        Returns the result (or an awaitable of it); raises if any operation
        is rejected.
        """
        pass
