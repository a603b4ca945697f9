"""
Harness errors.

Every failure of an operation sequence surfaces as one of these, raised from
the awaited execution of a context.
"""

import traceback
from typing import List, Optional


class HarnessError(Exception):
    """Base class of every error raised by the harness."""


class ConfigurationError(HarnessError, ValueError):
    """Missing or invalid construction arguments (rules, driver, credentials)."""


class PermissionDenied(HarnessError):
    """An operation was rejected by the security rules."""

    def __init__(self, message: str = "Operation failed", info: Optional[str] = None):
        super().__init__(message)
        self.info = info


class UnknownOperation(HarnessError):
    """An operation kind has no handler in the driver."""


class TransportFailure(HarnessError):
    """Network, timeout or remote error reported by the live database."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def describe(error: BaseException) -> str:
    """Return the error traceback, falling back to its string form."""
    if error.__traceback__ is None:
        return str(error)
    return "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    ).rstrip()


class AssertionFailure(HarnessError, AssertionError):
    """An `ok` or `should_fail` assertion did not hold."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        if original is not None:
            message = f"{message}: {describe(original)}"
        super().__init__(message)
        self.original = original


class CompositeFailure(HarnessError, AssertionError):
    """Aggregates every failure reported by `all_`."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__("\n\n".join(describe(e) for e in self.errors))
