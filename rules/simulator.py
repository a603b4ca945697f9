"""
Rule Simulator using json-logic-py.

Evaluates Firebase-shaped rule trees against an in-memory database:

    {"rules": {
        ".read": False,
        "people": {
            "$uid": {".write": {"==": [{"var": "auth.uid"}, {"var": "$uid"}]}}
        }
    }}

Rule leaves (".read", ".write", ".validate") are booleans or json-logic
expressions. They are evaluated with:

- auth: the user auth data (None when unauthenticated)
- data / newData: the node value before / after the operation
- root / newRoot: the whole database before / after the operation
- now: the current time in milliseconds
- $name: the key captured by a "$name" wildcard

".read" and ".write" cascade: a location is readable (writable) if any rule
from the root down to it grants access. ".validate" must hold on every
non-null node written.
"""

import copy
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from json_logic import jsonLogic
from jsonschema import Draft7Validator

from sequence import path as path_helper
from sequence.errors import ConfigurationError

logger = logging.getLogger(__name__)


READ = ".read"
WRITE = ".write"
VALIDATE = ".validate"

SERVER_VALUE = ".sv"
SERVER_TIMESTAMP = "timestamp"

RULE_KEYS = (READ, WRITE, VALIDATE)


# Shape of a ruleset document
RULESET_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["rules"],
    "properties": {
        "rules": {"$ref": "#/definitions/node"},
    },
    "definitions": {
        "rule": {"type": ["boolean", "object"]},
        "node": {
            "type": "object",
            "properties": {
                ".read": {"$ref": "#/definitions/rule"},
                ".write": {"$ref": "#/definitions/rule"},
                ".validate": {"$ref": "#/definitions/rule"},
                ".indexOn": {"type": ["string", "array"]},
            },
            "patternProperties": {
                "^[^.]": {"$ref": "#/definitions/node"},
            },
            "additionalProperties": False,
        },
    },
}

_validator = Draft7Validator(RULESET_SCHEMA)


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

def normalize(value: Any) -> Any:
    """Drop null children and empty containers, like the database does."""
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            child = normalize(child)
            if child is not None:
                cleaned[str(key)] = child
        return cleaned or None

    if isinstance(value, list):
        return normalize({str(i): child for i, child in enumerate(value)})

    return value


def value_at(root: Any, segments: List[str]) -> Any:
    node = root
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return node


def set_at(root: Any, segments: List[str], value: Any) -> Any:
    """Return a copy of root with value stored at the location."""
    if not segments:
        return normalize(copy.deepcopy(value))

    head, rest = segments[0], segments[1:]
    node = dict(root) if isinstance(root, dict) else {}
    node[head] = set_at(node.get(head), rest, value)
    return normalize(node)


def resolve_server_values(value: Any, timestamp: int) -> Any:
    if isinstance(value, dict):
        if set(value) == {SERVER_VALUE}:
            if value[SERVER_VALUE] == SERVER_TIMESTAMP:
                return timestamp
            raise ValueError(f"Unknown server value: {value[SERVER_VALUE]!r}")
        return {key: resolve_server_values(child, timestamp) for key, child in value.items()}

    if isinstance(value, list):
        return [resolve_server_values(child, timestamp) for child in value]

    return value


# ---------------------------------------------------------------------------
# Ruleset
# ---------------------------------------------------------------------------

@dataclass
class Ruleset:
    """Parsed and validated rule tree."""
    rules: Dict[str, Any]

    def walk(self, segments: List[str]) -> List[Tuple[Dict[str, Any], Dict[str, str], str]]:
        """
        Return the rule nodes matching each level of a location.

        Each item is (rule node, wildcard captures, node path). The first item
        is the root node; the list stops where no rule node matches.
        """
        node = self.rules
        captures: Dict[str, str] = {}
        matched = [(node, dict(captures), "")]

        for depth, segment in enumerate(segments):
            child = node.get(segment)
            if not isinstance(child, dict):
                wildcards = [key for key in node if key.startswith("$")]
                if not wildcards:
                    break
                captures[wildcards[0]] = segment
                child = node[wildcards[0]]

            node = child
            matched.append((node, dict(captures), "/".join(segments[:depth + 1])))

        return matched


def ruleset(rules: Any) -> Ruleset:
    """
    Validate a ruleset document.

    Raises ConfigurationError if the document is invalid.
    """
    errors = sorted(_validator.iter_errors(rules), key=lambda e: list(e.path))
    if errors:
        messages = [f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors]
        raise ConfigurationError(f"Invalid rules: {'; '.join(messages)}")

    return Ruleset(rules=copy.deepcopy(rules["rules"]))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@dataclass
class SimulationResult:
    """Result of a simulated operation."""
    allowed: bool
    info: str
    database: "Database"
    new_database: Optional["Database"] = None


@dataclass
class Database:
    """
    In-memory database bound to a ruleset.

    `as_` and `with_debug` return request scoped copies; the data itself is
    never mutated.
    """
    ruleset: Ruleset
    root: Any = None
    auth: Optional[Dict[str, Any]] = None
    debug: bool = False
    timestamp: Optional[int] = None

    def as_(self, auth: Optional[Dict[str, Any]]) -> "Database":
        return replace(self, auth=auth)

    def with_debug(self, debug: bool) -> "Database":
        return replace(self, debug=debug)

    def value(self) -> Any:
        return copy.deepcopy(self.root)

    def _evaluate(self, rule: Any, variables: Dict[str, Any]) -> bool:
        try:
            return bool(jsonLogic(rule, variables))
        except Exception as e:
            logger.error(f"Rule evaluation error: {e}")
            return False

    def _variables(self, captures, node_path, new_root=None, writing=True) -> Dict[str, Any]:
        segments = path_helper.split(node_path)
        variables = {
            "auth": self.auth,
            "now": self.timestamp if self.timestamp is not None else now_ms(),
            "root": self.root,
            "data": value_at(self.root, segments),
        }
        if writing:
            variables["newRoot"] = new_root
            variables["newData"] = value_at(new_root, segments)
        variables.update(captures)
        return variables

    def _cascade(self, kind: str, location: str, new_root: Any, trace: List[str]) -> bool:
        writing = kind != READ
        for node, captures, node_path in self.ruleset.walk(path_helper.split(location)):
            if kind not in node:
                continue

            rule = node[kind]
            granted = self._evaluate(rule, self._variables(captures, node_path, new_root, writing))
            trace.append(f"/{node_path}: {kind} {rule} => {granted}")
            if granted:
                return True

        return False

    def _validate(self, location: str, new_root: Any, trace: List[str]) -> bool:
        """Check .validate rules on every non-null node under the location."""
        segments = path_helper.split(location)

        def check(node: Dict[str, Any], captures: Dict[str, str], node_segments: List[str]) -> bool:
            node_path = "/".join(node_segments)
            value = value_at(new_root, node_segments)
            if value is None:
                return True

            if VALIDATE in node:
                valid = self._evaluate(node[VALIDATE], self._variables(captures, node_path, new_root))
                trace.append(f"/{node_path}: {VALIDATE} {node[VALIDATE]} => {valid}")
                if not valid:
                    return False

            if len(node_segments) < len(segments):
                children = [segments[len(node_segments)]]
            elif isinstance(value, dict):
                children = list(value)
            else:
                return True

            for key in children:
                child = node.get(key)
                child_captures = captures
                if not isinstance(child, dict) or key.startswith("."):
                    wildcards = [k for k in node if k.startswith("$")]
                    if not wildcards:
                        continue
                    child = node[wildcards[0]]
                    child_captures = dict(captures, **{wildcards[0]: key})
                if not check(child, child_captures, node_segments + [key]):
                    return False

            return True

        return check(self.ruleset.rules, {}, [])

    def _report(self, trace: List[str]) -> str:
        auth = "unauthenticated" if self.auth is None else f"auth={self.auth}"
        return "\n".join([f"Simulated as {auth}"] + trace)

    def read(self, location: str) -> SimulationResult:
        """Evaluate a read of the location."""
        trace: List[str] = [f"read /{path_helper.join(location)}"]
        allowed = self._cascade(READ, location, None, trace)
        return SimulationResult(allowed=allowed, info=self._report(trace), database=self)

    def write(self, location: str, value: Any) -> SimulationResult:
        """Evaluate replacing the location value."""
        return self._write({path_helper.join(location): value}, f"write /{path_helper.join(location)}")

    def update(self, location: str, patch: Dict[str, Any]) -> SimulationResult:
        """Evaluate a multi-location update relative to the location."""
        writes = {path_helper.join(location, key): value for key, value in (patch or {}).items()}
        return self._write(writes, f"update /{path_helper.join(location)}")

    def _write(self, writes: Dict[str, Any], label: str) -> SimulationResult:
        timestamp = self.timestamp if self.timestamp is not None else now_ms()
        new_root = self.root
        for location, value in writes.items():
            new_root = set_at(
                new_root, path_helper.split(location), resolve_server_values(value, timestamp)
            )

        scoped = replace(self, timestamp=timestamp)
        trace: List[str] = [label]
        allowed = True
        for location in writes:
            # Each location is checked on its own
            if not scoped._cascade(WRITE, location, new_root, trace):
                allowed = False
            elif not scoped._validate(location, new_root, trace):
                allowed = False

        new_database = replace(self, root=new_root) if allowed else None
        return SimulationResult(
            allowed=allowed, info=scoped._report(trace), database=self, new_database=new_database
        )


def database(rules: Ruleset, snapshot: Any = None) -> Database:
    """Create a database from a parsed ruleset and initial data."""
    return Database(ruleset=rules, root=normalize(copy.deepcopy(snapshot)))
