"""
Authentication tokens - legacy Firebase custom tokens.

Provides:
- Token generation signed with the database secret
- A per-execution token cache

STRICT CONSTRAINTS:
- No network access
- Stateless token handling
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jose import jwt

from sequence.errors import ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_VERSION = 0
TOKEN_ALGORITHM = "HS256"


def _timestamp(value: Any) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


class TokenGenerator:
    """Create legacy Firebase auth tokens."""

    def __init__(self, secret: Optional[str]):
        if not secret:
            raise ConfigurationError("A token generator requires a Firebase secret.")
        self.secret = secret

    def create_token(self, data: Optional[Dict[str, Any]], options: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a signed token.

        Args:
            data: Auth data exposed to the rules as `auth`; must hold a uid
                unless the token is an admin one
            options: Token options (admin, debug, expires, notBefore, iat)

        Returns:
            Encoded JWT token
        """
        options = dict(options or {})

        if not options.get("admin") and (not data or data.get("uid") is None):
            raise ConfigurationError("A token requires a uid unless it is an admin token.")

        claims: Dict[str, Any] = {
            "v": TOKEN_VERSION,
            "d": data,
            "iat": _timestamp(options.get("iat", datetime.now(timezone.utc))),
        }

        if options.get("admin"):
            claims["admin"] = True
        if options.get("debug"):
            claims["debug"] = True
        if options.get("expires") is not None:
            claims["exp"] = _timestamp(options["expires"])
        if options.get("notBefore") is not None:
            claims["nbf"] = _timestamp(options["notBefore"])

        return jwt.encode(claims, self.secret, algorithm=TOKEN_ALGORITHM)


def stable_hash(value: Any) -> str:
    """Hash a JSON compatible value independently of key order."""
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


class TokenCache:
    """Generate each distinct token only once."""

    def __init__(self, generator: Any):
        self.generator = generator
        self._tokens: Dict[str, str] = {}

    def get(self, auth: Optional[Dict[str, Any]], options: Optional[Dict[str, Any]] = None) -> str:
        """Get the token from the cache, generating it if needed."""
        key = stable_hash({"auth": auth, "opts": options or {}})

        if key not in self._tokens:
            logger.debug(f"Generating token for {auth!r}")
            self._tokens[key] = self.generator.create_token(auth, options or {})

        return self._tokens[key]

    def __len__(self) -> int:
        return len(self._tokens)
