"""
REST Transport - Firebase Realtime Database REST client.

Supports:
- Rules deployment
- get / set / update / push / remove

STRICT CONSTRAINTS:
- Pure transport, no rule logic
- Auth tokens are never logged
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from config.settings import settings
from sequence import path as path_helper
from sequence.errors import ConfigurationError, PermissionDenied, TransportFailure

logger = logging.getLogger(__name__)

AUTH_DEBUG_HEADER = "x-firebase-auth-debug"

# Sentinel telling apart "no payload" from a null payload
NO_PAYLOAD = object()


class RestClient:
    """
    REST client for one Firebase database.

    A new connection pool is opened for each request so the client can be
    shared between event loops.
    """

    def __init__(
        self,
        project_id: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            project_id: ID of the project to target
            base_url: Database URL (https://<project_id>.firebaseio.com by default)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used for testing)
        """
        if not project_id:
            raise ConfigurationError("A RestClient requires a project id.")

        self.project_id = project_id
        self.base_url = (base_url or f"https://{project_id}.firebaseio.com").rstrip("/")
        self.timeout = timeout if timeout is not None else settings.live.REQUEST_TIMEOUT
        self.transport = transport
        self.user_agent = f"{settings.APP_NAME}/{settings.APP_VERSION}; httpx/{httpx.__version__}"

    def uri(self, paths: Any = None, qs: Optional[Dict[str, Any]] = None) -> str:
        """Build the REST url of a location."""
        return f"{self.base_url}/{path_helper.join(paths)}.json?{urlencode(qs or {})}"

    def qs(self, auth: Optional[str] = None, silent: bool = False, shallow: bool = False) -> Dict[str, Any]:
        """Build the query string options."""
        qs: Dict[str, Any] = {}

        if auth is not None:
            qs["auth"] = auth

        if silent:
            qs["print"] = "silent"
            return qs

        if shallow:
            qs["shallow"] = "true"

        return qs

    def _log(self, method: str, paths: Any, qs: Dict[str, Any], response: Optional[httpx.Response]) -> None:
        code = "  0" if response is None else response.status_code
        redacted = {key: ("xxxx" if key == "auth" else value) for key, value in qs.items()}

        logger.debug(f"{code} {method} {self.uri(paths, redacted)}")

        if response is not None and response.headers.get(AUTH_DEBUG_HEADER):
            logger.info(response.headers[AUTH_DEBUG_HEADER])

    async def req(
        self,
        paths: Any = None,
        payload: Any = NO_PAYLOAD,
        method: str = "GET",
        auth: Optional[str] = None,
        silent: bool = False,
        shallow: bool = False,
    ) -> Any:
        """
        Send a request.

        Returns:
            The decoded response body (None for silent requests)

        Raises:
            PermissionDenied: the request was rejected by the rules
            TransportFailure: any other HTTP or network error
        """
        qs = self.qs(auth=auth, silent=silent, shallow=shallow)
        uri = self.uri(paths, qs)
        kwargs: Dict[str, Any] = {"headers": {"User-Agent": self.user_agent}}

        if payload is not NO_PAYLOAD:
            # json=None would send no body at all
            kwargs["content"] = json.dumps(payload)
            kwargs["headers"]["Content-Type"] = "application/json"

        response = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, uri, **kwargs)
                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            self._log(method, paths, qs, e.response)
            status = e.response.status_code
            message = f"{method} /{path_helper.join(paths)} failed with status {status}"
            if status in (401, 403):
                raise PermissionDenied(message, info=e.response.headers.get(AUTH_DEBUG_HEADER)) from e
            raise TransportFailure(message, status_code=status) from e

        except httpx.HTTPError as e:
            self._log(method, paths, qs, None)
            raise TransportFailure(f"{method} /{path_helper.join(paths)} failed: {e}") from e

        self._log(method, paths, qs, response)

        if silent or response.status_code == 204 or not response.content:
            return None

        return response.json()

    async def rules(self, rules: Any, secret: str) -> Any:
        """Deploy rules."""
        return await self.req(auth=secret, method="PUT", paths=".settings/rules", payload=rules)

    async def get(self, paths: Any = "/", auth: Optional[str] = None, silent: bool = False, shallow: bool = False) -> Any:
        """Fetch a location."""
        return await self.req(
            method="GET", paths=paths, auth=auth, silent=silent, shallow=shallow and not silent
        )

    async def set(self, paths: Any = None, payload: Any = None, auth: Optional[str] = None, silent: bool = False) -> Any:
        """Replace a location content; the path must be explicit."""
        if paths is None:
            raise TransportFailure("RestClient.set requires an explicit path")

        return await self.req(method="PUT", paths=paths, auth=auth, payload=payload, silent=silent)

    async def update(self, paths: Any = "/", payload: Any = None, auth: Optional[str] = None, silent: bool = False) -> Any:
        """Update multiple locations relative to a root location."""
        return await self.req(
            method="PATCH", paths=paths, auth=auth, payload=payload if payload is not None else {}, silent=silent
        )

    async def push(self, paths: Any = "/", payload: Any = None, auth: Optional[str] = None, silent: bool = False) -> Any:
        """Add a new item to a collection location."""
        return await self.req(method="POST", paths=paths, auth=auth, payload=payload, silent=silent)

    async def remove(self, paths: Any = None, auth: Optional[str] = None, silent: bool = False) -> Any:
        """Delete a location; the path must be explicit."""
        if paths is None:
            raise TransportFailure("RestClient.remove requires an explicit path")

        return await self.req(method="DELETE", paths=paths, auth=auth, silent=silent)


def create_client(
    project_id: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> RestClient:
    """
    Factory function to create the default REST client.

    Raises:
        ConfigurationError: no project id is given
    """
    if not project_id:
        raise ConfigurationError("The live driver requires a project id.")

    logger.debug("Live driver will use the default rest client.")
    return RestClient(project_id, base_url=base_url, timeout=timeout)
