# SPDX-License-Identifier: Apache-2.0
"""Thin async HTTP client for the assistant backend.

Provides only the two endpoints the chat session manager needs:
``POST /chat`` and ``GET /chat/sessions/:id``. Failures are mapped onto the
workbench error taxonomy; callers decide how to surface them.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from aac_workbench.errors import RemoteError, ServiceBusyError, TransportError
from aac_workbench.models import ChatRequest, ChatResponse, ChatSession, SessionFetchResponse

logger = logging.getLogger(__name__)

SERVICE_BUSY_SENTINEL = "SERVICE_BUSY"
BUSY_STATUS_CODES = {429, 503}
DEFAULT_TIMEOUT = 120.0


def _is_busy(error: Any) -> bool:
    return isinstance(error, str) and error.strip().upper() == SERVICE_BUSY_SENTINEL


class AssistantBackendClient:
    """Async client for the assistant backend.

    Args:
        base_url: Backend root, e.g. ``http://localhost:5000/api``.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            MockTransport). When given, ``base_url`` is only used for paths.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, body: dict | None = None) -> dict[str, Any]:
        """Issue a request and return the decoded JSON object."""
        try:
            resp = await self._get_client().request(method, self._url(path), json=body)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or "Failed to reach assistant backend") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code in BUSY_STATUS_CODES:
            detail = data.get("error", "") if isinstance(data, dict) else ""
            raise ServiceBusyError(detail)

        if resp.is_error:
            if isinstance(data, dict) and isinstance(data.get("error"), str):
                if _is_busy(data["error"]):
                    raise ServiceBusyError(data["error"])
                raise RemoteError(data["error"])
            text = resp.text or resp.reason_phrase
            raise TransportError(f"{resp.status_code}: {text}", status_code=resp.status_code)

        if not isinstance(data, dict):
            raise TransportError("Malformed response from assistant backend", resp.status_code)
        return data

    # ========================================================================
    # Chat
    # ========================================================================

    async def send_chat(self, request: ChatRequest) -> ChatResponse:
        """POST a message batch. Returns the parsed reply.

        An explicit ``error`` field is returned as-is on the response; only
        the busy sentinel is raised, as ServiceBusyError.
        """
        data = await self._request("POST", "/chat", request.to_wire())
        if _is_busy(data.get("error")):
            raise ServiceBusyError(data["error"])
        try:
            return ChatResponse.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("Unparseable chat response: %s", exc)
            raise TransportError("Malformed response from assistant backend") from exc

    async def fetch_session(self, session_id: str) -> ChatSession:
        """GET a stored session by id. Raises RemoteError when not returned."""
        data = await self._request("GET", f"/chat/sessions/{quote(session_id, safe='')}")
        try:
            parsed = SessionFetchResponse.model_validate(data)
        except PydanticValidationError as exc:
            raise TransportError("Malformed session response") from exc
        if not parsed.success or parsed.session is None:
            raise RemoteError("Failed to load session")
        return parsed.session
