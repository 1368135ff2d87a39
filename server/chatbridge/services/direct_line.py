"""Copilot Studio bot access over the Direct Line v3 polling protocol."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..models.schemas import DirectLineActivitySet, DirectLineConversation

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://directline.botframework.com/v3/directline"


class DirectLineError(RuntimeError):
    """Raised when the Direct Line service rejects or fails a request."""


class DirectLineClient:
    """Thin async wrapper over the Direct Line conversation endpoints."""

    def __init__(
        self,
        token: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self, *, json_body: bool = False) -> Dict[str, str]:
        if not self._token:
            raise DirectLineError("DIRECT_LINE_TOKEN is not configured")
        headers = {"Authorization": f"Bearer {self._token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise DirectLineError(f"Direct Line request failed: {exc}") from exc
        if not resp.is_success:
            raise DirectLineError(f"Direct Line API error: {resp.status_code} {resp.reason_phrase}")
        try:
            return resp.json()
        except ValueError as exc:
            raise DirectLineError(f"Direct Line returned invalid JSON: {exc}") from exc

    async def start_conversation(self) -> DirectLineConversation:
        data = await self._request("POST", "/conversations", headers=self._headers(json_body=True))
        conversation = DirectLineConversation.model_validate(data)
        logger.info("Started Direct Line conversation %s", conversation.conversation_id)
        return conversation

    async def send_activity(self, conversation_id: str, text: str) -> str:
        """Post a user message activity and return the activity id."""

        activity = {"type": "message", "from": {"id": "user"}, "text": text}
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/activities",
            headers=self._headers(json_body=True),
            json=activity,
        )
        return str(data.get("id", ""))

    async def get_activities(self, conversation_id: str, watermark: Optional[str] = None) -> DirectLineActivitySet:
        """Fetch activities newer than ``watermark`` (all activities when omitted)."""

        params = {"watermark": watermark} if watermark else None
        data = await self._request(
            "GET",
            f"/conversations/{conversation_id}/activities",
            headers=self._headers(),
            params=params,
        )
        return DirectLineActivitySet.model_validate(data)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
