"""Vapi voice adapter.

Calls are created through Vapi's REST API (``POST /call/web``), which hands
back a join URL for the browser/phone side.  Call progress arrives as Vapi
*server messages* posted to our webhook server; :func:`dispatch_server_message`
translates them into :class:`VoiceEvent` objects and routes them to the
client that owns the call.

Modes:
- Enabled: ``VAPI_API_KEY`` and ``VAPI_ASSISTANT_ID`` set.
- Disabled: either missing. :func:`create_voice_client` returns None and the
  playground keeps working with text chat only.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import settings
from src.errors import VoiceEngineFailure
from src.voice.client import VoiceEventEmitter
from src.voice.events import VoiceCallHandle, VoiceEvent, VoiceEventType

logger = logging.getLogger(__name__)

# Calls currently owned by a client in this process, keyed by Vapi call ID.
_active_calls: dict[str, VapiVoiceClient] = {}


class VapiVoiceClient(VoiceEventEmitter):
    """One client per playground session.

    The controller only keeps one call live, but a call requested and then
    abandoned can still be open here until it is stopped by ID.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        server_url: str | None = None,
        server_secret: str | None = None,
        requires_agent: bool | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key if api_key is not None else settings.vapi_api_key
        if not self._api_key:
            msg = "VAPI_API_KEY is not set"
            raise VoiceEngineFailure(msg)
        self._base_url = (base_url or settings.vapi_base_url).rstrip("/")
        self._server_url = server_url if server_url is not None else settings.voice_server_url()
        self._server_secret = (
            server_secret if server_secret is not None else settings.vapi_webhook_secret
        )
        self._requires_agent = (
            requires_agent if requires_agent is not None else settings.voice_requires_agent
        )
        self._http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        # Open calls: call ID -> control URL
        self._calls: dict[str, str | None] = {}

    @property
    def requires_agent(self) -> bool:
        return self._requires_agent

    @property
    def open_calls(self) -> set[str]:
        return set(self._calls)

    async def start(self, assistant_id: str, metadata: dict[str, Any]) -> VoiceCallHandle:
        """Create a web call."""
        overrides: dict[str, Any] = {
            "variableValues": {k: v for k, v in metadata.items() if v is not None},
        }
        if self._server_url:
            server: dict[str, Any] = {"url": self._server_url}
            if self._server_secret:
                server["secret"] = self._server_secret
            overrides["server"] = server

        try:
            resp = await self._http.post(
                f"{self._base_url}/call/web",
                json={"assistantId": assistant_id, "assistantOverrides": overrides},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise VoiceEngineFailure(f"Vapi call request failed: {exc}") from exc

        if resp.status_code >= 400:
            msg = f"Vapi returned {resp.status_code}: {resp.text[:200]}"
            raise VoiceEngineFailure(msg)

        data = resp.json()
        call_id = str(data.get("id") or "")
        if call_id:
            self._calls[call_id] = (data.get("monitor") or {}).get("controlUrl")
            _active_calls[call_id] = self
        logger.info("Vapi call requested: %s", call_id or "?")
        return VoiceCallHandle(call_id=call_id, join_url=data.get("webCallUrl"))

    def release(self, call_id: str) -> str | None:
        """Forget a call without ending it. Returns its control URL."""
        _active_calls.pop(call_id, None)
        return self._calls.pop(call_id, None)

    async def stop(self, call_id: str | None = None) -> None:
        """End *call_id*, or every open call. Never raises."""
        targets = [call_id] if call_id else list(self._calls)
        for target in targets:
            if target not in self._calls:
                continue
            control_url = self.release(target)
            if not control_url:
                continue
            try:
                resp = await self._http.post(control_url, json={"type": "end-call"})
                if resp.status_code >= 400:
                    logger.warning("Vapi end-call returned %d for %s", resp.status_code, target)
            except httpx.HTTPError:
                logger.warning("Vapi end-call failed for %s", target, exc_info=True)

    async def aclose(self) -> None:
        """Forget open calls and close the HTTP client."""
        for call_id in list(self._calls):
            self.release(call_id)
        await self._http.aclose()


def create_voice_client() -> VapiVoiceClient | None:
    """Build a Vapi client, or None (voice disabled) if it cannot be set up."""
    if not settings.vapi_assistant_id:
        logger.warning("Voice disabled — set VAPI_ASSISTANT_ID to enable calls")
        return None
    try:
        return VapiVoiceClient()
    except VoiceEngineFailure as exc:
        logger.warning("Voice disabled — %s", exc)
        return None


# ---------------------------------------------------------------------------
# Server messages
# ---------------------------------------------------------------------------


def translate_server_message(payload: dict[str, Any]) -> VoiceEvent | None:
    """Map a Vapi server message to a VoiceEvent, or None if irrelevant."""
    message = payload.get("message", payload)
    if not isinstance(message, dict):
        return None

    kind = str(message.get("type", ""))
    call_id = str((message.get("call") or {}).get("id", ""))

    if kind == "status-update":
        status = message.get("status")
        if status == "in-progress":
            return VoiceEvent(VoiceEventType.CALL_STARTED, call_id=call_id)
        if status == "ended":
            reason = str(message.get("endedReason", ""))
            if "error" in reason:
                return VoiceEvent(VoiceEventType.ERROR, call_id=call_id, error=reason)
            return VoiceEvent(VoiceEventType.CALL_ENDED, call_id=call_id)
        return None

    # "transcript" or the filtered form 'transcript[transcriptType="final"]'
    if kind.startswith("transcript"):
        if message.get("transcriptType") != "final" or message.get("role") != "user":
            return None
        text = str(message.get("transcript", "")).strip()
        if not text:
            return None
        return VoiceEvent(VoiceEventType.TRANSCRIPT_FINAL, call_id=call_id, transcript=text)

    if kind == "end-of-call-report":
        return VoiceEvent(VoiceEventType.CALL_ENDED, call_id=call_id)

    if kind == "hang":
        # The assistant went quiet; the call itself is still up.
        logger.warning("Vapi assistant stalled on call %s", call_id)

    return None


async def dispatch_server_message(payload: dict[str, Any]) -> bool:
    """Deliver a server message to the client owning its call.

    Returns True if an event was emitted.
    """
    event = translate_server_message(payload)
    if event is None:
        return False

    client = _active_calls.get(event.call_id)
    if client is None:
        logger.debug("No active client for call %s (%s)", event.call_id, event.type)
        return False

    if event.type in (VoiceEventType.CALL_ENDED, VoiceEventType.ERROR):
        client.release(event.call_id)
    await client.emit(event)
    return True
