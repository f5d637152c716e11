"""VoiceClient protocol — the only surface the controller sees of a voice SDK."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from src.voice.events import VoiceCallHandle, VoiceEvent

logger = logging.getLogger(__name__)

VoiceListener = Callable[[VoiceEvent], Awaitable[None]]


@runtime_checkable
class VoiceClient(Protocol):
    """Protocol that all voice adapters must satisfy."""

    @property
    def requires_agent(self) -> bool:
        """Whether a call can only be started with an agent selected."""
        ...

    async def start(self, assistant_id: str, metadata: dict[str, Any]) -> VoiceCallHandle:
        """Request a call session. The handle carries the join URL, if any."""
        ...

    async def stop(self, call_id: str | None = None) -> None:
        """End one call, or every call this client has open."""
        ...

    async def aclose(self) -> None:
        ...

    def subscribe(self, listener: VoiceListener) -> None:
        ...

    def unsubscribe(self, listener: VoiceListener) -> None:
        ...


class VoiceEventEmitter:
    """Listener bookkeeping shared by voice adapters.

    Listeners are awaited in registration order. A failing listener is
    logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[VoiceListener] = []

    def subscribe(self, listener: VoiceListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: VoiceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def emit(self, event: VoiceEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Voice listener failed on %s", event.type)
