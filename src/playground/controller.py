"""Session controller — one chat/voice playground session.

Mediates between user input, the persisted history, the completion
collaborator and an optional live voice call, and keeps a single transcript
regardless of whether a message was typed or spoken.

All collaborators are injected (see ``src.playground.wiring``).  The
controller runs on one asyncio loop and never blocks it: every collaborator
call is awaited, and persistence runs in background tasks that write in the
same order the transcript was appended.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from src.config import settings
from src.errors import CollaboratorUnavailable, PersistenceLag, ValidationRejected
from src.marketplace.models import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    SOURCE_VOICE,
    Message,
    offline_agent,
)
from src.playground.session import Session
from src.voice.events import (
    STATUS_TEXT,
    VOICE_DISABLED_TEXT,
    VoiceCallState,
    VoiceEvent,
    VoiceEventType,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from src.llm.client import CompletionClient
    from src.marketplace.catalog import AgentCatalog
    from src.marketplace.history import HistoryStore
    from src.marketplace.identity import IdentityProvider
    from src.marketplace.models import Agent
    from src.voice.client import VoiceClient

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Connection Error"
OFFLINE_NOTICE = "The marketplace is unreachable. Running in offline mode."
HISTORY_NOTICE = "Chat history is unavailable right now."
CLEAR_FAILED_NOTICE = "Could not clear history. Nothing was deleted."


class TranscriptListener(Protocol):
    """View-side hooks. Failures here are logged and never reach the caller."""

    async def on_message(self, message: Message) -> None:
        """Called after every transcript append."""
        ...

    async def on_voice_status(self, state: VoiceCallState, status: str) -> None:
        """Called after every voice state change."""
        ...


class SessionController:
    """Owns the selected agent, the transcript, and the voice-call state."""

    def __init__(
        self,
        *,
        identity: IdentityProvider,
        catalog: AgentCatalog,
        history: HistoryStore,
        completion: CompletionClient,
        voice: VoiceClient | None = None,
        listener: TranscriptListener | None = None,
        assistant_id: str | None = None,
        agent_source: str | None = None,
        filter_history_by_agent: bool | None = None,
        auto_select_first_agent: bool | None = None,
    ) -> None:
        self._identity = identity
        self._catalog = catalog
        self._history = history
        self._completion = completion
        self._voice = voice
        self._listener = listener
        self._assistant_id = assistant_id if assistant_id is not None else settings.vapi_assistant_id
        self._agent_source = agent_source or "catalog"
        self._filter_history = (
            filter_history_by_agent
            if filter_history_by_agent is not None
            else settings.history_filter_by_agent
        )
        self._auto_select = (
            auto_select_first_agent
            if auto_select_first_agent is not None
            else settings.auto_select_first_agent
        )

        self.session = Session()
        self.agents: list[Agent] = []
        self.notice: str | None = None
        self.detached = False

        self.voice_state = VoiceCallState.IDLE
        self.voice_status = STATUS_TEXT[VoiceCallState.IDLE] if voice else VOICE_DISABLED_TEXT
        self.voice_join_url: str | None = None
        self._call_id: str | None = None
        self._call_cycle = 0
        self._last_voice_transcript: str | None = None

        self._write_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()

        # Registered once; the handler reads the current selection from
        # self.session at event time.
        if self._voice is not None:
            self._voice.subscribe(self._on_voice_event)

    # -- Properties ------------------------------------------------------------

    @property
    def selected_agent(self) -> Agent | None:
        return self.session.agent

    @property
    def transcript(self) -> list[Message]:
        return list(self.session.messages)

    @property
    def voice_enabled(self) -> bool:
        return self._voice is not None

    # -- Lifecycle -------------------------------------------------------------

    async def mount(self) -> None:
        """Load the catalog and, optionally, select the first agent."""
        if self.detached and self._voice is not None:
            self._voice.subscribe(self._on_voice_event)
        self.detached = False
        agents = await self.load_agents()
        if self._auto_select and agents and self.session.agent is None:
            await self.select_agent(agents[0].id)

    async def unmount(self) -> None:
        """Tear down: stop any live call and detach from the voice client."""
        self.detached = True
        if self.voice_state in (VoiceCallState.CONNECTING, VoiceCallState.ACTIVE):
            await self._end_call()
        if self._voice is not None:
            self._voice.unsubscribe(self._on_voice_event)

    async def close(self) -> None:
        """Release the voice client. The controller cannot place calls afterwards."""
        if self.voice_state in (VoiceCallState.CONNECTING, VoiceCallState.ACTIVE):
            await self._end_call()
        voice, self._voice = self._voice, None
        if voice is None:
            return
        voice.unsubscribe(self._on_voice_event)
        try:
            await voice.aclose()
        except Exception:
            logger.exception("Voice client close failed")
        self.voice_status = VOICE_DISABLED_TEXT

    # -- Catalog ---------------------------------------------------------------

    async def load_agents(self) -> list[Agent]:
        """Fetch active agents. Falls back to a single offline agent."""
        try:
            agents = await self._query_agents()
            self.notice = None
        except CollaboratorUnavailable as exc:
            logger.warning("Agent catalog unavailable: %s", exc)
            agents = [offline_agent()]
            self.notice = OFFLINE_NOTICE

        self.agents = agents
        logger.info("Loaded %d agent(s)", len(agents))
        return list(agents)

    async def _query_agents(self) -> list[Agent]:
        if self._agent_source == "library":
            identity = await self._identity.get_current_user()
            if identity is not None:
                return await self._catalog.query_library(identity)
        return await self._catalog.query_active_agents()

    async def add_to_library(self, agent_id: str) -> bool:
        """Add a catalog agent to the user's library. Guests have no library."""
        identity = await self._identity.get_current_user()
        if identity is None:
            return False
        try:
            await self._catalog.add_to_library(identity, agent_id)
        except PersistenceLag as exc:
            logger.warning("add_to_library failed: %s", exc)
            return False
        if self._agent_source == "library":
            await self.load_agents()
        return True

    async def select_agent(self, agent_id: str) -> bool:
        """Switch agents and reload history. Unknown IDs are ignored."""
        agent = next((a for a in self.agents if a.id == agent_id), None)
        if agent is None:
            logger.warning("select_agent: unknown agent %s", agent_id)
            return False

        generation = self.session.switch(agent)
        logger.info("Selected agent %s (%s)", agent.name, agent.id)

        history = await self.load_history(agent.id)
        if self.session.generation == generation:
            self.session.merge_history(history)
        return True

    # -- History ---------------------------------------------------------------

    async def load_history(self, agent_id: str | None = None) -> list[Message]:
        """Persisted messages for the current user, oldest first.

        Guests get an empty list. Read failures degrade to an empty list.
        """
        identity = await self._identity.get_current_user()
        if identity is None:
            return []

        scope = agent_id if self._filter_history else None
        try:
            return await self._history.query_messages(identity, scope)
        except CollaboratorUnavailable as exc:
            logger.warning("History unavailable: %s", exc)
            self.notice = HISTORY_NOTICE
            return []

    async def clear_history(self, confirm: Callable[[], Awaitable[bool]]) -> bool:
        """Delete all of the user's persisted messages, then the transcript.

        Nothing happens unless *confirm* resolves True. Returns True if the
        history was cleared.
        """
        if not await confirm():
            logger.info("clear_history declined")
            return False

        identity = await self._identity.get_current_user()
        if identity is not None:
            # Writes queued before the delete must not reappear after it.
            await self.flush()
            try:
                await self._history.delete_all_messages(identity)
            except CollaboratorUnavailable as exc:
                logger.warning("clear_history failed: %s", exc)
                self.notice = CLEAR_FAILED_NOTICE
                return False

        count = self.session.clear()
        logger.info("Cleared %d transcript message(s)", count)
        return True

    # -- Text ------------------------------------------------------------------

    def attach_image(self, image: str) -> None:
        """Hold an image (data URL) for the next send."""
        self.session.attach(image)

    def _validate(self, text: str, image: str | None) -> Agent:
        agent = self.session.agent
        if agent is None:
            raise ValidationRejected("no agent selected")
        if not text.strip() and not image:
            raise ValidationRejected("empty message")
        return agent

    async def send_text(self, text: str, image: str | None = None) -> Message | None:
        """Send a typed message and append the assistant's reply.

        Returns the user Message, or None if the send was rejected.
        """
        image = image or self.session.attachment
        try:
            agent = self._validate(text, image)
        except ValidationRejected as exc:
            logger.debug("Send ignored: %s", exc)
            return None

        # Snapshot: everything below uses this agent even if the user switches.
        generation = self.session.generation
        self.session.take_attachment()

        user_msg = Message(
            role=ROLE_USER,
            agent_id=agent.id,
            content=text.strip() or None,
            image=image,
        )
        self.session.add(user_msg)
        self._persist(user_msg)
        await self._notify_message(user_msg)

        try:
            reply = await self._completion.complete(text.strip(), agent, image=image)
        except Exception as exc:
            logger.warning("Completion failed for agent %s: %s", agent.id, exc)
            error_msg = Message(role=ROLE_SYSTEM, agent_id=agent.id, content=CONNECTION_ERROR)
            await self._deliver(error_msg, generation)
            return user_msg

        reply_msg = Message(role=ROLE_ASSISTANT, agent_id=agent.id, content=reply)
        self._persist(reply_msg)
        await self._deliver(reply_msg, generation)
        return user_msg

    async def _deliver(self, message: Message, generation: int) -> None:
        """Append a late-arriving message if its agent is still on screen."""
        if self.detached or self.session.generation != generation:
            logger.debug("Discarding %s message for a previous session view", message.role)
            return
        self.session.add(message)
        await self._notify_message(message)

    # -- Persistence -----------------------------------------------------------

    def _persist(self, message: Message) -> None:
        """Queue a history write. Writes run in the order they were queued."""
        task = asyncio.create_task(self._write(message))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write(self, message: Message) -> None:
        async with self._write_lock:
            identity = await self._identity.get_current_user()
            if identity is None:
                return
            try:
                await self._history.append_message(identity, message)
            except PersistenceLag as exc:
                logger.warning("History write lagging (%s %s): %s", message.role, message.id, exc)
            except Exception:
                logger.exception("History write failed for %s", message.id)

    async def flush(self) -> None:
        """Wait for all queued history writes to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    # -- Voice -----------------------------------------------------------------

    async def toggle_voice_call(self) -> VoiceCallState:
        """Start a call from Idle/Error; end it from Connecting/Active."""
        if self._voice is None:
            logger.info("Voice call requested but voice is disabled")
            self.voice_status = VOICE_DISABLED_TEXT
            await self._notify_status()
            return self.voice_state

        if self.voice_state in (VoiceCallState.CONNECTING, VoiceCallState.ACTIVE):
            await self._end_call()
            return self.voice_state

        agent = self.session.agent
        if agent is None and self._voice.requires_agent:
            logger.info("Voice call needs an agent; none selected")
            return self.voice_state

        self._last_voice_transcript = None
        self._call_cycle += 1
        cycle = self._call_cycle
        await self._set_voice_state(VoiceCallState.CONNECTING)

        identity = await self._identity.get_current_user()
        metadata = {
            "userId": identity.id if identity else None,
            "modelId": agent.id if agent else None,
        }
        try:
            handle = await self._voice.start(self._assistant_id, metadata)
        except Exception as exc:
            logger.warning("Voice call failed to start: %s", exc)
            if self._is_current_cycle(cycle):
                await self._set_voice_state(VoiceCallState.ERROR)
            return self.voice_state

        if not self._is_current_cycle(cycle):
            # Toggled off (or off and on again, or unmounted) while this call
            # was being created.
            logger.info("Stopping abandoned voice call %s", handle.call_id or "?")
            if handle.call_id:
                await self._safe_stop(handle.call_id)
            return self.voice_state

        self._call_id = handle.call_id or None
        self.voice_join_url = handle.join_url
        return self.voice_state

    def _is_current_cycle(self, cycle: int) -> bool:
        return cycle == self._call_cycle and self.voice_state is VoiceCallState.CONNECTING

    async def _end_call(self) -> None:
        call_id, self._call_id = self._call_id, None
        await self._set_voice_state(VoiceCallState.IDLE)
        await self._safe_stop(call_id)

    async def _safe_stop(self, call_id: str | None = None) -> None:
        if self._voice is None:
            return
        try:
            await self._voice.stop(call_id)
        except Exception:
            logger.exception("Voice stop failed")

    async def _set_voice_state(self, state: VoiceCallState) -> None:
        self.voice_state = state
        self.voice_status = STATUS_TEXT[state]
        if state in (VoiceCallState.IDLE, VoiceCallState.ERROR):
            self.voice_join_url = None
        logger.info("Voice call → %s", state)
        await self._notify_status()

    async def _on_voice_event(self, event: VoiceEvent) -> None:
        if event.call_id and self._call_id and event.call_id != self._call_id:
            logger.debug("Event for another call ignored: %s %s", event.type, event.call_id)
            return
        state = self.voice_state

        if event.type is VoiceEventType.CALL_STARTED:
            if state is VoiceCallState.CONNECTING:
                await self._set_voice_state(VoiceCallState.ACTIVE)
            return

        if event.type is VoiceEventType.CALL_ENDED:
            if state in (VoiceCallState.CONNECTING, VoiceCallState.ACTIVE):
                self._call_id = None
                await self._set_voice_state(VoiceCallState.IDLE)
            return

        if event.type is VoiceEventType.ERROR:
            if state in (VoiceCallState.CONNECTING, VoiceCallState.ACTIVE):
                logger.warning("Voice call error: %s", event.error or "unknown")
                self._call_id = None
                await self._set_voice_state(VoiceCallState.ERROR)
            return

        if event.type is VoiceEventType.TRANSCRIPT_FINAL:
            await self._on_transcript(event.transcript)

    async def _on_transcript(self, transcript: str) -> None:
        if self.voice_state is not VoiceCallState.ACTIVE:
            logger.debug("Transcript outside an active call ignored")
            return

        text = transcript.strip()
        if not text:
            return
        if text == self._last_voice_transcript:
            logger.debug("Duplicate voice transcript dropped")
            return
        self._last_voice_transcript = text

        agent = self.session.agent
        message = Message(
            role=ROLE_USER,
            agent_id=agent.id if agent else None,
            content=text,
            source=SOURCE_VOICE,
        )
        self.session.add(message)
        self._persist(message)
        await self._notify_message(message)

    # -- Listener --------------------------------------------------------------

    async def _notify_message(self, message: Message) -> None:
        if self._listener is None:
            return
        try:
            await self._listener.on_message(message)
        except Exception:
            logger.exception("Transcript listener failed")

    async def _notify_status(self) -> None:
        if self._listener is None:
            return
        try:
            await self._listener.on_voice_status(self.voice_state, self.voice_status)
        except Exception:
            logger.exception("Voice status listener failed")
