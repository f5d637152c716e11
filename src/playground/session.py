"""In-memory playground session: selected agent, transcript, pending attachment."""

import logging
from dataclasses import dataclass, field

from src.marketplace.models import Agent, Message

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Transcript state for one controller.

    ``generation`` increases on every agent switch so late results from a
    previous agent can be recognised and kept out of the new transcript.
    """

    agent: Agent | None = None
    messages: list[Message] = field(default_factory=list)
    attachment: str | None = None
    generation: int = 0

    def add(self, message: Message) -> None:
        """Append a message to the transcript."""
        self.messages.append(message)

    def switch(self, agent: Agent | None) -> int:
        """Select *agent* and start an empty transcript. Returns the new generation."""
        self.agent = agent
        self.messages = []
        self.attachment = None
        self.generation += 1
        return self.generation

    def merge_history(self, history: list[Message]) -> None:
        """Put persisted *history* before anything appended while it loaded."""
        known = {m.id for m in history}
        pending = [m for m in self.messages if m.id not in known]
        self.messages = [*history, *pending]

    def attach(self, image: str) -> None:
        """Hold *image* for the next send, replacing any earlier one."""
        if self.attachment is not None:
            logger.debug("Replacing pending attachment")
        self.attachment = image

    def take_attachment(self) -> str | None:
        """Return and clear the pending attachment."""
        image, self.attachment = self.attachment, None
        return image

    def clear(self) -> int:
        """Clear all messages. Returns the count of cleared messages."""
        count = len(self.messages)
        self.messages.clear()
        return count
