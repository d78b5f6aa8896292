"""
Bounded conversation history.

A history is a value: ``append`` returns a new history and never touches the
old one, so the session can take it as a parameter and hand it back.
"""

import time
from pathlib import Path
from typing import Literal
from uuid import uuid4

import orjson
from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """A single role-tagged message."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class ConversationHistory(BaseModel):
    """Ordered, length-bounded sequence of messages owned by one file."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()
    max_length: int = Field(default=10, ge=1)
    conversation_id: str = Field(default_factory=lambda: str(uuid4()))

    def append(self, role: Role, content: str) -> "ConversationHistory":
        """Return a new history with the message added and the bound enforced.

        The oldest non-system messages are evicted first; system messages
        are only dropped when nothing else is left to evict.
        """
        messages = list(self.messages) + [Message(role=role, content=content)]
        while len(messages) > self.max_length:
            victim = next(
                (i for i, message in enumerate(messages) if message.role != "system"), 0
            )
            del messages[victim]
        return self.model_copy(update={"messages": tuple(messages)})

    def extend(self, pairs: list[tuple[Role, str]]) -> "ConversationHistory":
        history = self
        for role, content in pairs:
            history = history.append(role, content)
        return history

    def to_messages(self) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)

    def save(self, output_dir: Path, name: str | None = None) -> Path:
        """Save the transcript to a JSON file for debugging."""
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{name or self.conversation_id}.json"
        payload = {
            "id": self.conversation_id,
            "messages": self.to_messages(),
            "saved_at": time.time(),
        }
        output_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        return output_path
