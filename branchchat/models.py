"""Shared data models for branch-chat."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]
MessageStatus = Literal["pending", "streaming", "completed", "error"]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A single turn in a conversation tree."""

    id: str
    conversation_id: str
    parent_id: str | None = None
    role: Role
    content: str = ""
    status: MessageStatus = "completed"
    model: str | None = None
    branch_index: int = Field(0, ge=0, description="Rank among siblings, fixed at creation")
    created_at: datetime = Field(default_factory=utc_now)
    path: str = Field(..., description="Dot-separated encoded ids from the root")
    error: str | None = Field(None, description="Failure shown in place of content")

    @property
    def is_placeholder(self) -> bool:
        """Assistant message still waiting for its content."""
        return self.role == "assistant" and self.status in ("pending", "streaming")


class BranchNode(BaseModel):
    """Tree topology of a message, kept apart from its content."""

    id: str
    parent_id: str | None = None
    children: list[str] = Field(default_factory=list)
    depth: int = Field(0, ge=0)
    is_active: bool = False


class Conversation(BaseModel):
    """Conversation metadata owned by a tree."""

    id: str
    user_id: str | None = None
    title: str | None = None
    root_message_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ConversationSnapshot(BaseModel):
    """Serializable state of one conversation tree.

    Messages are listed in insertion order, so every parent appears before
    its children.
    """

    conversation: Conversation
    messages: list[Message] = Field(default_factory=list)
    active_path: list[str] = Field(default_factory=list)

    @property
    def message_count(self) -> int:
        """Number of messages in the snapshot."""
        return len(self.messages)


class BranchPair(BaseModel):
    """A user message and the assistant reply placed under it."""

    user_id: str
    assistant_id: str


class SendResult(BaseModel):
    """Outcome of sending one piece of user input."""

    conversation_id: str
    parent_id: str | None = None
    branches: list[BranchPair] = Field(default_factory=list)
    auto_branched: bool = False
    confidence: float = 0.0

    @property
    def assistant_ids(self) -> list[str]:
        """Ids of the assistant placeholders, in branch order."""
        return [pair.assistant_id for pair in self.branches]
