"""Process-wide container of conversation trees.

The store owns every ConversationTree, tracks which one is active and is the
single place mutations go through. Each mutation runs under one lock, bumps
``version`` and publishes a TreeEvent to subscribers (the view state machine
listens to these).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Literal

from .errors import ConversationNotFoundError, NoActiveConversationError
from .models import BranchNode, Conversation, Message, MessageStatus, Role
from .tree import ConversationTree, generate_id

logger = logging.getLogger(__name__)

EventKind = Literal[
    "conversation_created",
    "conversation_deleted",
    "message_inserted",
    "branch_created",
    "message_updated",
    "active_path_changed",
    "subtree_deleted",
]


@dataclass(frozen=True)
class TreeEvent:
    """Notification published after a store mutation."""

    kind: EventKind
    conversation_id: str
    message_id: str | None = None
    version: int = 0


Listener = Callable[[TreeEvent], None]


class ConversationStore:
    """Holds all conversation trees and the active-conversation pointer."""

    def __init__(self):
        self._trees: dict[str, ConversationTree] = {}
        self._active_id: str | None = None
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self.version = 0

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for tree events.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: EventKind, conversation_id: str, message_id: str | None = None) -> None:
        self.version += 1
        event = TreeEvent(kind, conversation_id, message_id, self.version)
        for listener in list(self._listeners):
            listener(event)

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    def get_active_conversation(self) -> ConversationTree | None:
        if self._active_id is None:
            return None
        return self._trees.get(self._active_id)

    def get_conversation(self, conversation_id: str) -> ConversationTree:
        """Return a tree by conversation id.

        Raises:
            ConversationNotFoundError: If the id is unknown
        """
        tree = self._trees.get(conversation_id)
        if tree is None:
            raise ConversationNotFoundError(conversation_id)
        return tree

    def list_conversations(self) -> list[Conversation]:
        """Conversations, most recently updated first."""
        conversations = [tree.conversation for tree in self._trees.values()]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def get_messages(self, conversation_id: str | None = None) -> dict[str, Message]:
        """Messages of a conversation (the active one by default)."""
        if conversation_id is not None:
            return self.get_conversation(conversation_id).messages
        tree = self.get_active_conversation()
        return tree.messages if tree else {}

    def get_nodes(self) -> dict[str, BranchNode]:
        tree = self.get_active_conversation()
        return tree.nodes if tree else {}

    def get_active_path(self) -> list[str]:
        tree = self.get_active_conversation()
        return tree.active_path if tree else []

    def _require_active(self) -> ConversationTree:
        tree = self.get_active_conversation()
        if tree is None:
            raise NoActiveConversationError()
        return tree

    def resolve(self, conversation_id: str | None = None) -> ConversationTree:
        """The named conversation, or the active one when no id is given.

        Raises:
            NoActiveConversationError: If no id is given and none is active
            ConversationNotFoundError: If the id is unknown
        """
        if conversation_id is None:
            return self._require_active()
        return self.get_conversation(conversation_id)

    # -------------------------------------------------------------------------
    # Conversation lifecycle
    # -------------------------------------------------------------------------

    def create_conversation(self, title: str | None = None, user_id: str | None = None) -> str:
        """Create an empty conversation tree and make it active.

        Returns:
            The new conversation id
        """
        with self._lock:
            conversation = Conversation(id=generate_id(), title=title, user_id=user_id)
            self._trees[conversation.id] = ConversationTree(conversation)
            self._active_id = conversation.id
            logger.info(f"Created conversation {conversation.id} ({title or 'untitled'})")
            self._emit("conversation_created", conversation.id)
            return conversation.id

    def import_tree(self, tree: ConversationTree, activate: bool = True) -> str:
        """Add an existing tree (e.g. one restored from disk) to the store."""
        with self._lock:
            self._trees[tree.id] = tree
            if activate:
                self._active_id = tree.id
            self._emit("conversation_created", tree.id)
            return tree.id

    def set_active_conversation(self, conversation_id: str | None) -> None:
        """Select the active conversation, or clear the selection with None.

        Raises:
            ConversationNotFoundError: If the id is unknown
        """
        with self._lock:
            if conversation_id is not None and conversation_id not in self._trees:
                raise ConversationNotFoundError(conversation_id)
            self._active_id = conversation_id

    def delete_conversation(self, conversation_id: str) -> None:
        """Remove a tree; clears the active pointer if it pointed at it."""
        with self._lock:
            if self._trees.pop(conversation_id, None) is None:
                return
            if self._active_id == conversation_id:
                self._active_id = None
            logger.info(f"Deleted conversation {conversation_id}")
            self._emit("conversation_deleted", conversation_id)

    # -------------------------------------------------------------------------
    # Message mutations (active conversation unless one is named)
    # -------------------------------------------------------------------------

    def insert_message(
        self,
        parent_id: str | None,
        role: Role,
        content: str,
        status: MessageStatus,
        model: str | None = None,
        conversation_id: str | None = None,
    ) -> str:
        """Insert a message into a conversation (the active one by default).

        Returns:
            The new message id

        Raises:
            NoActiveConversationError: If no conversation is active
            ConversationNotFoundError: If conversation_id is unknown
            ParentNotFoundError: If parent_id is not in the target tree
        """
        with self._lock:
            tree = self.resolve(conversation_id)
            message = tree.insert(parent_id, role, content, status, model=model)

            self._emit("message_inserted", tree.id, message.id)
            siblings = tree.children(parent_id)
            if len(siblings) > 1:
                self._emit("branch_created", tree.id, message.id)
            self._emit("active_path_changed", tree.id, message.id)
            return message.id

    def update_message_content(
        self, message_id: str, conversation_id: str | None = None, **changes
    ) -> Message:
        """Merge content, status, model or error into a message.

        Replies name their own conversation so they still land in the right
        tree after the user switches to another one.

        Raises:
            NoActiveConversationError: If no conversation is active
            ConversationNotFoundError: If conversation_id is unknown
            MessageNotFoundError: If the id is not in the target tree
        """
        with self._lock:
            tree = self.resolve(conversation_id)
            message = tree.update(message_id, **changes)
            self._emit("message_updated", tree.id, message_id)
            return message

    def set_active_path(self, path: list[str]) -> None:
        """Replace the active path; a no-op without an active conversation."""
        with self._lock:
            tree = self.get_active_conversation()
            if tree is None:
                return
            tree.set_active_path(path)
            self._emit("active_path_changed", tree.id, path[-1] if path else None)

    def create_branch(self, parent_id: str) -> str:
        """Prepare a fork at ``parent_id``.

        Truncates the active path so it ends at the parent; the next message
        inserted under it becomes a new sibling branch.

        Returns:
            The parent id the branch will grow from
        """
        with self._lock:
            tree = self._require_active()
            self.set_active_path(tree.path_to(parent_id))
            return parent_id

    def activate_branch(self, message_id: str) -> list[str]:
        """Focus the branch running through a message.

        The active path becomes root -> message, continued through the most
        recently created child at each level down to a leaf.

        Returns:
            The new active path
        """
        with self._lock:
            tree = self._require_active()
            leaf_id = tree.latest_leaf(message_id)
            path = tree.path_to(leaf_id)
            self.set_active_path(path)
            return path

    def delete_message_subtree(
        self, message_id: str, conversation_id: str | None = None
    ) -> list[str]:
        """Remove a message and all of its descendants from a conversation.

        Returns:
            Ids of the removed messages
        """
        with self._lock:
            tree = self.resolve(conversation_id)
            before = tree.active_path
            removed = tree.delete_subtree(message_id)
            self._emit("subtree_deleted", tree.id, message_id)
            after = tree.active_path
            if after != before:
                self._emit("active_path_changed", tree.id, after[-1] if after else None)
            return removed
