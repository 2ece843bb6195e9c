"""In-memory branching tree for a single conversation.

Messages and their topology nodes live in two parallel arenas (plain lists)
addressed through an id -> slot table. Children are stored as ids, never as
object references, and every traversal goes through the table. Removed
messages leave a tombstone (None) in their slot so slots are never reused.
"""

import logging
import uuid
from typing import Iterator

from . import paths
from .errors import InvalidActivePathError, MessageNotFoundError, ParentNotFoundError
from .models import BranchNode, Conversation, Message, MessageStatus, Role, utc_now

logger = logging.getLogger(__name__)

# Fields a content update may touch; everything else is fixed at creation.
UPDATABLE_FIELDS = frozenset({"content", "status", "model", "error"})


def generate_id() -> str:
    """Allocate a new message or conversation id."""
    return str(uuid.uuid4())


class ConversationTree:
    """Messages of one conversation arranged as a tree.

    Invariants maintained by every mutation:
    - each live slot holds a Message and a BranchNode with the same id
    - a node's children are exactly the live messages naming it as parent
    - the active path is empty or a connected root-to-node sequence
    - branch indices count siblings created earlier and are never reused
    """

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self._messages: list[Message | None] = []
        self._nodes: list[BranchNode | None] = []
        self._index: dict[str, int] = {}
        self._roots: list[str] = []
        # Children ever created per parent id (None holds root count)
        self._spawned: dict[str | None, int] = {}
        self._active_path: list[str] = []

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._index

    def __iter__(self) -> Iterator[Message]:
        for message in self._messages:
            if message is not None:
                yield message

    @property
    def id(self) -> str:
        return self.conversation.id

    @property
    def messages(self) -> dict[str, Message]:
        """Mapping of id to Message, in insertion order."""
        return {message.id: message for message in self}

    @property
    def nodes(self) -> dict[str, BranchNode]:
        """Mapping of id to BranchNode, in insertion order."""
        return {node.id: node for node in self._nodes if node is not None}

    @property
    def active_path(self) -> list[str]:
        return list(self._active_path)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _slot(self, message_id: str) -> int:
        try:
            return self._index[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    def get_message(self, message_id: str) -> Message:
        """Return a message by id.

        Raises:
            MessageNotFoundError: If the id is not in the tree
        """
        return self._messages[self._slot(message_id)]

    def get_node(self, message_id: str) -> BranchNode:
        """Return the topology node of a message by id."""
        return self._nodes[self._slot(message_id)]

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def insert(
        self,
        parent_id: str | None,
        role: Role,
        content: str,
        status: MessageStatus,
        model: str | None = None,
        message_id: str | None = None,
    ) -> Message:
        """Insert a new message and make it the active leaf.

        Args:
            parent_id: Parent message id, or None for a root message
            role: Author role
            content: Message text
            status: Initial status
            model: Model that produced (or will produce) the message
            message_id: Explicit id; a UUID is generated when omitted

        Returns:
            The inserted Message

        Raises:
            ParentNotFoundError: If parent_id is not in the tree
            InvalidIdentifierError: If message_id cannot be path-encoded
        """
        if parent_id is not None and parent_id not in self._index:
            raise ParentNotFoundError(parent_id)

        message_id = message_id or generate_id()
        parent_path = self.get_message(parent_id).path if parent_id is not None else None

        message = Message(
            id=message_id,
            conversation_id=self.conversation.id,
            parent_id=parent_id,
            role=role,
            content=content,
            status=status,
            model=model,
            branch_index=self._spawned.get(parent_id, 0),
            path=paths.build_path(parent_path, message_id),
        )
        self.attach(message)
        self._activate(self.path_to(message_id))

        logger.debug(
            f"Inserted {role} message {message_id} under {parent_id} "
            f"(branch {message.branch_index})"
        )
        return message

    def attach(self, message: Message) -> None:
        """Link an already-built message into the arena.

        Used by ``insert`` and when restoring a saved tree, where ids, paths
        and branch indices are carried over unchanged. The active path is
        left alone.
        """
        if message.id in self._index:
            raise ValueError(f"Message already in tree: {message.id}")
        if message.parent_id is not None and message.parent_id not in self._index:
            raise ParentNotFoundError(message.parent_id)

        if message.parent_id is None:
            self._roots.append(message.id)
            depth = 0
        else:
            parent_node = self.get_node(message.parent_id)
            parent_node.children.append(message.id)
            depth = parent_node.depth + 1

        self._index[message.id] = len(self._messages)
        self._messages.append(message)
        self._nodes.append(BranchNode(id=message.id, parent_id=message.parent_id, depth=depth))

        self._spawned[message.parent_id] = max(
            self._spawned.get(message.parent_id, 0), message.branch_index + 1
        )
        if self.conversation.root_message_id is None:
            self.conversation.root_message_id = message.id
        self._touch()

    def update(self, message_id: str, **changes) -> Message:
        """Merge content fields into an existing message.

        Only content, status, model and error may change; the id, parent,
        branch index and tree linkage stay as they are.

        Raises:
            MessageNotFoundError: If the id is not in the tree
            ValueError: If a fixed field is passed
        """
        fixed = set(changes) - UPDATABLE_FIELDS
        if fixed:
            raise ValueError(f"Cannot update fixed message fields: {', '.join(sorted(fixed))}")

        slot = self._slot(message_id)
        updated = self._messages[slot].model_copy(update=changes)
        self._messages[slot] = updated
        self._touch()
        return updated

    def set_active_path(self, path: list[str]) -> None:
        """Replace the active path after checking it is connected.

        Raises:
            MessageNotFoundError: If an id is not in the tree
            InvalidActivePathError: If the ids do not form a root-to-node chain
        """
        path = list(path)
        for message_id in path:
            self._slot(message_id)

        if path:
            first = self.get_message(path[0])
            if first.parent_id is not None:
                raise InvalidActivePathError(
                    f"Active path must start at a root message, got {path[0]}"
                )
            for parent_id, child_id in zip(path, path[1:]):
                if self.get_message(child_id).parent_id != parent_id:
                    raise InvalidActivePathError(
                        f"{child_id} is not a child of {parent_id}"
                    )

        self._activate(path)

    def delete_subtree(self, message_id: str) -> list[str]:
        """Remove a message together with all of its descendants.

        Returns:
            Ids of the removed messages, the subtree root first

        Raises:
            MessageNotFoundError: If the id is not in the tree
        """
        message = self.get_message(message_id)
        removed = [message_id] + [m.id for m in self.descendants(message_id)]

        if message.parent_id is None:
            self._roots.remove(message_id)
        else:
            self.get_node(message.parent_id).children.remove(message_id)

        for removed_id in removed:
            slot = self._index.pop(removed_id)
            self._messages[slot] = None
            self._nodes[slot] = None

        removed_set = set(removed)
        active = self._active_path
        for position, active_id in enumerate(active):
            if active_id in removed_set:
                active = active[:position]
                break
        self._activate(active)
        self._touch()

        logger.debug(f"Deleted subtree {message_id} ({len(removed)} messages)")
        return removed

    def _activate(self, path: list[str]) -> None:
        self._active_path = list(path)
        on_path = set(path)
        for node in self._nodes:
            if node is not None:
                node.is_active = node.id in on_path

    def _touch(self) -> None:
        self.conversation.updated_at = utc_now()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def path_to(self, message_id: str) -> list[str]:
        """Ids from the root down to (and including) a message."""
        return paths.path_ids(self.get_message(message_id).path)

    def ancestors(self, message_id: str, inclusive: bool = True) -> list[Message]:
        """Messages from the root down to a message, ordered by depth."""
        ids = self.path_to(message_id)
        if not inclusive:
            ids = ids[:-1]
        return [self.get_message(i) for i in ids]

    def history_for(self, message_id: str, inclusive: bool = True) -> list[tuple[Role, str]]:
        """Role/content pairs from the root down to a message.

        Messages that did not complete, or completed empty, are skipped so
        failed replies never reach a provider.
        """
        return [
            (message.role, message.content)
            for message in self.ancestors(message_id, inclusive=inclusive)
            if message.status == "completed" and message.content
        ]

    def descendants(self, message_id: str) -> list[Message]:
        """All messages below a message, in insertion order."""
        base = self.get_message(message_id).path
        return [m for m in self if paths.is_ancestor(base, m.path)]

    def children(self, message_id: str | None) -> list[Message]:
        """Direct children in branch order; None lists the roots."""
        ids = self._roots if message_id is None else self.get_node(message_id).children
        return [self.get_message(i) for i in ids]

    def branch_count(self, message_id: str) -> int:
        """Number of live continuations below a message."""
        return len(self.get_node(message_id).children)

    def roots(self) -> list[Message]:
        return self.children(None)

    def leaves(self) -> list[Message]:
        """Messages without children."""
        return [m for m in self if not self.get_node(m.id).children]

    def branch_points(self) -> list[Message]:
        """Messages with more than one child."""
        return [m for m in self if len(self.get_node(m.id).children) > 1]

    def latest_leaf(self, message_id: str) -> str:
        """Follow the most recently created child down to a leaf."""
        current = message_id
        while True:
            children = self.get_node(current).children
            if not children:
                return current
            current = children[-1]

    def active_messages(self) -> list[Message]:
        """Messages on the active path, root first."""
        return [self.get_message(i) for i in self._active_path]
