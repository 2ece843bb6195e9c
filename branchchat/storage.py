"""Saving and restoring conversation trees as JSON snapshots."""

from pathlib import Path

from .models import ConversationSnapshot
from .tree import ConversationTree


def snapshot_tree(tree: ConversationTree) -> ConversationSnapshot:
    """Capture a tree's conversation, messages and active path.

    Args:
        tree: The tree to capture

    Returns:
        ConversationSnapshot with messages in insertion order
    """
    return ConversationSnapshot(
        conversation=tree.conversation.model_copy(),
        messages=list(tree),
        active_path=tree.active_path,
    )


def restore_tree(snapshot: ConversationSnapshot) -> ConversationTree:
    """Rebuild a tree from a snapshot.

    Ids, paths and branch indices are kept as saved, so sibling order and
    future branch indices continue where they left off.

    Args:
        snapshot: Snapshot to rebuild from

    Returns:
        The restored ConversationTree

    Raises:
        ParentNotFoundError: If a message is listed before its parent
        InvalidActivePathError: If the saved active path is not connected
    """
    conversation = snapshot.conversation.model_copy()
    updated_at = conversation.updated_at
    tree = ConversationTree(conversation)

    for message in snapshot.messages:
        tree.attach(message.model_copy())

    tree.set_active_path(snapshot.active_path)
    tree.conversation.updated_at = updated_at
    return tree


def save_snapshot(snapshot: ConversationSnapshot, path: Path) -> None:
    """Save a snapshot to a JSON file.

    Args:
        snapshot: The snapshot to save
        path: File path to save to (parent directories are created)
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write(snapshot.model_dump_json(indent=2))


def load_snapshot(path: Path) -> ConversationSnapshot | None:
    """Load a snapshot from a JSON file.

    Args:
        path: Path to the snapshot JSON file

    Returns:
        ConversationSnapshot or None if the file doesn't exist
    """
    if not path.exists():
        return None

    with open(path, "r") as f:
        return ConversationSnapshot.model_validate_json(f.read())


def snapshot_filename(snapshot: ConversationSnapshot) -> str:
    """Default file name for a snapshot."""
    return f"conversation-{snapshot.conversation.id}.json"
