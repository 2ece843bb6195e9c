"""Tests for saving and restoring conversation trees."""

import json

import pytest

from branchchat.errors import ParentNotFoundError
from branchchat.models import Conversation
from branchchat.storage import (
    load_snapshot,
    restore_tree,
    save_snapshot,
    snapshot_filename,
    snapshot_tree,
)
from branchchat.tree import ConversationTree


@pytest.fixture
def tree():
    """Tree with one fork below the first reply."""
    tree = ConversationTree(Conversation(id="conv-1", title="Saved", user_id="user-1"))
    u1 = tree.insert(None, "user", "Hi", "completed").id
    a1 = tree.insert(u1, "assistant", "Hello!", "completed", model="claude-test").id
    tree.insert(a1, "user", "Question A", "completed")
    u3 = tree.insert(a1, "user", "Question B", "completed").id
    tree.insert(u3, "assistant", "", "error")
    tree.update(tree.active_path[-1], error="Rate limit exceeded.")
    return tree


class TestSnapshot:
    """Tests for snapshot_tree / restore_tree."""

    def test_snapshot_contents(self, tree):
        """Snapshots list every message in insertion order."""
        snapshot = snapshot_tree(tree)

        assert snapshot.conversation.id == "conv-1"
        assert snapshot.message_count == 5
        assert [m.content for m in snapshot.messages][:3] == ["Hi", "Hello!", "Question A"]
        assert snapshot.active_path == tree.active_path

    def test_restore_matches_original(self, tree):
        """A restored tree has the same messages, nodes and path."""
        restored = restore_tree(snapshot_tree(tree))

        assert restored.messages == tree.messages
        assert restored.nodes == tree.nodes
        assert restored.active_path == tree.active_path
        assert restored.conversation == tree.conversation

    def test_error_details_survive(self, tree):
        """Failed replies keep their error text."""
        restored = restore_tree(snapshot_tree(tree))
        failed = restored.get_message(restored.active_path[-1])

        assert failed.status == "error"
        assert failed.error == "Rate limit exceeded."

    def test_branch_index_continues_after_restore(self, tree):
        """New siblings rank after the saved ones."""
        fork = tree.active_path[1]
        restored = restore_tree(snapshot_tree(tree))

        message = restored.insert(fork, "user", "Question C", "completed")

        assert message.branch_index == 2

    def test_parent_after_child_rejected(self, tree):
        """Messages must be listed parent first."""
        snapshot = snapshot_tree(tree)
        snapshot.messages.reverse()
        snapshot.active_path = []

        with pytest.raises(ParentNotFoundError):
            restore_tree(snapshot)

    def test_snapshot_is_detached(self, tree):
        """Changing the tree later does not alter a snapshot."""
        snapshot = snapshot_tree(tree)
        tree.insert(None, "user", "New root", "completed")

        assert snapshot.message_count == 5


class TestSaveLoad:
    """Tests for save_snapshot / load_snapshot."""

    def test_save_and_load(self, tree, tmp_path):
        """Snapshots round-trip through a JSON file."""
        path = tmp_path / "nested" / "dir" / "conversation.json"

        save_snapshot(snapshot_tree(tree), path)
        loaded = load_snapshot(path)

        assert path.exists()
        assert loaded == snapshot_tree(tree)

    def test_file_is_json(self, tree, tmp_path):
        """Saved files are plain JSON."""
        path = tmp_path / "conversation.json"
        save_snapshot(snapshot_tree(tree), path)

        data = json.loads(path.read_text())

        assert data["conversation"]["title"] == "Saved"
        assert len(data["messages"]) == 5
        assert data["messages"][0]["path"] == data["messages"][0]["id"].replace("-", "_")

    def test_load_missing(self, tmp_path):
        """Missing files load as None."""
        assert load_snapshot(tmp_path / "missing.json") is None

    def test_filename(self, tree):
        """File names embed the conversation id."""
        assert snapshot_filename(snapshot_tree(tree)) == "conversation-conv-1.json"
