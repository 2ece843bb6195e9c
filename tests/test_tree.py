"""Tests for the per-conversation tree."""

import pytest

from branchchat import paths
from branchchat.errors import (
    InvalidActivePathError,
    InvalidIdentifierError,
    MessageNotFoundError,
    ParentNotFoundError,
)
from branchchat.models import Conversation
from branchchat.tree import ConversationTree


@pytest.fixture
def tree():
    """Empty tree."""
    return ConversationTree(Conversation(id="conv-1", title="Test"))


@pytest.fixture
def branched(tree):
    """Tree with a fork under the first reply.

    u1 -> a1 -> u2 -> a2
              \\-> u3 -> a3
    """
    u1 = tree.insert(None, "user", "Hi", "completed").id
    a1 = tree.insert(u1, "assistant", "Hello!", "completed").id
    u2 = tree.insert(a1, "user", "Question A", "completed").id
    a2 = tree.insert(u2, "assistant", "Answer A", "completed").id
    u3 = tree.insert(a1, "user", "Question B", "completed").id
    a3 = tree.insert(u3, "assistant", "Answer B", "completed").id
    return tree, dict(u1=u1, a1=a1, u2=u2, a2=a2, u3=u3, a3=a3)


class TestInsert:
    """Tests for ConversationTree.insert."""

    def test_root_message(self, tree):
        """First message becomes the root."""
        message = tree.insert(None, "user", "Hi", "completed")
        node = tree.get_node(message.id)

        assert message.parent_id is None
        assert message.branch_index == 0
        assert message.conversation_id == "conv-1"
        assert message.path == paths.encode_segment(message.id)
        assert node.depth == 0
        assert node.is_active is True
        assert tree.conversation.root_message_id == message.id
        assert tree.active_path == [message.id]

    def test_child_message(self, tree):
        """Children link into the parent and extend its path."""
        root = tree.insert(None, "user", "Hi", "completed")
        child = tree.insert(root.id, "assistant", "", "pending", model="m")

        assert child.parent_id == root.id
        assert child.path == f"{root.path}.{paths.encode_segment(child.id)}"
        assert child.model == "m"
        assert tree.get_node(child.id).depth == 1
        assert tree.get_node(root.id).children == [child.id]
        assert tree.active_path == [root.id, child.id]

    def test_explicit_id(self, tree):
        """An explicit id is used as given."""
        message = tree.insert(None, "user", "Hi", "completed", message_id="custom-1")
        assert message.id == "custom-1"
        assert "custom-1" in tree

    def test_unknown_parent_leaves_tree_unchanged(self, tree):
        """Inserting under a missing parent fails without side effects."""
        root = tree.insert(None, "user", "Hi", "completed")

        with pytest.raises(ParentNotFoundError):
            tree.insert("nonexistent-id", "user", "Orphan", "completed")

        assert len(tree) == 1
        assert tree.active_path == [root.id]
        assert tree.get_node(root.id).children == []

    def test_unencodable_id_leaves_tree_unchanged(self, tree):
        """Ids the path encoding rejects are refused before insertion."""
        with pytest.raises(InvalidIdentifierError):
            tree.insert(None, "user", "Hi", "completed", message_id="bad_id")

        assert len(tree) == 0
        assert tree.conversation.root_message_id is None

    def test_duplicate_id_rejected(self, tree):
        """The same id cannot be inserted twice."""
        tree.insert(None, "user", "Hi", "completed", message_id="dup")
        with pytest.raises(ValueError):
            tree.insert(None, "user", "Hi again", "completed", message_id="dup")


class TestBranchIndex:
    """Tests for sibling ranking."""

    def test_sequential_indices(self, tree):
        """Siblings get 0, 1, 2 in insertion order."""
        root = tree.insert(None, "user", "Hi", "completed").id
        indices = [tree.insert(root, "assistant", str(i), "completed").branch_index for i in range(3)]
        assert indices == [0, 1, 2]

    def test_no_reuse_after_deleting_middle_sibling(self, tree):
        """Deleting a sibling does not free its index."""
        root = tree.insert(None, "user", "Hi", "completed").id
        siblings = [tree.insert(root, "assistant", str(i), "completed").id for i in range(3)]

        tree.delete_subtree(siblings[1])
        newest = tree.insert(root, "assistant", "again", "completed")

        assert newest.branch_index == 3
        assert [m.branch_index for m in tree.children(root)] == [0, 2, 3]

    def test_second_root_is_sibling_of_first(self, tree):
        """A second root message ranks after the first."""
        first = tree.insert(None, "user", "Hi", "completed")
        second = tree.insert(None, "user", "Hello", "completed")

        assert second.branch_index == 1
        assert [m.id for m in tree.roots()] == [first.id, second.id]


class TestRootMessageId:
    """Tests for root_message_id stability."""

    def test_unchanged_by_later_inserts(self, branched):
        """Later insertions keep the first root."""
        tree, ids = branched
        tree.insert(None, "user", "Another root", "completed")
        assert tree.conversation.root_message_id == ids["u1"]

    def test_unchanged_by_deleting_root(self, branched):
        """Deleting the root does not reassign root_message_id."""
        tree, ids = branched
        tree.delete_subtree(ids["u1"])
        assert len(tree) == 0
        assert tree.conversation.root_message_id == ids["u1"]


class TestAncestry:
    """Path ancestry matches the parent chain."""

    def test_ancestor_paths(self, branched):
        """Every message on the parent chain has an ancestor path."""
        tree, ids = branched
        a3 = tree.get_message(ids["a3"])

        for ancestor_id in ("u1", "a1", "u3"):
            assert paths.is_ancestor(tree.get_message(ids[ancestor_id]).path, a3.path)

    def test_off_chain_not_ancestors(self, branched):
        """Messages on a sibling branch are not ancestors."""
        tree, ids = branched
        a3 = tree.get_message(ids["a3"])

        for other_id in ("u2", "a2", "a3"):
            assert not paths.is_ancestor(tree.get_message(ids[other_id]).path, a3.path)


class TestUpdate:
    """Tests for ConversationTree.update."""

    def test_merges_content_fields(self, tree):
        """Content, status and model are merged in."""
        root = tree.insert(None, "user", "Hi", "completed").id
        placeholder = tree.insert(root, "assistant", "", "pending")

        updated = tree.update(placeholder.id, content="Hello", status="completed", model="m2")

        assert updated.content == "Hello"
        assert updated.status == "completed"
        assert updated.model == "m2"
        assert updated.id == placeholder.id
        assert updated.parent_id == root
        assert updated.branch_index == placeholder.branch_index
        assert tree.get_message(placeholder.id).content == "Hello"

    def test_fixed_fields_rejected(self, tree):
        """Tree linkage cannot be changed through update."""
        root = tree.insert(None, "user", "Hi", "completed").id
        with pytest.raises(ValueError):
            tree.update(root, parent_id="elsewhere")

    def test_missing_message(self, tree):
        """Updating an unknown id fails."""
        with pytest.raises(MessageNotFoundError):
            tree.update("missing", content="x")


class TestActivePath:
    """Tests for set_active_path and connectivity."""

    def test_sets_flags(self, branched):
        """Nodes on the path are active, all others inactive."""
        tree, ids = branched
        path = [ids["u1"], ids["a1"], ids["u2"]]

        tree.set_active_path(path)

        nodes = tree.nodes
        for message_id, node in nodes.items():
            assert node.is_active is (message_id in path)
        assert tree.active_path == path

    def test_insert_under_non_leaf_keeps_path_connected(self, branched):
        """Forking moves the active path onto the new branch."""
        tree, ids = branched
        tree.set_active_path([ids["u1"], ids["a1"], ids["u2"], ids["a2"]])

        new = tree.insert(ids["a1"], "user", "Question C", "completed")

        assert tree.active_path == [ids["u1"], ids["a1"], new.id]
        path = tree.active_path
        for parent_id, child_id in zip(path, path[1:]):
            assert tree.get_message(child_id).parent_id == parent_id

    def test_disconnected_path_rejected(self, branched):
        """A path skipping a level is rejected."""
        tree, ids = branched
        with pytest.raises(InvalidActivePathError):
            tree.set_active_path([ids["u1"], ids["u2"]])

    def test_path_must_start_at_root(self, branched):
        """A path starting mid-tree is rejected."""
        tree, ids = branched
        with pytest.raises(InvalidActivePathError):
            tree.set_active_path([ids["a1"], ids["u2"]])

    def test_unknown_id_rejected(self, branched):
        """Unknown ids are reported."""
        tree, ids = branched
        with pytest.raises(MessageNotFoundError):
            tree.set_active_path([ids["u1"], "missing"])

    def test_empty_path(self, branched):
        """An empty path deactivates everything."""
        tree, _ = branched
        tree.set_active_path([])
        assert tree.active_path == []
        assert not any(node.is_active for node in tree.nodes.values())


class TestDeleteSubtree:
    """Tests for delete_subtree."""

    def test_removes_descendants(self, branched):
        """The message and everything below it are removed."""
        tree, ids = branched

        removed = tree.delete_subtree(ids["u2"])

        assert removed == [ids["u2"], ids["a2"]]
        assert ids["u2"] not in tree
        assert ids["a2"] not in tree
        assert tree.get_node(ids["a1"]).children == [ids["u3"]]
        assert len(tree) == 4

    def test_truncates_active_path(self, branched):
        """The active path stops before the first removed message."""
        tree, ids = branched
        assert tree.active_path[-1] == ids["a3"]

        tree.delete_subtree(ids["u3"])

        assert tree.active_path == [ids["u1"], ids["a1"]]
        assert tree.get_node(ids["a1"]).is_active is True

    def test_active_path_elsewhere_untouched(self, branched):
        """Deleting another branch leaves the active path alone."""
        tree, ids = branched
        before = tree.active_path

        tree.delete_subtree(ids["u2"])

        assert tree.active_path == before

    def test_missing_message(self, tree):
        """Deleting an unknown id fails."""
        with pytest.raises(MessageNotFoundError):
            tree.delete_subtree("missing")


class TestQueries:
    """Tests for read-only tree queries."""

    def test_ancestors(self, branched):
        """Ancestors run from the root down."""
        tree, ids = branched
        inclusive = [m.id for m in tree.ancestors(ids["a3"])]
        exclusive = [m.id for m in tree.ancestors(ids["a3"], inclusive=False)]

        assert inclusive == [ids["u1"], ids["a1"], ids["u3"], ids["a3"]]
        assert exclusive == [ids["u1"], ids["a1"], ids["u3"]]

    def test_descendants(self, branched):
        """Descendants are listed in insertion order."""
        tree, ids = branched
        assert [m.id for m in tree.descendants(ids["a1"])] == [
            ids["u2"], ids["a2"], ids["u3"], ids["a3"],
        ]
        assert tree.descendants(ids["a3"]) == []

    def test_children_and_branch_count(self, branched):
        """Children are listed in branch order."""
        tree, ids = branched
        assert [m.id for m in tree.children(ids["a1"])] == [ids["u2"], ids["u3"]]
        assert tree.branch_count(ids["a1"]) == 2
        assert tree.branch_count(ids["a2"]) == 0

    def test_branch_points_and_leaves(self, branched):
        """Only a1 forks; a2 and a3 are leaves."""
        tree, ids = branched
        assert [m.id for m in tree.branch_points()] == [ids["a1"]]
        assert [m.id for m in tree.leaves()] == [ids["a2"], ids["a3"]]

    def test_history_for(self, branched):
        """History follows the branch and skips unfinished replies."""
        tree, ids = branched
        pending = tree.insert(ids["a3"], "assistant", "", "pending").id

        assert tree.history_for(ids["a3"]) == [
            ("user", "Hi"),
            ("assistant", "Hello!"),
            ("user", "Question B"),
            ("assistant", "Answer B"),
        ]
        assert tree.history_for(pending) == tree.history_for(ids["a3"])
        assert tree.history_for(ids["u3"], inclusive=False) == [
            ("user", "Hi"),
            ("assistant", "Hello!"),
        ]

    def test_latest_leaf(self, branched):
        """latest_leaf follows the newest child."""
        tree, ids = branched
        assert tree.latest_leaf(ids["u1"]) == ids["a3"]
        assert tree.latest_leaf(ids["u2"]) == ids["a2"]

    def test_messages_and_nodes_match(self, branched):
        """Every message has a node with the same id."""
        tree, _ = branched
        assert list(tree.messages) == list(tree.nodes)

    def test_children_consistent_with_parent_ids(self, branched):
        """Children lists agree with parent_id in both directions."""
        tree, _ = branched
        for message_id, node in tree.nodes.items():
            for child_id in node.children:
                assert tree.get_message(child_id).parent_id == message_id
        for message in tree:
            if message.parent_id is not None:
                assert message.id in tree.get_node(message.parent_id).children
