"""Tests for the view state machine."""

import pytest

from branchchat.store import TreeEvent
from branchchat.view import MAX_ZOOM, MIN_ZOOM, ViewStateMachine


@pytest.fixture
def view():
    """Fresh view state machine."""
    return ViewStateMachine()


def _zoom_until(view, delta, condition, limit=50):
    for _ in range(limit):
        if condition(view):
            return
        view.zoom(delta, ctrl_held=True)
    raise AssertionError("zoom condition never reached")


class TestInitialState:
    """Tests for the starting state."""

    def test_defaults(self, view):
        """The view starts in chat at zoom 1.0 with input shown."""
        state = view.state
        assert state.mode == "chat"
        assert state.viewport.zoom == 1.0
        assert state.viewport.zoom_phase == "snap"
        assert state.viewport.x == 0.0
        assert state.is_input_visible is True
        assert state.focus_ratio == 0.8
        assert state.selected_node_id is None

    def test_custom_focus_ratio(self):
        """Focus ratio comes from the constructor."""
        assert ViewStateMachine(focus_ratio=0.6).state.focus_ratio == 0.6


class TestSetMode:
    """Tests for set_mode."""

    def test_overview_hides_input(self, view):
        """Overview hides the input and zooms freely."""
        view.set_mode("overview")
        assert view.mode == "overview"
        assert view.state.is_input_visible is False
        assert view.viewport.zoom_phase == "free"

    def test_branch_keeps_input(self, view):
        """Branch mode keeps the input visible."""
        view.set_mode("overview")
        view.set_mode("branch")
        assert view.state.is_input_visible is True
        assert view.viewport.zoom_phase == "snap"


class TestZoom:
    """Tests for zoom transitions."""

    def test_ctrl_zoom_out_enters_overview(self, view):
        """Zooming out past the threshold enters overview."""
        _zoom_until(view, 1, lambda v: v.viewport.zoom < 0.5)

        assert view.mode == "overview"
        assert view.viewport.zoom_phase == "free"
        assert view.state.is_input_visible is False

    def test_ctrl_zoom_in_snaps_back_to_chat(self, view):
        """Zooming back in from overview snaps to chat at exactly 1.0."""
        _zoom_until(view, 1, lambda v: v.mode == "overview")
        _zoom_until(view, -1, lambda v: v.viewport.zoom >= 1.0)

        assert view.mode == "chat"
        assert view.viewport.zoom == 1.0
        assert view.viewport.zoom_phase == "snap"
        assert view.state.is_input_visible is True

    def test_threshold_itself_stays_in_chat(self, view):
        """Zoom exactly at the threshold does not enter overview."""
        for _ in range(5):
            view.zoom(1, ctrl_held=True)

        assert view.viewport.zoom == 0.5
        assert view.mode == "chat"

    def test_without_ctrl_mode_unchanged(self, view):
        """Plain wheel zoom never changes mode."""
        for _ in range(8):
            view.zoom(1, ctrl_held=False)

        assert view.viewport.zoom < 0.5
        assert view.mode == "chat"

    def test_clamped_at_bounds(self, view):
        """Zoom stays within [MIN_ZOOM, MAX_ZOOM]."""
        for _ in range(30):
            view.zoom(-1, ctrl_held=False)
        assert view.viewport.zoom == MAX_ZOOM

        for _ in range(30):
            view.zoom(1, ctrl_held=False)
        assert view.viewport.zoom == MIN_ZOOM

    def test_set_viewport_clamps(self, view):
        """Direct viewport updates are clamped too."""
        view.set_viewport(zoom=5.0, x=10.0)
        assert view.viewport.zoom == MAX_ZOOM
        assert view.viewport.x == 10.0


class TestSelection:
    """Tests for select_node, pan, toggle and reset."""

    def test_select_in_chat(self, view):
        """Selecting in chat only records the node."""
        view.select_node("node-1")
        assert view.state.selected_node_id == "node-1"
        assert view.mode == "chat"

    def test_select_in_overview_returns_to_chat(self, view):
        """Selecting in overview returns to chat at zoom 1.0."""
        _zoom_until(view, 1, lambda v: v.mode == "overview")

        view.select_node("node-1")

        assert view.mode == "chat"
        assert view.viewport.zoom == 1.0
        assert view.viewport.zoom_phase == "snap"
        assert view.state.is_input_visible is True

    def test_clear_selection_in_overview(self, view):
        """Clearing the selection keeps the overview."""
        view.set_mode("overview")
        view.select_node(None)
        assert view.mode == "overview"

    def test_pan(self, view):
        """Pan translates by the deltas."""
        view.pan(10, -5)
        view.pan(2.5, 1)
        assert view.viewport.x == 12.5
        assert view.viewport.y == -4

    def test_toggle_input(self, view):
        """Toggling flips visibility; an explicit value is applied."""
        view.toggle_input_visibility()
        assert view.state.is_input_visible is False
        view.toggle_input_visibility()
        assert view.state.is_input_visible is True
        view.toggle_input_visibility(False)
        assert view.state.is_input_visible is False

    def test_reset(self, view):
        """Reset restores the initial state."""
        view.set_mode("overview")
        view.pan(3, 4)
        view.select_node("node-1")

        view.reset()

        assert view.mode == "chat"
        assert view.viewport.x == 0.0
        assert view.state.selected_node_id is None


class TestTreeEvents:
    """Tests for following store events."""

    def test_branch_created_enters_branch_mode(self, view):
        """A new branch switches chat to branch mode."""
        view.handle_tree_event(TreeEvent("branch_created", "conv-1", "m2"))
        assert view.mode == "branch"

    def test_branch_created_in_overview_ignored(self, view):
        """Overview is not interrupted by new branches."""
        view.set_mode("overview")
        view.handle_tree_event(TreeEvent("branch_created", "conv-1", "m2"))
        assert view.mode == "overview"

    def test_follows_store(self, view, store):
        """Subscribed to a store, the view tracks the active leaf."""
        store.subscribe(view.handle_tree_event)
        store.create_conversation()
        root = store.insert_message(None, "user", "Hi", "completed")
        store.insert_message(root, "assistant", "One", "completed")
        assert view.mode == "chat"

        second = store.insert_message(root, "assistant", "Two", "completed")

        assert view.mode == "branch"
        assert view.state.selected_node_id == second

    def test_new_conversation_clears_selection(self, view, store):
        """Creating a conversation drops the selection and keeps the viewport."""
        store.subscribe(view.handle_tree_event)
        store.create_conversation()
        root = store.insert_message(None, "user", "Hi", "completed")
        view.set_mode("overview")
        view.pan(10.0, -5.0)
        assert view.state.selected_node_id == root

        store.create_conversation()

        assert view.state.selected_node_id is None
        assert view.mode == "overview"
        assert view.viewport.x == 10.0
        assert view.viewport.y == -5.0

    def test_deleted_conversation_clears_selection(self, view, store):
        """Deleting a conversation drops the selection only."""
        store.subscribe(view.handle_tree_event)
        conversation_id = store.create_conversation()
        store.insert_message(None, "user", "Hi", "completed")
        view.set_mode("branch")

        store.delete_conversation(conversation_id)

        assert view.state.selected_node_id is None
        assert view.mode == "branch"
