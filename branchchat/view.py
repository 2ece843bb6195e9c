"""Navigation state: view mode and viewport (pan/zoom).

The view is process-wide rather than per conversation. It does not look at
tree content, but it follows selection and branch events published by the
ConversationStore (see ``handle_tree_event``).
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field

from .store import TreeEvent

logger = logging.getLogger(__name__)

ViewMode = Literal["chat", "branch", "overview"]
ZoomPhase = Literal["snap", "free"]

MIN_ZOOM = 0.1
MAX_ZOOM = 2.0
SNAP_ZOOM_THRESHOLD = 0.5
ZOOM_STEP = 0.1
DEFAULT_FOCUS_RATIO = 0.8


class Viewport(BaseModel):
    """Camera position over the conversation canvas."""

    x: float = 0.0
    y: float = 0.0
    zoom: float = Field(1.0, ge=MIN_ZOOM, le=MAX_ZOOM)
    zoom_phase: ZoomPhase = "snap"


class ViewState(BaseModel):
    """Full navigation state."""

    mode: ViewMode = "chat"
    viewport: Viewport = Field(default_factory=Viewport)
    is_input_visible: bool = True
    focus_ratio: float = Field(DEFAULT_FOCUS_RATIO, gt=0.0, le=1.0)
    selected_node_id: str | None = None


def _clamp_zoom(zoom: float) -> float:
    # Rounded so repeated 0.1 steps land exactly on the thresholds
    return round(max(MIN_ZOOM, min(MAX_ZOOM, zoom)), 2)


class ViewStateMachine:
    """Transitions between chat, branch and overview modes."""

    def __init__(self, focus_ratio: float = DEFAULT_FOCUS_RATIO):
        self._focus_ratio = focus_ratio
        self._state = ViewState(focus_ratio=focus_ratio)

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def mode(self) -> ViewMode:
        return self._state.mode

    @property
    def viewport(self) -> Viewport:
        return self._state.viewport

    def _replace(self, viewport: dict | None = None, **changes) -> None:
        if viewport:
            changes["viewport"] = self._state.viewport.model_copy(update=viewport)
        self._state = self._state.model_copy(update=changes)

    def set_mode(self, mode: ViewMode) -> None:
        """Switch mode; input is hidden only in overview, which zooms freely."""
        self._replace(
            mode=mode,
            is_input_visible=mode != "overview",
            viewport={"zoom_phase": "free" if mode == "overview" else "snap"},
        )
        logger.debug(f"View mode -> {mode}")

    def set_viewport(self, **changes) -> None:
        """Merge x, y, zoom or zoom_phase into the viewport."""
        if "zoom" in changes:
            changes["zoom"] = _clamp_zoom(changes["zoom"])
        self._replace(viewport=changes)

    def zoom(self, delta: float, ctrl_held: bool) -> None:
        """Apply one wheel step.

        A positive delta zooms out, anything else zooms in. With ctrl held,
        zooming below the snap threshold enters overview, and zooming back to
        1.0 or more from overview snaps to chat at exactly 1.0.
        """
        step = -ZOOM_STEP if delta > 0 else ZOOM_STEP
        new_zoom = _clamp_zoom(self._state.viewport.zoom + step)
        new_phase = self._state.viewport.zoom_phase
        new_mode = self._state.mode

        if ctrl_held:
            if new_zoom < SNAP_ZOOM_THRESHOLD:
                new_mode = "overview"
                new_phase = "free"
            elif self._state.mode == "overview" and new_zoom >= 1.0:
                new_mode = "chat"
                new_phase = "snap"
                new_zoom = 1.0

        if new_mode != self._state.mode:
            logger.debug(f"View mode -> {new_mode} at zoom {new_zoom}")

        self._replace(
            mode=new_mode,
            is_input_visible=new_mode != "overview",
            viewport={"zoom": new_zoom, "zoom_phase": new_phase},
        )

    def pan(self, dx: float, dy: float) -> None:
        """Translate the viewport; unbounded."""
        viewport = self._state.viewport
        self._replace(viewport={"x": viewport.x + dx, "y": viewport.y + dy})

    def select_node(self, node_id: str | None) -> None:
        """Select a node; picking one in overview returns to chat at zoom 1.0."""
        if node_id is not None and self._state.mode == "overview":
            self._replace(
                selected_node_id=node_id,
                mode="chat",
                is_input_visible=True,
                viewport={"zoom": 1.0, "zoom_phase": "snap"},
            )
            logger.debug(f"Selected {node_id}, leaving overview")
            return
        self._replace(selected_node_id=node_id)

    def toggle_input_visibility(self, visible: bool | None = None) -> None:
        if visible is None:
            visible = not self._state.is_input_visible
        self._replace(is_input_visible=visible)

    def reset(self) -> None:
        """Return to the initial state."""
        self._state = ViewState(focus_ratio=self._focus_ratio)

    def handle_tree_event(self, event: TreeEvent) -> None:
        """React to a ConversationStore event.

        Suitable for ``store.subscribe(view.handle_tree_event)``. Switching
        conversations drops the selection but keeps mode and viewport.
        """
        if event.kind in ("conversation_created", "conversation_deleted"):
            self._replace(selected_node_id=None)
        elif event.kind == "branch_created":
            if self._state.mode == "chat":
                self.set_mode("branch")
        elif event.kind == "active_path_changed":
            self.select_node(event.message_id)
