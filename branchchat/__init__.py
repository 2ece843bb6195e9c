"""Branching conversation trees for chat applications.

## Components

- paths.py: Path labels for ancestor/descendant queries
- tree.py: ConversationTree, one conversation's messages in an arena
- store.py: ConversationStore, all trees plus the active pointer and events
- detection.py: Multi-question detection for automatic branching
- engine.py: BranchingEngine, message insertion and reply filling
- view.py: ViewStateMachine, navigation mode and viewport
- llm/: Completion providers (anthropic, openai, ollama)
- config.py / storage.py: YAML configuration and JSON snapshots
"""

from .detection import DetectionResult, detect, should_auto_branch
from .engine import BranchingEngine
from .errors import (
    BranchChatError,
    CompletionFailedError,
    ConversationNotFoundError,
    InvalidActivePathError,
    InvalidIdentifierError,
    MessageNotFoundError,
    NoActiveConversationError,
    ParentNotFoundError,
)
from .models import BranchNode, Conversation, ConversationSnapshot, Message, SendResult
from .store import ConversationStore, TreeEvent
from .tree import ConversationTree
from .view import ViewState, ViewStateMachine, Viewport

__version__ = "0.1.0"

__all__ = [
    # Model
    "Message",
    "BranchNode",
    "Conversation",
    "ConversationSnapshot",
    "SendResult",
    "ConversationTree",
    "ConversationStore",
    "TreeEvent",
    # Detection
    "DetectionResult",
    "detect",
    "should_auto_branch",
    # Engine
    "BranchingEngine",
    # View
    "ViewState",
    "Viewport",
    "ViewStateMachine",
    # Errors
    "BranchChatError",
    "NoActiveConversationError",
    "ConversationNotFoundError",
    "ParentNotFoundError",
    "MessageNotFoundError",
    "InvalidActivePathError",
    "InvalidIdentifierError",
    "CompletionFailedError",
]
