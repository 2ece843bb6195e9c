"""Error kinds raised by the conversation tree, engine and provider layer."""


class BranchChatError(Exception):
    """Base class for all branch-chat errors."""


class NoActiveConversationError(BranchChatError):
    """An operation needed an active conversation but none is selected."""

    def __init__(self, message: str = "No active conversation"):
        super().__init__(message)


class ConversationNotFoundError(BranchChatError):
    """A conversation id is not known to the store."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ParentNotFoundError(BranchChatError):
    """The parent referenced by an insertion is absent from the tree."""

    def __init__(self, parent_id: str):
        self.parent_id = parent_id
        super().__init__(f"Parent message not found: {parent_id}")


class MessageNotFoundError(BranchChatError):
    """A message id is absent from the tree."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class InvalidActivePathError(BranchChatError):
    """An active path is not a connected root-to-node sequence."""


class InvalidIdentifierError(BranchChatError, ValueError):
    """An identifier contains characters the path encoding cannot represent."""


class CompletionFailedError(BranchChatError):
    """A provider failed to produce a completion.

    Attributes:
        provider: Provider tag value the request was sent to
        code: Short machine-readable failure code (e.g. RATE_LIMIT)
        retryable: Whether resending the same request may succeed
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        code: str = "PROVIDER_ERROR",
        retryable: bool = False,
    ):
        self.message = message
        self.provider = provider
        self.code = code
        self.retryable = retryable
        super().__init__(message)
