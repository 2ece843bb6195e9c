"""Turn user input into branches of the active conversation tree.

The engine runs multi-question detection, inserts user/assistant pairs
through the store and fills each assistant placeholder from a completion
provider. Provider failures never escape: they are recorded on the
placeholder (status ``error``) so sibling branches are unaffected.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from .config import BranchingSettings, LLMSettings
from .detection import detect, should_auto_branch
from .errors import BranchChatError, CompletionFailedError, MessageNotFoundError
from .llm import Cancellation, ChatMessage, CompletionRequest, LLMManager, StreamChunk
from .models import BranchPair, Message, SendResult
from .store import ConversationStore

logger = logging.getLogger(__name__)

ABORTED_ERROR = "Request was cancelled."


@dataclass
class ReplyHandle:
    """Cancellation handle for one in-flight assistant reply."""

    assistant_id: str
    conversation_id: str
    cancellation: Cancellation = field(default_factory=Cancellation)

    @property
    def aborted(self) -> bool:
        return self.cancellation.cancelled

    def abort(self) -> None:
        self.cancellation.cancel()


class BranchingEngine:
    """Inserts messages and branches, and fills assistant replies."""

    def __init__(
        self,
        store: ConversationStore,
        llm: LLMManager | None = None,
        llm_settings: LLMSettings | None = None,
        branching: BranchingSettings | None = None,
    ):
        self.store = store
        self.llm = llm or LLMManager()
        self.llm_settings = llm_settings or LLMSettings()
        self.branching = branching or BranchingSettings()
        self._in_flight: dict[str, ReplyHandle] = {}

    @property
    def provider(self):
        return self.llm_settings.provider

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_message(
        self,
        conversation_id: str,
        text: str,
        model: str | None = None,
        complete: bool = True,
    ) -> SendResult:
        """Add user input to a conversation, branching on multiple questions.

        The parent is the last message on the active path. When the input
        holds several questions (and detection is confident enough), each
        question gets its own user message and assistant placeholder under
        that parent. Insertion is all-or-nothing: if any pair fails to
        insert, pairs already added by this call are removed again.

        Args:
            conversation_id: Conversation to send to (becomes active)
            text: Raw user input
            model: Model for the replies (configured default if omitted)
            complete: Fill the placeholders before returning

        Returns:
            SendResult listing the inserted branches

        Raises:
            ValueError: If text is blank
            ConversationNotFoundError: If the conversation does not exist
            ParentNotFoundError: If the active path points at a missing message
        """
        if not text.strip():
            raise ValueError("Message content must not be empty")

        self.store.set_active_conversation(conversation_id)
        previous_path = self.store.get_active_path()
        parent_id = previous_path[-1] if previous_path else None

        detection = detect(text)
        auto = self.branching.auto_branch and should_auto_branch(
            detection, self.branching.confidence_threshold
        )
        questions = detection.questions if auto else [text]
        model = model or self.llm_settings.resolved_model

        if auto:
            logger.info(
                f"Auto-branching into {len(questions)} questions "
                f"({detection.strategy}, confidence {detection.confidence:.2f})"
            )

        result = SendResult(
            conversation_id=conversation_id,
            parent_id=parent_id,
            auto_branched=auto,
            confidence=detection.confidence,
        )
        inserted_user_ids: list[str] = []
        try:
            for question in questions:
                user_id = self.store.insert_message(
                    parent_id, "user", question, "completed", conversation_id=conversation_id
                )
                inserted_user_ids.append(user_id)
                assistant_id = self.store.insert_message(
                    user_id,
                    "assistant",
                    "",
                    "pending",
                    model=model,
                    conversation_id=conversation_id,
                )
                result.branches.append(BranchPair(user_id=user_id, assistant_id=assistant_id))
        except BranchChatError:
            self._rollback(conversation_id, inserted_user_ids, previous_path)
            raise

        if complete:
            self.fill_replies(result)
        return result

    def _rollback(
        self, conversation_id: str, user_ids: list[str], previous_path: list[str]
    ) -> None:
        for user_id in reversed(user_ids):
            self.store.delete_message_subtree(user_id, conversation_id)
        messages = self.store.get_messages(conversation_id)
        if all(message_id in messages for message_id in previous_path):
            self.store.set_active_path(previous_path)
        logger.warning(f"Rolled back {len(user_ids)} partially inserted branches")

    def regenerate(self, assistant_id: str, complete: bool = True) -> SendResult:
        """Add a new sibling reply next to an existing assistant message.

        Raises:
            MessageNotFoundError: If the message is absent
            ValueError: If the message is not an assistant reply to a user message
        """
        message = self._get(assistant_id)
        if message.role != "assistant" or message.parent_id is None:
            raise ValueError(f"Only assistant replies can be regenerated: {assistant_id}")

        self.store.create_branch(message.parent_id)
        new_id = self.store.insert_message(
            message.parent_id,
            "assistant",
            "",
            "pending",
            model=message.model or self.llm_settings.resolved_model,
        )
        result = SendResult(
            conversation_id=message.conversation_id,
            parent_id=message.parent_id,
            branches=[BranchPair(user_id=message.parent_id, assistant_id=new_id)],
        )
        if complete:
            self.fill_replies(result)
        return result

    def edit_message(self, user_id: str, new_text: str, complete: bool = True) -> SendResult:
        """Fork an edited copy of a user message next to the original.

        The original message and its replies stay as they are.
        """
        if not new_text.strip():
            raise ValueError("Message content must not be empty")

        message = self._get(user_id)
        if message.role != "user":
            raise ValueError(f"Only user messages can be edited: {user_id}")

        if message.parent_id is not None:
            self.store.create_branch(message.parent_id)
        new_user_id = self.store.insert_message(message.parent_id, "user", new_text, "completed")
        assistant_id = self.store.insert_message(
            new_user_id, "assistant", "", "pending", model=self.llm_settings.resolved_model
        )
        result = SendResult(
            conversation_id=message.conversation_id,
            parent_id=message.parent_id,
            branches=[BranchPair(user_id=new_user_id, assistant_id=assistant_id)],
        )
        if complete:
            self.fill_replies(result)
        return result

    # -------------------------------------------------------------------------
    # Replies
    # -------------------------------------------------------------------------

    def fill_replies(self, result: SendResult) -> list[Message]:
        """Fill every placeholder of a send, streaming if configured.

        Replies are written to the conversation the send went to, even if
        another conversation has become active in the meantime.
        """
        fill = self.stream_reply if self.llm_settings.stream else self.complete_reply
        return [
            fill(assistant_id, conversation_id=result.conversation_id)
            for assistant_id in result.assistant_ids
        ]

    def build_request(
        self, assistant_id: str, conversation_id: str | None = None
    ) -> CompletionRequest:
        """Completion request for a placeholder from its ancestors' dialogue."""
        tree = self.store.resolve(conversation_id)
        message = tree.get_message(assistant_id)

        chat: list[ChatMessage] = []
        if self.llm_settings.system_prompt:
            chat.append(ChatMessage(role="system", content=self.llm_settings.system_prompt))
        for role, content in tree.history_for(assistant_id, inclusive=False):
            chat.append(ChatMessage(role=role, content=content))

        return CompletionRequest(
            model=message.model or self.llm_settings.resolved_model,
            messages=chat,
            max_tokens=self.llm_settings.max_tokens,
            temperature=self.llm_settings.temperature,
        )

    def complete_reply(self, assistant_id: str, conversation_id: str | None = None) -> Message:
        """Fill a placeholder with a single non-streaming completion.

        Messages that are no longer placeholders (already answered, or
        cancelled before they started) are returned unchanged.
        """
        message = self._get(assistant_id, conversation_id)
        if not message.is_placeholder:
            logger.debug(f"Reply {assistant_id} is already {message.status}, skipping")
            return message

        conversation_id = message.conversation_id
        request = self.build_request(assistant_id, conversation_id)
        handle = self._start(assistant_id, conversation_id)
        try:
            response = self.llm.complete(self.provider, request, handle.cancellation)
        except CompletionFailedError as e:
            return self._fail(handle, e)
        finally:
            self._in_flight.pop(assistant_id, None)

        if handle.aborted:
            return self._fail(handle, None)

        logger.info(f"Completed reply {assistant_id} ({len(response.content)} chars)")
        return self.store.update_message_content(
            assistant_id,
            conversation_id,
            content=response.content,
            status="completed",
            model=response.model,
            error=None,
        )

    def stream_reply(
        self,
        assistant_id: str,
        on_chunk: Callable[[StreamChunk], None] | None = None,
        conversation_id: str | None = None,
    ) -> Message:
        """Fill a placeholder chunk by chunk.

        The message switches to ``streaming`` with the first chunk and to
        ``completed`` on the done chunk (or when the stream simply ends).
        On failure or abort it keeps the partial content and ends in
        ``error``. Messages that are no longer placeholders are returned
        unchanged.
        """
        message = self._get(assistant_id, conversation_id)
        if not message.is_placeholder:
            logger.debug(f"Reply {assistant_id} is already {message.status}, skipping")
            return message

        conversation_id = message.conversation_id
        request = self.build_request(assistant_id, conversation_id)
        handle = self._start(assistant_id, conversation_id)
        content = ""
        try:
            for chunk in self.llm.stream(self.provider, request, handle.cancellation):
                if handle.aborted:
                    break
                if chunk.content:
                    content += chunk.content
                    self.store.update_message_content(
                        assistant_id,
                        conversation_id,
                        content=content,
                        status="streaming",
                        model=chunk.model or request.model,
                    )
                if on_chunk is not None:
                    on_chunk(chunk)
                if chunk.done:
                    break
        except CompletionFailedError as e:
            return self._fail(handle, e)
        finally:
            self._in_flight.pop(assistant_id, None)

        if handle.aborted:
            return self._fail(handle, None)

        logger.info(f"Streamed reply {assistant_id} ({len(content)} chars)")
        return self.store.update_message_content(
            assistant_id, conversation_id, content=content, status="completed", error=None
        )

    def abort(self, assistant_id: str | None = None, conversation_id: str | None = None) -> None:
        """Cancel in-flight replies.

        With an id, only that reply is cancelled; a placeholder that never
        started is marked as failed right away (looked up in
        ``conversation_id``, the active conversation by default). Without an
        id, every reply in flight is cancelled.
        """
        if assistant_id is None:
            for handle in list(self._in_flight.values()):
                handle.abort()
            return

        handle = self._in_flight.get(assistant_id)
        if handle is not None:
            handle.abort()
            return

        message = self.store.get_messages(conversation_id).get(assistant_id)
        if message is not None and message.is_placeholder:
            self.store.update_message_content(
                assistant_id, message.conversation_id, status="error", error=ABORTED_ERROR
            )

    def _start(self, assistant_id: str, conversation_id: str) -> ReplyHandle:
        handle = ReplyHandle(assistant_id, conversation_id)
        self._in_flight[assistant_id] = handle
        return handle

    def _fail(self, handle: ReplyHandle, error: CompletionFailedError | None) -> Message:
        if handle.aborted or error is None:
            text = ABORTED_ERROR
        else:
            text = error.message
        logger.warning(f"Reply {handle.assistant_id} failed: {text}")
        return self.store.update_message_content(
            handle.assistant_id, handle.conversation_id, status="error", error=text
        )

    def _get(self, message_id: str, conversation_id: str | None = None) -> Message:
        message = self.store.get_messages(conversation_id).get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message
