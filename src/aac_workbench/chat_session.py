# SPDX-License-Identifier: Apache-2.0
"""
Chat session manager: session identity, message history and the send pipeline.

Send pipeline:
1. Validate and optimistically append the user message
2. POST to the assistant backend with the active feature's metadata
3. Reconcile the reply (assistant message, context routing, session id)

Policies:
- Single flight: a send issued while another is outstanding is rejected
  (returns None, history untouched).
- Generations: clearing, replacing or reloading the session bumps a counter;
  a reply that comes back under an older generation is discarded.
- Every failure ends as a system-role message plus ``error``; nothing raises
  past ``send_message`` or ``load_session``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from aac_workbench.context_router import ContextResponseRouter
from aac_workbench.errors import (
    PersistenceError,
    ServiceBusyError,
    ValidationError,
    WorkbenchError,
)
from aac_workbench.features import FeatureId
from aac_workbench.metadata import MetadataRegistry
from aac_workbench.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatSession,
    MessageContent,
    MessageRole,
    ReplyType,
)
from aac_workbench.notify import Notifier
from aac_workbench.session_keys import MemorySessionKeyStore, SessionKeyStore, storage_key

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message"
LOAD_FAILED_MESSAGE = "Failed to load session"

MODE_CONTEXT_KEY = "modeContext"


class ChatBackend(Protocol):
    async def send_chat(self, request: ChatRequest) -> ChatResponse: ...

    async def fetch_session(self, session_id: str) -> ChatSession: ...


def validate_message_content(content: str | None) -> str:
    """Return the trimmed content, or raise ValidationError if it is blank."""
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content is empty")
    return text


class ChatSessionManager(Notifier):
    """Owns the chat session for the current (user, subject, feature).

    Args:
        backend: Assistant backend client.
        active_feature: Returns the currently active feature.
        metadata: Registry queried for the active feature's request context.
        router: Receives ``contextData`` from replies.
        persist_session: Remember session ids across restarts.
        key_store: Where session ids are remembered.
    """

    def __init__(
        self,
        backend: ChatBackend,
        active_feature: Callable[[], FeatureId],
        metadata: MetadataRegistry | None = None,
        router: ContextResponseRouter | None = None,
        persist_session: bool = False,
        key_store: SessionKeyStore | None = None,
        user_id: str | None = None,
        subject_id: str | None = None,
    ) -> None:
        super().__init__()
        self._backend = backend
        self._active_feature = active_feature
        self._metadata = metadata
        self._router = router
        self.persist_session = persist_session
        self._key_store = key_store or MemorySessionKeyStore()

        self._user_id = user_id
        self._subject_id = subject_id

        self._session: ChatSession | None = None
        self._history: list[ChatMessage] = []
        self._is_sending = False
        self._is_loading = False
        self._error: str | None = None
        self._error_kind: str | None = None
        self._generation = 0

    # -- Read-only state ----------------------------------------------------

    @property
    def session(self) -> ChatSession | None:
        return self._session

    @property
    def session_id(self) -> str | None:
        return self._session.id if self._session else None

    @property
    def history(self) -> list[ChatMessage]:
        return list(self._history)

    @property
    def is_sending(self) -> bool:
        return self._is_sending

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def error_kind(self) -> str | None:
        return self._error_kind

    @property
    def mode(self) -> FeatureId:
        return self._active_feature()

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def subject_id(self) -> str | None:
        return self._subject_id

    # -- Identity -----------------------------------------------------------

    def set_user(self, user_id: str | None) -> None:
        self._user_id = user_id

    def set_subject(self, subject_id: str | None) -> None:
        """Switch the subject being discussed.

        Conversations never carry over: moving away from a previously seen
        subject clears the session first.
        """
        previous = self._subject_id
        if previous is not None and previous != subject_id:
            logger.info("Subject changed from %s to %s, clearing chat session", previous, subject_id)
            self.clear_session()
        self._subject_id = subject_id
        self._notify("subject")

    # -- Persistence --------------------------------------------------------

    def storage_key(self, feature: FeatureId | None = None) -> str:
        feature = feature or self._active_feature()
        return storage_key(self._user_id, self._subject_id, feature.value)

    def _stored_id(self, key: str) -> str | None:
        try:
            return self._key_store.get(key)
        except PersistenceError as exc:
            logger.warning("Session id read failed, continuing unpersisted: %s", exc)
            return None

    def _store_id(self, key: str, session_id: str) -> None:
        try:
            self._key_store.set(key, session_id)
        except PersistenceError as exc:
            logger.warning("Session id write failed, continuing unpersisted: %s", exc)

    def _forget_id(self, key: str) -> None:
        try:
            self._key_store.remove(key)
        except PersistenceError as exc:
            logger.warning("Session id removal failed: %s", exc)

    async def restore_persisted_session(self) -> bool:
        """Reload the stored session for the current key, if nothing is loaded.

        A stored id that no longer loads is forgotten. A load discarded
        because the session changed meanwhile leaves the stored id alone.
        """
        if not self.persist_session or self._session is not None:
            return False
        key = self.storage_key()
        stored = self._stored_id(key)
        if not stored:
            return False
        generation = self._generation
        if await self.load_session(stored):
            return True
        if generation != self._generation:
            return False
        logger.info("Dropping stale stored session %s", stored)
        self._forget_id(key)
        return False

    # -- Session lifecycle --------------------------------------------------

    def _reset(self) -> None:
        self._generation += 1
        self._session = None
        self._history = []
        self._error = None
        self._error_kind = None
        if self.persist_session:
            self._forget_id(self.storage_key())
        self._notify("session")

    def clear_session(self) -> None:
        self._reset()

    def start_new_session(self, mode: FeatureId | None = None) -> bool:
        """Reset to an empty conversation.

        ``mode`` is accepted for symmetry with the navigation API; it does not
        navigate.
        """
        if mode is not None:
            logger.debug("New chat session requested for %s", mode.value)
        self._reset()
        return True

    async def load_session(self, session_id: str) -> bool:
        """Replace session and history with a stored session fetched by id.

        A fetch that completes after the session was cleared, replaced or
        moved to another subject is discarded and reported as False.
        """
        generation = self._generation
        self._is_loading = True
        self._error = None
        self._error_kind = None
        self._notify("loading")
        try:
            loaded = await self._backend.fetch_session(session_id)
        except Exception as exc:
            if generation != self._generation:
                logger.info("Discarding failed load of %s: session changed meanwhile", session_id)
                return False
            if not isinstance(exc, WorkbenchError):
                logger.exception("Load session %s failed", session_id)
            else:
                logger.warning("Load session %s failed: %s", session_id, exc)
            self._error = LOAD_FAILED_MESSAGE
            self._error_kind = getattr(exc, "kind", "transport")
            return False
        finally:
            self._is_loading = False
            self._notify("loading")

        if generation != self._generation:
            logger.info("Discarding stale load of %s: session changed meanwhile", session_id)
            return False
        self._generation += 1
        self._session = loaded
        self._history = list(loaded.log)
        self._error = None
        self._error_kind = None
        self._notify("session")
        return True

    # -- Messaging ----------------------------------------------------------

    def _collect_metadata(
        self, additional: dict[str, Any] | None
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """Return (merged metadata, raw feature metadata)."""
        feature_metadata = self._metadata.get_metadata() if self._metadata else None
        merged: dict[str, Any] = {}
        if isinstance(feature_metadata, dict):
            merged.update(feature_metadata)
        else:
            feature_metadata = None
        if additional:
            merged.update(additional)
        return merged, feature_metadata

    def _record_failure(self, text: str, kind: str) -> ChatMessage:
        self._error = text
        self._error_kind = kind
        message = ChatMessage(role=MessageRole.system, content=text, error=text)
        self._history.append(message)
        self._notify("history")
        return message

    async def send_message(
        self,
        content: str,
        reply_type: ReplyType = ReplyType.html,
        additional_metadata: dict[str, Any] | None = None,
    ) -> ChatMessage | None:
        """Send a user message and reconcile the reply.

        Returns the assistant message, a system message describing a failure,
        or None when nothing was sent (blank input, send already in flight,
        discarded stale reply).
        """
        try:
            text = validate_message_content(content)
        except ValidationError:
            return None
        if self._is_sending:
            logger.warning("Rejecting send while another message is in flight")
            return None

        feature = self._active_feature()
        metadata, feature_metadata = self._collect_metadata(additional_metadata)
        user_message = ChatMessage(
            role=MessageRole.user,
            content=text,
            metadata=metadata or None,
        )

        prior_history = list(self._history)
        self._history.append(user_message)
        self._is_sending = True
        self._error = None
        self._error_kind = None
        self._notify("history")

        generation = self._generation
        session = self._session
        request = ChatRequest(
            messages=[user_message],
            reply_type=reply_type,
            mode=feature.value,
            session_id=session.id if session else None,
            user_id=self._user_id,
            subject_id=self._subject_id,
            mode_context=(
                feature_metadata[MODE_CONTEXT_KEY]
                if feature_metadata and MODE_CONTEXT_KEY in feature_metadata
                else None
            ),
        )

        try:
            try:
                response = await self._backend.send_chat(request)
            except ServiceBusyError as exc:
                if generation != self._generation:
                    return self._discard(generation)
                return self._record_failure(exc.user_message, exc.kind)
            except WorkbenchError as exc:
                logger.warning("Send failed: %s", exc)
                if generation != self._generation:
                    return self._discard(generation)
                return self._record_failure(str(exc) or SEND_FAILED_MESSAGE, exc.kind)
            except Exception as exc:
                logger.exception("Send message failed")
                if generation != self._generation:
                    return self._discard(generation)
                return self._record_failure(str(exc) or SEND_FAILED_MESSAGE, "transport")

            if generation != self._generation:
                return self._discard(generation)
            return self._apply_response(response, feature, user_message, prior_history)
        finally:
            self._is_sending = False
            self._notify("sending")

    def _discard(self, generation: int) -> None:
        logger.info(
            "Discarding reply from generation %d, session is now at %d",
            generation, self._generation,
        )
        return None

    def _apply_response(
        self,
        response: ChatResponse,
        feature: FeatureId,
        user_message: ChatMessage,
        prior_history: list[ChatMessage],
    ) -> ChatMessage | None:
        if response.message is not None:
            assistant = response.message
            self._history.append(assistant)

            if response.context_data and self._router is not None:
                self._router.route(response.context_data, self._subject_id)

            if response.session_id and response.session_id != self.session_id:
                self._session = ChatSession(
                    id=response.session_id,
                    user_id=self._user_id,
                    subject_id=self._subject_id,
                    chat_mode=feature.value,
                    state=response.chat_state or {},
                    log=[*prior_history, user_message, assistant],
                    last=[user_message, assistant],
                    credits_used=response.credits_used or 0,
                )
                if self.persist_session:
                    self._store_id(self.storage_key(feature), response.session_id)
                self._notify("session")

            self._notify("history")
            return assistant

        if response.error:
            logger.warning("Assistant backend returned error: %s", response.error)
            return self._record_failure(response.error, "remote")

        logger.warning("Assistant reply carried neither message nor error")
        return None

    # -- Feature convenience wrappers ----------------------------------------

    async def send_board_prompt(self, prompt: str) -> ChatMessage | None:
        # The boards feature's metadata builder supplies the board context
        return await self.send_message(prompt, reply_type=ReplyType.html)

    async def send_interpret_request(
        self, content: str, context: dict[str, Any] | None = None
    ) -> ChatMessage | None:
        return await self.send_message(
            content,
            reply_type=ReplyType.html,
            additional_metadata={"interpretContext": context} if context else None,
        )

    # -- Utilities ----------------------------------------------------------

    def _last_with_role(self, role: MessageRole) -> ChatMessage | None:
        for message in reversed(self._history):
            if message.role == role:
                return message
        return None

    def last_assistant_message(self) -> ChatMessage | None:
        return self._last_with_role(MessageRole.assistant)

    def last_user_message(self) -> ChatMessage | None:
        return self._last_with_role(MessageRole.user)

    def get_feature_data(self, key: str) -> Any:
        """Named payload from the last assistant message's structured content."""
        message = self.last_assistant_message()
        if message is None or not isinstance(message.content, MessageContent):
            return None
        return message.content.get(key)

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "user_id": self._user_id,
            "subject_id": self._subject_id,
            "is_sending": self._is_sending,
            "is_loading": self._is_loading,
            "error": self._error,
            "error_kind": self._error_kind,
            "history": [m.to_wire() for m in self._history],
        }
