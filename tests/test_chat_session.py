# SPDX-License-Identifier: Apache-2.0
"""Unit tests for ChatSessionManager: send pipeline, lifecycle, persistence."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from aac_workbench.chat_session import ChatSessionManager
from aac_workbench.context_router import ContextResponseRouter, program_by_id_key
from aac_workbench.errors import PersistenceError, RemoteError, ServiceBusyError, TransportError
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
from aac_workbench.session_keys import MemorySessionKeyStore
from aac_workbench.shared_state import SharedState


# ============================================================================
# Fixtures
# ============================================================================


class FakeBackend:
    """Scripted assistant backend.

    ``replies`` is consumed in order; an Exception entry is raised. When
    ``gate`` is set, send_chat waits on it before replying; ``fetch_gates``
    does the same per session id for fetch_session.
    """

    def __init__(self) -> None:
        self.requests: list[ChatRequest] = []
        self.replies: list[Any] = []
        self.sessions: dict[str, ChatSession] = {}
        self.gate: asyncio.Event | None = None
        self.fetch_gates: dict[str, asyncio.Event] = {}

    def reply(self, content: Any = "Hello!", **extra: Any) -> None:
        self.replies.append(ChatResponse(
            message=ChatMessage(role=MessageRole.assistant, content=content),
            **extra,
        ))

    async def send_chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def fetch_session(self, session_id: str) -> ChatSession:
        gate = self.fetch_gates.get(session_id)
        if gate is not None:
            await gate.wait()
        if session_id not in self.sessions:
            raise RemoteError("Failed to load session")
        return self.sessions[session_id]


class Harness:
    def __init__(self, persist: bool = False, key_store: Any = None) -> None:
        self.active = FeatureId.chat
        self.backend = FakeBackend()
        self.shared = SharedState()
        self.invalidated: list[tuple] = []
        self.registry = MetadataRegistry(lambda: self.active)
        self.router = ContextResponseRouter(self.shared, invalidate=self.invalidated.append)
        self.keys = key_store if key_store is not None else MemorySessionKeyStore()
        self.chat = ChatSessionManager(
            self.backend,
            active_feature=lambda: self.active,
            metadata=self.registry,
            router=self.router,
            persist_session=persist,
            key_store=self.keys,
            user_id="u1",
            subject_id="s1",
        )


@pytest.fixture()
def h() -> Harness:
    return Harness()


@pytest.fixture()
def hp() -> Harness:
    """Harness with session persistence enabled."""
    return Harness(persist=True)


def run(coro):
    return asyncio.run(coro)


# ============================================================================
# Validation
# ============================================================================


class TestValidation:
    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_input_is_noop(self, h: Harness, content: str) -> None:
        assert run(h.chat.send_message(content)) is None
        assert h.chat.history == []
        assert h.backend.requests == []
        assert h.chat.is_sending is False
        assert h.chat.error is None


# ============================================================================
# Send pipeline
# ============================================================================


class TestSendMessage:
    def test_user_message_appended_before_reply(self, h: Harness) -> None:
        h.backend.reply("Hi there")

        async def scenario() -> ChatMessage | None:
            h.backend.gate = asyncio.Event()
            task = asyncio.create_task(h.chat.send_message("  hello  "))
            await asyncio.sleep(0)
            assert len(h.chat.history) == 1
            assert h.chat.history[0].role == MessageRole.user
            assert h.chat.history[0].content == "hello"
            assert h.chat.is_sending is True
            h.backend.gate.set()
            return await task

        result = run(scenario())
        assert result is not None
        assert result.role == MessageRole.assistant
        assert [m.role for m in h.chat.history] == [MessageRole.user, MessageRole.assistant]
        assert h.chat.is_sending is False

    def test_request_shape(self, h: Harness) -> None:
        h.active = FeatureId.interpret
        h.backend.reply()
        run(h.chat.send_message("hello", reply_type=ReplyType.text))

        body = h.backend.requests[0].to_wire()
        assert body["mode"] == "interpret"
        assert body["replyType"] == "text"
        assert body["userId"] == "u1"
        assert body["subjectId"] == "s1"
        assert "sessionId" not in body
        assert "modeContext" not in body
        assert body["messages"][0]["content"] == "hello"
        assert body["messages"][0]["role"] == "user"

    def test_session_id_sent_once_known(self, h: Harness) -> None:
        h.backend.reply(session_id="sess-1")
        h.backend.reply(session_id="sess-1")
        run(h.chat.send_message("one"))
        run(h.chat.send_message("two"))
        assert h.backend.requests[1].to_wire()["sessionId"] == "sess-1"

    def test_mode_context_only_for_active_feature(self, h: Harness) -> None:
        board = {"name": "Snacks", "grid": [[1, 2], [3, 4]]}
        h.registry.register(FeatureId.boards, lambda: {"modeContext": {"board": board}})
        h.backend.reply()
        h.backend.reply()

        run(h.chat.send_message("while chatting"))
        h.active = FeatureId.boards
        run(h.chat.send_message("while on boards"))

        assert "modeContext" not in h.backend.requests[0].to_wire()
        assert h.backend.requests[1].to_wire()["modeContext"] == {"board": board}

    def test_metadata_merge_caller_wins(self, h: Harness) -> None:
        h.active = FeatureId.interpret
        h.registry.register(FeatureId.interpret, lambda: {"tone": "calm", "source": "feature"})
        h.backend.reply()
        run(h.chat.send_message("hi", additional_metadata={"source": "caller"}))
        assert h.chat.history[0].metadata == {"tone": "calm", "source": "caller"}

    def test_empty_metadata_omitted(self, h: Harness) -> None:
        h.backend.reply()
        run(h.chat.send_message("hi"))
        assert h.chat.history[0].metadata is None

    def test_new_session_assembled(self, h: Harness) -> None:
        h.active = FeatureId.boards
        h.backend.reply(session_id="sess-9", chat_state={"step": 2}, credits_used=3)
        run(h.chat.send_message("make a board"))

        session = h.chat.session
        assert session is not None
        assert session.id == "sess-9"
        assert session.user_id == "u1"
        assert session.subject_id == "s1"
        assert session.chat_mode == "boards"
        assert session.state == {"step": 2}
        assert session.credits_used == 3
        assert [m.role for m in session.log] == [MessageRole.user, MessageRole.assistant]

    def test_changed_session_id_replaces_session(self, h: Harness) -> None:
        h.backend.reply(session_id="a")
        h.backend.reply(session_id="b")
        run(h.chat.send_message("one"))
        run(h.chat.send_message("two"))
        assert h.chat.session_id == "b"
        assert len(h.chat.session.log) == 4

    def test_context_data_routed(self, h: Harness) -> None:
        h.backend.reply(context_data={"program": {"id": "P1"}})
        run(h.chat.send_message("update the program"))
        assert h.shared["programData"]["id"] == "P1"
        assert program_by_id_key("P1") in h.invalidated

    def test_non_dict_context_data_ignored(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse.model_validate({
            "message": {"role": "assistant", "content": None},
            "sessionId": "sess-1",
            "contextData": "unexpected",
            "chatState": "opaque",
        }))
        reply = run(h.chat.send_message("hi"))
        assert reply is not None
        assert reply.content == ""
        assert h.chat.session_id == "sess-1"
        assert h.chat.session.state == "opaque"
        assert len(h.shared) == 0

    def test_reply_without_message_or_error(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse())
        assert run(h.chat.send_message("hi")) is None
        assert len(h.chat.history) == 1


# ============================================================================
# Failures
# ============================================================================


class TestFailures:
    def test_remote_error_becomes_system_message(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse(error="LLM_ERROR"))
        result = run(h.chat.send_message("hi"))

        assert result is not None
        assert result.role == MessageRole.system
        assert result.content == "LLM_ERROR"
        assert result.error == "LLM_ERROR"
        assert h.chat.error == "LLM_ERROR"
        assert h.chat.error_kind == "remote"
        assert h.chat.history[-1] is result

    def test_service_busy_distinct(self, h: Harness) -> None:
        h.backend.replies.append(ServiceBusyError("SERVICE_BUSY"))
        result = run(h.chat.send_message("hi"))
        assert result.content == ServiceBusyError.user_message
        assert h.chat.error_kind == "service_busy"

    def test_transport_error_text(self, h: Harness) -> None:
        h.backend.replies.append(TransportError("500: boom", status_code=500))
        result = run(h.chat.send_message("hi"))
        assert result.content == "500: boom"
        assert h.chat.error_kind == "transport"

    def test_unexpected_exception_fallback_text(self, h: Harness) -> None:
        h.backend.replies.append(RuntimeError())
        result = run(h.chat.send_message("hi"))
        assert result.content == "Failed to send message"
        assert h.chat.is_sending is False

    def test_error_cleared_on_next_send(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse(error="nope"))
        h.backend.reply()
        run(h.chat.send_message("one"))
        run(h.chat.send_message("two"))
        assert h.chat.error is None


# ============================================================================
# Concurrency policies
# ============================================================================


class TestConcurrency:
    def test_second_send_rejected_while_in_flight(self, h: Harness) -> None:
        h.backend.reply()

        async def scenario() -> tuple:
            h.backend.gate = asyncio.Event()
            first = asyncio.create_task(h.chat.send_message("first"))
            await asyncio.sleep(0)
            second = await h.chat.send_message("second")
            h.backend.gate.set()
            return await first, second

        first, second = run(scenario())
        assert first is not None
        assert second is None
        assert len(h.backend.requests) == 1
        assert [m.content for m in h.chat.history if m.role == MessageRole.user] == ["first"]

    def test_reply_after_clear_discarded(self, h: Harness) -> None:
        h.backend.reply(session_id="late")

        async def scenario():
            h.backend.gate = asyncio.Event()
            task = asyncio.create_task(h.chat.send_message("hello"))
            await asyncio.sleep(0)
            h.chat.clear_session()
            h.backend.gate.set()
            return await task

        assert run(scenario()) is None
        assert h.chat.history == []
        assert h.chat.session is None
        assert h.chat.is_sending is False

    def test_failure_after_clear_discarded(self, h: Harness) -> None:
        h.backend.replies.append(TransportError("down"))

        async def scenario():
            h.backend.gate = asyncio.Event()
            task = asyncio.create_task(h.chat.send_message("hello"))
            await asyncio.sleep(0)
            h.chat.start_new_session()
            h.backend.gate.set()
            return await task

        assert run(scenario()) is None
        assert h.chat.history == []
        assert h.chat.error is None

    def test_load_after_subject_change_discarded(self, h: Harness) -> None:
        h.backend.sessions["old"] = ChatSession(
            id="old",
            subject_id="s1",
            log=[ChatMessage(role=MessageRole.user, content="about s1")],
        )

        async def scenario():
            h.backend.fetch_gates["old"] = asyncio.Event()
            task = asyncio.create_task(h.chat.load_session("old"))
            await asyncio.sleep(0)
            h.chat.set_subject("s2")
            h.backend.fetch_gates["old"].set()
            return await task

        assert run(scenario()) is False
        assert h.chat.subject_id == "s2"
        assert h.chat.session is None
        assert h.chat.history == []
        assert h.chat.error is None
        assert h.chat.is_loading is False

    def test_failed_load_after_clear_discarded(self, h: Harness) -> None:
        async def scenario():
            h.backend.fetch_gates["missing"] = asyncio.Event()
            task = asyncio.create_task(h.chat.load_session("missing"))
            await asyncio.sleep(0)
            h.chat.clear_session()
            h.backend.fetch_gates["missing"].set()
            return await task

        assert run(scenario()) is False
        assert h.chat.error is None


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    def test_start_new_session_twice(self, h: Harness) -> None:
        h.backend.reply(session_id="sess-1")
        run(h.chat.send_message("hi"))
        assert h.chat.start_new_session() is True
        assert h.chat.start_new_session(FeatureId.boards) is True
        assert h.chat.session is None
        assert h.chat.history == []

    def test_clear_session_resets_error(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse(error="bad"))
        run(h.chat.send_message("hi"))
        h.chat.clear_session()
        assert h.chat.error is None
        assert h.chat.history == []

    def test_load_session_success(self, h: Harness) -> None:
        stored = ChatSession(
            id="old",
            log=[
                ChatMessage(role=MessageRole.user, content="earlier"),
                ChatMessage(role=MessageRole.assistant, content="reply"),
            ],
        )
        h.backend.sessions["old"] = stored
        assert run(h.chat.load_session("old")) is True
        assert h.chat.session_id == "old"
        assert [m.content for m in h.chat.history] == ["earlier", "reply"]
        assert h.chat.is_loading is False

    def test_load_session_failure_keeps_state(self, h: Harness) -> None:
        h.backend.reply(session_id="current")
        run(h.chat.send_message("hi"))
        before = h.chat.history

        assert run(h.chat.load_session("missing")) is False
        assert h.chat.session_id == "current"
        assert h.chat.history == before
        assert h.chat.error == "Failed to load session"

    def test_load_clears_previous_error_while_loading(self, h: Harness) -> None:
        h.backend.replies.append(ChatResponse(error="bad"))
        run(h.chat.send_message("hi"))
        h.backend.sessions["old"] = ChatSession(id="old")
        seen: list[tuple] = []
        h.chat.subscribe(lambda topic: seen.append((topic, h.chat.is_loading, h.chat.error)))

        assert run(h.chat.load_session("old")) is True
        assert seen[0] == ("loading", True, None)


# ============================================================================
# Subject watch
# ============================================================================


class TestSubjectWatch:
    def test_subject_change_clears_session(self, h: Harness) -> None:
        h.backend.reply(session_id="sess-1")
        h.backend.reply()
        run(h.chat.send_message("about s1"))

        h.chat.set_subject("s2")
        assert h.chat.session is None
        assert h.chat.history == []

        run(h.chat.send_message("about s2"))
        body = h.backend.requests[-1].to_wire()
        assert "sessionId" not in body
        assert body["subjectId"] == "s2"

    def test_same_subject_keeps_session(self, h: Harness) -> None:
        h.backend.reply(session_id="sess-1")
        run(h.chat.send_message("hi"))
        h.chat.set_subject("s1")
        assert h.chat.session_id == "sess-1"

    def test_initial_subject_does_not_clear(self) -> None:
        harness = Harness()
        harness.chat = ChatSessionManager(harness.backend, active_feature=lambda: FeatureId.chat)
        harness.backend.reply(session_id="sess-1")
        run(harness.chat.send_message("hi"))
        harness.chat.set_subject("s1")
        assert harness.chat.session_id == "sess-1"


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    def test_session_id_stored_under_feature_key(self, hp: Harness) -> None:
        hp.active = FeatureId.boards
        hp.backend.reply(session_id="sess-7")
        run(hp.chat.send_message("hi"))
        assert hp.keys.get("chat.session.u1.s1.boards") == "sess-7"

    def test_not_stored_when_disabled(self, h: Harness) -> None:
        h.backend.reply(session_id="sess-7")
        run(h.chat.send_message("hi"))
        assert h.keys.get("chat.session.u1.s1.chat") is None

    def test_clear_removes_stored_id(self, hp: Harness) -> None:
        hp.backend.reply(session_id="sess-7")
        run(hp.chat.send_message("hi"))
        hp.chat.clear_session()
        assert hp.keys.get("chat.session.u1.s1.chat") is None

    def test_restore_loads_stored_session(self, hp: Harness) -> None:
        hp.keys.set("chat.session.u1.s1.chat", "kept")
        hp.backend.sessions["kept"] = ChatSession(id="kept")
        assert run(hp.chat.restore_persisted_session()) is True
        assert hp.chat.session_id == "kept"

    def test_restore_drops_stale_id(self, hp: Harness) -> None:
        hp.keys.set("chat.session.u1.s1.chat", "gone")
        assert run(hp.chat.restore_persisted_session()) is False
        assert hp.keys.get("chat.session.u1.s1.chat") is None

    def test_discarded_restore_keeps_stored_id(self, hp: Harness) -> None:
        hp.keys.set("chat.session.u1.s1.chat", "kept")
        hp.backend.sessions["kept"] = ChatSession(id="kept")
        hp.backend.sessions["picked"] = ChatSession(id="picked")

        async def scenario():
            hp.backend.fetch_gates["kept"] = asyncio.Event()
            restore = asyncio.create_task(hp.chat.restore_persisted_session())
            await asyncio.sleep(0)
            assert await hp.chat.load_session("picked") is True
            hp.backend.fetch_gates["kept"].set()
            return await restore

        assert run(scenario()) is False
        assert hp.chat.session_id == "picked"
        assert hp.keys.get("chat.session.u1.s1.chat") == "kept"

    def test_restore_skipped_when_session_loaded(self, hp: Harness) -> None:
        hp.backend.reply(session_id="live")
        run(hp.chat.send_message("hi"))
        hp.keys.set("chat.session.u1.s1.chat", "other")
        assert run(hp.chat.restore_persisted_session()) is False
        assert hp.chat.session_id == "live"

    def test_anonymous_key(self) -> None:
        harness = Harness(persist=True)
        harness.chat.set_user(None)
        harness.chat.set_subject(None)
        assert harness.chat.storage_key() == "chat.session.anonymous.none.chat"

    def test_storage_failure_degrades_silently(self) -> None:
        class BrokenStore:
            def get(self, key):
                raise PersistenceError("disk gone")

            def set(self, key, session_id):
                raise PersistenceError("disk gone")

            def remove(self, key):
                raise PersistenceError("disk gone")

        harness = Harness(persist=True, key_store=BrokenStore())
        harness.backend.reply(session_id="sess-1")
        result = run(harness.chat.send_message("hi"))
        assert result.role == MessageRole.assistant
        assert harness.chat.session_id == "sess-1"
        assert run(harness.chat.restore_persisted_session()) is False
        harness.chat.clear_session()
        assert harness.chat.session is None


# ============================================================================
# Accessors and wrappers
# ============================================================================


class TestAccessors:
    def test_last_messages(self, h: Harness) -> None:
        assert h.chat.last_assistant_message() is None
        assert h.chat.last_user_message() is None
        h.backend.reply("first reply")
        h.backend.reply("second reply")
        run(h.chat.send_message("one"))
        run(h.chat.send_message("two"))
        assert h.chat.last_assistant_message().content == "second reply"
        assert h.chat.last_user_message().content == "two"

    def test_get_feature_data_structured(self, h: Harness) -> None:
        h.backend.reply(MessageContent(html="<p>ok</p>", board_generator_data={"board": {"id": "b1"}}))
        run(h.chat.send_message("make a board"))
        assert h.chat.get_feature_data("boardGeneratorData") == {"board": {"id": "b1"}}
        assert h.chat.get_feature_data("interpretData") is None

    def test_get_feature_data_extra_key(self, h: Harness) -> None:
        h.backend.reply(MessageContent.model_validate({"text": "ok", "docuslpData": {"note": 1}}))
        run(h.chat.send_message("note"))
        assert h.chat.get_feature_data("docuslpData") == {"note": 1}

    def test_get_feature_data_plain_text(self, h: Harness) -> None:
        h.backend.reply("just text")
        run(h.chat.send_message("hi"))
        assert h.chat.get_feature_data("boardGeneratorData") is None

    def test_send_interpret_request_context(self, h: Harness) -> None:
        h.backend.reply()
        run(h.chat.send_interpret_request("ba ba", context={"location": "kitchen"}))
        assert h.chat.history[0].metadata == {"interpretContext": {"location": "kitchen"}}
        assert h.backend.requests[0].reply_type == ReplyType.html

    def test_send_board_prompt(self, h: Harness) -> None:
        h.backend.reply()
        run(h.chat.send_board_prompt("a snack board"))
        assert h.backend.requests[0].messages[0].content == "a snack board"

    def test_snapshot(self, h: Harness) -> None:
        h.backend.reply(session_id="s")
        run(h.chat.send_message("hi"))
        snap = h.chat.snapshot()
        assert snap["session_id"] == "s"
        assert snap["mode"] == "chat"
        assert len(snap["history"]) == 2
