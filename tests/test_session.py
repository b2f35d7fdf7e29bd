"""
Tests for the chat session controller.
"""

import asyncio

import pytest

from luvio_chat.managers.outcome import Outcome
from luvio_chat.managers.session import ChatSession, SessionState
from luvio_chat.models.chat import Attachment, Role
from luvio_chat.models.modules import DEFAULT_SYSTEM_PROMPT, get_module
from luvio_chat.utils.errors import LuvioError, RateLimitedError, TransportFailureError
from tests.fixtures.streaming_fixtures import FakeStore, FakeTransport, StreamingFixtures
from tests.utils.async_helpers import EventRecorder, wait_for_condition

frame = StreamingFixtures.create_frame
DONE = b"data: [DONE]\n\n"


def make_session(*scripts, store=None, **kwargs) -> ChatSession:
    kwargs.setdefault("publish_interval", 0)
    return ChatSession(FakeTransport(*scripts), store=store, **kwargs)


def contents(session):
    return [(m.role, m.content) for m in session.messages]


def has_reply(session, text):
    return lambda: any(m.role is Role.ASSISTANT and m.content == text for m in session.messages)


class TestChatSessionSend:
    """Test sending and streaming."""

    @pytest.mark.asyncio
    async def test_streams_reply(self):
        session = make_session([StreamingFixtures.create_stream(["Hi", " there"])])

        result = await session.send("hello")

        assert result.outcome is Outcome.SUCCESS
        assert contents(session) == [(Role.USER, "hello"), (Role.ASSISTANT, "Hi there")]
        assert session.state is SessionState.IDLE
        assert session.last_result is result
        assert not session.is_busy

    @pytest.mark.asyncio
    async def test_request_payload(self):
        transport = FakeTransport([DONE])
        session = ChatSession(transport, module_id="code-writer", user_id="u-1")

        await session.send("  write a loop  ")

        payload = transport.payloads[0]
        assert payload["messages"] == [{"role": "user", "content": "write a loop"}]
        assert payload["moduleId"] == "code-writer"
        assert payload["userId"] == "u-1"
        assert payload["conversationId"] is None
        assert payload["hasImage"] is False
        assert payload["systemPrompt"] == get_module("code-writer").system_prompt

    @pytest.mark.asyncio
    async def test_default_system_prompt(self):
        transport = FakeTransport([DONE])
        session = ChatSession(transport)

        await session.send("hi")

        assert transport.payloads[0]["systemPrompt"] == DEFAULT_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_user_message_is_appended_before_network(self):
        transport = FakeTransport([DONE])
        session = ChatSession(transport)

        task = session.send("hello")

        assert contents(session) == [(Role.USER, "hello")]
        assert session.state is SessionState.SENDING
        assert transport.payloads == []
        await task

    @pytest.mark.asyncio
    async def test_history_is_sent(self):
        session = make_session(
            [StreamingFixtures.create_stream(["first reply"])],
            [StreamingFixtures.create_stream(["second reply"])],
        )

        await session.send("one")
        await session.send("two")

        sent = session.transport.payloads[1]["messages"]
        assert [m["content"] for m in sent] == ["one", "first reply", "two"]
        assert len(session.messages) == 4

    @pytest.mark.asyncio
    async def test_stream_without_sentinel_succeeds(self):
        session = make_session([StreamingFixtures.create_stream(["partial"], done=False)])

        result = await session.send("hello")

        assert result.ok
        assert contents(session)[-1] == (Role.ASSISTANT, "partial")

    @pytest.mark.asyncio
    async def test_reply_without_text_adds_no_message(self):
        session = make_session([StreamingFixtures.create_frame(None).encode() + DONE])

        result = await session.send("hello")

        assert result.ok
        assert contents(session) == [(Role.USER, "hello")]

    @pytest.mark.asyncio
    async def test_chunked_reply_matches_whole_reply(self):
        body = StreamingFixtures.create_stream(["नमस्ते", " ", "दुनिया"])
        session = make_session(StreamingFixtures.split(body, 3))

        await session.send("hello")

        assert contents(session)[-1] == (Role.ASSISTANT, "नमस्ते दुनिया")

    @pytest.mark.asyncio
    async def test_throttled_reply_ends_with_full_text(self):
        fragments = [f"w{i} " for i in range(50)]
        session = make_session([StreamingFixtures.create_stream(fragments)], publish_interval=10.0)
        recorder = EventRecorder()
        session.register_event_handler("messages_changed", recorder)

        await session.send("hello")

        assert contents(session)[-1] == (Role.ASSISTANT, "".join(fragments))
        # user append, first publish and trailing flush
        assert len(recorder.of("messages_changed")) == 3

    @pytest.mark.asyncio
    async def test_state_transitions(self):
        session = make_session([StreamingFixtures.create_stream(["Hi"])])
        recorder = EventRecorder()
        session.register_event_handler("state_changed", recorder)

        await session.send("hello")

        assert [d["state"] for d in recorder.of("state_changed")] == [
            SessionState.SENDING, SessionState.STREAMING, SessionState.IDLE
        ]


class TestChatSessionValidation:
    """Test rejected input."""

    @pytest.mark.asyncio
    async def test_empty_input_is_ignored(self):
        session = make_session([DONE])
        recorder = EventRecorder()
        session.register_event_handler("messages_changed", recorder)
        session.register_event_handler("error", recorder)

        assert session.send("   ") is None
        assert session.send("") is None

        assert session.messages == ()
        assert recorder.events == []
        assert session.last_result.outcome is Outcome.VALIDATION_FAILURE
        assert session.transport.payloads == []

    @pytest.mark.asyncio
    async def test_attachment_only_message(self):
        session = make_session([DONE])
        image = Attachment(url="data:image/png;base64,AAAA", type="image/png", name="a.png")

        result = await session.send("", [image])

        assert result.ok
        payload = session.transport.payloads[0]
        assert payload["hasImage"] is True
        parts = payload["messages"][0]["content"]
        assert parts[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}
        assert session.messages[0].content.endswith("[Attachments: a.png]")


class TestChatSessionFailures:
    """Test failure outcomes."""

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        session = make_session([RateLimitedError()])
        recorder = EventRecorder()
        session.register_event_handler("error", recorder)

        result = await session.send("hello")

        assert result.outcome is Outcome.RATE_LIMITED
        assert recorder.of("error") == [{
            "outcome": Outcome.RATE_LIMITED,
            "message": "Rate limit exceeded. कृपया कुछ देर बाद try करें।",
        }]
        assert contents(session) == [(Role.USER, "hello")]
        assert session.state is SessionState.IDLE
        assert not session.is_busy

    @pytest.mark.asyncio
    async def test_service_error_message(self):
        session = make_session([TransportFailureError("Model overloaded", status=500)])

        result = await session.send("hello")

        assert result.outcome is Outcome.TRANSPORT_FAILURE
        assert result.message == "Model overloaded"

    @pytest.mark.asyncio
    async def test_partial_reply_is_kept_on_failure(self):
        session = make_session([frame("Partial").encode(), TransportFailureError()])

        result = await session.send("hello")

        assert result.outcome is Outcome.TRANSPORT_FAILURE
        assert contents(session) == [(Role.USER, "hello"), (Role.ASSISTANT, "Partial")]

    @pytest.mark.asyncio
    async def test_buffer_overflow_is_a_transport_failure(self):
        session = make_session([b"data: {broken\n", b"x" * 200], max_buffer_size=64)

        result = await session.send("hello")

        assert result.outcome is Outcome.TRANSPORT_FAILURE

    @pytest.mark.asyncio
    async def test_session_recovers_after_failure(self):
        session = make_session([RateLimitedError()], [StreamingFixtures.create_stream(["ok"])])

        await session.send("first")
        result = await session.send("second")

        assert result.ok
        assert contents(session)[-1] == (Role.ASSISTANT, "ok")


class TestChatSessionCancellation:
    """Test supersession, stop and clear."""

    @pytest.mark.asyncio
    async def test_new_send_supersedes_in_flight_request(self):
        gate = asyncio.Event()
        session = make_session(
            [frame("old").encode(), gate, frame(" stale").encode(), DONE],
            [StreamingFixtures.create_stream(["new"])],
        )
        recorder = EventRecorder()
        session.register_event_handler("error", recorder)

        first = session.send("one")
        await wait_for_condition(has_reply(session, "old"))
        second = session.send("two")
        gate.set()

        assert (await first).outcome is Outcome.ABORTED
        assert (await second).outcome is Outcome.SUCCESS
        assert contents(session) == [
            (Role.USER, "one"),
            (Role.ASSISTANT, "old"),
            (Role.USER, "two"),
            (Role.ASSISTANT, "new"),
        ]
        assert recorder.events == []
        assert session.last_result.ok

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_reply(self):
        gate = asyncio.Event()
        session = make_session([frame("Partial").encode(), gate, frame(" more").encode(), DONE])
        recorder = EventRecorder()
        session.register_event_handler("error", recorder)

        task = session.send("hello")
        await wait_for_condition(has_reply(session, "Partial"))
        session.stop()
        gate.set()

        assert (await task).outcome is Outcome.ABORTED
        assert session.state is SessionState.ABORTED
        assert contents(session) == [(Role.USER, "hello"), (Role.ASSISTANT, "Partial")]
        assert recorder.events == []
        assert not session.is_busy

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self):
        session = make_session()

        session.stop()

        assert session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_clear_discards_in_flight_reply(self):
        gate = asyncio.Event()
        session = make_session([frame("Partial").encode(), gate, frame(" more").encode(), DONE])

        task = session.send("hello")
        await wait_for_condition(has_reply(session, "Partial"))
        session.clear()
        gate.set()

        assert (await task).outcome is Outcome.ABORTED
        await asyncio.sleep(0.01)
        assert session.messages == ()
        assert session.conversation_id is None
        assert session.state is SessionState.IDLE


class TestChatSessionAbortPersistence:
    """Test what is saved when a request is aborted."""

    @pytest.mark.asyncio
    async def test_stop_mid_stream_saves_user_turn_only(self):
        gate = asyncio.Event()
        store = FakeStore()
        session = make_session([frame("Partial").encode(), gate, frame(" more").encode(), DONE], store=store)

        task = session.send("hello")
        await wait_for_condition(has_reply(session, "Partial"))
        session.stop()
        gate.set()

        assert (await task).outcome is Outcome.ABORTED
        await session.dispose()
        assert store.appended == [("conv-1", "user", "hello")]

    @pytest.mark.asyncio
    async def test_superseded_mid_stream_keeps_both_user_turns(self):
        gate = asyncio.Event()
        store = FakeStore()
        session = make_session(
            [frame("old").encode(), gate, frame(" stale").encode(), DONE],
            [StreamingFixtures.create_stream(["new"])],
            store=store,
        )

        first = session.send("one")
        await wait_for_condition(has_reply(session, "old"))
        second = session.send("two")
        gate.set()

        assert (await first).outcome is Outcome.ABORTED
        assert (await second).ok
        await session.dispose()
        assert store.appended == [
            ("conv-1", "user", "one"),
            ("conv-1", "user", "two"),
            ("conv-1", "assistant", "new"),
        ]

    @pytest.mark.asyncio
    async def test_stop_while_conversation_is_created(self):
        create_gate = asyncio.Event()
        store = FakeStore(create_gate=create_gate)
        session = make_session([StreamingFixtures.create_stream(["never"])], store=store)

        task = session.send("first")
        await asyncio.sleep(0.01)
        session.stop()

        assert (await task).outcome is Outcome.ABORTED
        create_gate.set()
        await session.dispose()
        assert store.created == [(None, "first")]
        assert store.appended == [("conv-1", "user", "first")]
        assert session.transport.payloads == []

    @pytest.mark.asyncio
    async def test_superseded_while_conversation_is_created(self):
        create_gate = asyncio.Event()
        store = FakeStore(create_gate=create_gate)
        session = make_session([StreamingFixtures.create_stream(["ok"])], store=store)

        first = session.send("first")
        await asyncio.sleep(0.01)
        second = session.send("second")
        create_gate.set()

        assert (await first).outcome is Outcome.ABORTED
        assert (await second).ok
        await session.dispose()
        assert store.created == [(None, "first")]
        assert store.appended == [
            ("conv-1", "user", "first"),
            ("conv-1", "user", "second"),
            ("conv-1", "assistant", "ok"),
        ]
        assert session.transport.payloads[0]["conversationId"] == "conv-1"

    @pytest.mark.asyncio
    async def test_immediate_supersession_resolves_to_aborted(self):
        store = FakeStore()
        session = make_session([StreamingFixtures.create_stream(["ok"])], store=store)

        first = session.send("first")
        second = session.send("second")

        assert (await first).outcome is Outcome.ABORTED
        assert (await second).ok
        await session.dispose()
        assert store.appended == [
            ("conv-1", "user", "first"),
            ("conv-1", "user", "second"),
            ("conv-1", "assistant", "ok"),
        ]

    @pytest.mark.asyncio
    async def test_clear_while_conversation_is_created(self):
        create_gate = asyncio.Event()
        store = FakeStore(create_gate=create_gate)
        session = make_session([StreamingFixtures.create_stream(["never"])], store=store)

        task = session.send("first")
        session.clear()
        create_gate.set()

        assert (await task).outcome is Outcome.ABORTED
        await session.dispose()
        assert store.appended == [("conv-1", "user", "first")]
        assert session.conversation_id is None


class TestChatSessionPersistence:
    """Test fire-and-forget persistence."""

    @pytest.mark.asyncio
    async def test_messages_are_persisted(self):
        store = FakeStore()
        session = make_session(
            [StreamingFixtures.create_stream(["Hi there"])],
            [StreamingFixtures.create_stream(["Again"])],
            store=store,
            module_id="study-assistant",
        )

        await session.send("Hello")
        await session.send("More")
        await wait_for_condition(lambda: len(store.appended) == 4)

        assert store.created == [("study-assistant", "Hello")]
        assert session.conversation_id == "conv-1"
        assert session.transport.payloads[0]["conversationId"] == "conv-1"
        assert store.appended == [
            ("conv-1", "user", "Hello"),
            ("conv-1", "assistant", "Hi there"),
            ("conv-1", "user", "More"),
            ("conv-1", "assistant", "Again"),
        ]

    @pytest.mark.asyncio
    async def test_failed_reply_is_not_persisted(self):
        store = FakeStore()
        session = make_session([frame("Partial").encode(), TransportFailureError()], store=store)

        await session.send("Hello")
        await session.dispose()

        assert store.appended == [("conv-1", "user", "Hello")]

    @pytest.mark.asyncio
    async def test_storage_failures_are_not_surfaced(self):
        store = FakeStore(fail_appends=True)
        session = make_session([StreamingFixtures.create_stream(["Hi"])], store=store)
        recorder = EventRecorder()
        session.register_event_handler("error", recorder)

        result = await session.send("Hello")
        await session.dispose()

        assert result.ok
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_conversation_create_failure_still_sends(self):
        store = FakeStore(fail_create=True)
        session = make_session([StreamingFixtures.create_stream(["Hi"])], store=store)

        result = await session.send("Hello")

        assert result.ok
        assert session.conversation_id is None
        assert session.transport.payloads[0]["conversationId"] is None

    @pytest.mark.asyncio
    async def test_clear_starts_new_conversation(self):
        store = FakeStore()
        session = make_session(
            [StreamingFixtures.create_stream(["a"])],
            [StreamingFixtures.create_stream(["b"])],
            store=store,
        )

        await session.send("first chat")
        session.clear()
        await session.send("second chat")

        assert [seed for _, seed in store.created] == ["first chat", "second chat"]
        assert session.conversation_id == "conv-2"

    @pytest.mark.asyncio
    async def test_load_conversation(self, conversation_store):
        conversation_id = await conversation_store.ensure_conversation(seed_text="Hello")
        await conversation_store.append_message(conversation_id, "user", "Hello")
        await conversation_store.append_message(conversation_id, "assistant", "Hi there")

        session = make_session([StreamingFixtures.create_stream(["Welcome back"])], store=conversation_store)
        await session.load_conversation(conversation_id)
        await session.send("I'm back")

        assert session.conversation_id == conversation_id
        assert [m["content"] for m in session.transport.payloads[0]["messages"]] == [
            "Hello", "Hi there", "I'm back"
        ]
        await session.dispose()
        stored = await conversation_store.load_messages(conversation_id)
        assert [m.content for m in stored] == ["Hello", "Hi there", "I'm back", "Welcome back"]


class TestChatSessionObservers:
    """Test event handlers and disposal."""

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_break_send(self):
        session = make_session([StreamingFixtures.create_stream(["Hi"])])

        def broken(event, data):
            raise RuntimeError("handler failed")

        session.register_event_handler("messages_changed", broken)
        result = await session.send("hello")

        assert result.ok
        assert contents(session)[-1] == (Role.ASSISTANT, "Hi")

    @pytest.mark.asyncio
    async def test_async_handlers_and_unregister(self):
        session = make_session([DONE], [DONE])
        seen = []

        async def handler(event, data):
            seen.append(len(data["messages"]))

        session.register_event_handler("messages_changed", handler)
        await session.send("one")
        await wait_for_condition(lambda: seen == [1])

        session.unregister_event_handler("messages_changed", handler)
        await session.send("two")
        await asyncio.sleep(0.01)

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_dispose(self):
        gate = asyncio.Event()
        store = FakeStore()
        session = ChatSession(FakeTransport([gate]), store=store, owns_resources=True)

        task = session.send("hello")
        await session.dispose()

        assert task.done()
        assert session.transport.closed
        assert store.closed
        with pytest.raises(LuvioError):
            session.send("again")
