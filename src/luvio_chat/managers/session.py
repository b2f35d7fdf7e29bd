"""
Chat session controller for Luvio Chat.

This module owns one conversation with the completion service:
- The ordered message list and the request lifecycle
- Streaming of replies into an in-place assistant message
- Supersession and explicit cancellation of in-flight requests
- Fire-and-forget persistence of finished messages
- Observer notifications for message, state and error changes
"""

import asyncio
from contextlib import aclosing
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Sequence, Set, Tuple

from .attachments import AttachmentEncoder
from .cancellation import CancellationManager, RequestToken
from .outcome import Outcome, SendResult, classify_exception
from ..models.chat import Attachment, Message, Role, new_id
from ..models.modules import get_module
from ..storage.conversations import ConversationStore
from ..streaming.assembler import Delta, DeltaAssembler
from ..streaming.decoder import FrameDecoder
from ..streaming.throttle import UpdateThrottler
from ..transport.base import CompletionTransport
from ..utils.config import LuvioConfig
from ..utils.errors import LuvioError, ValidationError
from ..utils.logging import get_logger


logger = get_logger("luvio-chat.session")


class SessionState(Enum):
    """Request lifecycle states."""
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    ABORTED = "aborted"


EventHandler = Callable[[str, Dict[str, Any]], Any]


class ChatSession:
    """Streaming chat session.

    ``send`` appends the user turn immediately and runs the request as a
    task; progress is observed through event handlers registered with
    ``register_event_handler``:

    - ``messages_changed``: ``{"messages": tuple of Message}``
    - ``state_changed``: ``{"state": SessionState}``
    - ``error``: ``{"outcome": Outcome, "message": str}``
    """

    def __init__(
        self,
        transport: CompletionTransport,
        store: Optional[ConversationStore] = None,
        encoder: Optional[AttachmentEncoder] = None,
        system_prompt: Optional[str] = None,
        module_id: Optional[str] = None,
        user_id: Optional[str] = None,
        publish_interval: float = 0.016,
        max_buffer_size: int = 1024 * 1024,
        owns_resources: bool = False
    ):
        """
        Initialize chat session.

        Args:
            transport: Completion transport used for every send
            store: Conversation persistence (nothing is persisted if None)
            encoder: Attachment encoder (a default one is created if None)
            system_prompt: System prompt override; defaults to the module's
            module_id: Brain module the conversation belongs to
            user_id: Identifier of the user, forwarded to the service
            publish_interval: Minimum seconds between content publishes
            max_buffer_size: Frame decoder carry-over limit
            owns_resources: Close transport, encoder and store on dispose
        """
        self.transport = transport
        self.store = store
        self.encoder = encoder or AttachmentEncoder()
        self.module_id = module_id
        self.system_prompt = system_prompt or get_module(module_id).system_prompt
        self.user_id = user_id
        self.publish_interval = publish_interval
        self.max_buffer_size = max_buffer_size
        self._owns_resources = owns_resources
        self._owns_encoder = owns_resources or encoder is None

        self.state = SessionState.IDLE
        self.cancellation = CancellationManager()
        self.last_result: Optional[SendResult] = None

        self._messages: List[Message] = []
        self._open_message: Optional[Message] = None
        self._conversation_id: Optional[str] = None
        self._conversation: Optional[asyncio.Future] = None
        self._request_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._event_handlers: Dict[str, List[EventHandler]] = {}
        self._disposed = False

    @classmethod
    def from_config(
        cls,
        config: LuvioConfig,
        store: Optional[ConversationStore] = None
    ) -> "ChatSession":
        """Build a session and its transport and encoder from configuration."""
        from ..transport.completion import CompletionClient

        return cls(
            transport=CompletionClient.from_config(config.client, config.streaming.chunk_size),
            store=store,
            encoder=AttachmentEncoder.from_config(config.attachments),
            system_prompt=config.client.system_prompt,
            module_id=config.client.module_id,
            user_id=config.client.user_id,
            publish_interval=config.streaming.publish_interval,
            max_buffer_size=config.streaming.max_buffer_size,
            owns_resources=True,
        )

    @property
    def messages(self) -> Tuple[Message, ...]:
        """Snapshot of the conversation, oldest first."""
        return tuple(self._messages)

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def is_busy(self) -> bool:
        """True while a request is outstanding."""
        return self.cancellation.active is not None

    # Inbound operations

    def send(
        self,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None
    ) -> Optional[asyncio.Task]:
        """
        Send a user turn.

        Must be called from a running event loop. Any in-flight request is
        aborted first. The user message is appended before this returns.

        Args:
            text: Message text
            attachments: Optional attachments of the turn

        Returns:
            Task resolving to the ``SendResult``, or None when the input
            was rejected (empty text and no attachments)
        """
        if self._disposed:
            raise LuvioError("Chat session has been disposed")

        attachments = list(attachments or [])
        if not text.strip() and not attachments:
            error = ValidationError("text", text, "a message needs text or an attachment")
            self.last_result = classify_exception(error)
            logger.debug("send_rejected", reason=error.constraint)
            return None

        token = self.cancellation.start_request()
        self._close_open_message()

        user_message = Message.user(text, attachments)
        self._messages.append(user_message)
        self._notify("messages_changed", {"messages": self.messages})
        self._set_state(SessionState.SENDING)

        # The user turn is saved even if this request is later aborted
        conversation = self._conversation_for(text.strip())
        if conversation is not None:
            self._spawn(self._persist_user_message(conversation, user_message.content))

        has_image = any(a.is_image for a in attachments)
        task = asyncio.get_running_loop().create_task(
            self._run_request(token, list(self._messages), conversation, has_image)
        )
        self._request_task = task

        logger.info(
            "message_sent",
            request=token.id,
            attachments=len(attachments),
            has_image=has_image,
            history=len(self._messages)
        )
        return task

    def stop(self) -> None:
        """Abort the in-flight request, keeping any partial reply."""
        token = self.cancellation.active
        if token is None:
            return
        self.cancellation.cancel(token)
        self._close_open_message()
        self._set_state(SessionState.ABORTED)
        logger.info("request_stopped", request=token.id)

    def clear(self) -> None:
        """Abort any request and start an empty conversation."""
        self.cancellation.cancel(self.cancellation.active)
        self._close_open_message()
        self._messages.clear()
        self._conversation_id = None
        self._conversation = None
        self._set_state(SessionState.IDLE)
        self._notify("messages_changed", {"messages": self.messages})
        logger.info("session_cleared")

    async def load_conversation(self, conversation_id: str) -> None:
        """Replace the message list with a stored conversation."""
        if self.store is None:
            raise LuvioError("No conversation store configured")

        self.cancellation.cancel(self.cancellation.active)
        self._close_open_message()
        messages = await self.store.load_messages(conversation_id)

        self._messages = list(messages)
        self._conversation_id = conversation_id
        self._conversation = asyncio.get_running_loop().create_future()
        self._conversation.set_result(conversation_id)
        self._set_state(SessionState.IDLE)
        self._notify("messages_changed", {"messages": self.messages})
        logger.info("conversation_loaded", conversation_id=conversation_id, messages=len(messages))

    async def dispose(self) -> None:
        """Abort work, wait for pending saves and release resources."""
        if self._disposed:
            return
        self._disposed = True
        self.cancellation.cancel(self.cancellation.active)

        if self._request_task is not None:
            await asyncio.gather(self._request_task, return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._owns_encoder:
            await self.encoder.close()
        if self._owns_resources:
            await self.transport.close()
            if self.store is not None:
                await self.store.close()

        self._event_handlers.clear()
        logger.info("session_disposed")

    # Observers

    def register_event_handler(self, event: str, handler: EventHandler) -> None:
        """Register an event handler."""
        self._event_handlers.setdefault(event, []).append(handler)
        logger.debug("event_handler_registered", event_type=event)

    def unregister_event_handler(self, event: str, handler: EventHandler) -> None:
        """Unregister an event handler."""
        if event in self._event_handlers:
            self._event_handlers[event].remove(handler)
            logger.debug("event_handler_unregistered", event_type=event)

    # Request lifecycle

    async def _run_request(
        self,
        token: RequestToken,
        history: List[Message],
        conversation: Optional[asyncio.Future],
        has_image: bool
    ) -> SendResult:
        response_id = new_id()
        assembler = DeltaAssembler(response_id)
        decoder = FrameDecoder(max_buffer_size=self.max_buffer_size)
        throttler = UpdateThrottler(
            lambda delta: self._apply_delta(token, delta),
            interval=self.publish_interval
        )
        conversation_id: Optional[str] = None

        if token.aborted:
            # Superseded or stopped before the task first ran
            return self._finish_aborted(token, response_id)
        token.bind(asyncio.current_task())

        try:
            conversation_id = await self._await_conversation(conversation)

            payload = await self._build_payload(history, conversation_id, has_image)

            async with aclosing(self.transport.stream(payload)) as chunks:
                async for chunk in chunks:
                    if not self.cancellation.is_current(token):
                        break
                    if self.state is SessionState.SENDING:
                        self._set_state(SessionState.STREAMING)

                    for frame in decoder.feed(chunk):
                        delta = assembler.consume(frame)
                        if delta is not None:
                            throttler.submit(delta)

                    if decoder.finished:
                        break

            decoder.close()
            throttler.flush()

        except asyncio.CancelledError:
            throttler.flush()
            return self._finish_aborted(token, response_id)

        except Exception as e:
            throttler.flush()
            if not self.cancellation.is_current(token):
                return self._finish_aborted(token, response_id)
            return self._finish_failed(token, response_id, e)

        if not self.cancellation.is_current(token):
            return self._finish_aborted(token, response_id)

        content = assembler.content
        self._close_open_message()
        self.cancellation.release(token)
        self._set_state(SessionState.IDLE)

        if conversation_id is not None and content:
            self._spawn(self._persist(conversation_id, Role.ASSISTANT, content))

        logger.info(
            "stream_completed",
            request=token.id,
            response_id=response_id,
            fragments=assembler.fragment_count,
            length=len(content),
            **decoder.get_stats()
        )
        self.last_result = SendResult(Outcome.SUCCESS)
        return self.last_result

    def _finish_aborted(self, token: RequestToken, response_id: str) -> SendResult:
        if self.cancellation.active is token:
            # Cancelled from outside the session, e.g. loop shutdown
            self.cancellation.cancel(token)
            self._close_open_message()
            self._set_state(SessionState.ABORTED)
        logger.info("stream_aborted", request=token.id, response_id=response_id)
        result = SendResult(Outcome.ABORTED)
        if self._request_task is asyncio.current_task():
            self.last_result = result
        return result

    def _finish_failed(self, token: RequestToken, response_id: str, error: Exception) -> SendResult:
        self._close_open_message()
        self.cancellation.release(token)
        self._set_state(SessionState.IDLE)

        result = classify_exception(error)
        logger.error(
            "stream_failed",
            request=token.id,
            response_id=response_id,
            outcome=result.outcome.value,
            status=result.status,
            error=str(error),
            error_type=type(error).__name__
        )
        self.last_result = result
        self._notify("error", {"outcome": result.outcome, "message": result.message})
        return result

    def _apply_delta(self, token: RequestToken, delta: Delta) -> None:
        """Publish target of the throttler; ignores superseded requests."""
        if not self.cancellation.is_current(token):
            return

        message = self._open_message
        if message is None or message.id != delta.response_id:
            message = Message.assistant(delta.response_id, delta.content)
            self._messages.append(message)
            self._open_message = message
        else:
            message.content = delta.content

        self._notify("messages_changed", {"messages": self.messages})

    def _close_open_message(self) -> None:
        self._open_message = None

    def _conversation_for(self, seed_text: str) -> Optional[asyncio.Future]:
        """Future of the conversation id, creating the conversation on first use."""
        if self.store is None:
            return None
        if self._conversation is None:
            self._conversation = asyncio.get_running_loop().create_task(
                self._create_conversation(seed_text)
            )
        return self._conversation

    async def _create_conversation(self, seed_text: str) -> Optional[str]:
        try:
            return await self.store.ensure_conversation(self.module_id, seed_text)
        except Exception as e:
            logger.error("conversation_create_failed", error=str(e))
            return None

    async def _await_conversation(self, conversation: Optional[asyncio.Future]) -> Optional[str]:
        if conversation is None:
            return None
        # Shared by every turn; cancelling one request must not cancel it
        conversation_id = await asyncio.shield(conversation)
        if conversation is self._conversation:
            self._conversation_id = conversation_id
        return conversation_id

    async def _persist_user_message(self, conversation: asyncio.Future, content: str) -> None:
        conversation_id = await self._await_conversation(conversation)
        if conversation_id is not None:
            await self._persist(conversation_id, Role.USER, content)

    async def _build_payload(
        self,
        history: List[Message],
        conversation_id: Optional[str],
        has_image: bool
    ) -> Dict[str, Any]:
        return {
            "messages": await self.encoder.prepare_messages(history),
            "systemPrompt": self.system_prompt,
            "moduleId": self.module_id,
            "userId": self.user_id,
            "conversationId": conversation_id,
            "hasImage": has_image,
        }

    async def _persist(self, conversation_id: str, role: Role, content: str) -> None:
        try:
            await self.store.append_message(conversation_id, role.value, content)
        except Exception as e:
            logger.error(
                "message_persist_failed",
                conversation_id=conversation_id,
                role=role.value,
                error=str(e)
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_state(self, state: SessionState) -> None:
        if self.state is state:
            return
        previous, self.state = self.state, state
        logger.debug("state_changed", previous=previous.value, state=state.value)
        self._notify("state_changed", {"state": state})

    def _notify(self, event: str, data: Dict[str, Any]) -> None:
        """Call every handler of ``event``; coroutine handlers run as tasks."""
        for handler in list(self._event_handlers.get(event, [])):
            try:
                result = handler(event, data)
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception as e:
                logger.error(
                    "event_handler_error",
                    event_type=event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )


__all__ = ['ChatSession', 'SessionState']
