from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from december.chat.sessions import ChatSessionStore, default_store
from december.chat.types import (
    Attachment,
    ChatEvent,
    ChatExchange,
    ChatSession,
    Message,
    new_message_id,
    now_iso,
)
from december.llm.client import ModelClient, completion_text, delta_text
from december.llm.formatting import (
    build_message_content,
    build_request_params,
    format_messages,
)
from december.prompting.system_prompt import build_system_prompt, load_preamble

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator, Iterable

    from december.llm.config import ActiveProviderConfig
    from december.llm.providers import Provider

logger = logging.getLogger(__name__)

FALLBACK_RESPONSE = "Sorry, I could not generate a response."


class ContextFetchError(RuntimeError):
    pass


class FileContextSource(Protocol):
    async def get_file_content_tree(self, environment_id: str) -> list[dict[str, Any]]: ...


class ModelEndpoint(Protocol):
    async def complete(self, provider: Provider, payload: dict[str, Any]) -> dict[str, Any]: ...

    def stream(
        self, provider: Provider, payload: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]: ...


class CallState(Enum):
    STARTED = "started"
    CONTEXT_FETCHED = "context_fetched"
    FORMATTED = "formatted"
    SENT = "sent"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class _StreamFailure:
    error: BaseException


_STREAM_END = object()


def _coerce_attachments(
    attachments: Iterable[Attachment | dict[str, Any]] | None,
) -> list[Attachment]:
    out: list[Attachment] = []
    for a in attachments or []:
        out.append(a if isinstance(a, Attachment) else Attachment.from_dict(a))
    return out


class ChatOrchestrator:
    """Drives one chat turn: session bookkeeping, context, formatting, model call.

    Failures are never recovered locally. A user message appended before a
    failure stays in the session.
    """

    def __init__(
        self,
        *,
        config: ActiveProviderConfig,
        context_source: FileContextSource,
        client: ModelEndpoint | None = None,
        sessions: ChatSessionStore | None = None,
        preamble: str | None = None,
        stream_queue_size: int = 64,
    ) -> None:
        self._config = config
        self._context_source = context_source
        self._client = client or ModelClient(timeout_s=config.request_timeout_s)
        self._sessions = sessions or default_store()
        self._preamble = preamble if preamble is not None else load_preamble()
        self._stream_queue_size = max(1, int(stream_queue_size))

    @property
    def config(self) -> ActiveProviderConfig:
        return self._config

    @property
    def sessions(self) -> ChatSessionStore:
        return self._sessions

    def get_or_create_chat_session(self, environment_id: str) -> ChatSession:
        return self._sessions.get_or_create(environment_id)

    def get_chat_session(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    def _trace(self, call_id: str, state: CallState) -> None:
        logger.debug("chat call %s -> %s", call_id, state.value)

    async def _fetch_context(self, environment_id: str) -> list[dict[str, Any]]:
        try:
            return await self._context_source.get_file_content_tree(environment_id)
        except Exception as exc:
            raise ContextFetchError(
                f"failed to load files for environment {environment_id}: {exc}"
            ) from exc

    @staticmethod
    def _canonical_messages(
        system_prompt: str, history: list[Message]
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for msg in history:
            content: Any = msg.content
            if msg.role == "user" and msg.attachments:
                content = build_message_content(msg.content, msg.attachments)
            messages.append({"role": msg.role, "content": content})
        return messages

    async def _prepare_payload(
        self, call_id: str, environment_id: str, session: ChatSession
    ) -> dict[str, Any]:
        tree = await self._fetch_context(environment_id)
        self._trace(call_id, CallState.CONTEXT_FETCHED)

        system_prompt = build_system_prompt(self._preamble, tree)
        canonical = self._canonical_messages(
            system_prompt, self._sessions.history(session)
        )
        payload = {
            "messages": format_messages(canonical, self._config.provider),
            **build_request_params(self._config),
        }
        self._trace(call_id, CallState.FORMATTED)
        return payload

    def _append_user_message(
        self,
        environment_id: str,
        text: str,
        attachments: Iterable[Attachment | dict[str, Any]] | None,
    ) -> tuple[ChatSession, Message]:
        session = self._sessions.get_or_create(environment_id)
        user_msg = Message.new("user", text, _coerce_attachments(attachments))
        self._sessions.append(session, user_msg)
        return session, user_msg

    async def send_message(
        self,
        environment_id: str,
        text: str,
        attachments: Iterable[Attachment | dict[str, Any]] | None = None,
    ) -> ChatExchange:
        call_id = uuid.uuid4().hex[:12]
        provider = self._config.provider
        logger.info("Using provider %s with model %s", provider.name, self._config.model)
        self._trace(call_id, CallState.STARTED)

        session, user_msg = self._append_user_message(environment_id, text, attachments)
        try:
            payload = await self._prepare_payload(call_id, environment_id, session)
            logger.info("Sending request to %s...", provider.name)
            completion = await self._client.complete(provider, payload)
            self._trace(call_id, CallState.SENT)
        except Exception:
            self._trace(call_id, CallState.FAILED)
            raise

        # An empty completion is a degraded success, not an error.
        content = completion_text(completion) or FALLBACK_RESPONSE
        assistant_msg = Message.new("assistant", content)
        self._sessions.append(session, assistant_msg)
        self._trace(call_id, CallState.COMPLETE)
        logger.info("Response received from %s", provider.name)
        return ChatExchange(user_message=user_msg, assistant_message=assistant_msg)

    async def _produce_stream(
        self,
        call_id: str,
        environment_id: str,
        text: str,
        attachments: Iterable[Attachment | dict[str, Any]] | None,
        queue: asyncio.Queue,
    ) -> None:
        provider = self._config.provider
        try:
            session, user_msg = self._append_user_message(
                environment_id, text, attachments
            )
            await queue.put(ChatEvent(type="user", data=user_msg))

            payload = await self._prepare_payload(call_id, environment_id, session)
            logger.info("Starting stream from %s...", provider.name)

            assistant_id = new_message_id("assistant")
            content = ""
            sent = False
            async for chunk in self._client.stream(provider, payload):
                if not sent:
                    self._trace(call_id, CallState.SENT)
                    sent = True
                delta = delta_text(chunk)
                if not delta:
                    continue
                content += delta
                partial = Message(
                    id=assistant_id,
                    role="assistant",
                    content=content,
                    timestamp=now_iso(),
                )
                await queue.put(ChatEvent(type="assistant", data=partial))

            # No fallback text on the streaming path: zero chunks finalize as "".
            final = Message(
                id=assistant_id, role="assistant", content=content, timestamp=now_iso()
            )
            self._sessions.append(session, final)
            self._trace(call_id, CallState.COMPLETE)
            logger.info("Stream completed from %s", provider.name)
            await queue.put(ChatEvent(type="done", data=final))
        except asyncio.CancelledError:
            logger.info("Chat stream %s cancelled by consumer", call_id)
            raise
        except Exception as exc:
            self._trace(call_id, CallState.FAILED)
            await queue.put(_StreamFailure(exc))
            return
        await queue.put(_STREAM_END)

    async def send_message_stream(
        self,
        environment_id: str,
        text: str,
        attachments: Iterable[Attachment | dict[str, Any]] | None = None,
    ) -> AsyncIterator[ChatEvent]:
        """Stream `user`, cumulative `assistant` and final `done` events.

        A producer task feeds a bounded queue. Closing this iterator cancels
        the producer, which aborts the upstream request; the unfinished
        assistant reply is then not recorded.
        """
        call_id = uuid.uuid4().hex[:12]
        logger.info(
            "Starting stream with provider %s using model %s",
            self._config.provider.name,
            self._config.model,
        )
        self._trace(call_id, CallState.STARTED)

        queue: asyncio.Queue = asyncio.Queue(maxsize=self._stream_queue_size)
        producer = asyncio.create_task(
            self._produce_stream(call_id, environment_id, text, attachments, queue)
        )
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_END:
                    return
                if isinstance(item, _StreamFailure):
                    raise item.error
                yield item
        finally:
            if not producer.done():
                producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer
