from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import AsyncIterator

    from december.llm.providers import Provider

logger = logging.getLogger(__name__)

_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class UpstreamRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def completion_text(completion: dict[str, Any]) -> str | None:
    choices = completion.get("choices") if isinstance(completion, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def delta_text(chunk: dict[str, Any]) -> str | None:
    choices = chunk.get("choices") if isinstance(chunk, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or "").strip()
        if isinstance(err, str):
            return err.strip()
    return ""


def _is_done_line(line: str) -> bool:
    raw = (line or "").strip()
    return raw.startswith(_SSE_DATA_PREFIX) and raw[len(_SSE_DATA_PREFIX) :].strip() == _SSE_DONE


def _parse_sse_line(line: str) -> dict[str, Any] | None:
    raw = (line or "").strip()
    if not raw.startswith(_SSE_DATA_PREFIX):
        return None
    data = raw[len(_SSE_DATA_PREFIX) :].strip()
    if not data or data == _SSE_DONE:
        return None
    try:
        parsed = json.loads(data)
    except Exception:
        logger.debug("Skipping malformed stream line: %s", data[:200])
        return None
    return parsed if isinstance(parsed, dict) else None


class ModelClient:
    """OpenAI-compatible `/chat/completions` client over httpx.

    The httpx timeout is the only timeout applied to provider calls. Errors are
    surfaced as UpstreamRequestError without retries.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_s = float(timeout_s)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport)

    @staticmethod
    def _url(provider: Provider) -> str:
        return f"{provider.base_url.rstrip('/')}/chat/completions"

    @staticmethod
    def _headers(provider: Provider) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        return headers

    async def complete(self, provider: Provider, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            try:
                res = await client.post(
                    self._url(provider), json=payload, headers=self._headers(provider)
                )
            except httpx.HTTPError as exc:
                raise UpstreamRequestError(
                    f"{provider.name} request failed: {exc}"
                ) from exc

        data: Any
        try:
            data = res.json()
        except Exception:
            data = {}

        if res.status_code >= 400:
            msg = _error_message(data)
            raise UpstreamRequestError(
                f"{provider.name} request failed ({res.status_code}): {msg or 'unknown error'}",
                status_code=res.status_code,
            )
        if not isinstance(data, dict):
            raise UpstreamRequestError(
                f"{provider.name} returned a non-object response",
                status_code=res.status_code,
            )
        return data

    async def stream(
        self, provider: Provider, payload: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]:
        body = {**payload, "stream": True}
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    self._url(provider),
                    json=body,
                    headers=self._headers(provider),
                ) as res:
                    if res.status_code >= 400:
                        raw = await res.aread()
                        try:
                            data = json.loads(raw or b"{}")
                        except Exception:
                            data = {}
                        msg = _error_message(data)
                        raise UpstreamRequestError(
                            f"{provider.name} stream failed ({res.status_code}): {msg or 'unknown error'}",
                            status_code=res.status_code,
                        )
                    async for line in res.aiter_lines():
                        if _is_done_line(line):
                            break
                        chunk = _parse_sse_line(line)
                        if chunk is not None:
                            yield chunk
            except httpx.HTTPError as exc:
                raise UpstreamRequestError(
                    f"{provider.name} stream failed: {exc}"
                ) from exc
