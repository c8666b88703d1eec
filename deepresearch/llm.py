import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from .config import AISettings
from .json_stream import StreamChunk


logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"system", "user", "assistant"}
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if tag.startswith(text[-size:]):
            return size
    return 0


class ThinkTagExtractor:
    """Route ``<think>...</think>`` spans of a content stream to reasoning chunks.

    Tags may be split across deltas, so a possible partial tag at the end of
    the buffer is held back until the next delta arrives.
    """

    def __init__(self) -> None:
        self.inside = False
        self.buffer = ""

    def _chunk(self, text: str) -> StreamChunk:
        return StreamChunk.reasoning(text) if self.inside else StreamChunk.content(text)

    def feed(self, text: str) -> List[StreamChunk]:
        self.buffer += text
        out: List[StreamChunk] = []
        while self.buffer:
            tag = THINK_CLOSE if self.inside else THINK_OPEN
            idx = self.buffer.find(tag)
            if idx >= 0:
                if idx:
                    out.append(self._chunk(self.buffer[:idx]))
                self.buffer = self.buffer[idx + len(tag) :]
                self.inside = not self.inside
                continue
            keep = _partial_tag_suffix(self.buffer, tag)
            emit = self.buffer[: len(self.buffer) - keep]
            if emit:
                out.append(self._chunk(emit))
            self.buffer = self.buffer[len(self.buffer) - keep :]
            break
        return out

    def flush(self) -> List[StreamChunk]:
        if not self.buffer:
            return []
        out = [self._chunk(self.buffer)]
        self.buffer = ""
        return out


class LLMClient:
    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        provider: str = "openai-compatible",
        max_output_tokens: Optional[int] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.provider = provider
        self.max_output_tokens = max_output_tokens
        self.client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: AISettings) -> "LLMClient":
        return cls(
            base_url=settings.resolved_api_base,
            model=settings.model,
            api_key=settings.api_key,
            provider=settings.provider,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, str]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, str]] = []
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            content = msg.get("content")
            if role not in ALLOWED_ROLES or not isinstance(content, str) or not content.strip():
                continue
            sanitized.append({"role": role, "content": content})
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and error.get("message"):
                    return str(error["message"])
                if isinstance(error, str) and error:
                    return error
                return json.dumps(data, ensure_ascii=True)
        except Exception:
            pass
        try:
            return response.text
        except Exception:
            return ""

    def build_payload(self, prompt: str, system: Optional[str] = None, temperature: Optional[float] = None) -> Dict[str, Any]:
        messages = self._sanitize_messages(
            [{"role": "system", "content": system or ""}, {"role": "user", "content": prompt}]
        )
        if not messages:
            raise ValueError("messages must include at least one non-empty entry")
        if not self.model:
            raise ValueError("model is required")
        payload: Dict[str, Any] = {"model": self.model, "messages": messages, "stream": True}
        if temperature is not None:
            payload["temperature"] = temperature
        if self.max_output_tokens:
            payload["max_tokens"] = self.max_output_tokens
        if self.provider == "openrouter":
            payload["include_reasoning"] = True
        return payload

    async def stream_chat(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Stream a chat completion as reasoning/text/error chunks, always ending with ``end``.

        Transport and HTTP failures are reported as a single error chunk rather
        than raised, so decoders can surface them as stream faults.
        """
        url = f"{self.base_url}/chat/completions"
        try:
            payload = self.build_payload(prompt, system=system, temperature=temperature)
        except ValueError as exc:
            yield StreamChunk.error(str(exc))
            yield StreamChunk.end()
            return
        extractor = ThinkTagExtractor()
        try:
            async with self.client.stream("POST", url, json=payload, headers=self._headers()) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    detail = self._extract_error_detail(resp)
                    logger.warning("Chat completion failed (%s): %s", resp.status_code, detail)
                    yield StreamChunk.error(f"HTTP {resp.status_code}: {detail}")
                    yield StreamChunk.end()
                    return
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    chunk = line[len("data:") :].strip()
                    if chunk == "[DONE]":
                        break
                    try:
                        data = json.loads(chunk)
                    except ValueError:
                        continue
                    if not isinstance(data, dict):
                        continue
                    error = data.get("error")
                    if error:
                        message = error.get("message") if isinstance(error, dict) else str(error)
                        yield StreamChunk.error(str(message))
                        continue
                    choices = data.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}
                    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
                    if reasoning:
                        yield StreamChunk.reasoning(reasoning)
                    content = delta.get("content")
                    if content:
                        for part in extractor.feed(content):
                            yield part
        except httpx.HTTPError as exc:
            logger.warning("Chat completion stream failed: %s", exc)
            yield StreamChunk.error(str(exc) or exc.__class__.__name__)
        for part in extractor.flush():
            yield part
        yield StreamChunk.end()

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
