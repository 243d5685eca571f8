# homeledger/llm.py
"""
Thin client for DeepInfra's OpenAI-compatible chat-completions endpoint.

Shared by the vision extractor, the inventory resolver and the maintenance
advisor. Callers own the httpx.AsyncClient so Celery tasks (one event loop
per task) never reuse a client bound to another loop.
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from homeledger.config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

_default_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _default_client
    if _default_client is None:
        _default_client = httpx.AsyncClient(timeout=settings.llm_timeout)
    return _default_client


async def close_http_client() -> None:
    global _default_client
    if _default_client is not None:
        await _default_client.aclose()
        _default_client = None


class LLMError(Exception):
    pass


def parse_json_reply(text: str) -> Dict[str, Any]:
    """Pull a JSON object out of a model reply, tolerating ```json fences and chatter."""
    if not text:
        raise LLMError("Empty reply from model")
    match = _FENCE_RE.search(text)
    candidate = match.group(1) if match else text
    candidate = candidate.strip()
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        # fall back to the outermost {...}
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise LLMError("Reply did not contain JSON")
        try:
            data = json.loads(candidate[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMError(f"Reply JSON is malformed: {e}")
    if not isinstance(data, dict):
        raise LLMError("Reply JSON is not an object")
    return data


class LLMClient:
    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.http = http or get_http_client()
        self.base_url = (base_url or settings.deepinfra_base).rstrip("/")
        self.token = token if token is not None else settings.deepinfra_token
        self.attempts = attempts or settings.llm_attempts
        self.timeout = timeout or settings.llm_timeout

    async def _post_with_retry(self, url: str, payload: Dict[str, Any], backoff: float = 1.0) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        delay = backoff
        for attempt in range(1, self.attempts + 1):
            try:
                resp = await self.http.post(url, json=payload, headers=headers, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPError, ValueError) as e:
                if attempt == self.attempts:
                    logger.exception("Request failed after %s attempts to %s", self.attempts, url)
                    raise LLMError(str(e)) from e
                logger.warning("Request attempt %s failed, retrying in %.1fs: %s", attempt, delay, e)
                await asyncio.sleep(delay)
                delay *= 2
        raise LLMError("No attempts made")

    async def chat_completion(self, messages: List[Dict[str, Any]], model: str, max_tokens: int = 1024) -> str:
        if not self.token:
            raise LLMError("DEEPINFRA_TOKEN is not configured")
        url = f"{self.base_url}/chat/completions"
        payload = {"model": model, "messages": messages, "max_tokens": max_tokens, "temperature": 0}
        resp = await self._post_with_retry(url, payload)
        choices = resp.get("choices")
        if not choices or not choices[0].get("message"):
            raise LLMError("Invalid LLM response")
        return choices[0]["message"].get("content") or ""

    async def chat_json(self, messages: List[Dict[str, Any]], model: str, max_tokens: int = 1024) -> Dict[str, Any]:
        return parse_json_reply(await self.chat_completion(messages, model=model, max_tokens=max_tokens))
