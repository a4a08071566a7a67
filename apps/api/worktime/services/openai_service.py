from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from worktime.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class StructuredLLM(Protocol):
    async def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        schema_name: str,
        timeout: float,
    ) -> dict[str, Any]: ...


_RETRYABLE_CLIENT_STATUSES = {408, 409, 425, 429}


def _is_retryable_exception(exc: BaseException) -> bool:
    # Timeouts are not retried: the caller's deadline is already spent.
    if isinstance(exc, httpx.TimeoutException):
        return False
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
    return False


def _before_sleep_log(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, httpx.HTTPStatusError):
        logger.warning(
            "AI request retrying due to status %s (attempt %s)",
            exc.response.status_code,
            retry_state.attempt_number,
        )
    else:
        logger.warning(
            "AI request retrying due to transport error (attempt %s)",
            retry_state.attempt_number,
        )


def _upstream_error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error.strip():
            return error
    return f"AI 请求失败 (HTTP {resp.status_code})"


def extract_output_text(resp_json: dict[str, Any]) -> str:
    choices = resp_json.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        first = choices[0]
        message = first.get("message") if isinstance(first.get("message"), dict) else {}
        refusal = message.get("refusal")
        if isinstance(refusal, str) and refusal.strip():
            raise UpstreamError(f"模型拒绝: {refusal}", kind="refusal")
        if first.get("finish_reason") == "length":
            logger.warning("AI output truncated due to length")
            raise UpstreamError(
                "AI 输出过长被截断，请减少输入内容或分批处理", kind="truncated"
            )
        content = message.get("content")
        if isinstance(content, str):
            return content

    # Responses API shape
    if isinstance(resp_json.get("output_text"), str) and resp_json["output_text"].strip():
        return resp_json["output_text"]

    parts: list[str] = []
    output = resp_json.get("output")
    if isinstance(output, list):
        for item in output:
            content = item.get("content") if isinstance(item, dict) else None
            if not isinstance(content, list):
                continue
            for c in content:
                if not isinstance(c, dict):
                    continue
                if c.get("type") == "refusal" and isinstance(c.get("refusal"), str):
                    raise UpstreamError(f"模型拒绝: {c['refusal']}", kind="refusal")
                if c.get("type") in ("output_text", "text") and isinstance(c.get("text"), str):
                    parts.append(c["text"])
    return "".join(parts)


def parse_output_json(text: str) -> dict[str, Any]:
    if not text.strip():
        raise UpstreamError("OpenAI 返回为空", kind="malformed")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("AI output is not valid JSON: %s...", text[:200])
        if not text.rstrip().endswith("}"):
            raise UpstreamError(
                "AI 返回内容不完整，请减少输入内容后重试", kind="truncated"
            ) from exc
        raise UpstreamError("AI 返回内容无法解析", kind="malformed") from exc
    if not isinstance(obj, dict):
        raise UpstreamError("AI 返回内容无法解析", kind="malformed")
    return obj


class OpenAIChatClient:
    """Chat-completions client with strict json_schema output."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str | None,
        model: str,
        max_tokens: int = 8192,
        max_attempts: int = 3,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.max_attempts = max_attempts

    async def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any],
        schema_name: str,
        timeout: float,
    ) -> dict[str, Any]:
        if not self.url.strip() or not (self.api_key or "").strip():
            raise UpstreamError("AI 配置不完整，请先在设置页填写", kind="not_configured")

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            },
            "stream": False,
        }
        headers = {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
        }

        resp_json: dict[str, Any] | None = None
        try:
            # One deadline covers every attempt and backoff sleep.
            async with asyncio.timeout(timeout):
                async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
                    async for attempt in AsyncRetrying(
                        stop=stop_after_attempt(self.max_attempts),
                        wait=wait_random_exponential(multiplier=0.4, max=3.0),
                        retry=retry_if_exception(_is_retryable_exception),
                        reraise=True,
                        before_sleep=_before_sleep_log,
                    ):
                        with attempt:
                            resp = await client.post(self.url, headers=headers, json=payload)
                            resp.raise_for_status()
                            resp_json = resp.json()
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.error("AI request timed out after %ss", timeout)
            raise UpstreamError("AI 请求超时，请稍后重试", kind="timeout") from exc
        except httpx.HTTPStatusError as exc:
            message = _upstream_error_message(exc.response)
            logger.warning(
                "AI request failed: status=%s, message=%s",
                exc.response.status_code,
                message,
            )
            raise UpstreamError(
                message, kind="http", upstream_status=exc.response.status_code
            ) from exc
        except httpx.TransportError as exc:
            logger.error("AI request transport error: %s", exc)
            raise UpstreamError("AI 调用失败，请检查网络或 API 配置", kind="transport") from exc
        except ValueError as exc:
            raise UpstreamError("AI 响应不是合法 JSON", kind="malformed") from exc

        if not isinstance(resp_json, dict):
            raise UpstreamError("AI 返回为空", kind="malformed")

        return parse_output_json(extract_output_text(resp_json))
