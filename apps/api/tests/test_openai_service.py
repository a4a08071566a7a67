from __future__ import annotations

import asyncio
import json
import time
import warnings

import httpx
import pytest
import respx

from worktime.core.errors import UpstreamError
from worktime.services.normalizer import NORMALIZE_SCHEMA
from worktime.services.openai_service import OpenAIChatClient, extract_output_text

AI_URL = "https://ai.example.test/v1/chat/completions"


def _client(**overrides) -> OpenAIChatClient:
    fields = {"url": AI_URL, "api_key": "test-ai-key", "model": "gpt-4o-mini", "max_tokens": 512}
    fields.update(overrides)
    return OpenAIChatClient(**fields)


async def _complete(client: OpenAIChatClient, timeout: float = 5.0) -> dict:
    return await client.complete_json(
        system_prompt="system",
        user_prompt="user",
        schema=NORMALIZE_SCHEMA,
        schema_name="work_list",
        timeout=timeout,
    )


def _chat(content: str, *, finish_reason: str = "stop", refusal: str | None = None) -> dict:
    return {
        "choices": [
            {
                "finish_reason": finish_reason,
                "message": {"role": "assistant", "content": content, "refusal": refusal},
            }
        ]
    }


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_sends_strict_schema_and_parses() -> None:
    route = respx.post(AI_URL).mock(
        return_value=httpx.Response(
            200, json=_chat(json.dumps({"days": [{"date": "2026-02-02", "items": ["a"]}]}))
        )
    )

    obj = await _complete(_client())

    assert obj == {"days": [{"date": "2026-02-02", "items": ["a"]}]}
    request = route.calls.last.request
    assert request.headers["authorization"] == "Bearer test-ai-key"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 512
    assert body["stream"] is False
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert body["response_format"] == {
        "type": "json_schema",
        "json_schema": {"name": "work_list", "strict": True, "schema": NORMALIZE_SCHEMA},
    }


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_retries_server_errors_then_succeeds() -> None:
    route = respx.post(AI_URL).mock(
        side_effect=[
            httpx.Response(503, json={"error": {"message": "busy"}}),
            httpx.Response(200, json=_chat('{"days": []}')),
        ]
    )

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        obj = await _complete(_client())

    assert route.call_count == 2
    assert not [w for w in caught if "tenacity" in w.filename or "tenacity" in str(w.message)]
    assert obj == {"days": []}


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_does_not_retry_client_errors() -> None:
    route = respx.post(AI_URL).mock(
        return_value=httpx.Response(400, json={"error": {"message": "bad schema"}})
    )

    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())

    assert route.call_count == 1
    assert exc.value.kind == "http"
    assert exc.value.upstream_status == 400
    assert exc.value.message == "bad schema"
    assert exc.value.status_code == 502


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_timeout_is_distinct_and_not_retried() -> None:
    route = respx.post(AI_URL).mock(side_effect=httpx.ReadTimeout)

    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())

    assert route.call_count == 1
    assert exc.value.kind == "timeout"
    assert exc.value.message == "AI 请求超时，请稍后重试"
    assert exc.value.status_code == 504


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_transport_error_after_retries() -> None:
    route = respx.post(AI_URL).mock(side_effect=httpx.ConnectError)

    with pytest.raises(UpstreamError) as exc:
        await _complete(_client(max_attempts=2))

    assert route.call_count == 2
    assert exc.value.kind == "transport"
    assert exc.value.message == "AI 调用失败，请检查网络或 API 配置"


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_length_finish_is_truncated() -> None:
    respx.post(AI_URL).mock(
        return_value=httpx.Response(200, json=_chat('{"days": [', finish_reason="length"))
    )

    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())

    assert exc.value.kind == "truncated"
    assert exc.value.message == "AI 输出过长被截断，请减少输入内容或分批处理"


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_unparseable_output() -> None:
    route = respx.post(AI_URL).mock(return_value=httpx.Response(200, json=_chat('{"days": [')))
    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())
    assert exc.value.kind == "truncated"
    assert exc.value.message == "AI 返回内容不完整，请减少输入内容后重试"

    route.mock(return_value=httpx.Response(200, json=_chat("{days: nope}")))
    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())
    assert exc.value.kind == "malformed"
    assert exc.value.message == "AI 返回内容无法解析"

    route.mock(return_value=httpx.Response(200, json=_chat("")))
    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())
    assert exc.value.kind == "malformed"


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_refusal_is_a_hard_stop() -> None:
    route = respx.post(AI_URL).mock(
        return_value=httpx.Response(200, json=_chat("", refusal="I can't help with that"))
    )

    with pytest.raises(UpstreamError) as exc:
        await _complete(_client())

    assert route.call_count == 1
    assert exc.value.kind == "refusal"
    assert exc.value.retryable is False
    assert exc.value.message == "模型拒绝: I can't help with that"


@pytest.mark.asyncio
async def test_complete_json_requires_configuration() -> None:
    with pytest.raises(UpstreamError) as exc:
        await _complete(_client(api_key=None))
    assert exc.value.kind == "not_configured"
    assert exc.value.message == "AI 配置不完整，请先在设置页填写"


def test_extract_output_text_falls_back_to_responses_shape() -> None:
    assert extract_output_text({"output_text": '{"days": []}'}) == '{"days": []}'
    assert (
        extract_output_text(
            {
                "output": [
                    {"content": [{"type": "output_text", "text": '{"days"'}]},
                    {"content": [{"type": "output_text", "text": ": []}"}]},
                ]
            }
        )
        == '{"days": []}'
    )
    with pytest.raises(UpstreamError) as exc:
        extract_output_text({"output": [{"content": [{"type": "refusal", "refusal": "no"}]}]})
    assert exc.value.kind == "refusal"


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_retries_any_server_error() -> None:
    route = respx.post(AI_URL).mock(
        side_effect=[
            httpx.Response(501, json={"error": {"message": "not implemented"}}),
            httpx.Response(200, json=_chat('{"days": []}')),
        ]
    )

    assert await _complete(_client()) == {"days": []}
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_complete_json_timeout_bounds_all_attempts() -> None:
    async def _slow_unavailable(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.4)
        return httpx.Response(503, json={"error": {"message": "busy"}})

    respx.post(AI_URL).mock(side_effect=_slow_unavailable)

    started = time.monotonic()
    with pytest.raises(UpstreamError) as exc:
        await _complete(_client(max_attempts=5), timeout=0.5)
    elapsed = time.monotonic() - started

    assert exc.value.kind == "timeout"
    assert exc.value.status_code == 504
    assert elapsed < 1.5
