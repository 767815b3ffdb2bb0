import asyncio
import dataclasses
import json
from collections import Counter

import pytest

from fakes import Pause, ScriptedBackend
from seo_llm_core import GenerationClient, GenerationOptions
from seo_llm_core.config import JSON_ONLY_INSTRUCTION
from seo_llm_core.credential_pool import CredentialState
from seo_llm_core.errors import (
    AllCredentialsDeadError,
    AttemptsExhaustedError,
    AuthorizationFailure,
    CallTimeout,
    DailyQuotaExhaustedError,
    InvalidRequest,
    MalformedStructuredOutput,
    RateLimited,
    ServerFault,
)

SYSTEM = "You are an SEO assistant."
PROMPT = "Suggest three keywords for running shoes."


def make_client(api_keys, settings, script, **backend_kwargs):
    backend = ScriptedBackend(script, **backend_kwargs)
    return GenerationClient(api_keys, settings=settings, backend=backend), backend


@pytest.mark.asyncio
async def test_rate_limited_key_is_rotated_and_cooled(api_keys, fast_settings) -> None:
    client, backend = make_client(
        api_keys, fast_settings, [RateLimited("429 RESOURCE_EXHAUSTED"), '{"keywords": []}']
    )

    text = await client.generate(SYSTEM, PROMPT)

    assert json.loads(text) == {"keywords": []}
    assert backend.api_keys_used == api_keys[:2]
    assert client.pool.state_of(0) is CredentialState.COOLING
    assert client.pool.state_of(1) is CredentialState.ALIVE
    stats = client.pool_stats()
    assert stats["total_rate_limit_errors"] == 1
    assert stats["active_cooling"] == 1


@pytest.mark.asyncio
async def test_forbidden_keys_are_disabled_permanently(api_keys, fast_settings) -> None:
    client, backend = make_client(
        api_keys,
        fast_settings,
        [AuthorizationFailure("403 Forbidden"), AuthorizationFailure("403 Forbidden"), '{"ok": 1}'],
    )

    assert json.loads(await client.generate(SYSTEM, PROMPT)) == {"ok": 1}
    assert backend.api_keys_used == api_keys
    assert client.pool.alive_count == 1
    assert client.pool.state_of(0) is CredentialState.DEAD
    assert client.pool.state_of(1) is CredentialState.DEAD

    # Later calls only ever use the surviving key
    await client.generate(SYSTEM, PROMPT)
    await client.generate(SYSTEM, PROMPT)
    assert backend.api_keys_used[3:] == [api_keys[2], api_keys[2]]


@pytest.mark.asyncio
async def test_all_keys_forbidden_raises_and_later_calls_fail_fast(api_keys, fast_settings) -> None:
    client, backend = make_client(
        api_keys, fast_settings, [AuthorizationFailure("403")] * len(api_keys)
    )

    with pytest.raises(AllCredentialsDeadError) as excinfo:
        await client.generate(SYSTEM, PROMPT)
    assert excinfo.value.condition == "all_credentials_dead"
    assert excinfo.value.retryable is True
    assert len(backend.calls) == 3

    with pytest.raises(AllCredentialsDeadError):
        await client.generate(SYSTEM, PROMPT)
    assert len(backend.calls) == 3


@pytest.mark.asyncio
async def test_two_forbidden_keys_stop_after_exactly_two_attempts(fast_settings) -> None:
    client, backend = make_client(
        ["key-one-000001", "key-two-000002"],
        fast_settings,
        [AuthorizationFailure("403"), AuthorizationFailure("403"), '{"never": "reached"}'],
    )

    with pytest.raises(AllCredentialsDeadError):
        await client.generate(SYSTEM, PROMPT)

    assert backend.api_keys_used == ["key-one-000001", "key-two-000002"]
    assert client.pool.alive_count == 0


@pytest.mark.asyncio
async def test_daily_quota_on_every_key_raises(api_keys, fast_settings) -> None:
    daily = RateLimited("You exceeded your current quota", daily=True)
    client, backend = make_client(api_keys, fast_settings, [daily, daily, daily])

    with pytest.raises(DailyQuotaExhaustedError):
        await client.generate(SYSTEM, PROMPT)
    assert client.pool_stats()["all_daily_exhausted"] is True

    with pytest.raises(DailyQuotaExhaustedError):
        await client.generate(SYSTEM, PROMPT)
    assert len(backend.calls) == 3

    await client.reset_daily_exhaustion()
    assert json.loads(await client.generate(SYSTEM, PROMPT)) == {"ok": True}


@pytest.mark.asyncio
async def test_single_cooling_key_is_waited_out_instead_of_failing(fast_settings) -> None:
    client, backend = make_client(["only-key-000001"], fast_settings, [RateLimited("429"), '{"a": 1}'])

    assert json.loads(await client.generate(SYSTEM, PROMPT)) == {"a": 1}
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_server_fault_backs_off_and_rotates(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, [ServerFault("503 unavailable"), '{"a": 1}'])

    await client.generate(SYSTEM, PROMPT)

    assert backend.api_keys_used == api_keys[:2]
    assert client.pool.state_of(0) is CredentialState.ALIVE


@pytest.mark.asyncio
async def test_timeout_retries_with_shrunk_prompt(api_keys, fast_settings) -> None:
    settings = dataclasses.replace(fast_settings, timeout_base=0.05, timeout_max=0.05)

    def echo(api_key, request):
        return json.dumps({"answered": request.prompt})

    client, backend = make_client(api_keys, settings, [Pause(1.0), echo])
    prompt = "x" * 1000

    text = await client.generate(SYSTEM, prompt)

    assert [len(request.prompt) for _, request in backend.calls] == [1000, 600]
    assert json.loads(text) == {"answered": prompt[:600]}


@pytest.mark.asyncio
async def test_timeouts_on_every_attempt_exhaust(fast_settings) -> None:
    settings = dataclasses.replace(fast_settings, timeout_base=0.05, timeout_max=0.05)
    client, backend = make_client(["only-key-000001"], settings, [Pause(1.0), Pause(1.0)])

    with pytest.raises(AttemptsExhaustedError) as excinfo:
        await client.generate(SYSTEM, PROMPT)

    assert excinfo.value.attempts == 2
    assert isinstance(excinfo.value.last_error, CallTimeout)
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_json_response_is_repaired(api_keys, fast_settings) -> None:
    client, _ = make_client(
        api_keys, fast_settings, ['Here you go:\n```json\n{"title": "Shoes",}\n```']
    )

    assert json.loads(await client.generate(SYSTEM, PROMPT)) == {"title": "Shoes"}


@pytest.mark.asyncio
async def test_broken_json_falls_back_to_fallback_model(fast_settings) -> None:
    client, backend = make_client(
        ["only-key-000001"], fast_settings, ["not json", "still not json", '{"ok": true}']
    )

    text = await client.generate(SYSTEM, PROMPT, GenerationOptions(temperature=0.9))

    assert json.loads(text) == {"ok": True}
    assert len(backend.calls) == 3
    _, fallback = backend.calls[-1]
    assert fallback.model == fast_settings.fallback_model
    assert fallback.temperature == 0.1
    assert fallback.json_mode is True
    assert fallback.prompt.endswith(JSON_ONLY_INSTRUCTION)
    assert [r.model for _, r in backend.calls[:2]] == [fast_settings.model] * 2


@pytest.mark.asyncio
async def test_failed_fallback_exhausts_attempts(fast_settings) -> None:
    client, backend = make_client(["only-key-000001"], fast_settings, ["nope", "nope", "nope"])

    with pytest.raises(AttemptsExhaustedError) as excinfo:
        await client.generate(SYSTEM, PROMPT)

    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_error, MalformedStructuredOutput)


@pytest.mark.asyncio
async def test_plain_text_mode_skips_json_handling(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, ["Just a sentence."])

    text = await client.generate(SYSTEM, PROMPT, GenerationOptions(json_mode=False))

    assert text == "Just a sentence."
    assert backend.calls[0][1].json_mode is False


@pytest.mark.asyncio
async def test_options_reach_the_backend(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, ['{"a": 1}'])
    options = GenerationOptions(temperature=0.3, max_output_tokens=512, use_external_retrieval=True)

    await client.generate(SYSTEM, PROMPT, options)

    _, request = backend.calls[0]
    assert request.system_instruction == SYSTEM
    assert request.prompt == PROMPT
    assert request.temperature == 0.3
    assert request.max_output_tokens == 512
    assert request.use_external_retrieval is True


@pytest.mark.asyncio
async def test_invalid_request_propagates_without_retry(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, [InvalidRequest("400 bad schema")])

    with pytest.raises(InvalidRequest):
        await client.generate(SYSTEM, PROMPT)
    assert len(backend.calls) == 1
    assert client.pool.alive_count == 3


@pytest.mark.asyncio
async def test_generate_json_returns_parsed_value(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, ["```json\n[1, 2, 3]\n```"])

    assert await client.generate_json(SYSTEM, PROMPT, GenerationOptions(json_mode=False)) == [1, 2, 3]
    assert backend.calls[0][1].json_mode is True


@pytest.mark.asyncio
async def test_concurrent_calls_share_the_rotation(api_keys, fast_settings) -> None:
    client, backend = make_client(api_keys, fast_settings, [])

    results = await asyncio.gather(*(client.generate(SYSTEM, PROMPT) for _ in range(6)))

    assert len(results) == 6
    assert Counter(backend.api_keys_used) == {key: 2 for key in api_keys}
    assert client.pool_stats()["total_calls"] == 6
