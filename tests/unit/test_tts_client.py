"""Unit tests for the remote synthesis tier (httpx mock transport)."""

import json

import httpx
import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "backend"))

from sahayak.models import Language, Priority
from sahayak.tts_client import (
    RemoteSynthesizer,
    SynthesisError,
    SynthesisResult,
    local_utterance,
    remote_request_body,
    with_fallback,
)

ENDPOINT = "https://tts.example.test/v1/text:synthesize"


def _make_synth(handler, api_key="test-key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteSynthesizer(api_key, endpoint=ENDPOINT, client=client)


@pytest.mark.asyncio
async def test_successful_synthesis_returns_audio():
    captured = {}

    def handler(request):
        captured["key"] = request.url.params.get("key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"audioContent": "SUQzBAAAAA=="})

    synth = _make_synth(handler)
    result = await synth.synthesize("Emergency cancelled", Language.HINDI, Priority.NORMAL)

    assert result.ok
    assert result.channel == "remote"
    assert result.audio_b64 == "SUQzBAAAAA=="
    assert captured["key"] == "test-key"
    assert captured["body"]["voice"] == {
        "languageCode": "hi-IN",
        "name": "hi-IN-Wavenet-A",
        "ssmlGender": "FEMALE",
    }
    await synth.aclose()


def test_emergency_request_raises_pitch_and_rate():
    body = remote_request_body("Fall detected!", Language.ENGLISH, Priority.EMERGENCY)
    assert body["input"] == {"text": "Fall detected!"}
    assert body["voice"]["name"] == "en-IN-Wavenet-D"
    assert body["audioConfig"] == {"audioEncoding": "MP3", "pitch": 2.0, "speakingRate": 1.2}

    normal = remote_request_body("Navigation stopped", Language.ENGLISH, Priority.HIGH)
    assert normal["audioConfig"]["pitch"] == 0.0
    assert normal["audioConfig"]["speakingRate"] == 1.0


@pytest.mark.asyncio
async def test_missing_key_skips_network():
    calls = []
    synth = _make_synth(lambda r: calls.append(r) or httpx.Response(200), api_key=None)
    result = await synth.synthesize("hello", Language.ENGLISH)
    assert not result.ok
    assert "API key" in result.error.reason
    assert calls == []


@pytest.mark.asyncio
async def test_error_status_carries_api_message():
    def handler(request):
        return httpx.Response(403, json={"error": {"code": 403, "message": "API key not valid"}})

    result = await _make_synth(handler).synthesize("hello", Language.ENGLISH)
    assert not result.ok
    assert result.error.status_code == 403
    assert "API key not valid" in result.error.reason


@pytest.mark.asyncio
async def test_error_status_with_non_json_body():
    result = await _make_synth(lambda r: httpx.Response(502, text="bad gateway")).synthesize(
        "hello", Language.ENGLISH
    )
    assert not result.ok
    assert result.error.status_code == 502


@pytest.mark.asyncio
async def test_missing_audio_content_is_failure():
    result = await _make_synth(lambda r: httpx.Response(200, json={})).synthesize(
        "hello", Language.ENGLISH
    )
    assert not result.ok
    assert "no audio" in result.error.reason


@pytest.mark.asyncio
async def test_network_error_is_failure_not_exception():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await _make_synth(handler).synthesize("hello", Language.ENGLISH)
    assert not result.ok
    assert "network error" in result.error.reason


def test_local_utterance_voice_parameters():
    urgent = local_utterance("Fall detected!", Language.ENGLISH, Priority.EMERGENCY)
    assert (urgent.rate, urgent.volume, urgent.pitch, urgent.lang) == (1.2, 1.0, 1.2, "en-IN")
    calm = local_utterance("Hindi selected", Language.HINDI, Priority.HIGH)
    assert (calm.rate, calm.volume, calm.pitch, calm.lang) == (1.0, 0.8, 1.0, "hi-IN")


@pytest.mark.asyncio
async def test_with_fallback_passes_error_to_secondary():
    seen = []

    async def primary():
        return SynthesisResult.failure("remote", SynthesisError("timeout"))

    async def secondary(error):
        seen.append(error.reason)
        return SynthesisResult.success("local")

    result = await with_fallback(primary, secondary)
    assert result.channel == "local"
    assert seen == ["timeout"]


@pytest.mark.asyncio
async def test_with_fallback_skips_secondary_on_success():
    async def primary():
        return SynthesisResult.success("remote", "QUJD")

    async def secondary(error):
        raise AssertionError("secondary should not run")

    assert (await with_fallback(primary, secondary)).audio_b64 == "QUJD"
