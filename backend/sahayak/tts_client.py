"""Speech synthesis tiers: Google Cloud Text-to-Speech (remote) and the
voice parameters for the on-device fallback.

The remote tier never raises. Every failure (missing key, network error,
non-2xx response, empty payload) comes back as a ``SynthesisResult`` carrying
a ``SynthesisError`` so the arbiter can fall through to local speech.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from sahayak.models import Language, Priority

logger = logging.getLogger("sahayak.tts_client")

# Wavenet voices per language for the remote tier
REMOTE_VOICES = {
    Language.ENGLISH: "en-IN-Wavenet-D",
    Language.HINDI: "hi-IN-Wavenet-A",
}


class SynthesisError(Exception):
    """Why a synthesis tier could not produce speech."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


@dataclass(frozen=True)
class SynthesisResult:
    channel: str  # "remote" | "local"
    audio_b64: Optional[str] = None
    error: Optional[SynthesisError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, channel: str, audio_b64: Optional[str] = None) -> "SynthesisResult":
        return cls(channel=channel, audio_b64=audio_b64)

    @classmethod
    def failure(cls, channel: str, error: SynthesisError) -> "SynthesisResult":
        return cls(channel=channel, error=error)


@dataclass(frozen=True)
class Utterance:
    """Parameters for an on-device utterance (Web Speech style units)."""
    text: str
    lang: str
    rate: float = 1.0
    volume: float = 0.8
    pitch: float = 1.0


def local_utterance(text: str, language: Language, priority: Priority) -> Utterance:
    urgent = priority is Priority.EMERGENCY
    return Utterance(
        text=text,
        lang=Language(language).value,
        rate=1.2 if urgent else 1.0,
        volume=1.0 if urgent else 0.8,
        pitch=1.2 if urgent else 1.0,
    )


def remote_request_body(text: str, language: Language, priority: Priority) -> dict:
    language = Language(language)
    urgent = priority is Priority.EMERGENCY
    return {
        "input": {"text": text},
        "voice": {
            "languageCode": language.value,
            "name": REMOTE_VOICES[language],
            "ssmlGender": "FEMALE",
        },
        "audioConfig": {
            "audioEncoding": "MP3",
            "pitch": 2.0 if urgent else 0.0,
            "speakingRate": 1.2 if urgent else 1.0,
        },
    }


class RemoteSynthesizer:
    """Calls the Cloud TTS ``text:synthesize`` REST endpoint with an API key."""

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: str = "https://texttospeech.googleapis.com/v1/text:synthesize",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def synthesize(
        self, text: str, language: Language, priority: Priority = Priority.NORMAL
    ) -> SynthesisResult:
        if not self.configured:
            return SynthesisResult.failure("remote", SynthesisError("no API key configured"))

        try:
            response = await self._http().post(
                self.endpoint,
                params={"key": self.api_key},
                json=remote_request_body(text, language, priority),
            )
        except httpx.HTTPError as exc:
            return SynthesisResult.failure("remote", SynthesisError(f"network error: {exc}"))

        if response.status_code >= 400:
            reason = response.reason_phrase
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                reason = body["error"].get("message") or reason
            return SynthesisResult.failure(
                "remote",
                SynthesisError(f"API request failed: {reason}", status_code=response.status_code),
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        audio = body.get("audioContent") if isinstance(body, dict) else None
        if not audio:
            return SynthesisResult.failure(
                "remote", SynthesisError("no audio content received", status_code=response.status_code)
            )
        return SynthesisResult.success("remote", audio)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def with_fallback(
    primary: Callable[[], Awaitable[SynthesisResult]],
    secondary: Callable[[SynthesisError], Awaitable[SynthesisResult]],
) -> SynthesisResult:
    """Run ``primary``; on failure hand its error to ``secondary``."""
    result = await primary()
    if result.ok:
        return result
    logger.warning("%s synthesis failed (%s); falling back", result.channel, result.error)
    return await secondary(result.error)
