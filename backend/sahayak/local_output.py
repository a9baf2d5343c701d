"""Device-local speech and playback, for running the engine on the device
that has the speaker (SAHAYAK_OUTPUT_MODE=device).

pyttsx3 and sounddevice are blocking, so every call runs in the default
executor and is awaited; ``cancel`` / ``stop_all`` interrupt from the loop.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from typing import Optional

import pyttsx3

from sahayak.tts_client import Utterance

logger = logging.getLogger("sahayak.local_output")

BASE_RATE_WPM = 175  # pyttsx3 default speaking rate


class Pyttsx3Synthesizer:
    """Offline speech through the platform TTS engine (SAPI5 / NSSpeech / eSpeak).

    The engine is re-initialised for every utterance; keeping one engine
    alive across runAndWait calls hangs on some platforms.
    """

    def __init__(self, base_rate: int = BASE_RATE_WPM) -> None:
        self.base_rate = base_rate
        self._engine = None

    async def speak(self, utterance: Utterance) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._speak_blocking, utterance)

    async def cancel(self) -> None:
        engine = self._engine
        if engine is not None:
            engine.stop()

    def _speak_blocking(self, utterance: Utterance) -> None:
        engine = pyttsx3.init()
        self._engine = engine
        try:
            engine.setProperty("rate", int(self.base_rate * utterance.rate))
            engine.setProperty("volume", utterance.volume)
            # pyttsx3 exposes no pitch control; rate and volume carry urgency
            voice_id = self._voice_for(engine, utterance.lang)
            if voice_id:
                engine.setProperty("voice", voice_id)
            engine.say(utterance.text)
            engine.runAndWait()
        finally:
            if self._engine is engine:
                self._engine = None

    @staticmethod
    def _voice_for(engine, lang: str) -> Optional[str]:
        prefix = lang.split("-")[0].lower()
        fallback = None
        for voice in engine.getProperty("voices") or []:
            languages = [
                (l.decode(errors="ignore") if isinstance(l, bytes) else str(l)).lower()
                for l in (getattr(voice, "languages", None) or [])
            ]
            tags = languages + [str(getattr(voice, "id", "")).lower()]
            if any(lang.lower() in t for t in tags):
                return voice.id
            if fallback is None and any(prefix in t for t in tags):
                fallback = voice.id
        return fallback


class SoundDevicePlayer:
    """Decodes the synthesized MP3 and plays it on the default output device."""

    async def play(self, audio_b64: str) -> None:
        # PortAudio / libsndfile are only needed when device mode is in use
        import sounddevice as sd
        import soundfile as sf

        data, samplerate = sf.read(io.BytesIO(base64.b64decode(audio_b64)))
        sd.play(data, samplerate)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, sd.wait)

    async def stop_all(self) -> None:
        import sounddevice as sd

        sd.stop()
