"""Runtime settings for the Sahayak engine, read from the environment / .env."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from sahayak.models import Language, Location

logger = logging.getLogger("sahayak.config")

DEFAULT_TTS_ENDPOINT = "https://texttospeech.googleapis.com/v1/text:synthesize"

# Connaught Place, New Delhi. Used until the phone reports a GPS fix.
DEFAULT_START_LOCATION = Location(lat=28.6139, lng=77.2090)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _int(name: str, default: int) -> int:
    return int(_float(name, default))


@dataclass(frozen=True)
class Settings:
    tts_api_key: Optional[str] = None
    tts_endpoint: str = DEFAULT_TTS_ENDPOINT
    tts_timeout: float = 5.0
    tts_cache_size: int = 256
    language: Language = Language.ENGLISH

    countdown_seconds: int = 10
    tick_seconds: float = 1.0
    sweep_seconds: float = 1.0
    detection_cooldown_ms: float = 4000.0
    start_location: Location = DEFAULT_START_LOCATION

    output_mode: str = "client"  # "client" (phone renders output) | "device"

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None
    fallback_phone: Optional[str] = None

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path=dotenv_path)

        lang_raw = os.getenv("SAHAYAK_LANGUAGE", Language.ENGLISH.value)
        try:
            language = Language(lang_raw)
        except ValueError:
            logger.warning("Unsupported SAHAYAK_LANGUAGE=%r, using en-IN", lang_raw)
            language = Language.ENGLISH

        return cls(
            tts_api_key=os.getenv("SAHAYAK_TTS_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
            tts_endpoint=os.getenv("SAHAYAK_TTS_ENDPOINT", DEFAULT_TTS_ENDPOINT),
            tts_timeout=_float("SAHAYAK_TTS_TIMEOUT", 5.0),
            tts_cache_size=_int("SAHAYAK_TTS_CACHE_SIZE", 256),
            language=language,
            countdown_seconds=_int("SAHAYAK_COUNTDOWN_SECONDS", 10),
            tick_seconds=_float("SAHAYAK_TICK_SECONDS", 1.0),
            sweep_seconds=_float("SAHAYAK_SWEEP_SECONDS", 1.0),
            detection_cooldown_ms=_float("SAHAYAK_DETECTION_COOLDOWN_MS", 4000.0),
            start_location=Location(
                lat=_float("SAHAYAK_START_LAT", DEFAULT_START_LOCATION.lat),
                lng=_float("SAHAYAK_START_LNG", DEFAULT_START_LOCATION.lng),
            ),
            output_mode=os.getenv("SAHAYAK_OUTPUT_MODE", "client").lower(),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID") or None,
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER") or None,
            fallback_phone=os.getenv("SAHAYAK_FALLBACK_PHONE") or None,
        )
