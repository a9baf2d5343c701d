from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from sahayak import redis_client
from sahayak.agents.audio_feedback_agent import AnnouncementArbiter
from sahayak.agents.haptic_agent import HapticSignaler
from sahayak.config import Settings
from sahayak.dispatch import build_dispatcher
from sahayak.engine import SafetyEngine
from sahayak.local_output import Pyttsx3Synthesizer, SoundDevicePlayer
from sahayak.models import Detection, DetectionFrame, MotionSample, Priority
from sahayak.speech_cache import SpeechCache
from sahayak.tts_client import RemoteSynthesizer, Utterance

logger = logging.getLogger("sahayak.orchestrator")
logging.basicConfig(level=logging.INFO)


# ---------------------------------------------------------------------------
#  Shared infrastructure
# ---------------------------------------------------------------------------

settings = Settings.from_env()

# One synthesis cache and one HTTP client for every session
speech_cache = SpeechCache(settings.tts_cache_size)
remote_synth = RemoteSynthesizer(
    settings.tts_api_key,
    endpoint=settings.tts_endpoint,
    timeout=settings.tts_timeout,
)
dispatcher = build_dispatcher(settings)

active_sessions: Dict[str, SafetyEngine] = {}


# ---------------------------------------------------------------------------
#  Application lifespan: initialise and tear down infra connections
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(application: FastAPI):
    """Startup / shutdown hook."""
    try:
        await redis_client.init_redis()
        logger.info("Redis ready")
    except Exception as exc:
        logger.warning("Redis init failed (running without telemetry): %s", exc)

    if not remote_synth.configured:
        logger.warning("No TTS API key; speech will use the local synthesizer")

    yield

    try:
        await redis_client.close_redis()
    except Exception as exc:
        logger.warning("Redis close failed: %s", exc)
    await remote_synth.aclose()


app = FastAPI(lifespan=lifespan)


@app.get("/")
async def root():
    return {"service": "sahayak-engine", "status": "ok"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "active_sessions": len(active_sessions),
        "redis_available": redis_client.is_connected(),
        "remote_tts": remote_synth.configured,
        "speech_cache": speech_cache.stats(),
    }


class TelemetryEvent(BaseModel):
    type: str
    timestamp: Optional[str] = None
    source: str = "client"
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@app.post("/events", status_code=202)
async def post_event(event: TelemetryEvent):
    """Best-effort telemetry ingestion; accepted even when Redis is down."""
    published = False
    if redis_client.is_connected():
        try:
            await redis_client.push_event(redis_client.build_event(
                event.type,
                event.metadata,
                source=event.source,
                session_id=event.session_id,
                timestamp=event.timestamp,
            ))
            published = True
        except Exception as exc:
            logger.warning("Telemetry event %s dropped: %s", event.type, exc)
    return {"accepted": True, "published": published}


# ---------------------------------------------------------------------------
#  Client output channel
# ---------------------------------------------------------------------------

class ClientChannel:
    """Renders engine output on the phone by pushing JSON over the socket.

    Acts as the arbiter's audio player and local synthesizer and as the
    haptic output; the phone plays audio, speaks utterances and vibrates.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def play(self, audio_b64: str) -> None:
        await self.send({"type": "play_audio", "audio_b64": audio_b64, "mime": "audio/mpeg"})

    async def stop_all(self) -> None:
        await self.send({"type": "stop_audio"})

    async def speak(self, utterance: Utterance) -> None:
        await self.send({
            "type": "utterance",
            "text": utterance.text,
            "lang": utterance.lang,
            "rate": utterance.rate,
            "volume": utterance.volume,
            "pitch": utterance.pitch,
        })

    async def cancel(self) -> None:
        # stop_audio from stop_all already halts client-side speech
        return None

    async def vibrate(self, pattern: Sequence[int]) -> None:
        await self.send({"type": "vibrate", "pattern": list(pattern)})


class ClientMotionSource:
    """Accelerometer capability and permission as reported by the phone."""

    def __init__(self, supported: bool, granted: bool) -> None:
        self.supported = supported
        self._granted = granted

    async def request_permission(self) -> bool:
        return self._granted


def build_engine(session_id: str, channel: ClientChannel) -> SafetyEngine:
    if settings.output_mode == "device":
        player, local = SoundDevicePlayer(), Pyttsx3Synthesizer()
    else:
        player, local = channel, channel
    arbiter = AnnouncementArbiter(
        player,
        local,
        remote=remote_synth,
        cache=speech_cache,
        language=settings.language,
    )
    return SafetyEngine(
        arbiter,
        HapticSignaler(channel),
        dispatcher=dispatcher,
        telemetry=redis_client.RedisTelemetry(session_id),
        settings=settings,
    )


# ---------------------------------------------------------------------------
#  WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/engine/stream")
async def websocket_engine(websocket: WebSocket) -> None:
    await websocket.accept()
    session_id = websocket.headers.get("X-Session-Id")
    if not session_id:
        await websocket.close(code=1008)
        return

    channel = ClientChannel(websocket)
    engine = build_engine(session_id, channel)
    active_sessions[session_id] = engine
    logger.info("Session %s connected", session_id)

    await _save_session(session_id, {"status": "active"})

    try:
        while True:
            input_data = await websocket.receive_json()
            result = await orchestrate_with_fallback(session_id, engine, input_data)
            await channel.send(result)
            if result.get("type") == "state":
                await _save_session(session_id, {"state": result})
    except WebSocketDisconnect:
        logger.info("Session %s disconnected", session_id)
    finally:
        await engine.close()
        if redis_client.is_connected():
            try:
                await redis_client.delete_session(session_id)
            except Exception as exc:
                logger.warning("Session cleanup failed for %s: %s", session_id, exc)
        active_sessions.pop(session_id, None)


async def _save_session(session_id: str, data: dict) -> None:
    if not redis_client.is_connected():
        return
    try:
        await redis_client.set_session_state(session_id, data)
    except Exception as exc:
        logger.warning("Session state write failed for %s: %s", session_id, exc)


# ---------------------------------------------------------------------------
#  Orchestration
# ---------------------------------------------------------------------------

async def orchestrate_with_fallback(session_id: str, engine: SafetyEngine, input_data: dict) -> dict:
    try:
        return await orchestrate(session_id, engine, input_data)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Bad %s message in session %s: %s", input_data.get("type"), session_id, exc)
        return {"type": "error", "reason": f"invalid message: {exc}"}
    except Exception as exc:
        logger.error("Orchestrator error: %s", exc, exc_info=True)
        return {"type": "error", "reason": "System error detected"}


def _frame(data: dict) -> DetectionFrame:
    return DetectionFrame(
        detections=[
            Detection(
                label=str(d["label"]),
                score=float(d["score"]),
                bbox=tuple(float(v) for v in d["bbox"]),
            )
            for d in data.get("detections", [])
        ],
        frame_height=float(data["frame_height"]),
    )


def _sample(data: dict) -> MotionSample:
    timestamp = data.get("timestamp_ms")
    return MotionSample(
        x=float(data["x"]),
        y=float(data["y"]),
        z=float(data["z"]),
        timestamp_ms=float(timestamp) if timestamp is not None else None,
    )


_HANDLERS: Dict[str, Callable[[SafetyEngine, dict], Awaitable[Any]]] = {
    "start_navigation": lambda e, d: e.start_navigation(d["destination"]),
    "stop_navigation": lambda e, d: e.stop_navigation(),
    "update_heading": lambda e, d: e.update_heading(float(d["heading"])),
    "set_expected_heading": lambda e, d: e.set_expected_heading(float(d["heading"])),
    "update_location": lambda e, d: e.update_location(float(d["lat"]), float(d["lng"])),
    "add_hazard": lambda e, d: e.add_hazard(
        d["hazard_type"], d["severity"], float(d["distance"]), d.get("description", "")
    ),
    "remove_hazard": lambda e, d: e.remove_hazard(d["id"]),
    "update_hazard_distance": lambda e, d: e.update_hazard_distance(d["id"], float(d["distance"])),
    "sos": lambda e, d: e.detect_fall("manual"),
    "cancel_emergency": lambda e, d: e.cancel_emergency(),
    "add_contact": lambda e, d: e.add_emergency_contact(
        d["name"], d["phone"], d.get("relationship")
    ),
    "remove_contact": lambda e, d: e.remove_emergency_contact(d["id"]),
    "set_language": lambda e, d: e.set_language(d["language"]),
    "set_voice_enabled": lambda e, d: e.set_voice_enabled(bool(d["enabled"])),
    "set_haptic_enabled": lambda e, d: e.set_haptic_enabled(bool(d["enabled"])),
    "speak": lambda e, d: e.speak(d["text"], Priority(d.get("priority", "normal"))),
    "enable_fall_detection": lambda e, d: e.enable_fall_detection(
        ClientMotionSource(bool(d.get("supported", True)), bool(d.get("granted", True)))
    ),
    "motion": lambda e, d: e.on_motion_sample(_sample(d)),
    "detections": lambda e, d: e.on_frame(_frame(d)),
    "start_detection": lambda e, d: e.start_detection(model_ready=bool(d.get("model_ready", True))),
    "stop_detection": lambda e, d: e.stop_detection(),
    "voice_command": lambda e, d: e.handle_command(d.get("text", "")),
}


async def orchestrate(session_id: str, engine: SafetyEngine, input_data: dict) -> dict:
    payload_type = input_data.get("type")

    if payload_type != "get_state":
        handler = _HANDLERS.get(payload_type)
        if handler is None:
            return {"type": "error", "reason": f"unknown message type: {payload_type}"}
        await handler(engine, input_data)

    return {"type": "state", "request": payload_type, **engine.snapshot()}
