import asyncio
import logging
from typing import Optional, Protocol

from sahayak.models import FeedbackRequest, Language, Priority
from sahayak.speech_cache import SpeechCache
from sahayak.tts_client import (
    RemoteSynthesizer,
    SynthesisError,
    SynthesisResult,
    Utterance,
    local_utterance,
    with_fallback,
)

logger = logging.getLogger("sahayak.arbiter")


class AudioPlayer(Protocol):
    async def play(self, audio_b64: str) -> None: ...

    async def stop_all(self) -> None: ...


class LocalSynthesizer(Protocol):
    async def speak(self, utterance: Utterance) -> None: ...

    async def cancel(self) -> None: ...


class AnnouncementArbiter:
    """Priority-aware, single-flight speech output.

    * ``high`` / ``emergency`` preempt: in-flight synthesis is cancelled,
      playback is stopped and waiting lower-priority requests are dropped.
    * ``low`` / ``normal`` wait their turn (FIFO) behind the current request.
    * Synthesized audio is cached per (text, language); on a remote failure
      the request is spoken by the local synthesizer instead.
    """

    def __init__(
        self,
        player: AudioPlayer,
        local: LocalSynthesizer,
        remote: Optional[RemoteSynthesizer] = None,
        cache: Optional[SpeechCache] = None,
        language: Language = Language.ENGLISH,
        enabled: bool = True,
    ) -> None:
        self.player = player
        self.local = local
        self.remote = remote
        self.cache = cache if cache is not None else SpeechCache()
        self.language = Language(language)
        self.enabled = enabled

        self._lock = asyncio.Lock()
        self._epoch = 0  # bumped by every preemption
        self._active: Optional[asyncio.Task] = None
        self.current: Optional[FeedbackRequest] = None

    def set_language(self, language: Language) -> None:
        self.language = Language(language)

    async def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            await self.cancel()

    async def cancel(self) -> None:
        """Stop everything that is synthesizing or playing right now."""
        self._supersede()
        await self._stop_outputs()

    def _supersede(self) -> int:
        # synchronous, so no request can slip in between the bump and the cancel
        self._epoch += 1
        active, self._active = self._active, None
        if active is not None and not active.done():
            active.cancel()
        return self._epoch

    async def _stop_outputs(self) -> None:
        try:
            await self.player.stop_all()
        except Exception as exc:
            logger.error("Failed to stop audio playback: %s", exc, exc_info=True)
        try:
            await self.local.cancel()
        except Exception as exc:
            logger.error("Failed to cancel local speech: %s", exc, exc_info=True)

    async def speak(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        if not self.enabled:
            logger.debug("Speech disabled, dropping %r", text)
            return
        request = FeedbackRequest(text, Priority(priority))
        logger.info("Speaking %r with priority %s", text, request.priority.value)

        if request.priority.preempts:
            epoch = self._supersede()
        else:
            epoch = self._epoch

        # the lock is FIFO: anything arriving after a preemptor queues behind it
        async with self._lock:
            if epoch != self._epoch:
                logger.debug("Superseded before start: %r", text)
                return
            if request.priority.preempts:
                await self._stop_outputs()
                if epoch != self._epoch:
                    logger.debug("Superseded while stopping output: %r", text)
                    return
            task = asyncio.ensure_future(self._deliver(request))
            self._active = task
            self.current = request
            try:
                await task
            except asyncio.CancelledError:
                if task.cancelled() and epoch != self._epoch:
                    logger.debug("Preempted: %r", text)
                    return
                raise
            finally:
                if self._active is task:
                    self._active = None
                if self.current is request:
                    self.current = None

    async def _deliver(self, request: FeedbackRequest) -> SynthesisResult:
        language = self.language
        cached = self.cache.get(request.text, language)
        if cached is not None:
            logger.debug("Playing %r from cache", request.text)
            await self._play(cached)
            return SynthesisResult.success("cache", cached)

        async def attempt_remote() -> SynthesisResult:
            if self.remote is None:
                return SynthesisResult.failure("remote", SynthesisError("no remote synthesizer"))
            return await self.remote.synthesize(request.text, language, request.priority)

        async def attempt_local(error: SynthesisError) -> SynthesisResult:
            try:
                await self.local.speak(local_utterance(request.text, language, request.priority))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Local speech failed: %s", exc, exc_info=True)
                return SynthesisResult.failure("local", SynthesisError(str(exc)))
            return SynthesisResult.success("local")

        result = await with_fallback(attempt_remote, attempt_local)
        if result.ok and result.channel == "remote" and result.audio_b64:
            self.cache.put(request.text, language, result.audio_b64)
            await self._play(result.audio_b64)
        return result

    async def _play(self, audio_b64: str) -> None:
        try:
            await self.player.play(audio_b64)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Audio playback failed: %s", exc, exc_info=True)
