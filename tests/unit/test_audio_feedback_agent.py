"""Unit tests for the announcement arbiter (mocked synthesis and playback)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "backend"))

from sahayak.agents.audio_feedback_agent import AnnouncementArbiter
from sahayak.models import Language, Priority
from sahayak.speech_cache import SpeechCache
from sahayak.tts_client import SynthesisError, SynthesisResult


class _Player:
    """Records playback; audio named in ``blocking`` plays until released."""

    def __init__(self, blocking=()):
        self.blocking = set(blocking)
        self.release = asyncio.Event()
        self.started = []
        self.finished = []
        self.stop_all = AsyncMock()

    async def play(self, audio_b64):
        self.started.append(audio_b64)
        if audio_b64 in self.blocking:
            await self.release.wait()
        self.finished.append(audio_b64)


def _make_remote(ok=True):
    remote = MagicMock()
    if ok:
        # the "audio" is the text itself so playback order is readable
        remote.synthesize = AsyncMock(
            side_effect=lambda text, lang, prio: SynthesisResult.success("remote", text)
        )
    else:
        remote.synthesize = AsyncMock(
            return_value=SynthesisResult.failure("remote", SynthesisError("quota exceeded", 429))
        )
    return remote


def _make_local():
    local = MagicMock()
    local.speak = AsyncMock()
    local.cancel = AsyncMock()
    return local


async def _until_started(player, audio, timeout=1.0):
    for _ in range(int(timeout / 0.005)):
        if audio in player.started:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"{audio!r} never started")


@pytest.mark.asyncio
async def test_remote_audio_is_cached_and_played():
    player, remote = _Player(), _make_remote()
    cache = SpeechCache()
    arbiter = AnnouncementArbiter(player, _make_local(), remote=remote, cache=cache)

    await arbiter.speak("Navigation started to Lodhi Garden")
    await arbiter.speak("Navigation started to Lodhi Garden")

    assert remote.synthesize.await_count == 1
    assert player.finished == ["Navigation started to Lodhi Garden"] * 2
    assert cache.get("Navigation started to Lodhi Garden", Language.ENGLISH) is not None


@pytest.mark.asyncio
async def test_cache_is_per_language():
    player, remote = _Player(), _make_remote()
    arbiter = AnnouncementArbiter(player, _make_local(), remote=remote)
    await arbiter.speak("Emergency cancelled")
    arbiter.set_language(Language.HINDI)
    await arbiter.speak("Emergency cancelled")
    assert remote.synthesize.await_count == 2
    assert remote.synthesize.await_args.args[1] is Language.HINDI


@pytest.mark.asyncio
async def test_remote_failure_falls_back_to_local_voice():
    player, local = _Player(), _make_local()
    cache = SpeechCache()
    arbiter = AnnouncementArbiter(player, local, remote=_make_remote(ok=False), cache=cache)

    await arbiter.speak("Fall detected! Tap screen to cancel emergency alert", Priority.EMERGENCY)

    local.speak.assert_awaited_once()
    utterance = local.speak.await_args.args[0]
    assert utterance.lang == "en-IN"
    assert (utterance.rate, utterance.volume, utterance.pitch) == (1.2, 1.0, 1.2)
    assert player.started == []
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_no_remote_uses_local_with_normal_voice():
    local = _make_local()
    arbiter = AnnouncementArbiter(_Player(), local)
    await arbiter.speak("Navigation stopped")
    utterance = local.speak.await_args.args[0]
    assert (utterance.rate, utterance.volume, utterance.pitch) == (1.0, 0.8, 1.0)


@pytest.mark.asyncio
async def test_local_failure_is_not_raised():
    local = _make_local()
    local.speak.side_effect = RuntimeError("no audio device")
    arbiter = AnnouncementArbiter(_Player(), local)
    await arbiter.speak("Camera started. Detecting objects.")


@pytest.mark.asyncio
async def test_player_failure_is_not_raised():
    player = _Player()
    player.play = AsyncMock(side_effect=RuntimeError("socket closed"))
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())
    await arbiter.speak("Voice guidance enabled")


@pytest.mark.asyncio
async def test_disabled_arbiter_is_silent():
    player, local, remote = _Player(), _make_local(), _make_remote()
    arbiter = AnnouncementArbiter(player, local, remote=remote, enabled=False)
    await arbiter.speak("Warning! Open drain immediately ahead", Priority.EMERGENCY)
    remote.synthesize.assert_not_awaited()
    local.speak.assert_not_awaited()
    player.stop_all.assert_not_awaited()


@pytest.mark.asyncio
async def test_disabling_stops_current_output():
    player = _Player(blocking={"long description"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())
    task = asyncio.ensure_future(arbiter.speak("long description"))
    await _until_started(player, "long description")

    await arbiter.set_enabled(False)
    await asyncio.wait_for(task, timeout=1.0)

    player.stop_all.assert_awaited()
    assert player.finished == []
    assert arbiter.current is None


@pytest.mark.asyncio
async def test_emergency_preempts_normal():
    player = _Player(blocking={"person, 3.1 meters away"})
    local = _make_local()
    arbiter = AnnouncementArbiter(player, local, remote=_make_remote())

    normal = asyncio.ensure_future(arbiter.speak("person, 3.1 meters away", Priority.NORMAL))
    await _until_started(player, "person, 3.1 meters away")

    await arbiter.speak("Warning! Deep pothole 8 meters ahead", Priority.EMERGENCY)
    await asyncio.wait_for(normal, timeout=1.0)

    assert player.finished == ["Warning! Deep pothole 8 meters ahead"]
    player.stop_all.assert_awaited()
    local.cancel.assert_awaited()


@pytest.mark.asyncio
async def test_later_low_request_does_not_interrupt():
    player = _Player(blocking={"Sending emergency alert to your caregivers"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    urgent = asyncio.ensure_future(
        arbiter.speak("Sending emergency alert to your caregivers", Priority.EMERGENCY)
    )
    await _until_started(player, "Sending emergency alert to your caregivers")
    stops_before = player.stop_all.await_count

    low = asyncio.ensure_future(arbiter.speak("cup, 2.5 meters away", Priority.LOW))
    await asyncio.sleep(0.02)
    assert player.stop_all.await_count == stops_before
    assert player.started == ["Sending emergency alert to your caregivers"]

    player.release.set()
    await asyncio.wait_for(asyncio.gather(urgent, low), timeout=1.0)
    assert player.finished == [
        "Sending emergency alert to your caregivers",
        "cup, 2.5 meters away",
    ]


@pytest.mark.asyncio
async def test_normal_requests_play_in_order():
    player = _Player(blocking={"first"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    first = asyncio.ensure_future(arbiter.speak("first"))
    await _until_started(player, "first")
    second = asyncio.ensure_future(arbiter.speak("second"))
    third = asyncio.ensure_future(arbiter.speak("third", Priority.LOW))
    await asyncio.sleep(0.01)

    player.release.set()
    await asyncio.wait_for(asyncio.gather(first, second, third), timeout=1.0)
    assert player.finished == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_waiting_request_dropped_when_preempted():
    player = _Player(blocking={"first"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    first = asyncio.ensure_future(arbiter.speak("first"))
    await _until_started(player, "first")
    waiting = asyncio.ensure_future(arbiter.speak("waiting"))
    await asyncio.sleep(0.01)

    await arbiter.speak("You are drifting. Turn left", Priority.HIGH)
    await asyncio.wait_for(asyncio.gather(first, waiting), timeout=1.0)

    assert "waiting" not in player.started
    assert player.finished == ["You are drifting. Turn left"]


@pytest.mark.asyncio
async def test_last_preemptor_wins():
    player = _Player(blocking={"Warning! Stairs immediately ahead"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    first = asyncio.ensure_future(
        arbiter.speak("Warning! Stairs immediately ahead", Priority.HIGH)
    )
    await _until_started(player, "Warning! Stairs immediately ahead")
    await arbiter.speak("Fall detected! Tap screen to cancel emergency alert", Priority.EMERGENCY)
    await asyncio.wait_for(first, timeout=1.0)

    assert player.finished == ["Fall detected! Tap screen to cancel emergency alert"]


class _SlowStopPlayer(_Player):
    """Player whose stop_all yields, like a socket send."""

    def __init__(self, blocking=()):
        super().__init__(blocking)
        del self.stop_all
        self.stops = 0

    async def stop_all(self):
        self.stops += 1
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_back_to_back_preemptors_keep_only_the_last():
    player = _SlowStopPlayer(blocking={"Warning! Stairs immediately ahead"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    high = asyncio.ensure_future(
        arbiter.speak("Warning! Stairs immediately ahead", Priority.HIGH)
    )
    urgent = asyncio.ensure_future(
        arbiter.speak("Fall detected! Tap screen to cancel emergency alert", Priority.EMERGENCY)
    )
    await asyncio.wait_for(asyncio.gather(high, urgent), timeout=1.0)

    assert player.started == ["Fall detected! Tap screen to cancel emergency alert"]
    assert player.finished == ["Fall detected! Tap screen to cancel emergency alert"]


@pytest.mark.asyncio
async def test_normal_arriving_during_preemption_waits_behind_it():
    player = _SlowStopPlayer(blocking={"person, 3 meters away"})
    arbiter = AnnouncementArbiter(player, _make_local(), remote=_make_remote())

    first = asyncio.ensure_future(arbiter.speak("person, 3 meters away"))
    await _until_started(player, "person, 3 meters away")

    urgent = asyncio.ensure_future(
        arbiter.speak("Warning! Deep pothole 8 meters ahead", Priority.EMERGENCY)
    )
    later = asyncio.ensure_future(arbiter.speak("cup, 1 meters away"))
    await asyncio.wait_for(asyncio.gather(first, urgent, later), timeout=1.0)

    assert player.started == [
        "person, 3 meters away",
        "Warning! Deep pothole 8 meters ahead",
        "cup, 1 meters away",
    ]
    assert player.finished == ["Warning! Deep pothole 8 meters ahead", "cup, 1 meters away"]
    assert player.stops >= 1
