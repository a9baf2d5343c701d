"""Fall -> countdown -> dispatch escalation.

    IDLE --FallDetected--> FALL_DETECTED(countdown)
    FALL_DETECTED --Tick--> FALL_DETECTED(countdown - 1)
    FALL_DETECTED --Tick at 1--> IDLE (outcome TRIGGERED, dispatch once)
    FALL_DETECTED --Cancel--> IDLE (outcome CANCELLED)

A second fall while counting down is ignored; cancel and tick while idle are
no-ops. ``transition`` is pure; ``EscalationDriver`` owns the asyncio timer
and hands every other effect to the ``EffectRunner``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from sahayak.effects import (
    Dispatch,
    Effect,
    EffectRunner,
    Publish,
    Speak,
    StartTimer,
    StopTimer,
    Vibrate,
)
from sahayak.models import (
    EmergencyState,
    EscalationOutcome,
    EscalationPhase,
    HapticEvent,
    Priority,
)

logger = logging.getLogger("sahayak.emergency")

COUNTDOWN_SECONDS = 10
DISPATCH_MESSAGE = "EMERGENCY: Sahayak user may have fallen. Immediate assistance needed"


@dataclass(frozen=True)
class FallDetected:
    source: str = "sensor"  # "sensor" | "manual"


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


EmergencyEvent = Union[FallDetected, Tick, Cancel]


def transition(
    state: EmergencyState,
    event: EmergencyEvent,
    countdown_seconds: int = COUNTDOWN_SECONDS,
) -> Tuple[EmergencyState, List[Effect]]:
    if isinstance(event, FallDetected):
        if state.is_fall_detected:
            return state, []
        return EmergencyState(EscalationPhase.FALL_DETECTED, countdown_seconds, None), [
            Speak("Fall detected! Tap screen to cancel emergency alert", Priority.EMERGENCY),
            Vibrate(HapticEvent.FALL),
            StartTimer(),
            Publish("fall_detected", {"source": event.source, "countdown": countdown_seconds}),
        ]

    if isinstance(event, Tick):
        if not state.is_fall_detected:
            return state, []
        remaining = state.countdown - 1
        if remaining > 0:
            return EmergencyState(EscalationPhase.FALL_DETECTED, remaining, None), []
        return EmergencyState(EscalationPhase.IDLE, 0, EscalationOutcome.TRIGGERED), [
            StopTimer(),
            Speak("Sending emergency alert to your caregivers", Priority.EMERGENCY),
            Dispatch(DISPATCH_MESSAGE),
            Publish("emergency_triggered", {}),
        ]

    if isinstance(event, Cancel):
        if not state.is_fall_detected:
            return state, []
        return EmergencyState(EscalationPhase.IDLE, 0, EscalationOutcome.CANCELLED), [
            StopTimer(),
            Speak("Emergency cancelled", Priority.NORMAL),
            Vibrate(HapticEvent.SUCCESS),
            Publish("emergency_cancelled", {"seconds_left": state.countdown}),
        ]

    return state, []


class EscalationDriver:
    """Holds the escalation state and runs the one-second countdown timer."""

    def __init__(
        self,
        runner: EffectRunner,
        countdown_seconds: int = COUNTDOWN_SECONDS,
        tick_seconds: float = 1.0,
        on_change: Optional[Callable[[EmergencyState], None]] = None,
    ) -> None:
        self.runner = runner
        self.countdown_seconds = countdown_seconds
        self.tick_seconds = tick_seconds
        self.state = EmergencyState()
        self._on_change = on_change
        self._timer: Optional[asyncio.Task] = None

    @property
    def timer_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def handle(self, event: EmergencyEvent) -> EmergencyState:
        previous = self.state
        self.state, effects = transition(previous, event, self.countdown_seconds)
        if self.state == previous and not effects:
            logger.debug("Ignored %s in %s", type(event).__name__, previous.phase.value)
            return self.state

        for effect in self.runner.run(effects):
            if isinstance(effect, StartTimer):
                self._start_timer()
            elif isinstance(effect, StopTimer):
                self._stop_timer()

        if self.state.phase is not previous.phase:
            logger.info(
                "Escalation %s -> %s (outcome=%s)",
                previous.phase.value,
                self.state.phase.value,
                self.state.outcome.value if self.state.outcome else None,
            )
            if self._on_change is not None:
                self._on_change(self.state)
        return self.state

    def detect_fall(self, source: str = "sensor") -> EmergencyState:
        return self.handle(FallDetected(source))

    def tick(self) -> EmergencyState:
        return self.handle(Tick())

    def cancel(self) -> EmergencyState:
        return self.handle(Cancel())

    def close(self) -> None:
        self._stop_timer()

    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        self._stop_timer()
        self._timer = asyncio.ensure_future(self._run_timer())

    def _stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        # the terminal tick stops the timer from inside it; let it finish
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _run_timer(self) -> None:
        while self.state.is_fall_detected:
            await asyncio.sleep(self.tick_seconds)
            self.tick()
