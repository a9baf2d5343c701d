"""Side effects produced by the state transitions, and the driver that runs them.

Transitions in the agents are pure: they return the next state together
with a list of effects. ``EffectRunner`` is the only place those effects
touch the outside world (speech, vibration, dispatch, telemetry).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from sahayak.dispatch import DispatchRequest
from sahayak.models import FeedbackRequest, HapticEvent, Priority

logger = logging.getLogger("sahayak.effects")


@dataclass(frozen=True)
class Speak:
    text: str
    priority: Priority = Priority.NORMAL

    @property
    def request(self) -> FeedbackRequest:
        return FeedbackRequest(self.text, self.priority)


@dataclass(frozen=True)
class Vibrate:
    event: HapticEvent


@dataclass(frozen=True)
class Dispatch:
    message: str


@dataclass(frozen=True)
class Publish:
    event_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StartTimer:
    pass


@dataclass(frozen=True)
class StopTimer:
    pass


Effect = Union[Speak, Vibrate, Dispatch, Publish, StartTimer, StopTimer]


class EffectRunner:
    """Executes effects against the injected collaborators.

    Speech, dispatch and telemetry are scheduled as background tasks so a
    transition never waits on playback or the network. Haptics are fired
    immediately since they are a single short output call.
    """

    def __init__(
        self,
        arbiter,
        haptics,
        dispatcher=None,
        telemetry=None,
        dispatch_context: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.arbiter = arbiter
        self.haptics = haptics
        self.dispatcher = dispatcher
        self.telemetry = telemetry
        # Builds the DispatchRequest (location + contacts) at execution time
        self._dispatch_context = dispatch_context
        self._pending: Set[asyncio.Task] = set()

    def run(self, effects: Iterable[Effect]) -> List[Effect]:
        """Run what this runner owns; return the effects it did not handle."""
        leftover: List[Effect] = []
        for effect in effects:
            if isinstance(effect, Speak):
                self._spawn(self.arbiter.speak(effect.text, effect.priority))
            elif isinstance(effect, Vibrate):
                self._spawn(self.haptics.signal(effect.event))
            elif isinstance(effect, Dispatch):
                self._spawn(self._dispatch(effect))
            elif isinstance(effect, Publish):
                if self.telemetry is not None:
                    self._spawn(self.telemetry.publish(effect.event_type, effect.metadata))
            else:
                leftover.append(effect)
        return leftover

    async def drain(self) -> None:
        """Wait for every scheduled effect, including ones they schedule."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _dispatch(self, effect: Dispatch) -> None:
        if self.dispatcher is None:
            logger.warning("Emergency dispatch requested but no dispatcher is configured")
            return
        if self._dispatch_context is not None:
            request = self._dispatch_context(effect.message)
        else:
            request = DispatchRequest(message=effect.message)
        try:
            await self.dispatcher.dispatch(request)
        except Exception as exc:
            logger.error("Emergency dispatch failed: %s", exc, exc_info=True)
