import logging
from typing import Dict, List, Protocol, Sequence

from sahayak.models import HapticEvent

logger = logging.getLogger("sahayak.haptics")

# Vibration patterns in milliseconds (on, off, on, ...)
PATTERNS: Dict[HapticEvent, List[int]] = {
    HapticEvent.LEFT: [100, 50, 100],
    HapticEvent.RIGHT: [100, 50, 100, 50, 100],
    HapticEvent.DANGER: [200, 100, 200, 100, 200],
    HapticEvent.SUCCESS: [50, 50, 50],
    HapticEvent.FALL: [300, 200, 300, 200, 300],
}


class HapticOutput(Protocol):
    async def vibrate(self, pattern: Sequence[int]) -> None: ...


class NullHapticOutput:
    """For devices without a vibration motor."""

    async def vibrate(self, pattern: Sequence[int]) -> None:
        return None


class HapticSignaler:
    """Maps semantic events to vibration patterns."""

    def __init__(self, output: HapticOutput, enabled: bool = True) -> None:
        self.output = output
        self.enabled = enabled

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    async def signal(self, event: HapticEvent) -> None:
        await self.vibrate(PATTERNS[HapticEvent(event)])

    async def vibrate(self, pattern: Sequence[int]) -> None:
        if not self.enabled:
            return
        try:
            await self.output.vibrate(list(pattern))
        except Exception as exc:
            logger.error("Haptic output error: %s", exc, exc_info=True)
