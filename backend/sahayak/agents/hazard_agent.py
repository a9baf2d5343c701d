import asyncio
import logging
import uuid
from typing import List, Optional, Tuple

from sahayak.effects import Effect, Publish, Speak, Vibrate
from sahayak.models import Hazard, HapticEvent, HazardType, Priority, Severity

logger = logging.getLogger("sahayak.hazards")

IMMEDIATE_DISTANCE_M = 5.0
PASSED_DISTANCE_M = 1.0


def describe_distance(distance: float) -> str:
    if distance < IMMEDIATE_DISTANCE_M:
        return "immediately ahead"
    if float(distance).is_integer():
        return f"{int(distance)} meters ahead"
    return f"{distance} meters ahead"


class HazardQueue:
    """Currently active hazards, in the order they were reported.

    While navigating, a periodic sweep drops hazards the user has walked
    past (proximity at or under one meter).
    """

    def __init__(self, sweep_interval: float = 1.0) -> None:
        self.sweep_interval = sweep_interval
        self.hazards: List[Hazard] = []
        self._sweep_task: Optional[asyncio.Task] = None

    def add_hazard(
        self,
        type: HazardType,
        severity: Severity,
        distance: float,
        description: str = "",
    ) -> Tuple[Optional[Hazard], List[Effect]]:
        try:
            hazard_type = HazardType(type)
            hazard_severity = Severity(severity)
            distance = float(distance)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected hazard report: %s", exc)
            return None, []
        if distance < 0:
            logger.warning("Rejected hazard report with negative distance %s", distance)
            return None, []

        hazard = Hazard(
            id=uuid.uuid4().hex,
            type=hazard_type,
            severity=hazard_severity,
            distance=distance,
            description=(description or "").strip() or hazard_type.value,
        )
        self.hazards.append(hazard)

        high = hazard.severity is Severity.HIGH
        effects: List[Effect] = [
            Speak(
                f"Warning! {hazard.description} {describe_distance(hazard.distance)}",
                Priority.EMERGENCY if high else Priority.HIGH,
            ),
        ]
        if high:
            effects.append(Vibrate(HapticEvent.DANGER))
        effects.append(Publish("hazard_added", {
            "id": hazard.id,
            "type": hazard.type.value,
            "severity": hazard.severity.value,
            "distance": hazard.distance,
        }))
        return hazard, effects

    def get(self, hazard_id: str) -> Optional[Hazard]:
        for hazard in self.hazards:
            if hazard.id == hazard_id:
                return hazard
        return None

    def remove_hazard(self, hazard_id: str) -> Optional[Hazard]:
        hazard = self.get(hazard_id)
        if hazard is None:
            return None
        self.hazards = [h for h in self.hazards if h.id != hazard_id]
        return hazard

    def update_distance(self, hazard_id: str, distance: float) -> Optional[Hazard]:
        hazard = self.get(hazard_id)
        if hazard is None or distance < 0:
            return None
        hazard.distance = float(distance)
        return hazard

    def clear(self) -> None:
        self.hazards = []

    def sweep(self) -> List[Hazard]:
        """Remove every hazard the user has reached."""
        passed = [h for h in self.hazards if h.distance <= PASSED_DISTANCE_M]
        for hazard in passed:
            self.remove_hazard(hazard.id)
            logger.debug("Hazard %s passed (%.1fm)", hazard.id, hazard.distance)
        return passed

    # ------------------------------------------------------------------
    #  Periodic sweep, active only while navigating
    # ------------------------------------------------------------------

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start_sweep(self) -> None:
        if self.sweeping:
            return
        self._sweep_task = asyncio.ensure_future(self._sweep_loop())

    def stop_sweep(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()
