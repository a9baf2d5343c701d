"""Navigation state store: destination, location, heading and drift.

``transition`` is a pure function over ``NavigationState``; the engine owns
the current state and runs the returned effects.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from sahayak.effects import Effect, Publish, Speak, Vibrate
from sahayak.models import HapticEvent, Location, NavigationState, Priority

DRIFT_THRESHOLD_DEG = 15.0


@dataclass(frozen=True)
class StartNavigation:
    destination: str
    start_location: Optional[Location] = None


@dataclass(frozen=True)
class StopNavigation:
    pass


@dataclass(frozen=True)
class UpdateHeading:
    heading: float


@dataclass(frozen=True)
class SetExpectedHeading:
    heading: float


@dataclass(frozen=True)
class UpdateLocation:
    location: Location


NavigationEvent = Union[StartNavigation, StopNavigation, UpdateHeading, SetExpectedHeading, UpdateLocation]


def is_drifting(heading: float, expected_heading: float, is_navigating: bool) -> bool:
    return is_navigating and abs(heading - expected_heading) > DRIFT_THRESHOLD_DEG


def correction_direction(heading: float, expected_heading: float) -> str:
    return "right" if heading < expected_heading else "left"


def _drift_effects(previous: NavigationState, state: NavigationState) -> List[Effect]:
    # Edge-triggered: only the False -> True transition is announced
    if state.drift_detected and not previous.drift_detected:
        direction = correction_direction(state.heading, state.expected_heading)
        return [
            Speak(f"You are drifting. Turn {direction}", Priority.HIGH),
            Vibrate(HapticEvent.LEFT if direction == "left" else HapticEvent.RIGHT),
            Publish("drift_detected", {
                "heading": state.heading,
                "expected_heading": state.expected_heading,
                "direction": direction,
            }),
        ]
    return []


def transition(
    state: NavigationState, event: NavigationEvent
) -> Tuple[NavigationState, List[Effect]]:
    if isinstance(event, StartNavigation):
        destination = (event.destination or "").strip()
        if not destination:
            return state, []
        location = state.current_location or event.start_location
        new_state = replace(
            state,
            is_navigating=True,
            destination=destination,
            current_location=location,
        )
        return new_state, [
            Speak(f"Navigation started to {destination}", Priority.NORMAL),
            Vibrate(HapticEvent.SUCCESS),
            Publish("navigation_started", {"destination": destination}),
        ]

    if isinstance(event, StopNavigation):
        if not state.is_navigating:
            return state, []
        new_state = replace(state, is_navigating=False, destination="", drift_detected=False)
        return new_state, [
            Speak("Navigation stopped", Priority.NORMAL),
            Publish("navigation_stopped", {"destination": state.destination}),
        ]

    if isinstance(event, UpdateHeading):
        heading = float(event.heading) % 360.0
        new_state = replace(
            state,
            heading=heading,
            drift_detected=is_drifting(heading, state.expected_heading, state.is_navigating),
        )
        return new_state, _drift_effects(state, new_state)

    if isinstance(event, SetExpectedHeading):
        expected = float(event.heading) % 360.0
        new_state = replace(
            state,
            expected_heading=expected,
            drift_detected=is_drifting(state.heading, expected, state.is_navigating),
        )
        return new_state, _drift_effects(state, new_state)

    if isinstance(event, UpdateLocation):
        return replace(state, current_location=event.location), []

    return state, []


class NavigationStore:
    """Holds the current ``NavigationState``; mutated only via ``apply``."""

    def __init__(self, start_location: Optional[Location] = None) -> None:
        self.state = NavigationState()
        self.start_location = start_location

    def apply(self, event: NavigationEvent) -> List[Effect]:
        if isinstance(event, StartNavigation) and event.start_location is None:
            event = replace(event, start_location=self.start_location)
        self.state, effects = transition(self.state, event)
        return effects

    def start_navigation(self, destination: str) -> List[Effect]:
        return self.apply(StartNavigation(destination))

    def stop_navigation(self) -> List[Effect]:
        return self.apply(StopNavigation())

    def update_heading(self, heading: float) -> List[Effect]:
        return self.apply(UpdateHeading(heading))

    def set_expected_heading(self, heading: float) -> List[Effect]:
        return self.apply(SetExpectedHeading(heading))

    def update_location(self, lat: float, lng: float) -> List[Effect]:
        return self.apply(UpdateLocation(Location(lat=lat, lng=lng)))
