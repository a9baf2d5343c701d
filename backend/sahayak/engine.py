"""SafetyEngine: composition root for one user session.

Wires the agents to a shared ``EffectRunner`` so every announcement, haptic
and dispatch goes through one arbiter, and exposes the user/sensor
operations the service layer calls.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sahayak.agents.audio_feedback_agent import AnnouncementArbiter
from sahayak.agents.detection_agent import DetectionLoop, DetectionSource, DetectionThrottle
from sahayak.agents.emergency_agent import EscalationDriver
from sahayak.agents.haptic_agent import HapticSignaler
from sahayak.agents.hazard_agent import HazardQueue
from sahayak.agents.motion_agent import MotionAnalyzer, MotionSource
from sahayak.agents.navigation_agent import NavigationStore
from sahayak.commands import Command, CommandAction, route
from sahayak.config import Settings
from sahayak.dispatch import Dispatcher, DispatchRequest
from sahayak.effects import Effect, EffectRunner, Speak
from sahayak.models import (
    DetectionFrame,
    EmergencyContact,
    EmergencyState,
    FeedbackRequest,
    Hazard,
    HazardType,
    Language,
    MotionSample,
    Priority,
    Severity,
)

logger = logging.getLogger("sahayak.engine")

LANGUAGE_NAMES = {Language.ENGLISH: "English", Language.HINDI: "Hindi"}

FALL_DETECTION_UNAVAILABLE = "Fall detection is not available on this device"


class SafetyEngine:

    def __init__(
        self,
        arbiter: AnnouncementArbiter,
        haptics: HapticSignaler,
        dispatcher: Optional[Dispatcher] = None,
        telemetry=None,
        settings: Optional[Settings] = None,
        motion: Optional[MotionAnalyzer] = None,
        throttle: Optional[DetectionThrottle] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.arbiter = arbiter
        self.haptics = haptics
        self.contacts: List[EmergencyContact] = []
        self.listening = True

        self.runner = EffectRunner(
            arbiter,
            haptics,
            dispatcher=dispatcher,
            telemetry=telemetry,
            dispatch_context=self._dispatch_request,
        )
        self.navigation = NavigationStore(self.settings.start_location)
        self.hazards = HazardQueue(self.settings.sweep_seconds)
        self.motion = motion or MotionAnalyzer()
        self.escalation = EscalationDriver(
            self.runner,
            countdown_seconds=self.settings.countdown_seconds,
            tick_seconds=self.settings.tick_seconds,
            on_change=self._on_escalation_change,
        )
        self.detection = DetectionLoop(
            throttle or DetectionThrottle(self.settings.detection_cooldown_ms),
            self._submit,
        )
        self._motion_prompted = False

    # ------------------------------------------------------------------
    #  Navigation
    # ------------------------------------------------------------------

    async def start_navigation(self, destination: str) -> bool:
        effects = self.navigation.start_navigation(destination)
        if not effects:
            logger.info("Rejected navigation request with blank destination")
            return False
        logger.info("Navigation started to %s", self.navigation.state.destination)
        self.hazards.start_sweep()
        self._run(effects)
        return True

    async def stop_navigation(self) -> bool:
        was_navigating = self.navigation.state.is_navigating
        effects = self.navigation.stop_navigation()
        if not was_navigating:
            logger.debug("stop_navigation while idle ignored")
            return False
        self.hazards.stop_sweep()
        self.hazards.clear()
        logger.info("Navigation stopped")
        self._run(effects)
        return True

    async def update_heading(self, heading: float) -> bool:
        self._run(self.navigation.update_heading(heading))
        return self.navigation.state.drift_detected

    async def set_expected_heading(self, heading: float) -> bool:
        self._run(self.navigation.set_expected_heading(heading))
        return self.navigation.state.drift_detected

    async def update_location(self, lat: float, lng: float) -> None:
        self._run(self.navigation.update_location(lat, lng))

    # ------------------------------------------------------------------
    #  Hazards
    # ------------------------------------------------------------------

    async def add_hazard(
        self,
        type: HazardType,
        severity: Severity,
        distance: float,
        description: str = "",
    ) -> Optional[Hazard]:
        hazard, effects = self.hazards.add_hazard(type, severity, distance, description)
        if hazard is not None:
            logger.info("Hazard %s added: %s at %sm", hazard.id, hazard.type.value, hazard.distance)
        self._run(effects)
        return hazard

    async def remove_hazard(self, hazard_id: str) -> bool:
        removed = self.hazards.remove_hazard(hazard_id)
        if removed is None:
            logger.debug("remove_hazard: unknown id %s", hazard_id)
        return removed is not None

    async def update_hazard_distance(self, hazard_id: str, distance: float) -> Optional[Hazard]:
        return self.hazards.update_distance(hazard_id, distance)

    # ------------------------------------------------------------------
    #  Emergency
    # ------------------------------------------------------------------

    async def detect_fall(self, source: str = "manual") -> EmergencyState:
        return self.escalation.detect_fall(source)

    async def cancel_emergency(self) -> EmergencyState:
        return self.escalation.cancel()

    async def enable_fall_detection(self, source: MotionSource) -> bool:
        was_armed = self.motion.armed
        armed = await self.motion.arm(source)
        if armed and not was_armed:
            self.speak_now("Fall detection enabled", Priority.NORMAL)
        elif not armed and not self._motion_prompted:
            self._motion_prompted = True
            self.speak_now(FALL_DETECTION_UNAVAILABLE, Priority.NORMAL)
        return armed

    async def on_motion_sample(self, sample: MotionSample) -> bool:
        fall = self.motion.on_sample(sample)
        if fall is None:
            return False
        self.escalation.detect_fall("sensor")
        return True

    def _on_escalation_change(self, state: EmergencyState) -> None:
        if state.is_fall_detected:
            self.motion.suspend()
        else:
            self.motion.resume()

    def _dispatch_request(self, message: str) -> DispatchRequest:
        return DispatchRequest(
            location=self.navigation.state.current_location,
            contacts=list(self.contacts),
            message=message,
        )

    # ------------------------------------------------------------------
    #  Contacts & settings
    # ------------------------------------------------------------------

    async def add_emergency_contact(
        self,
        name: str,
        phone: str,
        relationship: Optional[str] = None,
    ) -> Optional[EmergencyContact]:
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name or not phone:
            logger.info("Rejected emergency contact with blank name or phone")
            return None
        contact = EmergencyContact(
            id=uuid.uuid4().hex,
            name=name,
            phone=phone,
            relationship=(relationship or "").strip() or None,
        )
        self.contacts.append(contact)
        self.speak_now("Emergency contact added", Priority.NORMAL)
        return contact

    async def remove_emergency_contact(self, contact_id: str) -> bool:
        for contact in self.contacts:
            if contact.id == contact_id:
                self.contacts.remove(contact)
                self.speak_now(f"{contact.name} removed from emergency contacts", Priority.NORMAL)
                return True
        return False

    async def set_language(self, language: Language) -> Language:
        language = Language(language)
        self.arbiter.set_language(language)
        self.speak_now(f"{LANGUAGE_NAMES[language]} selected", Priority.NORMAL)
        return language

    async def set_voice_enabled(self, enabled: bool) -> None:
        await self.arbiter.set_enabled(bool(enabled))
        if enabled:
            self.speak_now("Voice guidance enabled", Priority.NORMAL)

    async def set_haptic_enabled(self, enabled: bool) -> None:
        self.haptics.set_enabled(bool(enabled))
        self.speak_now(
            "Haptic feedback enabled" if enabled else "Haptic feedback disabled",
            Priority.NORMAL,
        )

    # ------------------------------------------------------------------
    #  Speech & detection
    # ------------------------------------------------------------------

    async def speak(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        self.speak_now(text, priority)

    def speak_now(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        self._run([Speak(text, Priority(priority))])

    async def start_detection(
        self,
        source: Optional[DetectionSource] = None,
        model_ready: bool = True,
    ) -> bool:
        if self.detection.running:
            return True
        ready = model_ready if source is None else getattr(source, "available", False)
        if not ready or not self.detection.start(source):
            self.speak_now("Please wait, model is still loading", Priority.NORMAL)
            return False
        self.speak_now("Camera started. Detecting objects.", Priority.NORMAL)
        return True

    async def stop_detection(self) -> None:
        self.detection.stop()

    async def on_frame(self, frame: DetectionFrame) -> List[FeedbackRequest]:
        if not self.detection.running:
            logger.debug("Frame received with no active detection session")
            return []
        return await self.detection.process(frame)

    async def _submit(self, request: FeedbackRequest) -> None:
        self._run([Speak(request.text, request.priority)])

    # ------------------------------------------------------------------
    #  Voice commands
    # ------------------------------------------------------------------

    async def handle_command(self, text: str) -> Command:
        command = route(text)
        logger.info("Voice command %r -> %s", text, command.action.value)
        action = command.action

        if action is CommandAction.CANCEL_EMERGENCY:
            await self.cancel_emergency()
        elif action is CommandAction.STOP_NAVIGATION:
            await self.stop_navigation()
        elif action is CommandAction.START_NAVIGATION:
            await self.start_navigation(command.argument or "")
        elif action is CommandAction.SOS:
            await self.detect_fall("manual")
        elif action is CommandAction.PAUSE_LISTENING:
            self.listening = False
            self.speak_now("Voice assistant paused", Priority.NORMAL)
        elif action is CommandAction.TEST_VOICE:
            self.speak_now("Testing voice feedback. One, two, three.", Priority.HIGH)
        elif action is CommandAction.SET_LANGUAGE:
            await self.set_language(command.language)
        elif action is CommandAction.STATUS:
            self.speak_now(self.status_text(), Priority.NORMAL)
        else:
            self.speak_now("Could not understand. Please try again", Priority.NORMAL)
        return command

    def status_text(self) -> str:
        nav = self.navigation.state
        if not nav.is_navigating:
            return "Navigation is not active"
        count = len(self.hazards.hazards)
        text = f"Navigating to {nav.destination}"
        if count:
            text += f". {count} hazard{'s' if count != 1 else ''} ahead"
        return text

    # ------------------------------------------------------------------
    #  Lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        nav = self.navigation.state
        emergency = self.escalation.state
        location = nav.current_location
        return {
            "navigation": {
                "is_navigating": nav.is_navigating,
                "destination": nav.destination,
                "current_location": (
                    {"lat": location.lat, "lng": location.lng} if location else None
                ),
                "heading": nav.heading,
                "expected_heading": nav.expected_heading,
                "drift_detected": nav.drift_detected,
            },
            "hazards": [
                {
                    "id": h.id,
                    "type": h.type.value,
                    "severity": h.severity.value,
                    "distance": h.distance,
                    "description": h.description,
                }
                for h in self.hazards.hazards
            ],
            "emergency": {
                "phase": emergency.phase.value,
                "is_fall_detected": emergency.is_fall_detected,
                "countdown": emergency.countdown,
                "outcome": emergency.outcome.value if emergency.outcome else None,
            },
            "contacts": [
                {"id": c.id, "name": c.name, "phone": c.phone, "relationship": c.relationship}
                for c in self.contacts
            ],
            "settings": {
                "language": self.arbiter.language.value,
                "voice_enabled": self.arbiter.enabled,
                "haptic_enabled": self.haptics.enabled,
            },
            "fall_detection": {
                "available": self.motion.available,
                "armed": self.motion.armed,
                "suspended": self.motion.suspended,
            },
            "detection_running": self.detection.running,
            "listening": self.listening,
        }

    async def drain(self) -> None:
        await self.runner.drain()

    async def close(self) -> None:
        self.detection.stop()
        self.hazards.stop_sweep()
        self.escalation.close()
        self.runner.cancel_pending()
        await self.arbiter.cancel()
        logger.info("Engine closed")

    def _run(self, effects: List[Effect]) -> None:
        leftover = self.runner.run(effects)
        if leftover:
            logger.debug("Unhandled effects: %s", leftover)
