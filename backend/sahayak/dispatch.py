# Emergency dispatch: hands the caregiver alert to a messaging provider.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from sahayak.models import EmergencyContact, Location

logger = logging.getLogger("sahayak.dispatch")


@dataclass
class DispatchRequest:
    location: Optional[Location] = None
    contacts: List[EmergencyContact] = field(default_factory=list)
    message: str = ""

    def body(self) -> str:
        """SMS text: the alert plus a maps link when the location is known."""
        if self.location is None:
            return self.message
        return (
            f"{self.message}. Last known location: "
            f"https://maps.google.com/?q={self.location.lat:.6f},{self.location.lng:.6f}"
        )


@dataclass
class DispatchResult:
    recipient: str  # e.g. "Asha (+919800000000)"
    success: bool
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class Dispatcher(Protocol):
    async def dispatch(self, request: DispatchRequest) -> List[DispatchResult]: ...


class LogDispatcher:
    """Records the alert without sending anything (no messaging credentials)."""

    def __init__(self) -> None:
        self.sent: List[DispatchRequest] = []

    async def dispatch(self, request: DispatchRequest) -> List[DispatchResult]:
        self.sent.append(request)
        logger.warning(
            "EMERGENCY DISPATCH (log only) | contacts=%d | location=%s | message=%s",
            len(request.contacts),
            request.location,
            request.message,
        )
        return [DispatchResult(recipient="log", success=True)]


class TwilioDispatcher:
    """Sends the alert as an SMS to every emergency contact via Twilio.

    Each message is attempted independently; one failing number does not stop
    the others. The Twilio client is synchronous, so sends run in the default
    executor.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        fallback_phone: Optional[str] = None,
        client=None,
    ) -> None:
        if client is None:
            client = TwilioClient(account_sid, auth_token)
        self._twilio = client
        self._from_number = from_number
        self._fallback_phone = fallback_phone
        logger.info("Twilio dispatcher ready | SID=%s...", account_sid[:5])

    def _recipients(self, request: DispatchRequest) -> List[EmergencyContact]:
        if request.contacts:
            return list(request.contacts)
        if self._fallback_phone:
            return [EmergencyContact(id="fallback", name="Caregiver", phone=self._fallback_phone)]
        return []

    async def dispatch(self, request: DispatchRequest) -> List[DispatchResult]:
        recipients = self._recipients(request)
        if not recipients:
            logger.warning("Emergency dispatch has no recipients; nothing sent")
            return []

        loop = asyncio.get_running_loop()
        body = request.body()
        results = []
        for contact in recipients:
            results.append(await loop.run_in_executor(None, self._send_sms, contact, body))

        successes = sum(1 for r in results if r.success)
        logger.info("Dispatch complete: %d/%d messages sent", successes, len(results))
        return results

    def _send_sms(self, contact: EmergencyContact, body: str) -> DispatchResult:
        recipient = f"{contact.name} ({contact.phone})"
        try:
            message = self._twilio.messages.create(
                body=body,
                from_=self._from_number,
                to=contact.phone,
            )
            logger.info("SMS sent | to=%s | sid=%s", contact.phone, message.sid)
            return DispatchResult(recipient=recipient, success=True)
        except TwilioRestException as exc:
            logger.error("SMS failed | to=%s | error=%s", contact.phone, exc.msg)
            return DispatchResult(recipient=recipient, success=False, error=exc.msg)
        except Exception as exc:
            logger.error("SMS unexpected error | to=%s | error=%s", contact.phone, exc, exc_info=True)
            return DispatchResult(recipient=recipient, success=False, error=str(exc))


def build_dispatcher(settings) -> Dispatcher:
    if settings.twilio_configured:
        return TwilioDispatcher(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
            fallback_phone=settings.fallback_phone,
        )
    logger.warning("Twilio credentials missing; emergency alerts will only be logged")
    return LogDispatcher()
