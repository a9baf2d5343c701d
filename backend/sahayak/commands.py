"""Voice command routing.

Commands arrive already transcribed and lowercased. ``route`` only decides
what the phrase means; the engine carries it out.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sahayak.models import Language


class CommandAction(str, Enum):
    CANCEL_EMERGENCY = "cancel_emergency"
    STOP_NAVIGATION = "stop_navigation"
    START_NAVIGATION = "start_navigation"
    SOS = "sos"
    PAUSE_LISTENING = "pause_listening"
    TEST_VOICE = "test_voice"
    SET_LANGUAGE = "set_language"
    STATUS = "status"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Command:
    action: CommandAction
    argument: Optional[str] = None
    language: Optional[Language] = None


_CANCEL = re.compile(r"\b(cancel|i'?m fine|i am fine|im fine|i'?m okay|i am okay|stop alert)\b")
_STOP_NAV = re.compile(r"\b(stop navigation|end navigation|stop navigating)\b")
_NAVIGATE = re.compile(r"\b(?:navigate to|take me to|go to)\s+(.+)$")
_SOS = re.compile(r"\b(sos|emergency|help)\b")
_PAUSE = re.compile(r"\b(stop listening|stop voice|quiet)\b")
_TEST = re.compile(r"\btest voice\b")
_HINDI = re.compile(r"\bhindi\b")
_ENGLISH = re.compile(r"\benglish\b")
_WHERE = re.compile(r"\bwhere am i\b")


def route(command: str) -> Command:
    text = " ".join((command or "").lower().split())
    if not text:
        return Command(CommandAction.UNKNOWN)

    if _CANCEL.search(text):
        return Command(CommandAction.CANCEL_EMERGENCY)
    if _STOP_NAV.search(text):
        return Command(CommandAction.STOP_NAVIGATION)

    match = _NAVIGATE.search(text)
    if match:
        destination = match.group(1).strip(" .!?")
        if destination:
            return Command(CommandAction.START_NAVIGATION, argument=destination)

    if _SOS.search(text):
        return Command(CommandAction.SOS)
    if _PAUSE.search(text):
        return Command(CommandAction.PAUSE_LISTENING)
    if _TEST.search(text):
        return Command(CommandAction.TEST_VOICE)
    if _HINDI.search(text):
        return Command(CommandAction.SET_LANGUAGE, language=Language.HINDI)
    if _ENGLISH.search(text):
        return Command(CommandAction.SET_LANGUAGE, language=Language.ENGLISH)
    if _WHERE.search(text):
        return Command(CommandAction.STATUS)
    return Command(CommandAction.UNKNOWN)
