"""LRU cache of synthesized speech, keyed by (text, language)."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional, Tuple

from sahayak.models import Language

logger = logging.getLogger("sahayak.speech_cache")

CacheKey = Tuple[str, str]


class SpeechCache:
    """Shared across sessions; all access happens on the event loop thread."""

    def __init__(self, capacity: int = 256) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[CacheKey, str]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(text: str, language: Language) -> CacheKey:
        return (text, Language(language).value)

    def get(self, text: str, language: Language) -> Optional[str]:
        key = self.key(text, language)
        audio = self._entries.get(key)
        if audio is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return audio

    def put(self, text: str, language: Language, audio_b64: str) -> None:
        key = self.key(text, language)
        self._entries[key] = audio_b64
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cached speech %r", evicted)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
        }
