"""Unit tests for the LRU speech cache."""

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "backend"))

from sahayak.models import Language
from sahayak.speech_cache import SpeechCache


def test_keyed_by_text_and_language():
    cache = SpeechCache()
    cache.put("Emergency cancelled", Language.ENGLISH, "ZW4=")
    assert cache.get("Emergency cancelled", Language.ENGLISH) == "ZW4="
    assert cache.get("Emergency cancelled", Language.HINDI) is None
    assert ("Emergency cancelled", "en-IN") in cache


def test_evicts_least_recently_used():
    cache = SpeechCache(capacity=2)
    cache.put("a", Language.ENGLISH, "A")
    cache.put("b", Language.ENGLISH, "B")
    cache.get("a", Language.ENGLISH)
    cache.put("c", Language.ENGLISH, "C")

    assert len(cache) == 2
    assert cache.get("b", Language.ENGLISH) is None
    assert cache.get("a", Language.ENGLISH) == "A"
    assert cache.get("c", Language.ENGLISH) == "C"


def test_stats_count_hits_and_misses():
    cache = SpeechCache(capacity=8)
    cache.put("x", Language.ENGLISH, "X")
    cache.get("x", Language.ENGLISH)
    cache.get("y", Language.ENGLISH)
    assert cache.stats() == {"entries": 1, "capacity": 8, "hits": 1, "misses": 1}


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        SpeechCache(capacity=0)
