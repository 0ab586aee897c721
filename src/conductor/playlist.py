"""Turns a free-text playlist category into a ranked, bounded track selection."""

import itertools
import logging
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import PlaylistCriteria, PlaylistResult, Track
from .playback import Playback

logger = logging.getLogger(__name__)

FIELD_WEIGHTS = {"genre": 3.0, "title": 2.0, "album": 1.0, "artist": 1.0}


@dataclass(frozen=True)
class Strategy:
    """How one kind of category is searched for in the library.

    `filter` is the secondary constraint dropped when the search is broadened.
    """

    kind: str
    field: str
    terms: Tuple[str, ...]
    filter: Optional[Callable[[Track], bool]] = None


def _duration_between(low: Optional[float] = None, high: Optional[float] = None) -> Callable[[Track], bool]:
    def check(track: Track) -> bool:
        if track.duration is None:
            return False
        if low is not None and track.duration < low:
            return False
        if high is not None and track.duration > high:
            return False
        return True

    return check


_WORKOUT = Strategy(
    "activity",
    "genre",
    ("workout", "electronic", "edm", "hip hop", "rock", "dance"),
    _duration_between(120, 420),
)
_FOCUS = Strategy(
    "activity",
    "genre",
    ("ambient", "classical", "instrumental", "lofi"),
    _duration_between(low=180),
)
_SLEEP = Strategy("activity", "genre", ("ambient", "classical", "piano", "sleep"), _duration_between(low=180))
_PARTY = Strategy("activity", "genre", ("dance", "pop", "disco", "house", "party"))

_HAPPY = Strategy("mood", "genre", ("pop", "funk", "disco", "happy"))
_SAD = Strategy("mood", "any", ("sad", "blues", "ballad", "acoustic"))
_CHILL = Strategy("mood", "genre", ("chill", "ambient", "lofi", "jazz", "acoustic"))
_ROMANTIC = Strategy("mood", "any", ("love", "soul", "r&b", "ballad"))
_ANGRY = Strategy("mood", "genre", ("metal", "punk", "hardcore"))

_HIGH_ENERGY = Strategy("energy", "genre", ("dance", "edm", "rock", "metal", "punk"), _duration_between(high=360))
_LOW_ENERGY = Strategy("energy", "genre", ("ambient", "acoustic", "folk", "classical"))

# Longest keywords are matched first so "high energy" wins over "energy".
KEYWORDS: Dict[str, Strategy] = {
    "workout": _WORKOUT,
    "gym": _WORKOUT,
    "running": _WORKOUT,
    "exercise": _WORKOUT,
    "focus": _FOCUS,
    "study": _FOCUS,
    "studying": _FOCUS,
    "work": _FOCUS,
    "sleep": _SLEEP,
    "party": _PARTY,
    "happy": _HAPPY,
    "cheerful": _HAPPY,
    "sad": _SAD,
    "melancholy": _SAD,
    "chill": _CHILL,
    "relaxing": _CHILL,
    "relaxed": _CHILL,
    "calm": _CHILL,
    "romantic": _ROMANTIC,
    "love": _ROMANTIC,
    "angry": _ANGRY,
    "aggressive": _ANGRY,
    "high energy": _HIGH_ENERGY,
    "energetic": _HIGH_ENERGY,
    "upbeat": _HIGH_ENERGY,
    "low energy": _LOW_ENERGY,
    "mellow": _LOW_ENERGY,
}


def _words(text: str) -> List[str]:
    return [w for w in re.findall(r"[a-z0-9&']+", text.lower()) if len(w) > 2]


def resolve_strategy(category: str) -> Strategy:
    """Map category text to a search strategy. Unknown text is treated as a genre."""
    text = " ".join(re.findall(r"[a-z0-9&']+", category.lower()))
    for keyword in sorted(KEYWORDS, key=len, reverse=True):
        if re.search(rf"\b{re.escape(keyword)}\b", text):
            return KEYWORDS[keyword]
    return Strategy("genre", "genre", (category.strip().lower(),))


class Ranker(ABC):
    """Orders candidate tracks by relevance to the criteria."""

    @abstractmethod
    def rank(self, tracks: List[Track], strategy: Strategy, criteria: PlaylistCriteria) -> List[Track]:
        pass


class KeywordRanker(Ranker):
    """Scores term hits per field, weighted by `FIELD_WEIGHTS`. Ties go to the lower track id."""

    def score(self, track: Track, terms: Iterable[str]) -> float:
        total = 0.0
        for term in terms:
            for field, weight in FIELD_WEIGHTS.items():
                if term in getattr(track, field).lower():
                    total += weight
        return total

    def rank(self, tracks: List[Track], strategy: Strategy, criteria: PlaylistCriteria) -> List[Track]:
        terms = list(dict.fromkeys(list(strategy.terms) + _words(criteria.category)))
        return sorted(tracks, key=lambda t: (-self.score(t, terms), t.id))


class PlaylistGenerator:
    """Builds playlists through the library search capability.

    Parameters
    ----------
    playback : Playback
        Library search collaborator. The full library is never scanned.
    ranker : Ranker, optional
        Relevance policy. Defaults to `KeywordRanker`.
    seed : int, default=0
        Start of the shuffle seed counter used when criteria carry no seed.
    """

    def __init__(self, playback: Playback, ranker: Optional[Ranker] = None, seed: int = 0):
        self.playback = playback
        self.ranker = ranker or KeywordRanker()
        self._seeds = itertools.count(seed)

    async def _collect(self, field: str, terms: Iterable[str], into: Dict[str, Track]) -> None:
        for term in terms:
            for track in await self.playback.search(field, term):
                into.setdefault(track.id, track)

    async def generate(self, criteria: PlaylistCriteria) -> PlaylistResult:
        strategy = resolve_strategy(criteria.category)
        target = criteria.target_length

        found: Dict[str, Track] = {}
        await self._collect(strategy.field, strategy.terms, found)
        candidates = list(found.values())
        if strategy.filter is not None:
            candidates = [t for t in candidates if strategy.filter(t)]

        broadened = False
        if len(candidates) < target:
            broadened = True
            await self._collect("any", _words(criteria.category), found)
            candidates = list(found.values())
            logger.debug(
                "Broadened '%s' search: %d candidate(s) for %d requested",
                criteria.category,
                len(candidates),
                target,
            )

        if not candidates:
            logger.info("No tracks matched playlist category '%s'", criteria.category)
            return PlaylistResult(
                criteria=criteria, kind=strategy.kind, broadened=broadened, status="no_candidates"
            )

        tracks = self.ranker.rank(candidates, strategy, criteria)[:target]
        if criteria.shuffle:
            seed = criteria.seed if criteria.seed is not None else next(self._seeds)
            random.Random(seed).shuffle(tracks)

        status = "ok" if len(tracks) >= target else "partial"
        return PlaylistResult(
            criteria=criteria, kind=strategy.kind, tracks=tracks, broadened=broadened, status=status
        )
