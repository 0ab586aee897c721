"""Synced lyrics: LRC parsing, lookup with caching, and position-to-line resolution."""

import bisect
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from .cache import TTLCache
from .errors import LyricsFormatError, LyricsUnavailable
from .models import LyricLine, LyricsDocument, Track

logger = logging.getLogger(__name__)

LYRICS_TTL = 3600.0
LYRICS_MISS_TTL = 300.0
LRCLIB_URL = "https://lrclib.net/api"
USER_AGENT = "Conductor Music Player (https://github.com/shelbeely/Conductor)"

_TIMESTAMP = re.compile(r"\[(\d{1,3}):(\d{2})(?:[.:](\d{1,3}))?\]")
_TIMED_LINE = re.compile(r"^((?:\[\d{1,3}:\d{2}(?:[.:]\d{1,3})?\]\s*)+)(.*)$")
_METADATA = re.compile(r"^\[[A-Za-z#]+:.*\]$")


def parse_lrc(text: str) -> List[LyricLine]:
    """Parse LRC text into timed lines, in the order written.

    Accepts `[mm:ss.xx]`, `[mm:ss.xxx]` and `[mm:ss]` stamps; a line may carry
    several. Metadata tags such as `[ar:...]` are skipped. Raises
    `LyricsFormatError` for untimed text or decreasing timestamps.
    """
    lines: List[LyricLine] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        raw = raw.strip()
        if not raw or _METADATA.match(raw):
            continue
        match = _TIMED_LINE.match(raw)
        if match is None:
            raise LyricsFormatError(f"Line {number} has no timestamp: {raw[:40]!r}")
        words = match.group(2).strip()
        for minutes, seconds, fraction in _TIMESTAMP.findall(match.group(1)):
            if int(seconds) >= 60:
                raise LyricsFormatError(f"Line {number} has an invalid timestamp")
            millis = int(fraction.ljust(3, "0")) if fraction else 0
            time_ms = (int(minutes) * 60 + int(seconds)) * 1000 + millis
            if lines and time_ms < lines[-1].time_ms:
                raise LyricsFormatError(
                    f"Timestamps go backwards at line {number} ({lines[-1].time_ms}ms then {time_ms}ms)"
                )
            lines.append(LyricLine(time_ms=time_ms, text=words))
    if not lines:
        raise LyricsFormatError("No timed lines found")
    return lines


@dataclass
class RawLyrics:
    synced: Optional[str] = None
    plain: Optional[str] = None


class LyricsSource(ABC):
    """Interface for a lyrics provider."""

    @abstractmethod
    async def lookup(self, track: Track) -> Optional[RawLyrics]:
        """Return lyrics text for `track`, or None when the source has none.

        Raises `LyricsUnavailable` when the source cannot be queried.
        """
        pass

    async def aclose(self) -> None:
        """Release any connections held by the source."""
        pass


class NoLyrics(LyricsSource):
    """Default source that never has lyrics."""

    async def lookup(self, track: Track) -> Optional[RawLyrics]:
        return None


class LRCLib(LyricsSource):
    """lrclib.net lookups by track name, artist and, when known, album and duration."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = LRCLIB_URL,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout, headers={"User-Agent": USER_AGENT})

    def _params(self, track: Track) -> Dict[str, Any]:
        params: Dict[str, Any] = {"track_name": track.title, "artist_name": track.artist}
        if track.album:
            params["album_name"] = track.album
        if track.duration:
            params["duration"] = int(track.duration)
        return params

    async def lookup(self, track: Track) -> Optional[RawLyrics]:
        if not track.title or not track.artist:
            return None
        try:
            response = await self.client.get(f"{self.base_url}/get", params=self._params(track))
        except httpx.HTTPError as e:
            raise LyricsUnavailable(f"lrclib request failed: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise LyricsUnavailable(f"lrclib returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise LyricsUnavailable(f"lrclib returned invalid JSON: {e}") from e
        return RawLyrics(synced=data.get("syncedLyrics"), plain=data.get("plainLyrics"))

    async def aclose(self) -> None:
        await self.client.aclose()


class LyricsSync:
    """Fetches lyrics documents through a cache and maps playback offsets to lines.

    Found lyrics are cached for `ttl` seconds, misses for `miss_ttl`.
    """

    def __init__(
        self,
        source: Optional[LyricsSource] = None,
        cache: Optional[TTLCache] = None,
        ttl: float = LYRICS_TTL,
        miss_ttl: float = LYRICS_MISS_TTL,
        clock: Optional[Callable[[], float]] = None,
        enabled: bool = True,
    ):
        self.source = source or NoLyrics()
        self.cache = cache if cache is not None else TTLCache(max_size=128, ttl=ttl, clock=clock)
        self.ttl = ttl
        self.miss_ttl = miss_ttl
        self.enabled = enabled

    def toggle(self) -> bool:
        self.enabled = not self.enabled
        return self.enabled

    async def fetch(self, track: Track) -> LyricsDocument:
        key = ("lyrics", track.id)
        document = self.cache.get(key)
        if document is not None:
            return document
        document = await self._resolve(track)
        self.cache.set(key, document, ttl=self.miss_ttl if document.source == "none" else self.ttl)
        return document

    async def _resolve(self, track: Track) -> LyricsDocument:
        try:
            raw = await self.source.lookup(track)
        except LyricsUnavailable as e:
            logger.warning("Lyrics lookup failed for %s: %s", track.id, e)
            raw = None
        except Exception:
            logger.exception("Lyrics source raised for %s", track.id)
            raw = None
        if raw is None:
            return LyricsDocument(track_id=track.id, source="none")

        plain = raw.plain if raw.plain and raw.plain.strip() else None
        if raw.synced and raw.synced.strip():
            try:
                lines = parse_lrc(raw.synced)
                return LyricsDocument(track_id=track.id, lines=lines, plain=plain, source="synced")
            except ValueError as e:
                logger.warning("Rejecting synced lyrics for %s: %s", track.id, e)
        if plain is not None:
            return LyricsDocument(track_id=track.id, plain=plain, source="plain")
        return LyricsDocument(track_id=track.id, source="none")

    @staticmethod
    def current_line(document: LyricsDocument, elapsed_ms: float) -> Optional[int]:
        """Index of the line with the greatest timestamp <= `elapsed_ms`, or None."""
        if not document.is_synced:
            return None
        times = [line.time_ms for line in document.lines]
        index = bisect.bisect_right(times, elapsed_ms) - 1
        return index if index >= 0 else None

    @classmethod
    def upcoming_lines(cls, document: LyricsDocument, elapsed_ms: float, count: int = 3) -> List[LyricLine]:
        if not document.is_synced:
            return []
        current = cls.current_line(document, elapsed_ms)
        start = 0 if current is None else current + 1
        return document.lines[start : start + count]
