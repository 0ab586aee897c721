"""Playback/library collaborator contract and an in-memory implementation."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .errors import PlaybackUnreachable
from .models import PlayerStatus, Track

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("artist", "album", "title", "genre", "any")
SETTINGS = ("repeat", "random", "single", "consume")


class Playback(ABC):
    """Interface for the playback daemon and its music library.

    Implementations raise `PlaybackUnreachable` when the daemon connection is
    lost; every other failure surfaces as the exception that caused it.
    """

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def status(self) -> PlayerStatus:
        pass

    @abstractmethod
    async def current_track(self) -> Optional[Track]:
        pass

    @abstractmethod
    async def play(self, position: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def pause(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    @abstractmethod
    async def next(self) -> None:
        pass

    @abstractmethod
    async def previous(self) -> None:
        pass

    @abstractmethod
    async def seek(self, seconds: float) -> None:
        pass

    @abstractmethod
    async def set_volume(self, volume: int) -> None:
        pass

    @abstractmethod
    async def toggle_setting(self, setting: str) -> bool:
        """Flips a mode flag and returns its new value."""
        pass

    @abstractmethod
    async def add(self, track_id: str, position: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def remove(self, position: int) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def move(self, source: int, target: int) -> None:
        pass

    @abstractmethod
    async def search(self, field: str, query: str) -> List[Track]:
        pass

    @abstractmethod
    async def queue(self) -> List[Track]:
        pass


class InMemory(Playback):
    """A self-contained player over a fixed library. Useful for demos and tests.

    Setting `connected` to False makes every call raise `PlaybackUnreachable`,
    which mimics a dropped daemon connection.
    """

    def __init__(self, library: Optional[Iterable[Track]] = None):
        self.library: List[Track] = list(library or [])
        self.connected = True
        self._queue: List[Track] = []
        self._status = PlayerStatus(volume=50)

    def _check(self) -> None:
        if not self.connected:
            raise PlaybackUnreachable("Lost connection to the playback daemon")

    def _update(self, **changes) -> None:
        self._status = self._status.model_copy(update=changes)

    async def connect(self) -> None:
        self.connected = True

    async def status(self) -> PlayerStatus:
        self._check()
        return self._status

    async def current_track(self) -> Optional[Track]:
        self._check()
        song = self._status.song
        if song is None or song >= len(self._queue):
            return None
        return self._queue[song].model_copy(update={"position": song})

    async def play(self, position: Optional[int] = None) -> None:
        self._check()
        if position is None:
            position = self._status.song if self._status.song is not None else 0
        if not 0 <= position < len(self._queue):
            raise ValueError(f"Queue position {position} is out of range")
        self._update(state="play", song=position, elapsed=0.0, duration=self._queue[position].duration)

    async def pause(self) -> None:
        self._check()
        if self._status.state == "play":
            self._update(state="pause")

    async def stop(self) -> None:
        self._check()
        self._update(state="stop", elapsed=None)

    async def next(self) -> None:
        self._check()
        song = self._status.song
        if song is not None and song + 1 < len(self._queue):
            await self.play(song + 1)
        else:
            await self.stop()

    async def previous(self) -> None:
        self._check()
        song = self._status.song or 0
        if self._queue:
            await self.play(max(0, song - 1))

    async def seek(self, seconds: float) -> None:
        self._check()
        if self._status.song is None:
            raise ValueError("Nothing is playing")
        self._update(elapsed=float(seconds))

    async def set_volume(self, volume: int) -> None:
        self._check()
        if not 0 <= volume <= 100:
            raise ValueError("Volume must be between 0 and 100")
        self._update(volume=volume)

    async def toggle_setting(self, setting: str) -> bool:
        self._check()
        if setting not in SETTINGS:
            raise ValueError(f"Unknown setting: {setting}")
        value = not getattr(self._status, setting)
        self._update(**{setting: value})
        return value

    async def add(self, track_id: str, position: Optional[int] = None) -> None:
        self._check()
        track = next((t for t in self.library if t.id == track_id), None)
        if track is None:
            raise ValueError(f"No such track in library: {track_id}")
        if position is None:
            self._queue.append(track)
        else:
            self._queue.insert(position, track)
            song = self._status.song
            if song is not None and position <= song:
                self._update(song=song + 1)

    async def remove(self, position: int) -> None:
        self._check()
        if not 0 <= position < len(self._queue):
            raise ValueError(f"Queue position {position} is out of range")
        del self._queue[position]
        song = self._status.song
        if song is not None and position < song:
            self._update(song=song - 1)
        elif song == position:
            self._update(state="stop", song=None, elapsed=None)

    async def clear(self) -> None:
        self._check()
        self._queue.clear()
        self._update(state="stop", song=None, elapsed=None, duration=None)

    async def move(self, source: int, target: int) -> None:
        self._check()
        track = self._queue.pop(source)
        self._queue.insert(target, track)

    async def search(self, field: str, query: str) -> List[Track]:
        self._check()
        if field not in SEARCH_FIELDS:
            raise ValueError(f"Unknown search field: {field}")
        needle = query.strip().lower()
        if not needle:
            return []
        fields = ("artist", "album", "title", "genre") if field == "any" else (field,)
        return [
            t for t in self.library if any(needle in getattr(t, f).lower() for f in fields)
        ]

    async def queue(self) -> List[Track]:
        self._check()
        return [t.model_copy(update={"position": i}) for i, t in enumerate(self._queue)]
