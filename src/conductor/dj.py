"""Play-count driven scheduling of two-persona radio commentary."""

import logging
import random
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .engine import Orchestrator
from .gateway import ProviderGateway
from .models import CommentaryScript, ScriptLine, Track
from .speech import NoSpeech, Speech

logger = logging.getLogger(__name__)

DEFAULT_PERSONAS = ("Midnight FM", "Morning Drive")
DEFAULT_WINDOW = (4, 5)

DJ_PROMPT = """\
You write short radio breaks for two DJs, {first} and {second}, who co-host a music show.
{first} is calm and late-night; {second} is upbeat and quick.

Write 2 to 6 lines of spoken dialogue about the song that just played and what's coming up.
Every line must start with the speaker's name and a colon, using exactly the names {first} and {second}.
Both DJs must speak. No stage directions, no markdown, no sound effects.

Sound like real people talking: plain words, no hype, one specific detail about the music if you know one."""

_SPEAKER_LINE = re.compile(r"^\s*\**\s*([^:*\n]{1,40}?)\s*\**\s*:\s*(.+?)\s*$")


class DJPhase(str, Enum):
    DORMANT = "dormant"
    ARMED = "armed"
    TRIGGERING = "triggering"


@dataclass
class DJState:
    """Session-scoped commentary counters."""

    enabled: bool = False
    counter: int = 0
    threshold: int = DEFAULT_WINDOW[0]
    window: Tuple[int, int] = DEFAULT_WINDOW
    last_track_id: Optional[str] = None
    last_triggered_id: Optional[str] = None


def _match_speaker(speaker: str, personas: Sequence[str]) -> Optional[str]:
    name = speaker.strip().lower()
    for index, persona in enumerate(personas):
        if name == persona.lower() or persona.lower() in name or name == f"host {index + 1}":
            return persona
    return None


def parse_script(text: str, personas: Tuple[str, str]) -> CommentaryScript:
    """Parse `Name: text` dialogue into a script.

    Unprefixed lines continue the previous speaker's line. Raises ValueError
    unless both personas speak.
    """
    lines: List[ScriptLine] = []
    for raw in (text or "").splitlines():
        if not raw.strip():
            continue
        match = _SPEAKER_LINE.match(raw)
        speaker = _match_speaker(match.group(1), personas) if match else None
        if speaker is not None:
            lines.append(ScriptLine(speaker=speaker, text=match.group(2)))
        elif lines:
            previous = lines[-1]
            lines[-1] = ScriptLine(speaker=previous.speaker, text=f"{previous.text} {raw.strip()}")
    speakers = {line.speaker for line in lines}
    if len(speakers) < 2:
        raise ValueError(f"Commentary needs both hosts speaking, got {sorted(speakers) or 'none'}")
    return CommentaryScript(personas=personas, lines=lines)


class DJScheduler:
    """Triggers a commentary cycle every few tracks while DJ mode is on.

    Each started track advances a counter; reaching the threshold runs one
    restricted orchestrator call for a two-host script, hands it to speech,
    redraws the threshold from `window` and resets the counter. Failures are
    logged and swallowed, and the counter is kept so the next track tries
    again. Start events that arrive during a cycle are held and the latest
    one is processed once the cycle ends.

    Parameters
    ----------
    gateway : ProviderGateway
        Shared with the command orchestrator. The session is not.
    speech : Speech, optional
        Voice output. Defaults to `NoSpeech`.
    personas : tuple of str, default=("Midnight FM", "Morning Drive")
    window : tuple of int, default=(4, 5)
        Inclusive range the trigger threshold is drawn from.
    rng : random.Random, optional
    max_tokens : int, default=300
        Output bound for commentary generation.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        speech: Optional[Speech] = None,
        personas: Tuple[str, str] = DEFAULT_PERSONAS,
        window: Tuple[int, int] = DEFAULT_WINDOW,
        rng: Optional[random.Random] = None,
        max_tokens: int = 300,
        enabled: bool = False,
    ):
        low, high = window
        if low < 1 or high < low:
            raise ValueError(f"Invalid DJ window {window}: need 1 <= low <= high")
        if len(personas) != 2:
            raise ValueError("DJ mode needs exactly two personas")
        self.speech = speech or NoSpeech()
        self.personas = tuple(personas)
        self.rng = rng or random.Random()
        self.session = Orchestrator.commentary(
            gateway,
            system_prompt=DJ_PROMPT.format(first=personas[0], second=personas[1]),
            max_tokens=max_tokens,
        )
        self._state = DJState(enabled=enabled, window=(low, high))
        self._state.threshold = self._draw_threshold()
        self._in_flight = False
        self._pending: Optional[Tuple[Track, Optional[List[Track]]]] = None

    @property
    def state(self) -> DJState:
        return self._state

    @property
    def phase(self) -> DJPhase:
        if self._in_flight:
            return DJPhase.TRIGGERING
        if self._state.enabled and self._state.counter > 0:
            return DJPhase.ARMED
        return DJPhase.DORMANT

    @property
    def enabled(self) -> bool:
        return self._state.enabled

    def enable(self) -> None:
        self._state.enabled = True
        logger.info(
            "DJ mode enabled (%d/%d tracks toward next break)", self._state.counter, self._state.threshold
        )

    def disable(self) -> None:
        self._state.enabled = False
        self._pending = None
        logger.info("DJ mode disabled")

    def _draw_threshold(self) -> int:
        low, high = self._state.window
        return self.rng.randint(low, high)

    async def on_track_started(
        self, track: Track, upcoming: Optional[List[Track]] = None
    ) -> Optional[CommentaryScript]:
        """Record a track start. Returns the script if a break was produced."""
        if self._in_flight:
            if self._state.enabled:
                self._pending = (track, upcoming)
            return None
        script = await self._advance(track, upcoming)
        while self._pending is not None:
            pending_track, pending_upcoming = self._pending
            self._pending = None
            script = await self._advance(pending_track, pending_upcoming) or script
        return script

    async def _advance(self, track: Track, upcoming: Optional[List[Track]]) -> Optional[CommentaryScript]:
        state = self._state
        if not state.enabled:
            return None
        if track.id == state.last_track_id:
            logger.debug("Ignoring duplicate start event for %s", track.id)
            return None
        state.last_track_id = track.id
        state.counter += 1
        if state.counter < state.threshold:
            return None
        return await self._trigger(track, upcoming)

    def _prompt(self, track: Track, upcoming: Optional[List[Track]]) -> str:
        text = f"Just played: {track.label()}"
        if track.album:
            text += f" (from {track.album})"
        text += "."
        if upcoming:
            text += " Coming up: " + "; ".join(t.label() for t in upcoming[:3]) + "."
        return text

    async def _trigger(self, track: Track, upcoming: Optional[List[Track]]) -> Optional[CommentaryScript]:
        state = self._state
        self._in_flight = True
        logger.info("DJ break triggered after %d track(s)", state.counter)
        try:
            try:
                reply = await self.session.handle_message(self._prompt(track, upcoming))
            except Exception:
                logger.exception("Commentary generation failed")
                return None
            if not reply.ok:
                logger.warning("Skipping DJ break: %s", reply.error or "superseded")
                return None
            try:
                script = parse_script(reply.text, self.personas)
            except ValueError as e:
                logger.warning("Skipping DJ break, unusable script: %s", e)
                return None

            state.counter = 0
            state.threshold = self._draw_threshold()
            state.last_triggered_id = track.id
            if not state.enabled:
                logger.info("DJ mode was turned off during the break; not speaking it")
                return None
            await self._speak(script)
            return script
        finally:
            self._in_flight = False

    async def _speak(self, script: CommentaryScript) -> None:
        try:
            await self.speech.speak(script, self.personas[0])
        except Exception:
            logger.exception("Speech output failed")
