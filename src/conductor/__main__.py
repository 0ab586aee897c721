"""Minimal line REPL: `python -m conductor`."""

import asyncio
import logging

from . import Conductor
from .config import Settings, configure_logging
from .models import Track
from .playback import InMemory

logger = logging.getLogger(__name__)

DEMO_LIBRARY = [
    Track(id="jazz/kind-of-blue/01.flac", title="So What", artist="Miles Davis", album="Kind of Blue", genre="Jazz", duration=562),
    Track(id="jazz/kind-of-blue/02.flac", title="Freddie Freeloader", artist="Miles Davis", album="Kind of Blue", genre="Jazz", duration=589),
    Track(id="rock/nevermind/01.flac", title="Smells Like Teen Spirit", artist="Nirvana", album="Nevermind", genre="Rock", duration=301),
    Track(id="electronic/discovery/01.flac", title="One More Time", artist="Daft Punk", album="Discovery", genre="Electronic", duration=320),
    Track(id="ambient/music-for-airports/01.flac", title="1/1", artist="Brian Eno", album="Ambient 1: Music for Airports", genre="Ambient", duration=1021),
]


async def repl(app: Conductor) -> None:
    try:
        await _loop(app)
    finally:
        await app.aclose()


async def _loop(app: Conductor) -> None:
    loop = asyncio.get_running_loop()
    last_track = None
    while True:
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except (EOFError, KeyboardInterrupt):
            break
        line = line.strip()
        if not line:
            continue
        if line in ("quit", "exit"):
            break
        reply = await app.handle_command(line)
        print(reply.text)

        current = await app.playback.current_track()
        if current is not None and current.id != last_track:
            last_track = current.id
            await app.on_track_started()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = Conductor.from_settings(settings, playback=InMemory(DEMO_LIBRARY))
    logger.info("Using %s (%s)", app.gateway.provider, app.gateway.profile.model)
    asyncio.run(repl(app))


if __name__ == "__main__":
    main()
