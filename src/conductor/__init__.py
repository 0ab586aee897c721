"""
The main entrypoint for the Conductor package.

This module contains the `Conductor` session context, which wires the
extensible pillars (LLM backend, playback, speech, lyrics source) into the
orchestration core: the provider gateway, tool registry, turn loop, model
catalog, playlist generator, DJ scheduler and lyrics sync.
"""

import random
from typing import List, Optional

from . import catalog, config, dj, engine, gateway, lyrics, playback, playlist, speech, tools
from . import llm as llm_module
from .models import CommentaryScript, LyricLine, LyricsDocument, Reply, Track


class Conductor:
    """
    One music-control session.

    Every piece of mutable session state (the conversation window, the active
    model, the DJ counter, cached lyrics) lives on this object. Construct one
    per session and drop it when the session ends; nothing is persisted.
    """

    def __init__(
        self,
        llm: Optional[llm_module.LLM] = None,
        playback: Optional[playback.Playback] = None,
        speech: Optional[speech.Speech] = None,
        lyrics_source: Optional[lyrics.LyricsSource] = None,
        settings: Optional[config.Settings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize a session with configurable pillars.

        Parameters
        ----------
        llm : llm.LLM, optional
            Generative backend. Defaults to llm.OpenAI(), or llm.Echo() with a
            warning when the 'openai' package is not installed.
        playback : playback.Playback, optional
            Playback daemon and library. Defaults to an empty playback.InMemory().
        speech : speech.Speech, optional
            Voice output for DJ commentary. Defaults to speech.NoSpeech().
        lyrics_source : lyrics.LyricsSource, optional
            Where lyrics come from. Defaults to lyrics.NoLyrics().
        settings : config.Settings, optional
            Loop limits and DJ options. Defaults to config.Settings().
        rng : random.Random, optional
            Source of the DJ trigger thresholds.

        Examples
        --------
        >>> app = Conductor(llm=llm.Echo())
        >>> reply = asyncio.run(app.handle_command("play some jazz"))
        """
        if llm:
            self.llm = llm
        else:
            try:
                from .llm import OpenAI

                self.llm = OpenAI()
            except ImportError:
                import warnings

                warnings.warn(
                    "Conductor is running with a simple EchoLLM because the 'openai' package is not installed. "
                    'For the default OpenAI integration, install with: pip install "conductor[default]"',
                    UserWarning,
                )
                from .llm import Echo

                self.llm = Echo()

        playback_module = globals()["playback"]
        speech_module = globals()["speech"]
        lyrics_module = globals()["lyrics"]

        self.settings = settings if settings is not None else config.Settings()
        self.playback = playback if playback is not None else playback_module.InMemory()
        self.speech = speech if speech is not None else speech_module.NoSpeech()

        self.gateway = gateway.ProviderGateway(self.llm)
        self.catalog = catalog.ModelCatalog(self.gateway)
        self.playlist = playlist.PlaylistGenerator(self.playback)
        self.dj = dj.DJScheduler(
            self.gateway,
            speech=self.speech,
            personas=self.settings.dj_personas,
            window=self.settings.dj_window,
            rng=rng,
        )
        self.lyrics = lyrics_module.LyricsSync(lyrics_source)
        self.tools = tools.MusicTools(
            self.playback,
            playlist=self.playlist,
            catalog=self.catalog,
            dj=self.dj,
            lyrics=self.lyrics,
        )
        self.engine = engine.Orchestrator(
            self.gateway,
            self.tools,
            max_iterations=self.settings.max_iterations,
            history_limit=self.settings.history_limit,
        )

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None, **kwargs) -> "Conductor":
        """Build a session whose backend and lyrics source come from configuration."""
        settings = settings or config.Settings.from_env()
        if "lyrics_source" not in kwargs and settings.lyrics == "lrclib":
            kwargs["lyrics_source"] = lyrics.LRCLib()
        return cls(llm=config.create_llm(settings), settings=settings, **kwargs)

    async def aclose(self) -> None:
        """Release connections held by the session's pillars. Call once when the session ends."""
        await self.lyrics.source.aclose()

    async def handle_command(self, text: str) -> Reply:
        return await self.engine.handle_message(text)

    async def on_track_started(
        self, track: Optional[Track] = None, upcoming: Optional[List[Track]] = None
    ) -> Optional[CommentaryScript]:
        """Feed a track-start event to the DJ. Reads the player when `track` is omitted."""
        if track is None:
            track = await self.playback.current_track()
            if track is None:
                return None
            if upcoming is None and track.position is not None:
                upcoming = (await self.playback.queue())[track.position + 1 :]
        return await self.dj.on_track_started(track, upcoming)

    async def lyrics_for(self, track: Optional[Track] = None) -> Optional[LyricsDocument]:
        if track is None:
            track = await self.playback.current_track()
            if track is None:
                return None
        return await self.lyrics.fetch(track)

    def current_lyric_line(self, document: LyricsDocument, elapsed_ms: float) -> Optional[LyricLine]:
        """The line to highlight, or None when lyrics are hidden or nothing is due yet."""
        if not self.lyrics.enabled:
            return None
        index = self.lyrics.current_line(document, elapsed_ms)
        return None if index is None else document.lines[index]


__all__ = [
    "Conductor",
    "catalog",
    "config",
    "dj",
    "engine",
    "gateway",
    "llm",
    "lyrics",
    "playback",
    "playlist",
    "speech",
    "tools",
]
