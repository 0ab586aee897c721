"""Concrete implementations for tool handlers."""

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .errors import (
    ConductorError,
    PlaybackUnreachable,
    ToolExecutionError,
    ToolValidationError,
)
from .models import PlaylistCriteria, ToolCall, ToolResult, Track
from .playback import SEARCH_FIELDS, SETTINGS, Playback

if TYPE_CHECKING:
    from .catalog import ModelCatalog
    from .dj import DJScheduler
    from .lyrics import LyricsSync
    from .playlist import PlaylistGenerator

logger = logging.getLogger(__name__)

QUEUE_LIMIT = 10
_MISSING = object()


@dataclass(frozen=True)
class ArgSpec:
    """Declared shape of a single tool argument."""

    type: str
    description: str = ""
    required: bool = False
    default: Any = None
    enum: Optional[Tuple[Any, ...]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def to_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolSpec:
    """One member of the closed tool set, with its argument constraints."""

    name: str
    description: str
    args: Dict[str, ArgSpec] = field(default_factory=dict)

    def to_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {k: a.to_schema() for k, a in self.args.items()},
                    "required": [k for k, a in self.args.items() if a.required],
                },
            },
        }

    def validate(self, raw: Any) -> Dict[str, Any]:
        """Checks raw wire arguments and returns them with defaults filled in."""
        if raw is None or raw == "":
            raw = {}
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise ToolValidationError(self.name, f"Failed to parse arguments: {e}") from e
        if not isinstance(raw, dict):
            raise ToolValidationError(self.name, "Arguments must be a JSON object")

        unexpected = sorted(set(raw) - set(self.args))
        if unexpected:
            raise ToolValidationError(
                self.name, f"Unexpected argument(s) for {self.name}: {', '.join(unexpected)}"
            )

        validated: Dict[str, Any] = {}
        for key, arg in self.args.items():
            value = raw.get(key)
            if value is None:
                if arg.required:
                    raise ToolValidationError(self.name, f"Missing required argument '{key}'")
                if arg.default is not None:
                    validated[key] = arg.default
                continue
            validated[key] = _check(self.name, key, arg, value)
        return validated


def _check(tool: str, key: str, arg: ArgSpec, value: Any) -> Any:
    if arg.type == "string":
        if not isinstance(value, str):
            raise ToolValidationError(tool, f"'{key}' must be a string")
        value = value.strip()
        if arg.required and not value:
            raise ToolValidationError(tool, f"'{key}' must not be empty")
    elif arg.type == "integer":
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ToolValidationError(tool, f"'{key}' must be an integer")
    elif arg.type == "number":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ToolValidationError(tool, f"'{key}' must be a number")
        if not math.isfinite(value):
            raise ToolValidationError(tool, f"'{key}' must be a finite number")
    elif arg.type == "boolean":
        if not isinstance(value, bool):
            raise ToolValidationError(tool, f"'{key}' must be true or false")

    if arg.enum is not None and value not in arg.enum:
        options = ", ".join(str(o) for o in arg.enum)
        raise ToolValidationError(tool, f"'{key}' must be one of: {options} (got {value!r})")
    if arg.minimum is not None and value < arg.minimum:
        raise ToolValidationError(tool, _bounds_message(key, arg, value))
    if arg.maximum is not None and value > arg.maximum:
        raise ToolValidationError(tool, _bounds_message(key, arg, value))
    return value


def _bounds_message(key: str, arg: ArgSpec, value: Any) -> str:
    if arg.minimum is not None and arg.maximum is not None:
        return f"'{key}' must be between {arg.minimum:g} and {arg.maximum:g} (got {value})"
    if arg.minimum is not None:
        return f"'{key}' must be at least {arg.minimum:g} (got {value})"
    return f"'{key}' must be at most {arg.maximum:g} (got {value})"


TOOL_SPECS: Tuple[ToolSpec, ...] = (
    ToolSpec(
        "search_music",
        "Search for music in the library by artist, album, title or genre",
        {
            "query": ArgSpec("string", "Search query for artist, album, or track", required=True),
            "type": ArgSpec("string", "Type of search", default="any", enum=SEARCH_FIELDS),
            "limit": ArgSpec("integer", "Maximum results to return", default=20, minimum=1, maximum=50),
        },
    ),
    ToolSpec(
        "play_music",
        "Play music immediately, either from a search or a specific queue position",
        {
            "query": ArgSpec("string", "What to play - can be artist, album, or track"),
            "position": ArgSpec("integer", "Position in queue to play", minimum=0),
        },
    ),
    ToolSpec(
        "queue_music",
        "Add music to the playback queue",
        {
            "query": ArgSpec("string", "Music to add to queue", required=True),
            "position": ArgSpec("string", "Where to add in queue", default="end", enum=("end", "next")),
        },
    ),
    ToolSpec(
        "control_playback",
        "Control playback: play, pause, stop, next, previous, or toggle play/pause",
        {
            "action": ArgSpec(
                "string",
                "Playback action",
                required=True,
                enum=("play", "pause", "stop", "next", "previous", "toggle"),
            ),
        },
    ),
    ToolSpec(
        "seek",
        "Jump to a position in the current track",
        {"seconds": ArgSpec("number", "Offset from the start of the track", required=True, minimum=0)},
    ),
    ToolSpec(
        "set_volume",
        "Set the playback volume level",
        {"volume": ArgSpec("integer", "Volume level 0-100", required=True, minimum=0, maximum=100)},
    ),
    ToolSpec(
        "toggle_setting",
        "Toggle playback settings like repeat, random, single, or consume mode",
        {"setting": ArgSpec("string", "Setting to toggle", required=True, enum=SETTINGS)},
    ),
    ToolSpec(
        "get_queue",
        "Get the current playback queue",
        {"limit": ArgSpec("integer", "Maximum number of items to return", minimum=1)},
    ),
    ToolSpec(
        "clear_queue",
        "Clear the entire playback queue",
        {"confirm": ArgSpec("boolean", "Confirm clearing the queue", default=True)},
    ),
    ToolSpec(
        "generate_playlist",
        "Build a playlist from the library for a mood, genre, activity or energy level and queue it",
        {
            "category": ArgSpec("string", "Mood, genre, activity or energy, e.g. 'workout'", required=True),
            "length": ArgSpec("integer", "Number of tracks", default=20, minimum=1, maximum=100),
            "shuffle": ArgSpec("boolean", "Shuffle the selection", default=False),
        },
    ),
    ToolSpec("list_models", "List the models available from the current AI provider"),
    ToolSpec(
        "set_model",
        "Switch the AI model used by the assistant",
        {"model_id": ArgSpec("string", "Model identifier from list_models", required=True)},
    ),
    ToolSpec("enable_dj_mode", "Turn on DJ commentary between songs"),
    ToolSpec("disable_dj_mode", "Turn off DJ commentary"),
    ToolSpec("toggle_lyrics", "Show or hide the synced lyrics display"),
)


def _summary(track: Track) -> Dict[str, Any]:
    data = {"title": track.title, "artist": track.artist, "album": track.album, "file": track.id}
    if track.position is not None:
        data["position"] = track.position
    return data


def _serialize(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result)
    except (TypeError, ValueError):
        return str(result)


class Tool(ABC):
    """Interface for executing agentic tools."""

    @abstractmethod
    def get_tools(self) -> List[Dict[str, Any]]:
        """Returns a list of tool specifications for the LLM."""
        return []

    @abstractmethod
    async def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        """Executes a tool call. Never raises: failures become error results."""
        pass


class NoTool(Tool):
    """Default handler that provides no tools and does nothing."""

    def get_tools(self) -> List[Dict[str, Any]]:
        return []

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        return ToolResult(
            tool_call_id=tool_call.id,
            function_name=tool_call.function_name,
            content="Tool calls are disabled: NoTool handler is active.",
            is_error=True,
        )


class MusicTools(Tool):
    """The fixed music-control tool registry.

    Validation is a pure function of (name, raw arguments). Execution
    delegates to the playback collaborator and to the optional session
    components; any failure is wrapped into an error `ToolResult`.
    """

    def __init__(
        self,
        playback: Playback,
        playlist: Optional["PlaylistGenerator"] = None,
        catalog: Optional["ModelCatalog"] = None,
        dj: Optional["DJScheduler"] = None,
        lyrics: Optional["LyricsSync"] = None,
    ):
        self.playback = playback
        self.playlist = playlist
        self.catalog = catalog
        self.dj = dj
        self.lyrics = lyrics
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in TOOL_SPECS}

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def get_tools(self) -> List[Dict[str, Any]]:
        return [spec.to_schema() for spec in self._specs.values()]

    def validate(self, name: str, args: Any) -> Dict[str, Any]:
        spec = self._specs.get(name)
        if spec is None:
            raise ToolValidationError(name, f"Tool '{name}' not found")
        return spec.validate(args)

    async def execute(self, name: str, args: Dict[str, Any], call_id: str = "") -> ToolResult:
        def result(content: Any, is_error: bool = False) -> ToolResult:
            return ToolResult(
                tool_call_id=call_id,
                function_name=name,
                content=_serialize(content),
                is_error=is_error,
            )

        executor = getattr(self, f"_run_{name}", None)
        if name not in self._specs or executor is None:
            return result(f"Tool '{name}' not found", is_error=True)
        try:
            return result(await executor(**args))
        except PlaybackUnreachable as e:
            logger.warning("%s failed, playback unreachable: %s", name, e)
            return result(f"The music player is not reachable right now ({e}).", is_error=True)
        except (ConductorError, ValueError) as e:
            logger.info("%s failed: %s", name, e)
            return result(f"{name} failed: {e}", is_error=True)
        except Exception as e:
            logger.exception("Unexpected error while executing %s", name)
            return result(f"{name} failed unexpectedly: {e}", is_error=True)

    async def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        try:
            args = self.validate(tool_call.function_name, tool_call.function_args)
        except ToolValidationError as e:
            return ToolResult(
                tool_call_id=tool_call.id,
                function_name=tool_call.function_name,
                content=f"Invalid arguments: {e}",
                is_error=True,
            )
        return await self.execute(tool_call.function_name, args, call_id=tool_call.id)

    def _require(self, component: Any, what: str) -> Any:
        if component is None:
            raise ToolExecutionError(f"{what} is not available in this session")
        return component

    # --- executors ---
    async def _run_search_music(self, query: str, type: str = "any", limit: int = 20):
        found = await self.playback.search(type, query)
        return {"count": len(found), "results": [_summary(t) for t in found[:limit]]}

    async def _run_play_music(self, query: Optional[str] = None, position: Optional[int] = None):
        if position is not None:
            await self.playback.play(position)
            return f"Playing queue position {position}"
        if query:
            found = await self.playback.search("any", query)
            if not found:
                return f"No tracks matched '{query}'"
            await self.playback.clear()
            await self.playback.add(found[0].id)
            await self.playback.play(0)
            return f"Now playing {found[0].label()}"
        await self.playback.play()
        return "Playback started"

    async def _run_queue_music(self, query: str, position: str = "end"):
        found = (await self.playback.search("any", query))[:QUEUE_LIMIT]
        if not found:
            return f"No tracks matched '{query}'"
        insert_at = None
        if position == "next":
            song = (await self.playback.status()).song
            insert_at = 0 if song is None else song + 1
        for offset, track in enumerate(found):
            await self.playback.add(track.id, None if insert_at is None else insert_at + offset)
        where = "to play next" if position == "next" else "to the end of the queue"
        return {"message": f"Added {len(found)} track(s) {where}", "tracks": [_summary(t) for t in found]}

    async def _run_control_playback(self, action: str):
        if action == "toggle":
            state = (await self.playback.status()).state
            action = "pause" if state == "play" else "play"
        await getattr(self.playback, action)()
        status = await self.playback.status()
        return f"Done: {action}. Player is now {status.state}."

    async def _run_seek(self, seconds: float):
        await self.playback.seek(seconds)
        return f"Jumped to {seconds:g}s"

    async def _run_set_volume(self, volume: int):
        await self.playback.set_volume(volume)
        return f"Volume set to {volume}"

    async def _run_toggle_setting(self, setting: str):
        value = await self.playback.toggle_setting(setting)
        return f"{setting.capitalize()} is now {'on' if value else 'off'}"

    async def _run_get_queue(self, limit: Optional[int] = None):
        tracks = await self.playback.queue()
        status = await self.playback.status()
        shown = tracks[:limit] if limit else tracks
        return {"length": len(tracks), "current": status.song, "tracks": [_summary(t) for t in shown]}

    async def _run_clear_queue(self, confirm: bool = True):
        if not confirm:
            return "Queue left unchanged"
        await self.playback.clear()
        return "Queue cleared"

    async def _run_generate_playlist(self, category: str, length: int = 20, shuffle: bool = False):
        generator = self._require(self.playlist, "Playlist generation")
        result = await generator.generate(
            PlaylistCriteria(category=category, target_length=length, shuffle=shuffle)
        )
        if result.status == "no_candidates":
            return result.message
        for track in result.tracks:
            await self.playback.add(track.id)
        return {
            "message": f"{result.message} Added to the queue.",
            "status": result.status,
            "tracks": [_summary(t) for t in result.tracks],
        }

    async def _run_list_models(self):
        catalog = self._require(self.catalog, "Model selection")
        models = await catalog.list_models()
        return {
            "current": catalog.get_current_model(),
            "models": [{"id": m.id, "name": m.name} for m in models],
        }

    async def _run_set_model(self, model_id: str):
        catalog = self._require(self.catalog, "Model selection")
        await catalog.set_model(model_id)
        return f"Switched to model {model_id}"

    async def _run_enable_dj_mode(self):
        self._require(self.dj, "DJ mode").enable()
        return "DJ mode enabled"

    async def _run_disable_dj_mode(self):
        self._require(self.dj, "DJ mode").disable()
        return "DJ mode disabled"

    async def _run_toggle_lyrics(self):
        enabled = self._require(self.lyrics, "Lyrics").toggle()
        return f"Lyrics display {'on' if enabled else 'off'}"
