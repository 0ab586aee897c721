"""
Defines the core Pydantic data models for the application.

These models serve as the formal, validated data contract between all other pillars,
aligning with conventions from industry-standard libraries like the OpenAI SDK.
"""

import time
import uuid
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
TOOL_ROLE = "tool"
Role = Literal["user", "assistant", "system", "tool"]

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_PLAYLIST_LENGTH = 20


def new_call_id() -> str:
    """Correlation id for tool calls whose backend does not supply one."""
    return f"call_{uuid.uuid4().hex[:12]}"


# --- Conversation ---
class ToolCall(BaseModel):
    """A backend's request to invoke one named tool."""

    id: str = Field(default_factory=new_call_id)
    function_name: str
    function_args: Union[str, Dict[str, Any]] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """The outcome of executing exactly one ToolCall."""

    tool_call_id: str
    function_name: str
    content: str
    is_error: bool = False


class ChatMessage(BaseModel):
    """Represents a single turn within a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "ChatMessage":
        return cls(
            role=TOOL_ROLE,
            content=result.content,
            tool_call_id=result.tool_call_id,
            name=result.function_name,
        )


class Conversation(BaseModel):
    """An append-only session window of turns, trimmed oldest-first."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    messages: List[ChatMessage] = Field(default_factory=list)
    limit: int = Field(default=DEFAULT_HISTORY_LIMIT, gt=0)

    def extend(self, turns: List[ChatMessage]) -> None:
        self.messages.extend(turns)
        excess = len(self.messages) - self.limit
        if excess > 0:
            del self.messages[:excess]
            # A trimmed window reopens on a user turn, never mid-exchange.
            while self.messages and self.messages[0].role != USER_ROLE:
                del self.messages[0]


# --- Providers ---
class LLMReply(BaseModel):
    """Provider-neutral result of one generate call."""

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ModelInfo(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    context_length: Optional[int] = None


class ProviderProfile(BaseModel):
    """The active backend for a session. Only `model` changes at runtime."""

    provider: str
    model: str
    options: Dict[str, Any] = Field(default_factory=dict)


# --- Library ---
class Track(BaseModel):
    id: str
    title: str = ""
    artist: str = ""
    album: str = ""
    genre: str = ""
    duration: Optional[float] = None
    position: Optional[int] = None

    def label(self) -> str:
        if self.artist and self.title:
            return f"{self.title} by {self.artist}"
        return self.title or self.id


class PlayerStatus(BaseModel):
    state: Literal["play", "pause", "stop"] = "stop"
    volume: int = 0
    repeat: bool = False
    random: bool = False
    single: bool = False
    consume: bool = False
    song: Optional[int] = None
    elapsed: Optional[float] = None
    duration: Optional[float] = None


# --- Playlists ---
class PlaylistCriteria(BaseModel):
    category: str
    target_length: int = Field(default=DEFAULT_PLAYLIST_LENGTH, gt=0)
    shuffle: bool = False
    seed: Optional[int] = None


class PlaylistResult(BaseModel):
    criteria: PlaylistCriteria
    kind: Literal["mood", "genre", "activity", "energy"]
    tracks: List[Track] = Field(default_factory=list)
    broadened: bool = False
    status: Literal["ok", "partial", "no_candidates"] = "ok"

    @property
    def message(self) -> str:
        category = self.criteria.category
        if self.status == "no_candidates":
            return f"No matching tracks found for '{category}'."
        if self.status == "partial":
            return (
                f"Found only {len(self.tracks)} of the {self.criteria.target_length} "
                f"requested tracks for '{category}'."
            )
        return f"Built a {len(self.tracks)}-track playlist for '{category}'."


# --- Lyrics ---
class LyricLine(BaseModel):
    time_ms: int
    text: str


class LyricsDocument(BaseModel):
    """Lyrics for one track: synced lines, plain text, or nothing."""

    track_id: str
    lines: List[LyricLine] = Field(default_factory=list)
    plain: Optional[str] = None
    source: Literal["synced", "plain", "none"] = "none"
    fetched_at: float = Field(default_factory=time.time)

    @field_validator("lines")
    @classmethod
    def _monotonic(cls, lines: List[LyricLine]) -> List[LyricLine]:
        for previous, line in zip(lines, lines[1:]):
            if line.time_ms < previous.time_ms:
                raise ValueError(
                    f"lyric timestamps must not decrease ({previous.time_ms}ms then {line.time_ms}ms)"
                )
        return lines

    @property
    def is_synced(self) -> bool:
        return self.source == "synced" and bool(self.lines)


# --- DJ ---
class ScriptLine(BaseModel):
    speaker: str
    text: str


class CommentaryScript(BaseModel):
    personas: Tuple[str, str]
    lines: List[ScriptLine] = Field(default_factory=list)


# --- Orchestrator ---
class Reply(BaseModel):
    """What one user utterance produced."""

    text: str = ""
    tool_results: List[ToolResult] = Field(default_factory=list)
    iterations: int = 0
    stale: bool = False
    exhausted: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.stale
