"""Exception taxonomy shared by every pillar."""

from typing import Optional


class ConductorError(Exception):
    """Base class for all Conductor errors."""


# --- Providers ---
class ProviderError(ConductorError):
    """A generative backend failed to produce a usable response."""

    retryable = False


class ProviderAuthError(ProviderError):
    """The backend rejected our credentials. Never retried."""


class ProviderRateLimited(ProviderError):
    """The backend asked us to slow down."""

    retryable = True

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderUnreachable(ProviderError):
    """Connection failure, timeout or a server-side error."""

    retryable = True


class MalformedResponse(ProviderError):
    """The backend answered, but not in a shape we understand."""


class UnknownModelError(ConductorError, ValueError):
    """Requested model id is not offered by the active provider."""


# --- Tools ---
class ToolValidationError(ConductorError, ValueError):
    """Arguments for a tool call failed schema validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ToolExecutionError(ConductorError):
    """A tool's collaborator failed while executing a validated call."""


# --- Collaborators ---
class PlaybackUnreachable(ConductorError):
    """The playback daemon connection is gone."""


class LyricsUnavailable(ConductorError):
    """The lyrics source could not be queried."""


class LyricsFormatError(ConductorError, ValueError):
    """Lyrics text could not be parsed into a valid synced document."""


# --- Configuration ---
class ConfigurationError(ConductorError, ValueError):
    """Settings name an unknown provider or carry unusable values."""
