"""Speech-synthesis collaborator contract."""

import logging
from abc import ABC, abstractmethod

from .models import CommentaryScript

logger = logging.getLogger(__name__)


class Speech(ABC):
    """Interface for voicing DJ commentary. Failures are never fatal to callers."""

    @abstractmethod
    async def speak(self, script: CommentaryScript, persona: str) -> None:
        """Voice `script`, using `persona` as the show's voice identifier."""
        pass


class NoSpeech(Speech):
    """Default handler that only logs the script."""

    async def speak(self, script: CommentaryScript, persona: str) -> None:
        for line in script.lines:
            logger.info("[%s] %s: %s", persona, line.speaker, line.text)
