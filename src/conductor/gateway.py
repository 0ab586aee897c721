"""Uniform request/response surface over one configured LLM backend."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .errors import MalformedResponse, ProviderError
from .llm import LLM
from .models import ChatMessage, LLMReply, ModelInfo, ProviderProfile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderGateway:
    """Calls the active backend with retry and exponential backoff.

    Only `ProviderUnreachable` and `ProviderRateLimited` are retried. Auth
    failures, malformed responses and unrecognised errors propagate on the
    first attempt.

    Parameters
    ----------
    llm : LLM
        The backend, selected by configuration at session start.
    profile : ProviderProfile, optional
        Active profile. Built from the backend's defaults when omitted.
    max_attempts : int, default=3
        Attempt ceiling for retryable failures.
    base_delay : float, default=0.5
        First backoff delay in seconds; doubles on every retry.
    max_delay : float, default=8.0
        Upper bound for any single delay, including `retry_after` hints.
    sleep : Callable[[float], Awaitable[None]], optional
        Delay function, `asyncio.sleep` by default.
    """

    def __init__(
        self,
        llm: LLM,
        profile: Optional[ProviderProfile] = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.llm = llm
        self.profile = profile or ProviderProfile(provider=llm.name, model=llm.model)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def provider(self) -> str:
        return self.profile.provider

    def use_model(self, model_id: str) -> None:
        """Switch the active model. The provider never changes here."""
        logger.info("Switching %s model: %s -> %s", self.provider, self.profile.model, model_id)
        self.profile = self.profile.model_copy(update={"model": model_id})

    async def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMReply:
        async def attempt() -> LLMReply:
            response = await self.llm.generate_response(
                messages,
                model=self.profile.model,
                tools=tools,
                system=system,
                max_tokens=max_tokens,
            )
            return self._to_reply(response)

        return await self._with_retry("generate", attempt)

    async def list_models(self) -> List[ModelInfo]:
        return await self._with_retry("list_models", self.llm.list_models)

    def _to_reply(self, response: Any) -> LLMReply:
        try:
            return LLMReply(
                content=self.llm.extract_content(response),
                tool_calls=self.llm.parse_tool_calls(response),
            )
        except ProviderError:
            raise
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise MalformedResponse(f"{self.provider} response could not be read: {e}") from e

    def _backoff(self, attempt: int, error: ProviderError) -> float:
        hint = getattr(error, "retry_after", None)
        delay = hint if hint is not None else self.base_delay * (2 ** (attempt - 1))
        return min(delay, self.max_delay)

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except Exception as e:
                error = self.llm.translate_error(e)
                if error is None:
                    error = ProviderError(f"{self.provider} {operation} failed: {e}")
                if not error.retryable or attempt >= self.max_attempts:
                    logger.warning(
                        "%s %s failed after %d attempt(s): %s",
                        self.provider,
                        operation,
                        attempt,
                        error,
                    )
                    if error is e:
                        raise
                    raise error from e
                delay = self._backoff(attempt, error)
                logger.info(
                    "%s %s attempt %d failed (%s); retrying in %.2fs",
                    self.provider,
                    operation,
                    attempt,
                    type(error).__name__,
                    delay,
                )
                await self._sleep(delay)
