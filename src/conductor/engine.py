"""The conversation turn loop that turns utterances into tool calls and replies."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .errors import (
    MalformedResponse,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderUnreachable,
)
from .gateway import ProviderGateway
from .models import (
    ASSISTANT_ROLE,
    DEFAULT_HISTORY_LIMIT,
    USER_ROLE,
    ChatMessage,
    Conversation,
    LLMReply,
    Reply,
    ToolCall,
    ToolResult,
)
from .tools import NoTool, Tool

logger = logging.getLogger(__name__)

IDLE = "idle"
AWAITING_PROVIDER = "awaiting_provider"
EXECUTING_TOOLS = "executing_tools"

DEFAULT_SYSTEM_PROMPT = """\
You are a music player assistant. You help users control their music playback through natural language commands.

You have access to tools for searching, playing, queueing music, building playlists, and controlling playback.

When users ask to play something, search for it first, then add it to the queue or play it.
If a tool reports an error, explain it plainly or try again with corrected arguments.

Write like a person:
- No inflated or promotional language ("pivotal", "vibrant", "stunning")
- No vague attributions ("experts say", "it's worth noting")
- Vary sentence length and use "I" when it fits
- Specific facts instead of vague claims

Be concise, friendly, and genuinely helpful in your responses."""

_FAILURE_MESSAGES = {
    "rate_limited": "The AI provider is rate limiting requests right now. Please try again in a moment.",
    "unreachable": "I couldn't reach the AI provider. Please check the connection and try again.",
    "malformed": "The AI provider sent a response I couldn't understand. Please try again.",
}


def _error_kind(error: ProviderError) -> str:
    if isinstance(error, ProviderAuthError):
        return "auth"
    if isinstance(error, ProviderRateLimited):
        return "rate_limited"
    if isinstance(error, ProviderUnreachable):
        return "unreachable"
    if isinstance(error, MalformedResponse):
        return "malformed"
    return "provider"


class Engine(ABC):
    """Interface for processing one user utterance into a reply."""

    @abstractmethod
    async def handle_message(self, user_input: str) -> Reply:
        pass


class Orchestrator(Engine):
    """Drives the provider/tool loop for one session.

    Each utterance runs at most `max_iterations` provider calls. Tool calls
    are validated and executed one at a time in the order the model issued
    them, and every call gets exactly one tool-result turn before the next
    provider call. Turns produced by a run are committed to the session
    window only when the run finishes and is still current; a newer
    utterance makes older runs stale and their output is discarded.

    Parameters
    ----------
    gateway : ProviderGateway
        Shared access to the active backend.
    tools : Tool, optional
        Tool registry. Defaults to `NoTool`.
    system_prompt : str, optional
        System prompt sent with every provider call.
    max_iterations : int, optional
        Provider calls allowed per utterance. Defaults to `MAX_AGENTIC_TURNS`.
    history_limit : int, default=20
        Number of turns kept in the session window.
    allow_tools : bool, default=True
        When False the backend is offered no tools and any tool calls it
        returns are ignored (restricted mode).
    max_tokens : int, optional
        Output bound passed to the backend.
    """

    MAX_AGENTIC_TURNS = 4

    def __init__(
        self,
        gateway: ProviderGateway,
        tools: Optional[Tool] = None,
        system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
        max_iterations: Optional[int] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        allow_tools: bool = True,
        max_tokens: Optional[int] = None,
    ):
        self.gateway = gateway
        self.tools = tools if tools is not None else NoTool()
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations or self.MAX_AGENTIC_TURNS
        self.allow_tools = allow_tools
        self.max_tokens = max_tokens
        self.conversation = Conversation(limit=history_limit)
        self.phase = IDLE
        self._generation = 0

    @classmethod
    def commentary(
        cls,
        gateway: ProviderGateway,
        system_prompt: str,
        max_tokens: int = 300,
        history_limit: int = 6,
    ) -> "Orchestrator":
        """A restricted session: no tools, one provider call, bounded output."""
        return cls(
            gateway,
            tools=NoTool(),
            system_prompt=system_prompt,
            max_iterations=1,
            history_limit=history_limit,
            allow_tools=False,
            max_tokens=max_tokens,
        )

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    async def handle_message(self, user_input: str) -> Reply:
        self._generation += 1
        generation = self._generation
        pending: List[ChatMessage] = [ChatMessage(role=USER_ROLE, content=user_input.strip())]
        results: List[ToolResult] = []
        tools = self.tools.get_tools() if self.allow_tools else None

        for iteration in range(1, self.max_iterations + 1):
            window = self.conversation.messages + pending
            self._before_llm_call(window)
            self.phase = AWAITING_PROVIDER
            try:
                llm_reply = await self.gateway.generate(
                    window,
                    tools=tools or None,
                    system=self.system_prompt,
                    max_tokens=self.max_tokens,
                )
            except ProviderError as e:
                if self._is_stale(generation):
                    return self._discard(results, iteration)
                self.phase = IDLE
                return self._failure(e, results, iteration)
            if self._is_stale(generation):
                return self._discard(results, iteration)
            self._after_llm_call(llm_reply)

            calls = llm_reply.tool_calls if self.allow_tools else []
            if llm_reply.tool_calls and not calls:
                logger.debug("Ignoring %d tool call(s) in restricted mode", len(llm_reply.tool_calls))
            if not calls:
                pending.append(ChatMessage(role=ASSISTANT_ROLE, content=llm_reply.content))
                self._commit(pending)
                return Reply(text=llm_reply.content, tool_results=results, iterations=iteration)

            pending.append(
                ChatMessage(role=ASSISTANT_ROLE, content=llm_reply.content or None, tool_calls=calls)
            )
            self.phase = EXECUTING_TOOLS
            for call in calls:
                result = await self._execute(call)
                if self._is_stale(generation):
                    return self._discard(results + [result], iteration)
                results.append(result)
                pending.append(ChatMessage.from_tool_result(result))

        logger.warning("Iteration ceiling (%d) reached; answering from tool results", self.max_iterations)
        text = self._summarize(results)
        pending.append(ChatMessage(role=ASSISTANT_ROLE, content=text))
        self._commit(pending)
        return Reply(text=text, tool_results=results, iterations=self.max_iterations, exhausted=True)

    async def _execute(self, call: ToolCall) -> ToolResult:
        logger.info("Executing tool %s (%s)", call.function_name, call.id)
        try:
            result = await self.tools.execute_tool_call(call)
        except Exception as e:
            logger.exception("Tool handler raised for %s", call.function_name)
            result = ToolResult(
                tool_call_id=call.id,
                function_name=call.function_name,
                content=f"{call.function_name} failed: {e}",
                is_error=True,
            )
        if result.tool_call_id != call.id:
            result = result.model_copy(update={"tool_call_id": call.id})
        if result.is_error:
            logger.info("Tool %s returned an error: %s", call.function_name, result.content)
        return result

    def _commit(self, turns: List[ChatMessage]) -> None:
        self._before_commit(turns)
        self.conversation.extend(turns)
        self.phase = IDLE

    def _discard(self, results: List[ToolResult], iteration: int) -> Reply:
        logger.debug("Discarding superseded run after %d iteration(s)", iteration)
        return Reply(tool_results=results, iterations=iteration, stale=True)

    def _failure(self, error: ProviderError, results: List[ToolResult], iteration: int) -> Reply:
        kind = _error_kind(error)
        if kind == "auth":
            text = str(error)
        else:
            text = _FAILURE_MESSAGES.get(kind, f"Something went wrong talking to the AI provider: {error}")
        if results:
            text = f"{text}\n\n{self._summarize(results)}"
        return Reply(text=text, tool_results=results, iterations=iteration, error=kind)

    def _summarize(self, results: List[ToolResult]) -> str:
        if not results:
            return "I wasn't able to finish that request."
        lines = ["Here's what I got done before stopping:"]
        for result in results:
            content = result.content if len(result.content) <= 200 else result.content[:197] + "..."
            marker = " (failed)" if result.is_error else ""
            lines.append(f"- {result.function_name}{marker}: {content}")
        return "\n".join(lines)

    # --- hooks ---
    def _before_llm_call(self, messages: List[ChatMessage]) -> None:
        pass

    def _after_llm_call(self, reply: LLMReply) -> None:
        pass

    def _before_commit(self, turns: List[ChatMessage]) -> None:
        pass
