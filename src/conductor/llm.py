"""Concrete implementations for LLM providers."""

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .errors import (
    MalformedResponse,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderUnreachable,
)
from .models import (
    ASSISTANT_ROLE,
    SYSTEM_ROLE,
    TOOL_ROLE,
    USER_ROLE,
    ChatMessage,
    ModelInfo,
    ToolCall,
    new_call_id,
)

logger = logging.getLogger(__name__)


class LLM(ABC):
    """Abstract Base Class for all LLM providers.

    A provider speaks its backend's native protocol and exposes it through a
    neutral surface: conversation turns in, text plus tool calls out.
    """

    name = "llm"

    def __init__(self, default_model: str, client: Any = None):
        self.model = default_model
        self.client = client

    @abstractmethod
    async def generate_response(
        self,
        messages: List[ChatMessage],
        model: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> Any:
        """Generates a response from the LLM provider.

        This method should return the provider's native, rich response object
        directly from their SDK.

        Parameters
        ----------
        messages : List[ChatMessage]
            The conversation window, oldest first.
        model : str, optional
            The specific model to use. Defaults to the provider's active model.
        tools : List[Dict[str, Any]], optional
            Tool specifications in OpenAI function format. Providers convert
            them to their own shape.
        system : str, optional
            System prompt, sent the way the backend expects it.
        max_tokens : int, optional
            Upper bound on generated tokens.
        **kwargs : Any
            Provider-specific parameters passed directly to the SDK.

        Returns
        -------
        Any
            The provider's native, rich response object.
        """
        pass

    @abstractmethod
    def extract_content(self, response: Any) -> str:
        """Extracts the text content from the provider's native response object."""
        pass

    @abstractmethod
    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        """Extracts tool calls, in the order the model issued them."""
        pass

    @abstractmethod
    async def list_models(self) -> List[ModelInfo]:
        """Lists the models this provider can serve."""
        pass

    def translate_error(self, exc: BaseException) -> Optional[ProviderError]:
        """Maps an SDK exception onto the provider error taxonomy.

        Returns None when the exception is not recognised.
        """
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, (httpx.TransportError, ConnectionError, asyncio.TimeoutError)):
            return ProviderUnreachable(f"{self.name} is unreachable: {exc or type(exc).__name__}")
        status = getattr(exc, "status_code", None)
        if not isinstance(status, int):
            status = getattr(exc, "code", None)
        if isinstance(status, int):
            return _from_status(self.name, status, str(exc), _retry_after(exc))
        return None


def _from_status(
    provider: str, status: int, detail: str, retry_after: Optional[float] = None
) -> Optional[ProviderError]:
    if status in (401, 403):
        return ProviderAuthError(f"{provider} rejected the credentials: {detail}")
    if status == 429:
        return ProviderRateLimited(f"{provider} rate limit reached", retry_after=retry_after)
    if status == 408 or status >= 500:
        return ProviderUnreachable(f"{provider} returned HTTP {status}")
    return None


def _retry_after(exc: BaseException) -> Optional[float]:
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    try:
        return float(headers.get("retry-after"))
    except (TypeError, ValueError):
        return None


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Reads `key` from SDK objects and plain dicts alike."""
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _args_as_dict(args: Any) -> Dict[str, Any]:
    if isinstance(args, dict):
        return args
    try:
        parsed = json.loads(args or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _args_as_json(args: Any) -> str:
    return args if isinstance(args, str) else json.dumps(args)


def _last_user_text(messages: List[ChatMessage]) -> str:
    for msg in reversed(messages):
        if msg.role == USER_ROLE and msg.content:
            return msg.content
    return ""


# --- OpenAI-compatible chat completions ---
def openai_messages(messages: List[ChatMessage], system: Optional[str] = None) -> List[Dict[str, Any]]:
    payload: List[Dict[str, Any]] = []
    if system:
        payload.append({"role": SYSTEM_ROLE, "content": system})
    for msg in messages:
        if msg.role == TOOL_ROLE:
            payload.append(
                {"role": TOOL_ROLE, "tool_call_id": msg.tool_call_id, "content": msg.content or ""}
            )
        elif msg.tool_calls:
            payload.append(
                {
                    "role": ASSISTANT_ROLE,
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function_name,
                                "arguments": _args_as_json(call.function_args),
                            },
                        }
                        for call in msg.tool_calls
                    ],
                }
            )
        else:
            payload.append({"role": msg.role, "content": msg.content or ""})
    return payload


class OpenAI(LLM):
    name = "openai"

    def __init__(self, default_model: str = "gpt-4o", client: Any = None, **client_kwargs: Any):
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(**client_kwargs)
        super().__init__(default_model, client)

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        if tools:
            kwargs["tools"] = tools
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        return await self.client.chat.completions.create(
            model=model or self.model,
            messages=openai_messages(messages, system),
            **kwargs,
        )

    def _message(self, response: Any) -> Any:
        choices = _field(response, "choices")
        if not choices:
            raise MalformedResponse(f"{self.name} response contained no choices")
        return _field(choices[0], "message")

    def extract_content(self, response: Any) -> str:
        return _field(self._message(response), "content") or ""

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        calls = []
        for raw in _field(self._message(response), "tool_calls") or []:
            function = _field(raw, "function")
            calls.append(
                ToolCall(
                    id=_field(raw, "id") or new_call_id(),
                    function_name=_field(function, "name"),
                    function_args=_field(function, "arguments") or "{}",
                )
            )
        return calls

    async def list_models(self) -> List[ModelInfo]:
        page = await self.client.models.list()
        return sorted(
            (ModelInfo(id=m.id, name=m.id) for m in page.data), key=lambda info: info.id
        )

    def translate_error(self, exc):
        from openai import APIConnectionError

        if isinstance(exc, APIConnectionError):
            return ProviderUnreachable(f"{self.name} is unreachable: {exc}")
        return super().translate_error(exc)


class OpenRouter(OpenAI):
    name = "openrouter"

    def __init__(self, default_model: str = "anthropic/claude-3.5-sonnet", client: Any = None):
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(
                base_url="https://openrouter.ai/api/v1",
                api_key=os.environ["OPENROUTER_API_KEY"],
                default_headers={
                    "HTTP-Referer": "https://github.com/shelbeely/Conductor",
                    "X-Title": "Conductor",
                },
            )
        super().__init__(default_model, client=client)


# --- Anthropic messages ---
def anthropic_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    payload: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.role == SYSTEM_ROLE:
            continue
        if msg.role == TOOL_ROLE:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content or "",
            }
            # Consecutive results belong to the same user turn.
            last = payload[-1] if payload else None
            if last and last["role"] == USER_ROLE and isinstance(last["content"], list):
                last["content"].append(block)
            else:
                payload.append({"role": USER_ROLE, "content": [block]})
        elif msg.tool_calls:
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.function_name,
                        "input": _args_as_dict(call.function_args),
                    }
                )
            payload.append({"role": ASSISTANT_ROLE, "content": blocks})
        else:
            payload.append({"role": msg.role, "content": msg.content or ""})
    return payload


class Anthropic(LLM):
    name = "anthropic"

    def __init__(self, default_model: str = "claude-3-5-sonnet-20241022", client: Any = None):
        if client is None:
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(api_key=os.environ["ANTHROPIC_API_KEY"])
        super().__init__(default_model, client)

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        kwargs["max_tokens"] = max_tokens or 4096
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": spec["function"]["name"],
                    "description": spec["function"].get("description", ""),
                    "input_schema": spec["function"]["parameters"],
                }
                for spec in tools
            ]
        return await self.client.messages.create(
            model=model or self.model, messages=anthropic_messages(messages), **kwargs
        )

    def _blocks(self, response: Any) -> List[Any]:
        blocks = _field(response, "content")
        if blocks is None:
            raise MalformedResponse(f"{self.name} response had no content blocks")
        return blocks

    def extract_content(self, response: Any) -> str:
        return "".join(
            _field(block, "text") or ""
            for block in self._blocks(response)
            if _field(block, "type") == "text"
        )

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        return [
            ToolCall(
                id=_field(block, "id") or new_call_id(),
                function_name=_field(block, "name"),
                function_args=dict(_field(block, "input") or {}),
            )
            for block in self._blocks(response)
            if _field(block, "type") == "tool_use"
        ]

    async def list_models(self) -> List[ModelInfo]:
        page = await self.client.models.list()
        return [
            ModelInfo(id=m.id, name=getattr(m, "display_name", "") or m.id) for m in page.data
        ]

    def translate_error(self, exc):
        from anthropic import APIConnectionError

        if isinstance(exc, APIConnectionError):
            return ProviderUnreachable(f"{self.name} is unreachable: {exc}")
        return super().translate_error(exc)


# --- Google Gemini ---
class Gemini(LLM):
    name = "gemini"

    def __init__(self, default_model: str = "gemini-2.0-flash", client: Any = None):
        if client is None:
            from google import genai

            client = genai.Client(api_key=os.environ["GEMINI_API_KEY"])
        super().__init__(default_model, client)

    def _contents(self, messages: List[ChatMessage]) -> List[Any]:
        from google.genai import types

        contents: List[Any] = []
        for msg in messages:
            if msg.role == SYSTEM_ROLE:
                continue
            if msg.role == TOOL_ROLE:
                part = types.Part.from_function_response(
                    name=msg.name or "tool", response={"result": msg.content or ""}
                )
                last = contents[-1] if contents else None
                if last is not None and last.role == USER_ROLE and last.parts[0].function_response:
                    last.parts.append(part)
                else:
                    contents.append(types.Content(role=USER_ROLE, parts=[part]))
                continue
            parts = []
            if msg.content:
                parts.append(types.Part.from_text(text=msg.content))
            for call in msg.tool_calls or []:
                parts.append(
                    types.Part.from_function_call(
                        name=call.function_name, args=_args_as_dict(call.function_args)
                    )
                )
            role = "model" if msg.role == ASSISTANT_ROLE else USER_ROLE
            contents.append(types.Content(role=role, parts=parts or [types.Part.from_text(text="")]))
        return contents

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        from google.genai import types

        config = types.GenerateContentConfig(
            system_instruction=system,
            max_output_tokens=max_tokens,
            tools=[
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=spec["function"]["name"],
                            description=spec["function"].get("description", ""),
                            parameters_json_schema=spec["function"]["parameters"],
                        )
                        for spec in tools
                    ]
                )
            ]
            if tools
            else None,
            **kwargs,
        )
        return await self.client.aio.models.generate_content(
            model=model or self.model, contents=self._contents(messages), config=config
        )

    def _parts(self, response: Any) -> List[Any]:
        candidates = _field(response, "candidates")
        if not candidates:
            raise MalformedResponse(f"{self.name} response contained no candidates")
        content = _field(candidates[0], "content")
        return list(_field(content, "parts") or [])

    def extract_content(self, response: Any) -> str:
        return "".join(_field(part, "text") or "" for part in self._parts(response))

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        calls = []
        for part in self._parts(response):
            function_call = _field(part, "function_call")
            if function_call is None:
                continue
            calls.append(
                ToolCall(
                    id=_field(function_call, "id") or new_call_id(),
                    function_name=_field(function_call, "name"),
                    function_args=dict(_field(function_call, "args") or {}),
                )
            )
        return calls

    async def list_models(self) -> List[ModelInfo]:
        models = []
        async for m in await self.client.aio.models.list():
            model_id = m.name[len("models/"):] if m.name.startswith("models/") else m.name
            models.append(
                ModelInfo(
                    id=model_id,
                    name=m.display_name or model_id,
                    description=m.description or "",
                    context_length=m.input_token_limit,
                )
            )
        return models


# --- Ollama ---
_EMBEDDED_TOOL = re.compile(r"\{[\s\S]*\"tool\"[\s\S]*\}")


class Ollama(LLM):
    """Local inference through an Ollama server.

    Models without native tool support are asked to answer with a
    ``{"tool": "name", "args": {...}}`` object, which is recovered from the
    message text when no native tool calls are present.
    """

    name = "ollama"

    def __init__(self, default_model: str = "llama3.2", host: Optional[str] = None, client: Any = None):
        if client is None:
            from ollama import AsyncClient

            client = AsyncClient(host=host)
        super().__init__(default_model, client)

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        payload: List[Dict[str, Any]] = []
        if system:
            payload.append({"role": SYSTEM_ROLE, "content": system})
        for msg in messages:
            entry: Dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == TOOL_ROLE and msg.name:
                entry["tool_name"] = msg.name
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "function": {
                            "name": call.function_name,
                            "arguments": _args_as_dict(call.function_args),
                        }
                    }
                    for call in msg.tool_calls
                ]
            payload.append(entry)
        if max_tokens:
            kwargs.setdefault("options", {})["num_predict"] = max_tokens
        return await self.client.chat(
            model=model or self.model, messages=payload, tools=tools or None, **kwargs
        )

    def _message(self, response: Any) -> Any:
        message = _field(response, "message")
        if message is None:
            raise MalformedResponse(f"{self.name} response had no message")
        return message

    def extract_content(self, response: Any) -> str:
        return _field(self._message(response), "content") or ""

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        message = self._message(response)
        native = _field(message, "tool_calls") or []
        if native:
            return [
                ToolCall(
                    function_name=_field(_field(raw, "function"), "name"),
                    function_args=dict(_field(_field(raw, "function"), "arguments") or {}),
                )
                for raw in native
            ]
        match = _EMBEDDED_TOOL.search(_field(message, "content") or "")
        if not match:
            return []
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            logger.debug("Ignoring unparseable tool JSON in %s reply", self.name)
            return []
        if not isinstance(parsed, dict) or not isinstance(parsed.get("tool"), str):
            return []
        return [ToolCall(function_name=parsed["tool"], function_args=parsed.get("args") or {})]

    async def list_models(self) -> List[ModelInfo]:
        response = await self.client.list()
        models = []
        for m in _field(response, "models") or []:
            model_id = _field(m, "model") or _field(m, "name")
            models.append(ModelInfo(id=model_id, name=model_id))
        return models


class Echo(LLM):
    """Offline provider that repeats the user's words. Never calls tools."""

    name = "echo"

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0):
        super().__init__(default_model)
        self.delay = delay

    async def generate_response(
        self, messages, model=None, tools=None, system=None, max_tokens=None, **kwargs
    ):
        await asyncio.sleep(self.delay)
        user_prompt = _last_user_text(messages) or "No message provided"
        content = f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{user_prompt}"
        return {"content": content, "tool_calls": []}

    def extract_content(self, response: Any) -> str:
        if isinstance(response, dict) and "content" in response:
            return response["content"]
        return str(response)

    def parse_tool_calls(self, response: Any) -> List[ToolCall]:
        return []

    async def list_models(self) -> List[ModelInfo]:
        return [ModelInfo(id=self.model, name="Echo", description="Offline echo backend")]
