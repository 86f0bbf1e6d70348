"""
LLM Gateway - the engine's only view of a language model.

The loop talks to anything that satisfies ``LLMGateway``: one call in, an
optional text and optional native tool calls out. ``LLMClient`` is the
shipped implementation for OpenAI-compatible APIs:
- vLLM (http://localhost:8000/v1)
- Ollama (http://localhost:11434/v1)
- LM Studio (http://localhost:1234/v1)
- OpenAI itself

Timeout and retry handling lives here, in the gateway, not in the loop.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from taskpilot.cancellation import CancellationToken
from taskpilot.config import LLMConfig
from taskpilot.errors import GatewayError, ProtocolParseError
from taskpilot.protocol import parse_arguments
from taskpilot.tools import ToolCatalogEntry
from taskpilot.types import (
    AssistantTurn,
    SystemTurn,
    ToolCallRequest,
    ToolResultTurn,
    Turn,
    UserTurn,
)

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 180.0  # LLM responses can take a while
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_POOL_TIMEOUT = 10.0

# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 10.0

# OpenAI function names must match ^[a-zA-Z0-9_-]+$
NAME_SEPARATOR = "__"


def encode_tool_name(dotted_name: str) -> str:
    return dotted_name.replace(".", NAME_SEPARATOR)


def decode_tool_name(wire_name: str) -> str:
    return wire_name.replace(NAME_SEPARATOR, ".", 1)


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage | None":
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                prompt_tokens=int(data.get("prompt_tokens", 0) or 0),
                completion_tokens=int(data.get("completion_tokens", 0) or 0),
                total_tokens=int(data.get("total_tokens", 0) or 0),
            )
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


class GatewayResponse:
    """
    Response from one gateway call.

    ``error`` is set when the backend answered but reported a failure; the
    loop treats that exactly like a raised GatewayError.
    """

    def __init__(
        self,
        content: str | None = None,
        tool_calls: list[ToolCallRequest] | None = None,
        finish_reason: str | None = None,
        usage: TokenUsage | None = None,
        error: str | None = None,
        raw_response: dict[str, Any] | None = None,
    ) -> None:
        self.content = content
        self.tool_calls = tool_calls or []
        self.finish_reason = finish_reason
        self.usage = usage
        self.error = error
        self.raw_response = raw_response or {}

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "GatewayResponse":
        """
        Parse an OpenAI chat completion into a GatewayResponse.

        Never raises: a reply with the wrong shape comes back with ``error`` set.
        """
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return cls(error=message or "Unknown backend error", raw_response=data)

        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            return cls(error="Response contained no choices", raw_response=data)

        choice = choices[0]
        if not isinstance(choice, dict):
            return cls(error=f"Malformed choice in response: {choice!r}", raw_response=data)
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            return cls(error=f"Malformed message in response: {message!r}", raw_response=data)

        content = message.get("content")
        if content is not None and not isinstance(content, str):
            return cls(error="Message content is not a string", raw_response=data)

        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            return cls(error="Malformed tool_calls in response", raw_response=data)

        tool_calls: list[ToolCallRequest] = []
        for tc in raw_calls:
            function = tc.get("function") if isinstance(tc, dict) else None
            if not isinstance(function, dict) or not isinstance(function.get("name"), str):
                return cls(error=f"Malformed tool call in response: {tc!r}", raw_response=data)
            try:
                arguments = parse_arguments(function.get("arguments"))
                parse_error = None
            except ProtocolParseError as e:
                arguments = {}
                parse_error = str(e)
            tool_calls.append(ToolCallRequest(
                name=decode_tool_name(function["name"]),
                arguments=arguments,
                id=tc.get("id"),
                parse_error=parse_error,
            ))

        return cls(
            content=content,
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason", "stop"),
            usage=TokenUsage.from_dict(data.get("usage")),
            raw_response=data,
        )

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class LLMGateway(Protocol):
    """Anything that can turn a prompt and history into a model response."""

    def generate(
        self,
        system_prompt: str,
        history: list[Turn],
        tool_catalog: list[ToolCatalogEntry],
        options: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GatewayResponse:
        ...


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def history_to_messages(system_prompt: str, history: list[Turn]) -> list[dict[str, Any]]:
    """
    Convert engine turns to OpenAI chat messages.

    Tool results that belong to a native call (they carry a call id) become
    ``tool`` messages; results of calls parsed from text are fed back as
    user messages, since the backend never saw a structured call for them.
    """
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for turn in history:
        if isinstance(turn, SystemTurn):
            messages.append({"role": "system", "content": turn.text})
        elif isinstance(turn, UserTurn):
            messages.append({"role": "user", "content": turn.text})
        elif isinstance(turn, AssistantTurn):
            message: dict[str, Any] = {"role": "assistant", "content": turn.text or ""}
            native = [tc for tc in turn.tool_calls or [] if tc.id]
            if native:
                message["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": encode_tool_name(tc.name),
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in native
                ]
            messages.append(message)
        elif isinstance(turn, ToolResultTurn):
            body = _stringify(turn.output) if turn.success else f"Error: {turn.error}"
            if turn.call_id:
                messages.append({"role": "tool", "tool_call_id": turn.call_id, "content": body})
            else:
                label = "output" if turn.success else "error"
                messages.append({
                    "role": "user",
                    "content": f"[Tool '{turn.tool_name}' {label}]: {body}",
                })
    return messages


def catalog_to_openai_tools(catalog: list[ToolCatalogEntry]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": encode_tool_name(entry.dotted_name),
                "description": entry.description,
                "parameters": entry.argument_schema or {"type": "object", "properties": {}},
            },
        }
        for entry in catalog
    ]


class LLMClient:
    """
    Gateway for OpenAI-compatible LLM APIs.

    Synchronous; one request per ``generate`` call plus retries on
    timeouts, rate limits and 503s. Cancellation is checked before every
    attempt and interrupts the wait between attempts.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self.config = config or LLMConfig.from_env()
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        timeout = httpx.Timeout(
            connect=DEFAULT_CONNECT_TIMEOUT,
            read=DEFAULT_READ_TIMEOUT,
            write=DEFAULT_WRITE_TIMEOUT,
            pool=DEFAULT_POOL_TIMEOUT,
        )

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        self._client = httpx.Client(
            base_url=self.config.base_url,
            headers=headers,
            timeout=timeout,
        )

    def _wait(self, seconds: float, cancel_token: CancellationToken | None) -> None:
        if cancel_token is None:
            time.sleep(seconds)
        else:
            cancel_token.wait(seconds)
            cancel_token.raise_if_cancelled()

    def generate(
        self,
        system_prompt: str,
        history: list[Turn],
        tool_catalog: list[ToolCatalogEntry],
        options: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GatewayResponse:
        """
        Send a chat completion request with automatic retry.

        Raises:
            GatewayError: if all retries are exhausted or a non-retryable error occurs
            OperationCancelled: if the token fires before or between attempts
        """
        options = options or {}
        messages = history_to_messages(system_prompt, history)
        payload: dict[str, Any] = {
            "model": options.get("model", self.config.model),
            "messages": messages,
            "temperature": options.get("temperature", self.config.temperature),
            "max_tokens": options.get("max_tokens", self.config.max_tokens),
        }

        if tool_catalog and self.config.native_tools and options.get("native_tools", True):
            payload["tools"] = catalog_to_openai_tools(tool_catalog)

        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if attempt > 0:
                logger.info(f"Retry attempt {attempt}/{self.max_retries} after {self.retry_delay}s delay...")
                self._wait(self.retry_delay, cancel_token)

            logger.debug(f"Sending chat request with {len(messages)} messages (attempt {attempt + 1})")

            try:
                response = self._client.post("/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError("response body is not a JSON object")
                return GatewayResponse.from_api_response(data)

            except ValueError as e:
                logger.error(f"Malformed response body: {e}")
                raise GatewayError(f"Malformed response body: {e}") from e

            except httpx.TimeoutException as e:
                logger.warning(f"Request timed out (attempt {attempt + 1}): {e}")
                last_error = e
                continue

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    wait_time = self.retry_delay
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            wait_time = float(retry_after)
                        except ValueError:
                            pass
                    logger.warning(f"Rate limited. Waiting {wait_time}s")
                    self._wait(wait_time, cancel_token)
                    last_error = e
                    continue

                if status == 503:
                    logger.warning(f"Service unavailable (attempt {attempt + 1}): {e}")
                    last_error = e
                    continue

                logger.error(f"HTTP error: {status} - {e.response.text}")
                raise GatewayError(f"HTTP {status}: {e.response.text}") from e

            except httpx.RequestError as e:
                logger.warning(f"Request error (attempt {attempt + 1}): {e}")
                last_error = e
                continue

        logger.error(f"All {self.max_retries + 1} attempts failed. Last error: {last_error}")
        raise GatewayError(f"Request failed after {self.max_retries + 1} attempts: {last_error}") from last_error

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
