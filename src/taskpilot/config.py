"""
Configuration for the task engine.

All configuration is loaded from environment variables so the engine can be
pointed at any OpenAI-compatible backend (vLLM, Ollama, LM Studio, OpenAI)
without code changes. Hosts that keep settings elsewhere build the
dataclasses directly and hand them to ``EngineContext.reconfigure``.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LLMConfig:
    """Configuration for the LLM client."""
    base_url: str
    api_key: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 2000
    native_tools: bool = True

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("LLM_BASE_URL", "http://localhost:8000/v1"),
            api_key=os.getenv("LLM_API_KEY", ""),
            model=os.getenv("LLM_MODEL", ""),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2000")),
            native_tools=_env_bool("LLM_NATIVE_TOOLS", True),
        )


@dataclass
class LoopConfig:
    """
    Configuration for the tool-calling loop.

    max_iterations is the default iteration budget for agents that do not
    declare their own. It counts LLM round-trips, not tool calls.
    """
    max_iterations: int = 5

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Load configuration from environment variables."""
        return cls(
            max_iterations=int(os.getenv("AGENT_MAX_ITERATIONS", "5")),
        )


@dataclass
class PatchConfig:
    """
    Configuration for the diff/patch engine as used by the file tool.

    fuzz_factor stays 0 unless explicitly raised: any tolerance for drifted
    context lines is a correctness trade-off the operator has to opt into.
    """
    context_lines: int = 3
    fuzz_factor: int = 0

    @classmethod
    def from_env(cls) -> "PatchConfig":
        """Load configuration from environment variables."""
        return cls(
            context_lines=int(os.getenv("PATCH_CONTEXT_LINES", "3")),
            fuzz_factor=int(os.getenv("PATCH_FUZZ_FACTOR", "0")),
        )


@dataclass
class PromptConfig:
    """
    Global prompt variables and user-supplied templates.

    variables are substituted into every system prompt; templates override
    the built-in defaults by name.
    """
    variables: dict[str, str] = field(default_factory=dict)
    templates: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "PromptConfig":
        """Load configuration from environment variables."""
        variables: dict[str, str] = {}
        raw = os.getenv("PROMPT_VARIABLES")
        if raw:
            variables = {str(k): str(v) for k, v in json.loads(raw).items()}

        templates: dict[str, str] = {}
        templates_file = os.getenv("PROMPT_TEMPLATES_FILE")
        if templates_file:
            data = json.loads(Path(templates_file).expanduser().read_text(encoding="utf-8"))
            templates = {str(k): str(v) for k, v in data.items()}

        return cls(variables=variables, templates=templates)


@dataclass
class EngineConfig:
    """Combined configuration for the whole engine."""
    llm: LLMConfig
    loop: LoopConfig
    patch: PatchConfig
    prompts: PromptConfig
    workspace: Path = field(default_factory=Path.cwd)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Load all configuration from environment variables."""
        workspace = os.getenv("TASKPILOT_WORKSPACE")
        return cls(
            llm=LLMConfig.from_env(),
            loop=LoopConfig.from_env(),
            patch=PatchConfig.from_env(),
            prompts=PromptConfig.from_env(),
            workspace=Path(workspace).expanduser() if workspace else Path.cwd(),
            log_level=os.getenv("TASKPILOT_LOG_LEVEL", "INFO"),
        )
