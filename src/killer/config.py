"""
Configuration for the agent system.

All configuration is loaded from environment variables, optionally seeded
from a ``.env`` file. Each concern gets its own dataclass with a
``from_env()`` constructor so tests can build configs directly without
touching the environment.

The context ceiling is configurable but MUST be enforced - the loop refuses
to call the model once compression cannot bring the history under it.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://open.bigmodel.cn/api/coding/paas/v4"
DEFAULT_MODEL = "glm-4.6"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Invalid or missing configuration."""
    pass


def _env(*names: str, default: str = "") -> str:
    """Return the first non-empty variable among ``names``."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _env_int(*names: str, default: int) -> int:
    raw = _env(*names, default=str(default))
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{names[0]} must be an integer, got {raw!r}") from e


def _env_float(*names: str, default: float) -> float:
    raw = _env(*names, default=str(default))
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{names[0]} must be a number, got {raw!r}") from e


def _env_bool(*names: str, default: bool = False) -> bool:
    raw = _env(*names, default="true" if default else "false").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ConfigError(f"{names[0]} must be a boolean, got {raw!r}")


def load_env_files(project_dir: str | Path | None = None) -> list[Path]:
    """
    Load ``~/.killer.env`` and then ``<project_dir>/.env``.

    Variables already present in the process environment are never
    overridden. Returns the files that were actually loaded.
    """
    candidates = [Path.home() / ".killer.env"]
    candidates.append(Path(project_dir or Path.cwd()) / ".env")

    loaded: list[Path] = []
    for path in candidates:
        if not path.is_file():
            continue
        try:
            load_dotenv(dotenv_path=path, override=False, encoding="utf-8")
        except UnicodeDecodeError:
            load_dotenv(dotenv_path=path, override=False, encoding="latin-1")
        logger.debug(f"Loaded environment variables from {path}")
        loaded.append(path)
    return loaded


@dataclass
class LLMConfig:
    """Configuration for the chat-completions client."""
    base_url: str
    api_key: str
    model: str
    timeout: float = 180.0

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables."""
        return cls(
            base_url=_env("KILLER_API_BASE", "GLM_CODING_API_BASE", default=DEFAULT_API_BASE),
            api_key=_env("KILLER_API_KEY", "GLM_CODING_API_KEY"),
            model=_env("KILLER_MODEL", "GLM_CODING_MODEL", default=DEFAULT_MODEL),
            timeout=_env_float("KILLER_API_TIMEOUT", default=180.0),
        )

    def require_api_key(self) -> None:
        if not self.api_key:
            raise ConfigError(
                "No API key configured. Set KILLER_API_KEY (or GLM_CODING_API_KEY) "
                "in the environment or in ~/.killer.env"
            )


@dataclass
class ContextConfig:
    """
    Configuration for the context budget.

    ``max_context_tokens`` is the hard ceiling; ``compression_threshold``
    is where tool-result compression kicks in. Token counts that are not
    reported by the API are estimated as characters / ``chars_per_token``.
    """
    max_context_tokens: int = 128000
    compression_threshold: int = 100000
    chars_per_token: float = 4.0
    summary_max_words: int = 200

    def __post_init__(self) -> None:
        if self.compression_threshold >= self.max_context_tokens:
            raise ConfigError(
                f"compression_threshold ({self.compression_threshold}) must be "
                f"below max_context_tokens ({self.max_context_tokens})"
            )
        if self.chars_per_token <= 0:
            raise ConfigError("chars_per_token must be positive")

    @classmethod
    def from_env(cls) -> "ContextConfig":
        """Load configuration from environment variables."""
        return cls(
            max_context_tokens=_env_int("KILLER_MAX_CONTEXT_TOKENS", default=128000),
            compression_threshold=_env_int("KILLER_COMPRESSION_THRESHOLD", default=100000),
            chars_per_token=_env_float("KILLER_CHARS_PER_TOKEN", default=4.0),
            summary_max_words=_env_int("KILLER_SUMMARY_MAX_WORDS", default=200),
        )


@dataclass
class LoopConfig:
    """
    Configuration for the iteration controller.

    max_iterations bounds the number of model calls for one run. Interactive
    mode pauses for human input after every final answer.
    """
    max_iterations: int = 25
    interactive: bool = False
    prompts_dir: Path = Path.home() / ".killer" / "prompts"

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Load configuration from environment variables."""
        prompts_dir = _env("KILLER_PROMPTS_DIR")
        return cls(
            max_iterations=_env_int("KILLER_MAX_ITERATIONS", "MAX_ITERATIONS", default=25),
            interactive=_env_bool("KILLER_INTERACTIVE"),
            prompts_dir=(
                Path(prompts_dir).expanduser() if prompts_dir
                else Path.home() / ".killer" / "prompts"
            ),
        )


@dataclass
class ToolConfig:
    """Configuration for tool discovery and execution."""
    timeout: float = 180.0
    kill_grace: float = 0.2
    tools_dir: Path | None = None
    task_file: Path = Path.home() / ".killer" / "tmp" / "tasks.json"
    max_output_chars: int = 100_000

    @classmethod
    def from_env(cls) -> "ToolConfig":
        """Load configuration from environment variables."""
        tools_dir = _env("KILLER_TOOLS_DIR")
        task_file = _env("KILLER_TASK_FILE")
        return cls(
            timeout=_env_float("KILLER_TOOL_TIMEOUT", default=180.0),
            kill_grace=_env_float("KILLER_KILL_GRACE", default=0.2),
            tools_dir=Path(tools_dir).expanduser() if tools_dir else None,
            task_file=(
                Path(task_file).expanduser() if task_file
                else Path.home() / ".killer" / "tmp" / "tasks.json"
            ),
            max_output_chars=_env_int("KILLER_MAX_TOOL_OUTPUT", default=100_000),
        )


@dataclass
class AgentConfig:
    """Combined configuration for the entire agent system."""
    llm: LLMConfig
    context: ContextConfig
    loop: LoopConfig
    tools: ToolConfig

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load all configuration from environment variables."""
        return cls(
            llm=LLMConfig.from_env(),
            context=ContextConfig.from_env(),
            loop=LoopConfig.from_env(),
            tools=ToolConfig.from_env(),
        )
