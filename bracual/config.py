"""Configuration handling for bracual."""

import os
import tomllib
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

API_KEY_ENV_VAR = "GROQ_API_KEY"


def get_default_config_path() -> Path:
    """Get the default config file path following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base_dir = Path(xdg_config)
    else:
        base_dir = Path.home() / ".config"

    return base_dir / "bracual" / "config.toml"


def get_default_state_dir() -> Path:
    """Get the default state directory following XDG spec."""
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base_dir = Path(xdg_state)
    else:
        base_dir = Path.home() / ".local" / "state"

    return base_dir / "bracual"


def get_default_log_path() -> Path:
    """Get the default log file path, creating its directory."""
    log_dir = get_default_state_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "bracual.log"


def get_default_session_path() -> Path:
    """Get the default path of the stored session."""
    return get_default_state_dir() / "session.json"


class PipelineConfig(BaseModel):
    """Task pipeline configuration."""

    max_input_file_size: int = Field(
        default=100 * 1024 * 1024,
        gt=0,
        description="Files larger than this many bytes are rejected at submission.",
    )
    compression_threshold: int = Field(
        default=1 * 1024 * 1024,
        ge=0,
        description="Files larger than this many bytes are resampled before upload.",
    )
    transfer_chunk_size: int = Field(
        default=3 * 64 * 1024,
        gt=0,
        description="Bytes encoded per step during transport encoding.",
    )
    mixdown: Literal["average", "first"] = Field(
        default="average",
        description="Channel reduction: average all channels or keep the first.",
    )

    @field_validator("transfer_chunk_size")
    @classmethod
    def check_chunk_multiple_of_three(cls, v: int) -> int:
        if v % 3:
            raise ValueError("transfer_chunk_size must be a multiple of 3")
        return v


class TranscriptionConfig(BaseModel):
    """Remote transcription service configuration."""

    api_key: Optional[str] = Field(
        default=None, description=f"API key (falls back to ${API_KEY_ENV_VAR})."
    )
    base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL of the OpenAI-compatible API.",
    )
    model: str = Field(
        default="whisper-large-v3-turbo", description="Speech-to-text model."
    )
    summary_model: str = Field(
        default="llama-3.1-8b-instant", description="Chat model used for summaries."
    )
    summary_min_chars: int = Field(
        default=50,
        ge=0,
        description="Summaries are requested only for transcripts longer than this.",
    )
    summary_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    summary_max_tokens: int = Field(default=256, ge=1)
    fallback_summary: str = Field(
        default="Processed with Groq",
        description="Summary used when none is generated.",
    )
    timeout_s: float = Field(
        default=120.0, gt=0, description="HTTP timeout in seconds."
    )

    @field_validator("model", "summary_model")
    @classmethod
    def check_model_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Model identifier cannot be empty")
        return v

    @property
    def computed_api_key(self) -> Optional[str]:
        return self.api_key or os.environ.get(API_KEY_ENV_VAR)


class OutputConfig(BaseModel):
    """Transcript export configuration."""

    clipboard_command: Optional[str] = Field(
        default=None, description="Command to execute for clipboard output."
    )
    output_dir: Optional[Path] = Field(
        default=None, description="Directory for exported transcripts (default: cwd)."
    )


class RuntimeConfig(BaseModel):
    """Process runtime configuration."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    log_file: Optional[Path] = Field(
        default=None, description="Optional log file path."
    )
    session_file: Optional[Path] = Field(
        default=None, description="Optional custom path of the stored session."
    )

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in allowed_levels:
            raise ValueError(f"Invalid log level. Choose from {allowed_levels}")
        return upper_v

    @property
    def computed_session_file(self) -> Path:
        return self.session_file or get_default_session_path()


class AppConfig(BaseModel):
    """Root configuration."""

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration.

    If path is not provided, looks for config in the standard location.
    If no config file is found, returns default configuration.

    Args:
        path: Optional path to config file.

    Returns:
        Validated AppConfig instance.

    Raises:
        ValueError: If config file exists but has invalid format/content.
        OSError: If config file exists but can't be read.
    """
    if path is None:
        path = get_default_config_path()

    if not path.exists():
        return AppConfig()  # Use defaults

    try:
        with open(path, "rb") as f:
            config_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Error decoding TOML file: {path}\n{e}") from e
    except OSError as e:
        raise OSError(f"Error reading file: {path}\n{e}") from e

    try:
        return AppConfig(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}") from e
