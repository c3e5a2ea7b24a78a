"""Settings via pydantic-settings with PARLEY_ env prefix.

Settings are the lowest layer of effective configuration. Personas and
per-session overrides sit on top (see parley.chat.params).
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PARLEY_", env_file=".env")

    log_level: str = "info"

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8000
    max_sessions: int = 100

    # Completion endpoint (OpenAI-compatible)
    api_base_url: str = "http://127.0.0.1:1337/v1"
    api_key: str = ""
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # LLM
    model: str = "default"
    system_prompt: str = ""
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None  # explicit max response tokens
    default_max_tokens: int = 16384  # sent when max_tokens is unset

    # Context budget
    context_length: int = 128_000
    response_reserve_tokens: int = 4096  # reserved when max_tokens is unset
    min_context_tokens: int = 2048

    # Tool loop
    max_tool_attempts: int = 15
    tool_overrides: dict[str, bool] = Field(default_factory=dict)
    workspace_dir: str = "/tmp/parley-workspace"

    # Reasoning region markers
    reasoning_open_marker: str = "<think>"
    reasoning_close_marker: str = "</think>"

    @model_validator(mode="after")
    def _validate_markers(self) -> "Settings":
        if not self.reasoning_open_marker or not self.reasoning_close_marker:
            raise ValueError("reasoning markers must be non-empty")
        if self.reasoning_open_marker.lower() == self.reasoning_close_marker.lower():
            raise ValueError(
                f"reasoning_open_marker and reasoning_close_marker must differ "
                f"(both {self.reasoning_open_marker!r})"
            )
        return self
