"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # AI provider selection
    sentinel_ai_provider: str = "local"
    sentinel_hosted_a_model: str = "gpt-4o"
    sentinel_hosted_a_base_url: str = "https://api.openai.com/v1"
    sentinel_hosted_a_key_env: str = "OPENAI_API_KEY"
    sentinel_hosted_b_model: str = "gemini-1.5-flash"
    sentinel_hosted_b_base_url: str = (
        "https://generativelanguage.googleapis.com/v1beta/models"
    )
    sentinel_hosted_b_key_env: str = "GEMINI_API_KEY"
    sentinel_local_model: str = "llama3"
    sentinel_local_base_url: str = "http://localhost:11434/api"

    # Provider calls
    sentinel_provider_http_timeout_seconds: float = 60.0
    sentinel_provider_max_retries: int = 3
    sentinel_provider_backoff_seconds: float = 0.5
    sentinel_provider_backoff_cap_seconds: float = 8.0

    # Context budgeting (tokens)
    sentinel_default_context_budget: int = 8192
    sentinel_context_budgets: dict[str, int] = Field(
        default_factory=lambda: {
            "gpt-4o": 128000,
            "gpt-4o-mini": 128000,
            "gpt-4-turbo": 128000,
            "gpt-3.5-turbo": 16385,
            "gemini-pro": 30720,
            "gemini-1.5-pro": 1000000,
            "gemini-1.5-flash": 1000000,
            "llama3": 8192,
        },
    )

    # Orchestration
    sentinel_turn_timeout_seconds: float = 120.0
    sentinel_approval_timeout_seconds: float = 300.0
    sentinel_max_investigation_turns: int = 8
    sentinel_strict_invariants: bool = False

    # Remote execution
    sentinel_command_timeout_seconds: float = 60.0
    sentinel_output_limit_bytes: int = Field(default=4000, ge=64)
    sentinel_ssh_key_path: str = ""
    sentinel_ssh_connect_timeout_seconds: int = 15
    sentinel_ssh_idle_timeout_seconds: int = 300

    # Storage
    sentinel_servers_file: str = ""
    sentinel_session_log_dir: str = ""

    # API key for the webhook surface
    sentinel_api_key: str = ""

    # Logging
    sentinel_log_level: str = "INFO"
    sentinel_log_json: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def context_budget(self, model: str) -> int:
        """Token budget for *model*, falling back to the default."""
        return self.sentinel_context_budgets.get(
            model, self.sentinel_default_context_budget,
        )


# Singleton – import this from anywhere
settings = Settings()
