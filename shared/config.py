"""
Type-safe configuration for flowtest using Pydantic Settings.

Values are loaded, lowest priority first, from field defaults, the ``.env``
file, ``N8N_*`` environment variables, the optional ``n8n-tdd-config.json``
file and finally explicit keyword overrides.

There is no module-level instance: build one with ``load_config`` and pass it
to the orchestrator, resource manager and engine client.

Usage:
    from shared.config import load_config

    config = load_config(api_url="http://localhost:5678/api/v1")
    orchestrator = TestOrchestrator(config)
"""
from typing import Any, List, Literal, Optional, Tuple, Type

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

ReporterKind = Literal["console", "json", "none"]


class FlowtestConfig(BaseSettings):
    """
    Central configuration for flowtest.

    Every delay and timeout is expressed in seconds.
    """
    model_config = SettingsConfigDict(
        env_prefix="N8N_",
        env_file=".env",
        env_file_encoding="utf-8",
        json_file="n8n-tdd-config.json",
        extra="ignore",
        case_sensitive=False,
    )

    # ============================================================================
    # Engine connection
    # ============================================================================

    api_url: str = Field(default="http://localhost:5678/api/v1", description="Base URL of the engine REST API")
    api_key: Optional[str] = Field(default=None, description="API key sent with every request")
    api_key_header: str = Field(default="X-N8N-API-KEY", description="Header carrying the API key")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout")
    engine_version: Optional[str] = Field(
        default=None,
        description="Engine version, used to pick credential field mappings (e.g. '1.45.0')",
    )

    # ============================================================================
    # Resilience
    # ============================================================================

    max_requests_per_minute: int = Field(default=60, gt=0, description="Token bucket capacity per minute")
    rate_limit_max_wait: float = Field(default=60.0, gt=0, description="Longest wait for a rate-limit token")
    retry_max_attempts: int = Field(default=3, ge=1, description="Attempts per request, including the first")
    retry_initial_delay: float = Field(default=1.0, ge=0, description="Delay before the first retry")
    retry_max_delay: float = Field(default=30.0, ge=0, description="Cap on a single backoff delay")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, description="Exponential backoff multiplier")
    retry_timeout: float = Field(default=60.0, gt=0, description="Wall-clock budget across all attempts")

    # ============================================================================
    # Declarative test runner
    # ============================================================================

    templates_dir: str = Field(default="./templates", description="Directory of workflow templates")
    tests_dir: str = Field(default="./workflow-tests", description="Directory of declarative test files")
    credential_prefix: str = Field(
        default="N8N_CREDENTIAL_",
        description="Environment prefix for credentials (<PREFIX><NAME>_<PROPERTY>)",
    )
    env_path: Optional[str] = Field(default=".env", description="Dotenv file consulted for credentials")
    cleanup_after_tests: bool = Field(default=True, description="Delete remote resources after each test")
    default_test_timeout: float = Field(default=30.0, gt=0, description="Execution timeout when a test sets none")
    continue_on_failure: bool = Field(default=True, description="Keep running after a failed test")
    reporter: ReporterKind = Field(default="console", description="Reporter: console, json or none")
    report_path: str = Field(default="./test-results.json", description="Output path for the json reporter")
    tags: List[str] = Field(default_factory=list, description="Only run tests carrying one of these tags")

    log_level: str = Field(default="INFO", description="Log level for flowtest loggers")

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            JsonConfigSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # ============================================================================
    # Computed Properties
    # ============================================================================

    @property
    def requests_interval(self) -> float:
        """Rate-limiter refill interval matching ``max_requests_per_minute``."""
        return 60.0

    @property
    def is_authenticated(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)

    @property
    def auth_headers(self) -> dict:
        """Headers carrying the API key, if any."""
        if not self.api_key:
            return {}
        return {self.api_key_header: self.api_key}


def load_config(**overrides: Any) -> FlowtestConfig:
    """Build a configuration, letting ``overrides`` win over every other source."""
    return FlowtestConfig(**overrides)


__all__ = ["FlowtestConfig", "ReporterKind", "load_config"]
