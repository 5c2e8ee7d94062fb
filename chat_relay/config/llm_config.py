from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .app_config import ENV_FILE
from ..utils.error_handler import ConfigurationError

DEFAULT_MODEL = "llama3-8b-8192"


class LlmConfig(BaseSettings):
    """Configuration for the upstream chat completions provider."""

    api_key: str = Field(..., alias="GROQ_API_KEY")
    base_url: str = Field("https://api.groq.com/openai", alias="LLM_BASE_URL")
    model: str = Field(DEFAULT_MODEL, alias="LLM_MODEL")
    temperature: float = Field(0.7, alias="LLM_TEMPERATURE")
    # Keep top_p below 1.0 for tighter completions; avoid pairing extreme
    # values of temperature and top_p.
    top_p: float = Field(0.85, alias="LLM_TOP_P")
    max_tokens: int = Field(..., alias="MAX_TOKENS")
    timeout: float = Field(30.0, alias="LLM_TIMEOUT")

    @field_validator("api_key")
    def validate_api_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("GROQ_API_KEY must not be empty")
        return value

    @field_validator("temperature")
    def validate_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("LLM_TEMPERATURE must be between 0.0 and 2.0")
        return value

    @field_validator("top_p")
    def validate_top_p(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("LLM_TOP_P must be in (0.0, 1.0]")
        return value

    @field_validator("max_tokens")
    def validate_max_tokens(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("MAX_TOKENS must be positive")
        return value

    @field_validator("timeout")
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("LLM_TIMEOUT must be positive")
        return value

    @property
    def completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/v1/chat/completions"

    model_config = SettingsConfigDict(env_file=ENV_FILE, extra="ignore", populate_by_name=True)


@lru_cache()
def get_llm_config() -> LlmConfig:
    """Return a cached language model configuration."""

    return LlmConfig()


def load_llm_config() -> LlmConfig:
    """Return the provider configuration or raise :class:`ConfigurationError`.

    Successful loads are cached; a failed load is retried on the next call
    so that fixing the environment does not require a restart.
    """
    try:
        return get_llm_config()
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise ConfigurationError(f"invalid provider configuration: {fields}") from exc
