from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration sourced from environment variables."""

    gemini_api_key: str | None = None
    virustotal_api_key: str | None = None
    fact_check_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    virustotal_base_url: str = "https://www.virustotal.com/api/v3"
    virustotal_gui_url: str = "https://www.virustotal.com/gui"
    fact_check_base_url: str = "https://factchecktools.googleapis.com/v1alpha1"
    http_timeout: float = 30.0
    scan_max_wait: float = Field(default=300.0, gt=0)
    scan_poll_interval: float = Field(default=10.0, gt=0)
    malicious_escalation_threshold: int = Field(default=5, ge=0)
    enforce_verdict_escalation: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "case_sensitive": False,
    }

    @property
    def registry_api_key(self) -> str | None:
        # The claims registry shares the Google key unless one is given.
        return self.fact_check_api_key or self.gemini_api_key


@lru_cache(1)
def get_settings() -> Settings:
    return Settings()
