"""VTOP client configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class VtopConfig(BaseSettings):
    """VTOP configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Portal settings (HTML only, no API exists)
    vtop_url: str = Field(
        default="https://vtop.vit.ac.in",
        description="VTOP origin URL",
    )
    vtop_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
        ),
        description="User-Agent sent on every request",
    )

    # HTTP retry policy
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single HTTP request",
    )
    max_request_attempts: int = Field(
        default=3,
        description="Attempts per request before giving up on transient failures",
    )
    backoff_initial_seconds: float = Field(
        default=0.3,
        description="First retry backoff, doubled on each further attempt",
    )
    max_redirect_hops: int = Field(
        default=4,
        description="Maximum redirects followed manually per request",
    )

    # Login protocol
    max_login_attempts: int = Field(
        default=3,
        description="Login attempts (each with a fresh CAPTCHA) before failing",
    )
    login_settle_seconds: float = Field(
        default=1.5,
        description="Pause after loading the login page",
    )
    captcha_render_wait_seconds: float = Field(
        default=0.8,
        description="Pause before and after requesting a CAPTCHA image",
    )
    login_retry_delay_seconds: float = Field(
        default=1.0,
        description="Pause before retrying login with a fresh CAPTCHA",
    )
    captcha_weights_path: str = Field(
        default="data/captcha_weights.json",
        description=(
            "JSON file with the CAPTCHA classifier weights and biases "
            "({\"weights\": 528x32, \"biases\": 32}). Not shipped; must be provided "
            "or every CAPTCHA solve fails with CaptchaModelError"
        ),
    )

    # Scraper pacing
    page_delay_seconds: float = Field(
        default=1.0,
        description="Pause before the first POST of a scrape",
    )
    detail_delay_seconds: float = Field(
        default=0.5,
        description="Pause before follow-up POSTs (per-semester, details)",
    )
    preferred_semester: str | None = Field(
        default=None,
        description="Semester label substring used when none is requested",
    )
    max_alternative_semesters: int = Field(
        default=3,
        description="Other semesters tried when the digital assignment fetch fails",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: VtopConfig | None = None


def get_config() -> VtopConfig:
    """Get the VTOP configuration singleton.

    Returns:
        VtopConfig: VTOP configuration instance
    """
    global _config
    if _config is None:
        _config = VtopConfig()
    return _config
