"""Application configuration for captcha-bridge.

Settings are loaded from environment variables (with ``.env`` file support)
through Pydantic v2 settings.

Key exports:
    SolverSettings: Root settings model (instantiate once per process).
    BASE_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import SolveOptions

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

DEFAULT_API_URL = "https://api.capmonster.cloud"

logger: logging.Logger = logging.getLogger(__name__)


class SolverSettings(BaseSettings):
    """Root configuration model for captcha-bridge.

    All fields can be set via environment variables or a ``.env`` file.
    Field names map to upper-cased variables, e.g. ``capmonster_api_key``
    is read from ``CAPMONSTER_API_KEY``.

    Section overview:
        * **Core** -- log level, headless mode, navigation timeout.
        * **Solving service** -- API key, base URL, polling and retry
          policy.
        * **Proxy** -- optional proxy block forwarded to the solving
          service.  Type, address and port must all be set to activate it.
        * **Page feedback** -- visual marking of detected widgets.
    """

    # Core
    log_level: str = "INFO"
    log_file: Optional[str] = str(LOGS_DIR / "captcha_bridge.log")
    headless: bool = True
    # Navigation timeout in ms
    timeout: int = 60000

    # Solving service
    capmonster_api_key: Optional[str] = None
    capmonster_api_url: str = DEFAULT_API_URL
    captcha_polling_interval: float = Field(default=2.0, gt=0)
    captcha_max_retries: int = Field(default=3, ge=0)
    # Deadline for a whole solve in seconds; unset polls until the
    # service answers
    captcha_solve_timeout: Optional[float] = None

    # Proxy forwarded in the createTask body
    capmonster_proxy_type: Optional[str] = None
    capmonster_proxy_address: Optional[str] = None
    capmonster_proxy_port: Optional[int] = None
    capmonster_proxy_login: Optional[str] = None
    capmonster_proxy_password: Optional[str] = None

    # Page feedback
    visual_feedback: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def solve_options(self) -> SolveOptions:
        """Return the default per-call solve options."""
        return SolveOptions(
            polling_interval=self.captcha_polling_interval,
            max_retries=self.captcha_max_retries,
            timeout=self.captcha_solve_timeout,
        )

    def secrets(self) -> List[str]:
        """Values that must never appear in log output."""
        return [
            value for value in (
                self.capmonster_api_key,
                self.capmonster_proxy_password,
            ) if value
        ]
