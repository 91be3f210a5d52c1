"""Data records shared by the detection, solving and injection stages.

Flow of records through the system::

    DetectionEngine -> CaptchaInfo -> SolutionOrchestrator
        -> CaptchaSolution -> InjectionEngine -> CaptchaSolved

``CaptchaInfo`` is frozen: a detection snapshot is never edited, only
replaced by the next detection pass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

TaskId = Union[int, str]
"""Task identifiers are integers on CapMonster; strings are accepted."""


class CaptchaVendor(Enum):
    """Challenge vendors known to the vendor tables."""

    RECAPTCHA = "recaptcha"
    HCAPTCHA = "hcaptcha"
    TURNSTILE = "turnstile"


class ChallengeType(Enum):
    """Rendering variant of a widget."""

    CHECKBOX = "checkbox"
    INVISIBLE = "invisible"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CaptchaInfo:
    """One widget found on the page.

    Attributes:
        vendor: Challenge vendor.
        challenge_type: Checkbox or invisible variant.
        page_url: URL of the page hosting the widget.
        widget_id: Suffix of the iframe DOM id; unique per snapshot.
        site_key: Public per-site key parsed from the iframe ``src``.
        has_response_element: Whether the hidden response input exists.
        is_invisible: Vendor-specific invisible flag.
        is_in_viewport: Whether the iframe is fully inside the viewport.
        data_s: Optional site-specific ``data-s`` value (reCAPTCHA only).
    """

    vendor: CaptchaVendor
    challenge_type: ChallengeType
    page_url: Optional[str]
    widget_id: Optional[str]
    site_key: Optional[str]
    has_response_element: bool = False
    is_invisible: bool = False
    is_in_viewport: bool = False
    data_s: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the widget info to a JSON-safe dictionary."""
        return {
            "vendor": self.vendor.value,
            "challenge_type": self.challenge_type.value,
            "page_url": self.page_url,
            "widget_id": self.widget_id,
            "site_key": self.site_key,
            "has_response_element": self.has_response_element,
            "is_invisible": self.is_invisible,
            "is_in_viewport": self.is_in_viewport,
            "data_s": self.data_s,
        }


@dataclass
class CaptchaSolution:
    """Outcome of one top-level solve request (all retries included).

    ``has_solution`` may only be true when ``token`` is non-empty and
    ``error`` is ``None``; the constructor rejects anything else.
    """

    vendor: CaptchaVendor
    provider_name: str
    widget_id: Optional[str] = None
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    provider_task_id: Optional[str] = None
    token: str = ""
    has_solution: bool = False
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.has_solution and (not self.token or self.error is not None):
            raise ValueError(
                "has_solution requires a token and no error"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the solution to a JSON-safe dictionary."""
        return {
            "vendor": self.vendor.value,
            "provider_name": self.provider_name,
            "widget_id": self.widget_id,
            "requested_at": _iso(self.requested_at),
            "responded_at": _iso(self.responded_at),
            "duration_seconds": self.duration_seconds,
            "provider_task_id": self.provider_task_id,
            "token": self.token,
            "has_solution": self.has_solution,
            "error": self.error,
        }


@dataclass(frozen=True)
class CaptchaSolved:
    """A token that was written into the page."""

    vendor: CaptchaVendor
    widget_id: str
    is_solved: bool
    solved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor": self.vendor.value,
            "widget_id": self.widget_id,
            "is_solved": self.is_solved,
            "solved_at": _iso(self.solved_at),
        }


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy block forwarded to the solving service.

    Attributes:
        proxy_type: Upper-cased scheme (``HTTP``, ``HTTPS``, ``SOCKS5``...).
        address: Proxy hostname or IP address.
        port: Proxy port.
        login: Optional authentication username.
        password: Optional authentication password.
    """

    proxy_type: str
    address: str
    port: int
    login: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Any) -> Optional["ProxyConfig"]:
        """Build the proxy block from settings, if fully configured.

        Type, address and port must all be set; login and password are
        optional.

        Args:
            settings: A :class:`core.config.SolverSettings` instance.

        Returns:
            The proxy config, or ``None`` when any required part is missing.
        """
        if not (
            settings.capmonster_proxy_type
            and settings.capmonster_proxy_address
            and settings.capmonster_proxy_port
        ):
            return None
        return cls(
            proxy_type=settings.capmonster_proxy_type.upper(),
            address=settings.capmonster_proxy_address,
            port=int(settings.capmonster_proxy_port),
            login=settings.capmonster_proxy_login,
            password=settings.capmonster_proxy_password,
        )

    def to_fields(self) -> Dict[str, Any]:
        return {
            "proxyType": self.proxy_type,
            "proxyAddress": self.address,
            "proxyPort": self.port,
            "proxyLogin": self.login,
            "proxyPassword": self.password,
        }


@dataclass(frozen=True)
class TaskExtras:
    """Optional per-vendor task fields.

    Which of these a task body actually carries is decided by the vendor's
    request builder in :mod:`solvers.capmonster`.
    """

    recaptcha_data_s_value: Optional[str] = None
    is_invisible: bool = False
    proxy: Optional[ProxyConfig] = None

    def to_fields(self, include_data_s: bool = True) -> Dict[str, Any]:
        """Render the extras as createTask fields.

        Args:
            include_data_s: Emit ``recaptchaDataSValue`` when set.

        Returns:
            Field dictionary to merge into the task body.
        """
        fields: Dict[str, Any] = {}
        if include_data_s and self.recaptcha_data_s_value:
            fields["recaptchaDataSValue"] = self.recaptcha_data_s_value
        if self.is_invisible:
            fields["isInvisible"] = True
        if self.proxy:
            fields.update(self.proxy.to_fields())
        return fields


@dataclass(frozen=True)
class RemoteTask:
    """One create+poll cycle on the solving service.

    ``task_type`` is ``None`` for vendors missing from the task table; such
    a task renders an empty body.
    """

    client_key: str
    vendor: str
    task_type: Optional[str]
    website_url: str
    website_key: str
    extras: TaskExtras = field(default_factory=TaskExtras)


@dataclass
class SolveOptions:
    """Per-call solve options.

    Attributes:
        polling_interval: Seconds between ``getTaskResult`` checks.
        max_retries: Extra attempts after the first failed one.
        timeout: Optional deadline in seconds for the whole solve,
            retries included.  ``None`` polls until a terminal answer.
    """

    polling_interval: float = 2.0
    max_retries: int = 3
    timeout: Optional[float] = None


@dataclass(frozen=True)
class TaskResult:
    """Terminal success of a remote task.  ``token`` may be empty."""

    task_id: TaskId
    token: str


@dataclass
class DetectResult:
    captchas: List[CaptchaInfo] = field(default_factory=list)
    error: Optional[BaseException] = None


@dataclass
class InjectResult:
    solved: List[CaptchaSolved] = field(default_factory=list)
    error: Optional[Any] = None


@dataclass
class GetSolutionsResult:
    solutions: List[CaptchaSolution] = field(default_factory=list)
    error: Optional[str] = None
