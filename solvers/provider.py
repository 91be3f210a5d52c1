"""Fan-out of widget solves over the CapMonster client.

Every widget is solved independently and concurrently.  A failure only
marks its own :class:`CaptchaSolution`; the batch always comes back whole,
together with the error text of the first failed widget.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from core.config import SolverSettings
from core.errors import CaptchaError, CaptchaValidationError, ProviderError
from core.models import (
    CaptchaInfo,
    CaptchaSolution,
    GetSolutionsResult,
    ProxyConfig,
    SolveOptions,
    TaskExtras,
)
from solvers.capmonster import PROVIDER_ID, CapMonsterClient

logger = logging.getLogger(__name__)


def _seconds_between(before: datetime, after: datetime) -> float:
    return (after - before).total_seconds()


def _task_id_of(error: CaptchaError) -> Optional[str]:
    task_id = error.details.get("task_id")
    return None if task_id is None else str(task_id)


class SolutionOrchestrator:
    """Solve a batch of detected widgets through one client.

    Attributes:
        client: Solving client bound to a credential.
        proxy: Optional proxy block added to every task.
    """

    def __init__(
        self,
        client: CapMonsterClient,
        proxy: Optional[ProxyConfig] = None,
    ) -> None:
        self.client = client
        self.proxy = proxy

    def build_extras(self, captcha: CaptchaInfo) -> TaskExtras:
        return TaskExtras(
            recaptcha_data_s_value=captcha.data_s,
            is_invisible=captcha.is_invisible,
            proxy=self.proxy,
        )

    async def get_solution(
        self,
        captcha: CaptchaInfo,
        options: Optional[SolveOptions] = None,
    ) -> CaptchaSolution:
        """Solve one widget; errors end up in ``solution.error``."""
        requested_at: Optional[datetime] = None
        try:
            if not (captcha.site_key and captcha.page_url and captcha.widget_id):
                raise CaptchaValidationError(
                    "Missing data in captcha",
                    details={"widget_id": captcha.widget_id},
                )
            requested_at = datetime.now(timezone.utc)
            logger.debug("Requesting solution for widget %s", captcha.widget_id)
            result = await self.client.solve(
                captcha.vendor,
                captcha.site_key,
                captcha.page_url,
                extras=self.build_extras(captcha),
                options=options,
            )
            if not result.token:
                raise ProviderError(
                    f"Missing response data for task {result.task_id}",
                    code="ERROR_MISSING_TOKEN",
                    details={"task_id": result.task_id},
                )
        except CaptchaError as e:
            logger.warning(
                "Widget %s not solved: %s (%s)",
                captcha.widget_id, e.message, e.code,
            )
            responded_at = datetime.now(timezone.utc) if requested_at else None
            return CaptchaSolution(
                vendor=captcha.vendor,
                provider_name=PROVIDER_ID,
                widget_id=captcha.widget_id,
                requested_at=requested_at,
                responded_at=responded_at,
                duration_seconds=(
                    _seconds_between(requested_at, responded_at)
                    if requested_at else None
                ),
                provider_task_id=_task_id_of(e),
                error=f"{PROVIDER_ID} error: {e.code}: {e.message}",
            )

        responded_at = datetime.now(timezone.utc)
        return CaptchaSolution(
            vendor=captcha.vendor,
            provider_name=PROVIDER_ID,
            widget_id=captcha.widget_id,
            requested_at=requested_at,
            responded_at=responded_at,
            duration_seconds=_seconds_between(requested_at, responded_at),
            provider_task_id=str(result.task_id),
            token=result.token,
            has_solution=True,
        )

    async def get_solutions(
        self,
        captchas: Optional[Sequence[CaptchaInfo]],
        options: Optional[SolveOptions] = None,
    ) -> GetSolutionsResult:
        """Solve every widget concurrently and wait for all of them.

        Returns:
            All solutions in input order, and the error text of the first
            solution that failed (or ``None``).
        """
        captchas = list(captchas or [])
        if not captchas:
            return GetSolutionsResult()

        outcomes = await asyncio.gather(
            *(self.get_solution(c, options) for c in captchas),
            return_exceptions=True,
        )

        solutions: List[CaptchaSolution] = []
        for captcha, outcome in zip(captchas, outcomes):
            if isinstance(outcome, CaptchaSolution):
                solutions.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error(
                "Unexpected error solving widget %s",
                captcha.widget_id, exc_info=outcome,
            )
            solutions.append(
                CaptchaSolution(
                    vendor=captcha.vendor,
                    provider_name=PROVIDER_ID,
                    widget_id=captcha.widget_id,
                    error=f"{PROVIDER_ID} error: {outcome}",
                )
            )

        error = next((s.error for s in solutions if s.error), None)
        logger.info(
            "Solved %d/%d widget(s)",
            sum(1 for s in solutions if s.has_solution), len(solutions),
        )
        return GetSolutionsResult(solutions=solutions, error=error)


async def get_solutions(
    captchas: Optional[Sequence[CaptchaInfo]],
    token: str,
    options: Optional[SolveOptions] = None,
    settings: Optional[SolverSettings] = None,
) -> GetSolutionsResult:
    """Solve *captchas* with a client bound to *token*.

    Proxy and default solve options come from *settings*, which are read
    from the environment when not given.
    """
    captchas = list(captchas or [])
    if not captchas:
        return GetSolutionsResult()

    settings = settings or SolverSettings()
    async with CapMonsterClient(
        token, base_url=settings.capmonster_api_url,
    ) as client:
        orchestrator = SolutionOrchestrator(
            client, proxy=ProxyConfig.from_settings(settings),
        )
        return await orchestrator.get_solutions(
            captchas, options or settings.solve_options(),
        )
