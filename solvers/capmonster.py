"""CapMonster Cloud API client.

Creates a solve task, polls ``getTaskResult`` on a fixed interval, and
retries failed tasks under a bounded budget.  Every failed task is reported
to ``reportIncorrectTokenCaptcha`` before the retry decision is made.

The poll loop is a ticker task that launches one check per interval without
waiting for earlier checks, so several requests for the same task can be in
flight at once.  The first terminal answer settles a :class:`TaskOutcome`;
everything after it is dropped and the ticker and remaining checks are
cancelled.

Example::

    async with CapMonsterClient(api_key) as client:
        result = await client.solve(
            CaptchaVendor.TURNSTILE, site_key, page_url,
        )
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set, Union

import aiohttp

from core.config import DEFAULT_API_URL
from core.errors import (
    CaptchaError,
    ExhaustionError,
    ProviderError,
    SolveTimeoutError,
    TransportError,
)
from core.models import (
    CaptchaVendor,
    RemoteTask,
    SolveOptions,
    TaskExtras,
    TaskId,
    TaskResult,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "capmonster"

# Task types per vendor
TASK_TYPES: Dict[str, str] = {
    CaptchaVendor.RECAPTCHA.value: "NoCaptchaTaskProxyless",
    CaptchaVendor.HCAPTCHA.value: "HCaptchaTaskProxyless",
    CaptchaVendor.TURNSTILE.value: "TurnstileTaskProxyless",
}


def _base_fields(task: RemoteTask) -> Dict[str, Any]:
    return {
        "type": task.task_type,
        "websiteURL": task.website_url,
        "websiteKey": task.website_key,
    }


def _build_recaptcha(task: RemoteTask) -> Dict[str, Any]:
    return {**_base_fields(task), **task.extras.to_fields()}


def _build_without_data_s(task: RemoteTask) -> Dict[str, Any]:
    # data-s is a Google-only parameter
    return {
        **_base_fields(task),
        **task.extras.to_fields(include_data_s=False),
    }


TASK_BUILDERS: Dict[str, Callable[[RemoteTask], Dict[str, Any]]] = {
    CaptchaVendor.RECAPTCHA.value: _build_recaptcha,
    CaptchaVendor.HCAPTCHA.value: _build_without_data_s,
    CaptchaVendor.TURNSTILE.value: _build_without_data_s,
}


def build_task_body(task: RemoteTask) -> Dict[str, Any]:
    """Render the ``task`` object of a createTask request.

    Vendors missing from ``TASK_BUILDERS`` get an empty body; the service
    answers that with an error code instead of the client raising.
    """
    builder = TASK_BUILDERS.get(task.vendor)
    if builder is None or task.task_type is None:
        logger.warning("No CapMonster task type for vendor %r", task.vendor)
        return {}
    return builder(task)


def extract_token(solution: Optional[Dict[str, Any]]) -> str:
    """Return the solved token, preferring ``gRecaptchaResponse``."""
    solution = solution or {}
    return solution.get("gRecaptchaResponse") or solution.get("token") or ""


def _provider_error(
    data: Dict[str, Any], **details: Any
) -> Optional[ProviderError]:
    if not data.get("errorId"):
        return None
    code = data.get("errorCode") or "ERROR_UNKNOWN"
    return ProviderError(
        data.get("errorDescription") or code,
        code=code,
        details=details,
    )


class TaskOutcome:
    """One-shot completion signal for a single remote task.

    Only the first :meth:`resolve` or :meth:`reject` call has any effect;
    both return ``False`` once the outcome is settled.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, result: TaskResult) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    async def wait(self) -> TaskResult:
        return await self._future


class CapMonsterClient:
    """Async client for the CapMonster Cloud solving service.

    The API key is bound to the client at construction and only read
    afterwards.  Swapping ``api_key`` while solves are running is not
    guarded; callers that need another key should create another client.

    Attributes:
        api_key: CapMonster client key.
        base_url: API base URL.
        session: aiohttp session; created lazily when not supplied.
        request_timeout: Per-request timeout in seconds.
    """

    BASE_URL = DEFAULT_API_URL

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.session = session
        self._owns_session = session is None
        self.request_timeout = request_timeout
        self._reports: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "CapMonsterClient":
        await self._ensure_session()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if not self.session:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        """Wait for pending incorrect-token reports, then close the session."""
        if self._reports:
            await asyncio.gather(*self._reports, return_exceptions=True)
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def _post(
        self, endpoint: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """POST *payload* to *endpoint* and decode the JSON answer.

        Raises:
            TransportError: Connection failure, timeout or a body that is
                not a JSON object.
        """
        await self._ensure_session()
        url = f"{self.base_url}/{endpoint}"
        try:
            async with self.session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(
                f"{endpoint} request failed: {e}",
                details={"endpoint": endpoint},
            ) from e
        if not isinstance(data, dict):
            raise TransportError(
                f"{endpoint} returned an unexpected body",
                details={"endpoint": endpoint},
            )
        return data

    def new_task(
        self,
        vendor: Union[CaptchaVendor, str],
        site_key: str,
        page_url: str,
        extras: Optional[TaskExtras] = None,
    ) -> RemoteTask:
        vendor_id = (
            vendor.value if isinstance(vendor, CaptchaVendor) else str(vendor)
        )
        return RemoteTask(
            client_key=self.api_key,
            vendor=vendor_id,
            task_type=TASK_TYPES.get(vendor_id),
            website_url=page_url,
            website_key=site_key,
            extras=extras or TaskExtras(),
        )

    async def _create_task(self, task: RemoteTask) -> TaskId:
        payload = {
            "clientKey": task.client_key,
            "task": build_task_body(task),
        }
        logger.debug("Creating CapMonster task: %s", task.task_type)
        data = await self._post("createTask", payload)

        error = _provider_error(data, vendor=task.vendor)
        if error:
            logger.error(
                "CapMonster task creation failed: %s", error.code,
            )
            raise error

        task_id = data.get("taskId")
        if task_id is None:
            raise ProviderError(
                "createTask answered without a taskId",
                code="ERROR_NO_TASK_ID",
            )
        logger.info("CapMonster task created: %s", task_id)
        return task_id

    async def _check_result(
        self, task_id: TaskId, outcome: TaskOutcome
    ) -> None:
        """Issue one getTaskResult request and settle *outcome* if terminal."""
        try:
            data = await self._post(
                "getTaskResult",
                {"clientKey": self.api_key, "taskId": task_id},
            )
            if data.get("status") == "processing":
                logger.debug("CapMonster task %s still processing", task_id)
                return

            error = _provider_error(data, task_id=task_id)
            if error:
                settled = outcome.reject(error)
            else:
                settled = outcome.resolve(
                    TaskResult(
                        task_id=task_id,
                        token=extract_token(data.get("solution")),
                    )
                )
        except Exception as e:
            settled = outcome.reject(e)

        if not settled:
            logger.debug(
                "Dropping late answer for CapMonster task %s", task_id,
            )

    async def _poll(self, task_id: TaskId, interval: float) -> TaskResult:
        """Poll *task_id* every *interval* seconds until it is terminal.

        Raises:
            ProviderError: The task failed on the service side.
            TransportError: A check request could not be completed.
        """
        outcome = TaskOutcome()
        in_flight: Set[asyncio.Task] = set()

        async def tick() -> None:
            while True:
                await asyncio.sleep(interval)
                check = asyncio.create_task(
                    self._check_result(task_id, outcome)
                )
                in_flight.add(check)
                check.add_done_callback(in_flight.discard)

        ticker = asyncio.create_task(tick())
        try:
            return await outcome.wait()
        finally:
            ticker.cancel()
            pending = [ticker, *in_flight]
            for check in in_flight:
                check.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def report_incorrect(self, task_id: TaskId) -> None:
        """Report *task_id* as failed, without waiting for the answer."""
        report = asyncio.create_task(self._report(task_id))
        self._reports.add(report)
        report.add_done_callback(self._reports.discard)

    async def _report(self, task_id: TaskId) -> None:
        try:
            await self._post(
                "reportIncorrectTokenCaptcha",
                {"clientKey": self.api_key, "taskId": task_id},
            )
        except TransportError as e:
            logger.debug("Could not report CapMonster task %s: %s", task_id, e)

    async def _solve_with_retries(
        self, task: RemoteTask, options: SolveOptions
    ) -> TaskResult:
        retries_left = max(0, options.max_retries)
        while True:
            failure: CaptchaError
            try:
                task_id = await self._create_task(task)
            except TransportError as e:
                failure = e
            else:
                try:
                    return await self._poll(task_id, options.polling_interval)
                except (ProviderError, TransportError) as e:
                    failure = e
                    logger.warning(
                        "CapMonster task %s failed: %s", task_id, e.code,
                    )
                    self.report_incorrect(task_id)

            if retries_left <= 0:
                raise ExhaustionError(
                    f"Gave up after {options.max_retries} retries "
                    f"(last error: {failure.code})",
                    details={"last_error": failure.code},
                ) from failure
            retries_left -= 1
            logger.info(
                "Retrying %s solve (%d retries left)",
                task.vendor, retries_left,
            )

    async def solve(
        self,
        vendor: Union[CaptchaVendor, str],
        site_key: str,
        page_url: str,
        extras: Optional[TaskExtras] = None,
        options: Optional[SolveOptions] = None,
    ) -> TaskResult:
        """Solve one widget, retrying failed tasks.

        Args:
            vendor: Widget vendor.
            site_key: Public site key of the widget.
            page_url: URL of the page hosting the widget.
            extras: Optional vendor/proxy fields.
            options: Polling interval, retry budget and deadline.

        Returns:
            The :class:`TaskResult` of the first task that completed.  Its
            token may be empty.

        Raises:
            ProviderError: Task creation was refused by the service.
            ExhaustionError: Every allowed attempt failed.
            SolveTimeoutError: ``options.timeout`` expired.
        """
        options = options or SolveOptions()
        task = self.new_task(vendor, site_key, page_url, extras)
        solving = self._solve_with_retries(task, options)
        if options.timeout is None:
            return await solving
        try:
            return await asyncio.wait_for(solving, options.timeout)
        except asyncio.TimeoutError as e:
            raise SolveTimeoutError(
                f"Solve did not finish within {options.timeout}s",
                details={"vendor": task.vendor},
            ) from e

    async def get_balance(self) -> float:
        """Return the account balance in USD.

        Raises:
            ProviderError: The service refused the request.
            TransportError: The service could not be reached.
        """
        data = await self._post("getBalance", {"clientKey": self.api_key})
        error = _provider_error(data)
        if error:
            raise error
        balance = float(data.get("balance", 0.0))
        logger.info("CapMonster balance: $%.4f", balance)
        return balance
