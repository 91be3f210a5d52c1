"""Tests for solvers/provider.py SolutionOrchestrator and get_solutions."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.config import SolverSettings
from core.errors import ExhaustionError, ProviderError
from core.models import (
    CaptchaInfo,
    CaptchaVendor,
    ChallengeType,
    GetSolutionsResult,
    ProxyConfig,
    SolveOptions,
    TaskResult,
)
from solvers.capmonster import CapMonsterClient
from solvers.provider import SolutionOrchestrator, get_solutions

from conftest import FakeCapMonster

PAGE_URL = "https://example.com/login"
FAST = SolveOptions(polling_interval=0.01, max_retries=3)


def _captcha(widget_id="w1", site_key="0x4AAAA", page_url=PAGE_URL, **kwargs):
    return CaptchaInfo(
        vendor=kwargs.pop("vendor", CaptchaVendor.TURNSTILE),
        challenge_type=ChallengeType.CHECKBOX,
        page_url=page_url,
        widget_id=widget_id,
        site_key=site_key,
        has_response_element=True,
        **kwargs,
    )


def _client(solve):
    client = MagicMock(spec=CapMonsterClient)
    client.solve = AsyncMock(side_effect=solve)
    return client


async def _solve_ok(vendor, site_key, page_url, extras=None, options=None):
    return TaskResult(task_id=hash(site_key) % 1000, token=f"token-{site_key}")


class TestGetSolution:

    @pytest.mark.asyncio
    async def test_success_fields(self):
        orchestrator = SolutionOrchestrator(_client(_solve_ok))
        solution = await orchestrator.get_solution(_captcha(site_key="key-a"))

        assert solution.has_solution is True
        assert solution.token == "token-key-a"
        assert solution.error is None
        assert solution.widget_id == "w1"
        assert solution.provider_name == "capmonster"
        assert solution.vendor is CaptchaVendor.TURNSTILE
        assert solution.duration_seconds >= 0
        assert solution.requested_at <= solution.responded_at
        assert solution.provider_task_id is not None

    @pytest.mark.asyncio
    async def test_missing_fields_fail_validation(self):
        client = _client(_solve_ok)
        orchestrator = SolutionOrchestrator(client)
        for captcha in (
            _captcha(site_key=None),
            _captcha(page_url=""),
            _captcha(widget_id=""),
        ):
            solution = await orchestrator.get_solution(captcha)
            assert solution.has_solution is False
            assert solution.error == (
                "capmonster error: ERROR_MISSING_DATA: Missing data in captcha"
            )
            assert solution.responded_at is None
        client.solve.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_token_is_a_failure(self):
        async def solve(*args, **kwargs):
            return TaskResult(task_id=7, token="")

        solution = await SolutionOrchestrator(_client(solve)).get_solution(_captcha())
        assert solution.has_solution is False
        assert solution.error.startswith("capmonster error: ERROR_MISSING_TOKEN: ")
        assert "Missing response data" in solution.error
        assert solution.provider_task_id == "7"
        assert solution.token == ""

    @pytest.mark.asyncio
    async def test_exhaustion_is_reported(self):
        async def solve(*args, **kwargs):
            raise ExhaustionError("Gave up after 3 retries")

        solution = await SolutionOrchestrator(_client(solve)).get_solution(_captcha())
        assert solution.error == (
            "capmonster error: CAPTCHA_FAILED_TOO_MANY_TIMES: Gave up after 3 retries"
        )
        assert solution.requested_at <= solution.responded_at
        assert solution.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_extras_and_options_forwarded(self):
        client = _client(_solve_ok)
        proxy = ProxyConfig("HTTP", "10.0.0.1", 3128)
        options = SolveOptions(polling_interval=0.5, max_retries=1)
        orchestrator = SolutionOrchestrator(client, proxy=proxy)

        await orchestrator.get_solution(
            _captcha(data_s="s-val", is_invisible=True), options,
        )

        kwargs = client.solve.call_args.kwargs
        assert kwargs["options"] is options
        assert kwargs["extras"].proxy == proxy
        assert kwargs["extras"].recaptcha_data_s_value == "s-val"
        assert kwargs["extras"].is_invisible is True
        args = client.solve.call_args.args
        assert args == (CaptchaVendor.TURNSTILE, "0x4AAAA", PAGE_URL)


class TestGetSolutions:

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        client = _client(_solve_ok)
        result = await SolutionOrchestrator(client).get_solutions([])
        assert result.solutions == []
        assert result.error is None
        client.solve.assert_not_called()

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_siblings(self):
        captchas = [
            _captcha(widget_id="w1", site_key="k1"),
            _captcha(widget_id="w2", site_key=None),
            _captcha(widget_id="w3", site_key="k3"),
        ]
        result = await SolutionOrchestrator(_client(_solve_ok)).get_solutions(captchas)

        assert len(result.solutions) == 3
        assert [s.widget_id for s in result.solutions] == ["w1", "w2", "w3"]
        assert [s.has_solution for s in result.solutions] == [True, False, True]
        assert result.solutions[0].token == "token-k1"
        assert result.solutions[2].token == "token-k3"
        assert result.error == result.solutions[1].error
        assert result.error is not None

    @pytest.mark.asyncio
    async def test_first_error_wins(self):
        async def solve(vendor, site_key, page_url, extras=None, options=None):
            raise ProviderError(f"failed {site_key}", code="ERROR_CAPTCHA_UNSOLVABLE")

        captchas = [_captcha(widget_id="a", site_key="ka"), _captcha(widget_id="b", site_key="kb")]
        result = await SolutionOrchestrator(_client(solve)).get_solutions(captchas)
        assert result.error == "capmonster error: ERROR_CAPTCHA_UNSOLVABLE: failed ka"

    @pytest.mark.asyncio
    async def test_solves_run_concurrently(self):
        started = []
        all_started = asyncio.Event()

        async def solve(vendor, site_key, page_url, extras=None, options=None):
            started.append(site_key)
            if len(started) == 3:
                all_started.set()
            await all_started.wait()
            return TaskResult(task_id=1, token=f"t-{site_key}")

        captchas = [_captcha(widget_id=f"w{i}", site_key=f"k{i}") for i in range(3)]
        result = await asyncio.wait_for(
            SolutionOrchestrator(_client(solve)).get_solutions(captchas), timeout=1,
        )
        assert all(s.has_solution for s in result.solutions)
        assert result.error is None

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self):
        async def solve(vendor, site_key, page_url, extras=None, options=None):
            if site_key == "bad":
                raise RuntimeError("boom")
            return TaskResult(task_id=1, token="ok")

        captchas = [_captcha(widget_id="w1", site_key="bad"), _captcha(widget_id="w2", site_key="good")]
        result = await SolutionOrchestrator(_client(solve)).get_solutions(captchas)
        assert result.solutions[0].error == "capmonster error: boom"
        assert result.solutions[1].has_solution is True
        assert result.error == "capmonster error: boom"


class TestErrorCodesReachHost:

    @pytest.mark.asyncio
    async def test_create_error_code_in_solution(self):
        fake = FakeCapMonster(create=[{
            "errorId": 1,
            "errorCode": "ERROR_KEY_DOES_NOT_EXIST",
            "errorDescription": "Account authorization key not found in the system",
        }])
        client = CapMonsterClient("test_key", session=fake.session())

        result = await SolutionOrchestrator(client).get_solutions([_captcha()], FAST)

        assert result.error == (
            "capmonster error: ERROR_KEY_DOES_NOT_EXIST: "
            "Account authorization key not found in the system"
        )
        assert fake.payloads("getTaskResult") == []

    @pytest.mark.asyncio
    async def test_exhaustion_code_in_solution(self):
        fake = FakeCapMonster(
            create=[{"errorId": 0, "taskId": 101}, {"errorId": 0, "taskId": 102}],
            results=[{"errorId": 1, "errorCode": "ERROR_CAPTCHA_UNSOLVABLE"}],
        )
        client = CapMonsterClient("test_key", session=fake.session())

        solution = await SolutionOrchestrator(client).get_solution(
            _captcha(), SolveOptions(polling_interval=0.01, max_retries=1),
        )
        await client.close()

        assert solution.error.startswith(
            "capmonster error: CAPTCHA_FAILED_TOO_MANY_TIMES: "
        )
        assert solution.has_solution is False
        assert solution.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_single_poll_failure_keeps_its_code(self):
        fake = FakeCapMonster(
            results=[{"errorId": 1, "errorCode": "ERROR_CAPTCHA_UNSOLVABLE"}],
        )
        client = CapMonsterClient("test_key", session=fake.session())

        solution = await SolutionOrchestrator(client).get_solution(
            _captcha(), SolveOptions(polling_interval=0.01, max_retries=0),
        )
        await client.close()

        assert "CAPTCHA_FAILED_TOO_MANY_TIMES" in solution.error
        assert fake.payloads("reportIncorrectTokenCaptcha") == [
            {"clientKey": "test_key", "taskId": 101},
        ]


class TestModuleGetSolutions:

    @pytest.mark.asyncio
    async def test_empty_list_needs_no_client(self):
        with patch("solvers.provider.CapMonsterClient") as client_cls:
            result = await get_solutions([], "key")
        assert result == GetSolutionsResult(solutions=[], error=None)
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_client_bound_to_token(self):
        settings = SolverSettings(
            _env_file=None,
            capmonster_api_url="https://api.example.test",
            capmonster_proxy_type="socks5",
            capmonster_proxy_address="10.0.0.2",
            capmonster_proxy_port=1080,
        )
        client = _client(_solve_ok)
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)

        with patch("solvers.provider.CapMonsterClient", return_value=client) as client_cls:
            result = await get_solutions([_captcha()], "secret-key", settings=settings)

        client_cls.assert_called_once_with(
            "secret-key", base_url="https://api.example.test",
        )
        assert result.solutions[0].has_solution is True
        extras = client.solve.call_args.kwargs["extras"]
        assert extras.proxy == ProxyConfig("SOCKS5", "10.0.0.2", 1080)
        options = client.solve.call_args.kwargs["options"]
        assert options.polling_interval == settings.captcha_polling_interval
        assert options.max_retries == settings.captcha_max_retries
