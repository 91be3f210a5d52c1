"""
captcha-bridge - Main Entry Point

Opens a page, detects Turnstile widgets, solves them through CapMonster
Cloud and writes the tokens back into the page.

Usage:
    python main.py https://example.com/login
    python main.py https://example.com/login --visible --inject
    python main.py https://example.com/login --no-solve   # detection only
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from playwright.async_api import async_playwright
from rich.console import Console
from rich.table import Table

from browser.content import detect, inject
from core.config import SolverSettings
from core.logging_setup import setup_logging
from core.models import CaptchaInfo, CaptchaSolution, GetSolutionsResult
from solvers.provider import get_solutions

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect, solve and inject challenge widgets on a page"
    )
    parser.add_argument("url", help="Page to open")
    parser.add_argument("--visible", action="store_true", help="Show browser")
    parser.add_argument(
        "--no-solve", action="store_true", help="Only detect widgets",
    )
    parser.add_argument(
        "--inject", action="store_true", help="Write tokens into the page",
    )
    parser.add_argument("--retries", type=int, help="Retry budget per widget")
    parser.add_argument(
        "--interval", type=float, help="Seconds between result checks",
    )
    return parser


def render_report(
    captchas: List[CaptchaInfo],
    solutions: Optional[GetSolutionsResult] = None,
) -> Table:
    """Build a table of detected widgets and their solve outcome."""
    by_widget = {}
    if solutions:
        by_widget = {s.widget_id: s for s in solutions.solutions}

    table = Table(title="Challenge widgets")
    table.add_column("Widget")
    table.add_column("Vendor")
    table.add_column("Site key")
    table.add_column("Input")
    table.add_column("Visible")
    table.add_column("Result")
    for captcha in captchas:
        solution: Optional[CaptchaSolution] = by_widget.get(captcha.widget_id)
        if solution is None:
            outcome = "-"
        elif solution.has_solution:
            outcome = f"[green]solved in {solution.duration_seconds:.1f}s[/green]"
        else:
            outcome = f"[red]{solution.error}[/red]"
        table.add_row(
            captcha.widget_id or "?",
            captcha.vendor.value,
            captcha.site_key or "?",
            "yes" if captcha.has_response_element else "no",
            "yes" if captcha.is_in_viewport else "no",
            outcome,
        )
    return table


async def run(args: argparse.Namespace, settings: SolverSettings) -> int:
    """Detect, solve and inject on ``args.url``.

    Returns:
        Process exit code: 0 when every widget was handled.
    """
    console = Console()
    options = settings.solve_options()
    if args.retries is not None:
        options.max_retries = args.retries
    if args.interval is not None:
        options.polling_interval = args.interval

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=settings.headless)
        try:
            page = await browser.new_page()
            page.set_default_timeout(settings.timeout)
            await page.goto(args.url)

            detected = await detect(page, visual_feedback=settings.visual_feedback)
            if detected.error:
                logger.error("Detection failed: %s", detected.error)
                return 1
            if not detected.captchas:
                console.print("No challenge widgets found.")
                return 0
            if args.no_solve:
                console.print(render_report(detected.captchas))
                return 0

            if not settings.capmonster_api_key:
                logger.error("CAPMONSTER_API_KEY is not set")
                return 1
            solved = await get_solutions(
                detected.captchas,
                settings.capmonster_api_key,
                options=options,
                settings=settings,
            )
            console.print(render_report(detected.captchas, solved))

            if args.inject:
                injected = await inject(
                    page, solved.solutions,
                    visual_feedback=settings.visual_feedback,
                )
                if injected.error:
                    logger.error("Injection failed: %s", injected.error)
                    return 1
                console.print(f"Injected {len(injected.solved)} token(s).")
            return 1 if solved.error else 0
        finally:
            await browser.close()


def main() -> None:
    args = build_parser().parse_args()
    settings = SolverSettings()
    if args.visible:
        settings.headless = False
    setup_logging(
        settings.log_level,
        log_file=settings.log_file,
        secrets=settings.secrets(),
    )
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
