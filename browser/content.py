"""Widget detection and token injection on a live Playwright page.

The engines run on the page's event loop.  Their only suspension point
before touching the DOM is the wait for the document to reach the
``DOMContentLoaded`` state, which Playwright resolves immediately when the
page is already past it.

Usage::

    result = await detect(page)
    ...
    injected = await inject(page, solutions)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core.errors import InjectionError
from core.models import (
    CaptchaInfo,
    CaptchaSolution,
    CaptchaSolved,
    CaptchaVendor,
    ChallengeType,
    DetectResult,
    InjectResult,
)
from browser.vendors import VENDOR_PATTERNS, VendorPattern

logger = logging.getLogger(__name__)

PAINT_BUSY_FILTER = "opacity(60%) hue-rotate(270deg)"  # violet
PAINT_SOLVED_FILTER = "opacity(60%) hue-rotate(90deg)"  # green

_SET_FILTER_JS = "(el, filter) => { el.style.filter = filter; }"
_SET_VALUE_JS = "(el, value) => { el.value = value; }"
_VIEWPORT_SIZE_JS = """() => ({
    width: window.innerWidth || document.documentElement.clientWidth,
    height: window.innerHeight || document.documentElement.clientHeight
})"""


async def wait_until_document_ready(page: Any) -> None:
    """Suspend until the document is interactive or complete."""
    await page.wait_for_load_state("domcontentloaded")


async def paint(element: Any, css_filter: str) -> None:
    """Apply a CSS filter to *element*; failures are logged and dropped."""
    try:
        await element.evaluate(_SET_FILTER_JS, css_filter)
    except Exception as e:
        logger.debug("Could not paint widget: %s", e)


class WidgetScanner:
    """Find widget iframes and derive their identity."""

    def __init__(self, pattern: VendorPattern) -> None:
        self.pattern = pattern

    async def find_iframes(self, page: Any) -> List[Any]:
        return await page.query_selector_all(self.pattern.iframe_selector)

    @staticmethod
    def parse_widget_id(dom_id: Optional[str]) -> str:
        """Return the component of *dom_id* after its last ``-``.

        ``cf-chl-widget-k3x9a`` becomes ``k3x9a``.
        """
        return (dom_id or "").split("-")[-1]

    @staticmethod
    def parse_site_key(src: Optional[str]) -> Optional[str]:
        """Extract the site key from a widget iframe ``src``.

        The last two path segments are the theme and the size; the
        segment before them is the site key.
        """
        chunks = (src or "").split("/")[:-2]
        if not chunks:
            return None
        return chunks[-1] or None


class VisibilityProbe:
    """Decide whether an element lies fully inside the viewport."""

    @staticmethod
    def is_box_in_viewport(
        box: Dict[str, float], viewport: Dict[str, float]
    ) -> bool:
        """Pure geometric check of a bounding box against a viewport.

        Args:
            box: ``{"x", "y", "width", "height"}`` relative to the viewport.
            viewport: ``{"width", "height"}`` of the viewport.
        """
        return (
            box["y"] >= 0
            and box["x"] >= 0
            and box["y"] + box["height"] <= viewport["height"]
            and box["x"] + box["width"] <= viewport["width"]
        )

    async def is_in_viewport(self, page: Any, element: Any) -> bool:
        box = await element.bounding_box()
        if not box:
            # Detached or display:none
            return False
        viewport = page.viewport_size
        if not viewport:
            viewport = await page.evaluate(_VIEWPORT_SIZE_JS)
        return self.is_box_in_viewport(box, viewport)


class ResponseLocator:
    """Find the hidden input that receives a widget's token."""

    def __init__(self, pattern: VendorPattern) -> None:
        self.pattern = pattern

    async def locate(self, page: Any, widget_id: Optional[str]) -> Optional[Any]:
        if not widget_id:
            return None
        return await page.query_selector(
            self.pattern.response_input_selector(widget_id)
        )


class DetectionEngine:
    """Produce a snapshot of the widgets currently on a page.

    Attributes:
        page: Playwright ``Page``.
        patterns: Vendor patterns to scan for; every entry of
            ``VENDOR_PATTERNS`` when not given.
        visual_feedback: Paint detected widgets violet.
    """

    def __init__(
        self,
        page: Any,
        patterns: Optional[Sequence[VendorPattern]] = None,
        visual_feedback: bool = True,
    ) -> None:
        self.page = page
        self.patterns = list(
            patterns if patterns is not None else VENDOR_PATTERNS.values()
        )
        self.visual_feedback = visual_feedback
        self.probe = VisibilityProbe()

    async def _is_invisible(self, pattern: VendorPattern, widget_id: str) -> bool:
        selector = pattern.invisible_selector(widget_id)
        if not widget_id or not selector:
            return False
        return bool(await self.page.query_selector_all(selector))

    async def _extract_info(
        self, pattern: VendorPattern, iframe: Any
    ) -> CaptchaInfo:
        widget_id = WidgetScanner.parse_widget_id(
            await iframe.get_attribute("id")
        )
        site_key = WidgetScanner.parse_site_key(
            await iframe.get_attribute("src")
        )
        response_input = await ResponseLocator(pattern).locate(
            self.page, widget_id
        )
        is_invisible = await self._is_invisible(pattern, widget_id)
        return CaptchaInfo(
            vendor=pattern.vendor,
            challenge_type=(
                ChallengeType.INVISIBLE if is_invisible
                else ChallengeType.CHECKBOX
            ),
            page_url=self.page.url,
            widget_id=widget_id,
            site_key=site_key,
            has_response_element=response_input is not None,
            is_invisible=is_invisible,
            is_in_viewport=await self.probe.is_in_viewport(self.page, iframe),
        )

    async def detect(self) -> DetectResult:
        """Scan the page for widgets of every configured vendor.

        Returns:
            A :class:`DetectResult`.  No widgets is an empty result, not an
            error; any failure while scanning leaves ``captchas`` empty and
            sets ``error``.
        """
        result = DetectResult()
        captchas: List[CaptchaInfo] = []
        iframes: List[Any] = []
        try:
            await wait_until_document_ready(self.page)
            for pattern in self.patterns:
                found = await WidgetScanner(pattern).find_iframes(self.page)
                for iframe in found:
                    captchas.append(await self._extract_info(pattern, iframe))
                iframes.extend(found)
        except Exception as e:
            logger.warning("Widget detection failed: %s", e)
            result.error = e
            return result

        if not captchas:
            return result
        result.captchas = captchas
        logger.info(
            "Detected %d widget(s) on %s", len(captchas), self.page.url,
        )
        if self.visual_feedback:
            for iframe in iframes:
                await paint(iframe, PAINT_BUSY_FILTER)
        return result


class InjectionEngine:
    """Write solved tokens into the page's response inputs.

    Solutions are matched to a :class:`VendorPattern` by vendor; those with
    no registered pattern are skipped.
    """

    def __init__(
        self,
        page: Any,
        patterns: Optional[Mapping[CaptchaVendor, VendorPattern]] = None,
        visual_feedback: bool = True,
    ) -> None:
        self.page = page
        self.patterns = dict(patterns if patterns is not None else VENDOR_PATTERNS)
        self.visual_feedback = visual_feedback

    async def _paint_solved(self, solved: List[CaptchaSolved]) -> None:
        for record in solved:
            pattern = self.patterns[record.vendor]
            try:
                iframe = await self.page.query_selector(
                    pattern.widget_iframe_selector(record.widget_id)
                )
            except Exception as e:
                logger.debug("Could not find widget %s: %s", record.widget_id, e)
                continue
            if iframe:
                await paint(iframe, PAINT_SOLVED_FILTER)

    async def inject(
        self, solutions: Optional[Sequence[CaptchaSolution]]
    ) -> InjectResult:
        """Enter every usable solution into the page.

        The batch is all-or-nothing: a single missing response input
        aborts it with ``error`` set and ``solved`` left empty.

        Args:
            solutions: Solutions from the orchestrator.  Entries for
                unsupported vendors or without a solution are skipped.

        Returns:
            An :class:`InjectResult`.
        """
        result = InjectResult()
        try:
            await wait_until_document_ready(self.page)
            if not solutions:
                result.error = "No solutions provided"
                return result

            solved: List[CaptchaSolved] = []
            for solution in solutions:
                pattern = self.patterns.get(solution.vendor)
                if pattern is None:
                    continue
                if solution.has_solution is not True:
                    continue
                response_input = await ResponseLocator(pattern).locate(
                    self.page, solution.widget_id
                )
                if response_input is None:
                    raise InjectionError(
                        f"No response input for widget {solution.widget_id}",
                        details={"widget_id": solution.widget_id},
                    )
                await response_input.evaluate(_SET_VALUE_JS, solution.token)
                solved.append(
                    CaptchaSolved(
                        vendor=solution.vendor,
                        widget_id=solution.widget_id,
                        is_solved=True,
                        solved_at=datetime.now(timezone.utc),
                    )
                )
        except Exception as e:
            logger.warning("Token injection failed: %s", e)
            result.error = e
            return result

        result.solved = solved
        logger.info("Injected %d token(s)", len(solved))
        if self.visual_feedback:
            await self._paint_solved(solved)
        return result


async def detect(page: Any, visual_feedback: bool = True) -> DetectResult:
    """Detect widgets of every registered vendor on *page*."""
    return await DetectionEngine(page, visual_feedback=visual_feedback).detect()


async def inject(
    page: Any,
    solutions: Optional[Sequence[CaptchaSolution]],
    visual_feedback: bool = True,
) -> InjectResult:
    """Write *solutions* into *page*."""
    engine = InjectionEngine(page, visual_feedback=visual_feedback)
    return await engine.inject(solutions)
