"""Per-vendor DOM patterns used by the detection and injection engines.

Supporting another vendor means adding a :class:`VendorPattern` entry to
``VENDOR_PATTERNS``; the engines themselves are vendor-agnostic.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from core.models import CaptchaVendor


@dataclass(frozen=True)
class VendorPattern:
    """Selectors describing how one vendor renders its widget.

    Attributes:
        vendor: Vendor the pattern belongs to.
        iframe_url_fragments: Substrings of the widget iframe ``src``.
        response_input_template: Selector of the hidden response input,
            formatted with ``widget_id``.
        widget_iframe_template: Selector of one widget's iframe, formatted
            with ``widget_id``.
        invisible_selector_template: Selector matching only the invisible
            variant, or ``None`` when the vendor has no such variant.
    """

    vendor: CaptchaVendor
    iframe_url_fragments: Tuple[str, ...]
    response_input_template: str
    widget_iframe_template: str
    invisible_selector_template: Optional[str] = None

    @property
    def iframe_selector(self) -> str:
        """Selector matching every widget iframe of this vendor."""
        return ",".join(
            f"iframe[src*='{fragment}']"
            for fragment in self.iframe_url_fragments
        )

    def response_input_selector(self, widget_id: str) -> str:
        return self.response_input_template.format(widget_id=widget_id)

    def widget_iframe_selector(self, widget_id: str) -> str:
        return self.widget_iframe_template.format(widget_id=widget_id)

    def invisible_selector(self, widget_id: str) -> Optional[str]:
        if not self.invisible_selector_template:
            return None
        return self.invisible_selector_template.format(widget_id=widget_id)


TURNSTILE_PATTERN = VendorPattern(
    vendor=CaptchaVendor.TURNSTILE,
    iframe_url_fragments=(
        "challenges.cloudflare.com/cdn-cgi/challenge-platform",
    ),
    response_input_template="input[id='cf-chl-widget-{widget_id}_response']",
    widget_iframe_template="iframe[id*='cf-chl-widget-{widget_id}']",
)

VENDOR_PATTERNS: Dict[CaptchaVendor, VendorPattern] = {
    CaptchaVendor.TURNSTILE: TURNSTILE_PATTERN,
}
