"""
Browser module for captcha-bridge.

Runs against a Playwright page to find challenge widgets and to write solved
tokens back into them.

Submodules:
    content: ``DetectionEngine`` and ``InjectionEngine`` plus their leaf
        helpers (``WidgetScanner``, ``VisibilityProbe``, ``ResponseLocator``).
    vendors: Per-vendor DOM selector table.
"""

from .content import detect, inject

__all__ = ["detect", "inject"]
