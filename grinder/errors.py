"""Exception types shared across the pipeline."""

from __future__ import annotations


class GrinderError(Exception):
    """Base error for the summarize pipeline"""


class BrowseError(GrinderError):
    """Browser-driven fetch failed for a non-specific reason"""

    code = "BROWSE_ERROR"


class CaptchaError(BrowseError):
    """A CAPTCHA wall was detected on the archive mirror or the live page"""

    code = "CAPTCHA"


class BrowseTimeoutError(BrowseError):
    """Navigation or network-idle wait timed out"""

    code = "TIMEOUT"


class BrowserClosedError(BrowseError):
    """The browser window is gone; the whole run must stop"""

    code = "BROWSER_CLOSED"

    def __init__(self, message: str = "Playwright browser window is closed"):
        super().__init__(message)


class VerificationError(GrinderError):
    """The verification model returned something unusable"""


class StoreError(GrinderError):
    """Row store read/write failure"""
