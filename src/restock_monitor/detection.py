"""
Detection Classifier module for the restock monitor.

Inspects an already-fetched page (content, HTTP status and final URL) for
observable signs that automated access was challenged or blocked. The
classifier performs no I/O; it only looks at what the page driver returned.

Checks run in a fixed priority order and the first match wins, so a
confirmed interactive challenge always outranks a softer heuristic:

1. captcha markup in the content
2. HTTP 403 or 429
3. verification/redirect URL
4. content shorter than the minimum length
5. no product-page structure
"""

import re
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .enums import DetectionSignal
from .models import DetectionEvent

CAPTCHA_PATTERN = re.compile(r"baxia-dialog|nc_wrapper|captcha", re.IGNORECASE)
REDIRECT_PATTERN = re.compile(r"sec\.|verify", re.IGNORECASE)
HEADING_PATTERN = re.compile(r"<h1", re.IGNORECASE)
PRODUCT_PATTERN = re.compile(r"product", re.IGNORECASE)

BLOCK_STATUS_CODES = frozenset({403, 429})


class DetectionClassifier:
    """Ordered, first-match-wins classifier for anti-automation signals."""

    def __init__(
        self,
        min_content_length: int = 500,
        captcha_pattern: re.Pattern = CAPTCHA_PATTERN,
        redirect_pattern: re.Pattern = REDIRECT_PATTERN,
        product_patterns: tuple[re.Pattern, ...] = (HEADING_PATTERN, PRODUCT_PATTERN),
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._min_content_length = min_content_length
        self._captcha_pattern = captcha_pattern
        self._redirect_pattern = redirect_pattern
        self._product_patterns = product_patterns
        self._logger = logger

        self._checks: list[tuple[DetectionSignal, Callable[[str, Optional[int], str], Optional[str]]]] = [
            (DetectionSignal.CAPTCHA, self._check_captcha),
            (DetectionSignal.BLOCK_403, self._check_block_status),
            (DetectionSignal.REDIRECT, self._check_redirect),
            (DetectionSignal.EMPTY_PAGE, self._check_empty_page),
            (DetectionSignal.MISSING_DATA, self._check_missing_data),
        ]

    def classify(
        self,
        content: str,
        http_status: Optional[int],
        current_url: str,
    ) -> DetectionEvent:
        """
        Classify a fetched page.

        A check that raises is treated as not matched and classification
        moves on to the next check.

        Args:
            content: Rendered page content
            http_status: Status of the main navigation response, if any
            current_url: URL the driver ended up on

        Returns:
            The first matching DetectionEvent, or a not-detected event
        """
        for signal, check in self._checks:
            try:
                details = check(content, http_status, current_url)
            except Exception as e:
                if self._logger:
                    self._logger.debug(
                        "DetectionClassifier",
                        f"Check {signal.value} failed, treated as not matched",
                        {"error_type": type(e).__name__, "error_message": str(e)},
                    )
                continue
            if details is not None:
                return DetectionEvent(detected=True, signal=signal, details=details)

        return DetectionEvent.clean()

    def _check_captcha(self, content: str, http_status: Optional[int], current_url: str) -> Optional[str]:
        match = self._captcha_pattern.search(content)
        if match:
            return f"CAPTCHA element detected ({match.group(0)})"
        return None

    def _check_block_status(self, content: str, http_status: Optional[int], current_url: str) -> Optional[str]:
        if http_status in BLOCK_STATUS_CODES:
            return f"HTTP {http_status}"
        return None

    def _check_redirect(self, content: str, http_status: Optional[int], current_url: str) -> Optional[str]:
        if self._redirect_pattern.search(current_url):
            return f"Redirected to {current_url}"
        return None

    def _check_empty_page(self, content: str, http_status: Optional[int], current_url: str) -> Optional[str]:
        if len(content) < self._min_content_length:
            return f"Page content too short ({len(content)} chars)"
        return None

    def _check_missing_data(self, content: str, http_status: Optional[int], current_url: str) -> Optional[str]:
        if any(pattern.search(content) for pattern in self._product_patterns):
            return None
        return "No product data found on page"
