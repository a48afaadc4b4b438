"""HTML to plain-text prompt conversion using trafilatura."""

from __future__ import annotations

import logging
import re

import trafilatura

logger = logging.getLogger(__name__)

_HTML_MARKERS = re.compile(r"<\s*(html|body|div|p|br|table|span)\b", re.IGNORECASE)


def looks_like_html(text: str) -> bool:
    return bool(_HTML_MARKERS.search(text))


class PromptConverter:
    """Turn a stored body into the text sent to the model."""

    def convert(self, body: str) -> str:
        """Return ``body`` as prompt text.

        Strategy:
        1. Plain text passes through unchanged.
        2. HTML goes through trafilatura (favor_recall=True for email layouts).
        3. If trafilatura fails or finds nothing, the original body is used.
        """
        if not looks_like_html(body):
            return body

        try:
            result = trafilatura.extract(
                body,
                output_format="txt",
                favor_recall=True,
                include_links=True,
                include_tables=True,
            )
        except Exception as e:
            logger.warning("Trafilatura extraction failed: %s", e)
            result = None

        return result or body
