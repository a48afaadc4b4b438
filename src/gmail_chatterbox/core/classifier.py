"""Subject-line classifier for the chatterbox tagging convention.

Grammar (case-insensitive)::

    <keyword> [":" <uuid>] <title>

``chatterbox: 11111111-2222-3333-4444-555555555555 Design Review`` continues
that conversation; ``chatterbox Design Review`` starts a new one.
"""

from __future__ import annotations

import re
from functools import lru_cache

from gmail_chatterbox.core.models import SubjectClassification

DEFAULT_KEYWORD = "chatterbox"

_UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


@lru_cache(maxsize=8)
def _subject_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(keyword)}\s*(?::\s*({_UUID}))?\s*(.*)$",
        re.IGNORECASE | re.DOTALL,
    )


def classify(subject: str, keyword: str = DEFAULT_KEYWORD) -> SubjectClassification:
    """Classify a subject line.

    Args:
        subject: Raw subject header value.
        keyword: Tag keyword the subject must start with.

    Returns:
        SubjectClassification; the conversation id is lower-cased, the title
        trimmed. Untagged subjects carry no id and an empty title.
    """
    match = _subject_pattern(keyword).match(subject or "")
    if not match:
        return SubjectClassification(is_tagged=False)

    conversation_id = match.group(1)
    return SubjectClassification(
        is_tagged=True,
        conversation_id=conversation_id.lower() if conversation_id else None,
        title=match.group(2).strip(),
    )
