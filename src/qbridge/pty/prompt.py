"""Prompt detection — flag output chunks that ask the user to confirm something."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# Matched against each chunk on its own. A phrase split across two reads
# is not detected.
PROMPT_PATTERN = re.compile(
    r"\(y/n\)|Do you want to continue\?|Can I|Should I|Allow|Trust|Proceed",
    re.IGNORECASE,
)


def is_prompt(text: str) -> bool:
    """Return True if ``text`` looks like a yes/no/trust confirmation request."""
    matched = PROMPT_PATTERN.search(text) is not None
    if matched:
        logger.debug("Prompt detected: %r", text[:200])
    return matched


def classify(payload: bytes | str) -> bool:
    """Classify a raw output chunk.

    Bytes are decoded leniently for matching only; the payload itself is
    never modified.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return is_prompt(payload)
