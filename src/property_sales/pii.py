"""PII scrubbing utilities for telemetry safety.

Lead messages carry buyer contact details. Everything recorded in traces or
logs from prompts and completions passes through here first.

PII Categories:
- Email addresses
- Phone numbers
- US social security numbers
- Credit card numbers
"""

import re
from dataclasses import dataclass


@dataclass
class PIIPattern:
    """Pattern definition for PII detection."""

    name: str
    pattern: re.Pattern[str]
    replacement: str


EMAIL_PATTERN = PIIPattern(
    name="email",
    pattern=re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    replacement="[EMAIL]",
)

# Runs before SSN so that ten-digit phone numbers are not half-matched
PHONE_PATTERN = PIIPattern(
    name="phone",
    pattern=re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b"),
    replacement="[PHONE]",
)

SSN_PATTERN = PIIPattern(
    name="ssn",
    pattern=re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    replacement="[SSN]",
)

CREDIT_CARD_PATTERN = PIIPattern(
    name="credit_card",
    pattern=re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),
    replacement="[CREDIT_CARD]",
)

DEFAULT_PATTERNS = [
    EMAIL_PATTERN,
    CREDIT_CARD_PATTERN,
    PHONE_PATTERN,
    SSN_PATTERN,
]


def scrub_pii(text: str, patterns: list[PIIPattern] | None = None) -> str:
    """Scrub PII from text using specified patterns.

    Args:
        text: Input text that may contain PII
        patterns: List of PII patterns to apply (defaults to all patterns)

    Returns:
        Text with PII replaced by placeholders
    """
    if not text:
        return text

    result = text
    for pii_pattern in patterns or DEFAULT_PATTERNS:
        result = pii_pattern.pattern.sub(pii_pattern.replacement, result)
    return result


def scrub_prompt(prompt: str) -> str:
    """Scrub PII from an LLM prompt."""
    return scrub_pii(prompt)


def scrub_completion(completion: str) -> str:
    """Scrub PII from an LLM completion."""
    return scrub_pii(completion)
