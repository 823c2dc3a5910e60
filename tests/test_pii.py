"""Tests for PII scrubbing."""

from property_sales.pii import (
    EMAIL_PATTERN,
    scrub_completion,
    scrub_pii,
    scrub_prompt,
)


class TestScrubPII:
    def test_email(self):
        assert scrub_pii("Contact sarah.j@email.com today") == "Contact [EMAIL] today"

    def test_phone_formats(self):
        assert scrub_pii("Call +1 555-123-4567") == "Call [PHONE]"
        assert scrub_pii("Call (555) 123-4567") == "Call [PHONE]"
        assert scrub_pii("Call 5551234567") == "Call [PHONE]"

    def test_ssn(self):
        assert scrub_pii("SSN 123-45-6789") == "SSN [SSN]"

    def test_credit_card(self):
        assert scrub_pii("Card 4111 1111 1111 1111") == "Card [CREDIT_CARD]"

    def test_empty_text(self):
        assert scrub_pii("") == ""

    def test_custom_patterns(self):
        text = "mike.chen@email.com or 555-123-4567"
        assert scrub_pii(text, [EMAIL_PATTERN]) == "[EMAIL] or 555-123-4567"

    def test_no_pii_unchanged(self):
        text = "Offer of $322,000 on 123 Maple Street"
        assert scrub_pii(text) == text


def test_prompt_and_completion_helpers():
    assert scrub_prompt("Lead email: a@b.co") == "Lead email: [EMAIL]"
    assert scrub_completion("Reach me at a@b.co") == "Reach me at [EMAIL]"
