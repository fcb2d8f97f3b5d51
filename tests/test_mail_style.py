"""Tests for mail style analysis, context checks and draft generation."""

import json

import pytest
from conftest import CONTEXT_CHECK, DRAFT, STYLE_ANALYSIS, SUBJECT, b64, gmail_message

from assistant.errors import GatewayError, ValidationError
from assistant.mail_style import (
    DEFAULT_PROFILE,
    MailStyleAnalyzer,
    StyleProfile,
    classify_domain,
    extract_email_content,
    pattern_completeness,
)

PROFILE_JSON = json.dumps({
    "relationship": "colleague",
    "tone": "warm",
    "greeting": "Hey Alice,",
    "closing": "Cheers,",
    "style": "short",
    "context": {"previousTopics": ["budget", "offsite"], "commonTerms": ["ping me"]},
})


@pytest.fixture
def style(mailbox, gateway, cache, no_wait_retry):
    return MailStyleAnalyzer(mailbox, gateway, cache, retry=no_wait_retry)


class TestClassifyDomain:
    @pytest.mark.parametrize("address,expected", [
        ("someone@gmail.com", "personal"),
        ("friend@yahoo.co.uk", "personal"),
        ("prof@cs.stanford.edu", "academic"),
        ("student@ox.ac.uk", "academic"),
        ("clerk@agency.gov", "government"),
        ("officer@army.mil", "government"),
        ("ceo@acme.com", "business"),
    ])
    def test_categories(self, address, expected):
        assert classify_domain(address) == expected

    @pytest.mark.parametrize("address", ["", "no-at-sign", "bob@localhost"])
    def test_unusable_addresses(self, address):
        with pytest.raises(ValidationError):
            classify_domain(address)


class TestExtractEmailContent:
    def test_top_level_and_nested_plain_parts(self):
        message = {"payload": {
            "mimeType": "multipart/mixed",
            "body": {"data": b64("Top. ")},
            "parts": [
                {"mimeType": "multipart/alternative", "parts": [
                    {"mimeType": "text/plain", "body": {"data": b64("Nested plain. ")}},
                    {"mimeType": "text/html", "body": {"data": b64("<p>html</p>")}},
                ]},
                {"mimeType": "text/plain", "body": {"data": b64("Second. ")}},
            ],
        }}
        text = extract_email_content(message)
        assert "Top." in text and "Nested plain." in text and "Second." in text
        assert "html" not in text

    def test_long_bodies_are_capped(self):
        assert len(extract_email_content(gmail_message("m1", "x" * 20_000))) == 10_000

    def test_empty_message(self):
        assert extract_email_content({}) == ""


class TestSearchEmails:
    def test_paginates_and_skips_failed_fetches(self, style, mailbox):
        mailbox.messages = {f"m{i:02d}": gmail_message(f"m{i:02d}", f"note {i}") for i in range(12)}
        mailbox.fail_ids = {"m03"}
        emails = style.search_emails("alice@example.com")
        assert len(emails) == 11
        assert len(mailbox.list_calls) == 3
        assert mailbox.list_calls[0][0] == "to:alice@example.com"

    def test_stops_at_requested_count(self, style, mailbox):
        mailbox.messages = {f"m{i:02d}": gmail_message(f"m{i:02d}", "hi") for i in range(30)}
        assert len(style.search_emails("alice@example.com", max_results=7)) == 7

    def test_results_are_cached(self, style, mailbox):
        mailbox.messages = {"m1": gmail_message("m1", "hello")}
        style.search_emails("alice@example.com")
        style.search_emails("alice@example.com")
        assert len(mailbox.list_calls) == 1

    def test_search_failure_gives_nothing(self, style, mailbox):
        mailbox.fail_list = True
        assert style.search_emails("alice@example.com") == []


class TestAnalyzeEmailContext:
    def test_profile_inferred_from_previous_mail(self, style, mailbox, gateway):
        mailbox.messages = {"m1": gmail_message("m1", "Hey Alice, budget looks good. Cheers")}
        gateway.on(STYLE_ANALYSIS, PROFILE_JSON)
        profile = style.analyze_email_context("alice@example.com")
        assert profile.greeting == "Hey Alice,"
        assert profile.context.previousTopics == ["budget", "offsite"]
        style.analyze_email_context("alice@example.com")
        assert len(gateway.prompts_for(STYLE_ANALYSIS)) == 1

    def test_long_history_is_truncated_with_a_marker(self, style, mailbox, gateway):
        mailbox.messages = {f"m{i}": gmail_message(f"m{i}", "y" * 3_000) for i in range(4)}
        gateway.on(STYLE_ANALYSIS, PROFILE_JSON)
        style.analyze_email_context("alice@example.com")
        assert "[Truncated - 4 total emails]" in gateway.prompts_for(STYLE_ANALYSIS)[0]

    def test_domain_heuristic_without_history(self, style, cache):
        profile = style.analyze_email_context("pal@gmail.com")
        assert profile.relationship == "personal"
        assert profile.greeting == "Hi there,"
        entry = cache.peek("style_pal@gmail.com")
        assert entry.expires_at - entry.created_at == pytest.approx(1800)

    def test_failed_inference_uses_heuristic(self, style, mailbox, gateway):
        mailbox.messages = {"m1": gmail_message("m1", "hello")}
        profile = style.analyze_email_context("dean@univ.edu")
        assert profile.relationship == "academic"
        assert len(gateway.prompts_for(STYLE_ANALYSIS)) == 3

    def test_stale_profile_preferred_when_inference_fails(self, style, mailbox, cache, ticks):
        stale = StyleProfile(greeting="Yo,", relationship="old friend")
        cache.set("style_alice@example.com", stale, ttl=10)
        ticks.advance(20)
        mailbox.messages = {"m1": gmail_message("m1", "hello")}
        assert style.analyze_email_context("alice@example.com").greeting == "Yo,"

    def test_invalid_recipient_gets_default_profile(self, style):
        profile = style.analyze_email_context("not-an-address")
        assert profile == DEFAULT_PROFILE
        assert profile is not DEFAULT_PROFILE


class TestContextCompleteness:
    def test_model_verdict(self, style, gateway):
        gateway.on(CONTEXT_CHECK, '{"hasAllContext": false, "missingInfo": "which report"}')
        verdict = style.check_context_completeness("send the report")
        assert verdict.hasAllContext is False
        assert verdict.missingInfo == "which report"

    def test_null_string_means_nothing_missing(self, style, gateway):
        gateway.on(CONTEXT_CHECK, '{"hasAllContext": true, "missingInfo": "null"}')
        assert style.check_context_completeness("lunch friday at noon").missingInfo is None

    @pytest.mark.parametrize("purpose,missing", [
        ("tell him I'm running late", "who this person is"),
        ("update on the plan", "which plan specifically"),
        ("move our meeting", "which meeting"),
        ("ask the teacher about homework", "which teacher"),
    ])
    def test_pattern_fallback(self, style, purpose, missing):
        verdict = style.check_context_completeness(purpose)
        assert verdict.hasAllContext is False
        assert verdict.missingInfo == missing

    def test_pattern_fallback_complete(self):
        assert pattern_completeness("Lunch with Dana on Friday").hasAllContext is True


class TestGenerateHumanizedEmail:
    def test_subject_and_body(self, style, gateway):
        gateway.on(DRAFT, "Subject: Budget approved\n\nHey Alice,\n\nQ3 is approved.\n\nCheers,")
        subject, body = style.generate_humanized_email("alice@example.com", "Q3 budget approved", DEFAULT_PROFILE)
        assert subject == "Budget approved"
        assert body.startswith("Hey Alice,")

    def test_missing_subject_is_generated(self, style, gateway):
        gateway.on(DRAFT, "Hey Alice,\n\nQ3 is approved.")
        gateway.on(SUBJECT, "Subject: Good news on Q3")
        subject, _ = style.generate_humanized_email("alice@example.com", "Q3 budget approved", DEFAULT_PROFILE)
        assert subject == "Good news on Q3"

    def test_missing_info_is_mentioned_in_prompt(self, style, gateway):
        gateway.on(DRAFT, "Subject: Hi\n\nBody")
        style.generate_humanized_email("a@b.com", "tell him", DEFAULT_PROFILE, missing_info="who this person is")
        assert "missing some context: who this person is" in gateway.prompts_for(DRAFT)[0]

    def test_failure_after_retries(self, style, gateway):
        with pytest.raises(GatewayError):
            style.generate_humanized_email("a@b.com", "anything", DEFAULT_PROFILE)
        assert len(gateway.prompts_for(DRAFT)) == 3

    def test_subject_only_draft_is_rejected(self, style, gateway):
        gateway.on(DRAFT, "Subject: Hi")
        with pytest.raises(GatewayError):
            style.generate_humanized_email("a@b.com", "anything", DEFAULT_PROFILE)


def test_subject_fallback_uses_first_words(style):
    assert style.generate_natural_subject("Lunch next week with the team") == "Quick update - Lunch next week..."
