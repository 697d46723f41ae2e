"""Tests for rule-based classification.

Tests the tag cascade, extractive summaries, context hints and the
RuleClassifier's purity.
"""

import pytest

from notifier.classifier.rules import (
    CONTEXT_HINTS,
    ELLIPSIS,
    EMPTY_SUMMARY,
    NO_SENTENCE_TOKENS,
    SUMMARY_HARD_CAP,
    SUMMARY_WORD_BUDGET,
    TAG_RULES,
    RuleClassifier,
    cap_words,
    context_hint,
    match_tag,
    summarize,
)
from notifier.classifier.types import Tag


@pytest.fixture
def classifier() -> RuleClassifier:
    """Return a RuleClassifier."""
    return RuleClassifier()


# =============================================================================
# Rule table
# =============================================================================


class TestTagRules:
    """Tests for the TAG_RULES table itself."""

    def test_priorities_unique(self) -> None:
        """Test that no two rules share a priority."""
        priorities = [rule.priority for rule in TAG_RULES]
        assert len(priorities) == len(set(priorities))

    def test_table_ordered_by_priority(self) -> None:
        """Test that the table is evaluated in priority order."""
        priorities = [rule.priority for rule in TAG_RULES]
        assert priorities == sorted(priorities)

    def test_each_tag_once(self) -> None:
        """Test that every non-default tag has exactly one rule."""
        tags = [rule.tag for rule in TAG_RULES]
        assert sorted(tags) == sorted([Tag.URGENT, Tag.ACTION_REQUIRED, Tag.FYI])

    def test_context_hints_non_empty(self) -> None:
        """Test that every hint has a usable summary."""
        for _, hint in CONTEXT_HINTS:
            assert hint.endswith(".")
            assert len(hint.split()) <= SUMMARY_HARD_CAP


# =============================================================================
# Tag cascade
# =============================================================================


class TestMatchTag:
    """Tests for match_tag."""

    def test_urgent(self) -> None:
        """Test that urgency keywords select Urgent."""
        assert match_tag("", "urgent deadline tomorrow") == (Tag.URGENT, 1)

    def test_action(self) -> None:
        """Test that request phrasing selects ActionRequired."""
        tag, priority = match_tag("", "Could you review the draft?")
        assert tag == Tag.ACTION_REQUIRED
        assert priority == 2

    def test_fyi(self) -> None:
        """Test that informational phrasing selects FYI."""
        assert match_tag("", "Quick heads up on the office move.")[0] == Tag.FYI

    def test_default(self) -> None:
        """Test that text matching nothing is NoActionNeeded."""
        assert match_tag("Lunch", "The cafeteria menu changed.") == (Tag.NO_ACTION_NEEDED, None)

    def test_higher_priority_wins(self) -> None:
        """Test that Urgent beats ActionRequired when both match."""
        assert match_tag("", "Please review the contract, it is urgent.")[0] == Tag.URGENT

    def test_subject_participates(self) -> None:
        """Test that the subject is matched together with the body."""
        assert match_tag("FYI: new office hours", "The office opens at nine.")[0] == Tag.FYI

    def test_case_insensitive(self) -> None:
        """Test that matching ignores case."""
        assert match_tag("", "URGENT: SERVER DOWN")[0] == Tag.URGENT

    def test_word_boundaries(self) -> None:
        """Test that keywords don't fire inside longer words."""
        assert match_tag("", "The new design is live.")[0] == Tag.NO_ACTION_NEEDED

    def test_multi_word_phrase_spans_whitespace(self) -> None:
        """Test that phrases match across line breaks and repeated spaces."""
        assert match_tag("", "This is time\n  sensitive.")[0] == Tag.URGENT


# =============================================================================
# Summaries
# =============================================================================


class TestSummarize:
    """Tests for summarize and cap_words."""

    def test_first_sentence_with_filler_removed(self) -> None:
        """Test that the first sentence is used with filler words dropped."""
        text = "Please confirm your availability for the interview on Monday."
        assert summarize(text) == "Confirm your availability for the interview on Monday."

    def test_short_first_sentence_borrows_next(self) -> None:
        """Test that a very short opening sentence pulls in the next one."""
        text = "Hi. The server is down again. Restart it."
        assert summarize(text) == "Hi. The server is down again."

    def test_no_sentence_punctuation(self) -> None:
        """Test the first-tokens fallback for unpunctuated text."""
        text = " ".join(f"w{i}" for i in range(30))
        summary = summarize(text)
        assert summary.endswith(ELLIPSIS)
        assert len(summary.split()) == NO_SENTENCE_TOKENS

    def test_long_sentence_capped(self) -> None:
        """Test that a long first sentence is capped at the word budget."""
        text = " ".join(["report"] * 60) + "."
        summary = summarize(text)
        assert len(summary.split()) <= SUMMARY_WORD_BUDGET
        assert summary.endswith(ELLIPSIS)

    def test_empty(self) -> None:
        """Test the placeholder summary for empty text."""
        assert summarize("   ") == EMPTY_SUMMARY

    def test_cap_words_under_limit(self) -> None:
        """Test that text under the limit is only whitespace-normalized."""
        assert cap_words("a  b\nc", 5) == "a b c"

    def test_cap_words_strips_trailing_punctuation(self) -> None:
        """Test that a cut never leaves a dangling comma."""
        assert cap_words("one, two, three", 2) == f"one, two{ELLIPSIS}"


class TestContextHint:
    """Tests for context_hint."""

    def test_one_time_password(self) -> None:
        """Test the OTP category."""
        hint = context_hint("Your code", "Your one-time password is [PHONE].")
        assert hint == "One-time password received for account verification."

    def test_invoice(self) -> None:
        """Test the invoice category."""
        assert context_hint("", "Your invoice for March is attached.") == (
            "Payment or invoice details received."
        )

    def test_subscription_cancellation_before_generic_cancel(self) -> None:
        """Test that the specific subscription hint wins over generic cancellation."""
        assert context_hint("", "Your subscription cancelled successfully.") == (
            "Subscription cancellation confirmed."
        )

    def test_generic_cancellation(self) -> None:
        """Test the generic cancellation category."""
        assert context_hint("Standup", "Tomorrow's standup is cancelled.") == (
            "Meeting or event has been cancelled."
        )

    def test_no_hint(self) -> None:
        """Test that unrecognized text has no hint."""
        assert context_hint("Lunch", "Lunch on Thursday?") is None


# =============================================================================
# RuleClassifier
# =============================================================================


class TestRuleClassifier:
    """Tests for RuleClassifier.classify."""

    def test_classifies_action(self, classifier: RuleClassifier) -> None:
        """Test a typical action request end to end."""
        result = classifier.classify(
            "Interview", "Please confirm your availability for the interview on Monday."
        )
        assert result.tag == Tag.ACTION_REQUIRED
        assert result.summary == "Confirm your availability for the interview on Monday."
        assert result.method == "rules"

    def test_empty_text(self, classifier: RuleClassifier) -> None:
        """Test that empty text gets the placeholder and default tag."""
        for text in ("", "   "):
            result = classifier.classify("Urgent!", text)
            assert result.summary == EMPTY_SUMMARY
            assert result.tag == Tag.NO_ACTION_NEEDED

    def test_pure(self, classifier: RuleClassifier) -> None:
        """Test that identical input gives identical output."""
        args = ("Status", "Quick heads up: the deploy finished without errors.")
        assert classifier.classify(*args) == classifier.classify(*args)
        assert classifier.classify(*args) == RuleClassifier().classify(*args)

    def test_summary_within_hard_cap(self, classifier: RuleClassifier) -> None:
        """Test that summaries never exceed the hard word cap."""
        text = ". ".join(["short"] * 80) + "."
        result = classifier.classify("", text)
        assert len(result.summary.split()) <= SUMMARY_HARD_CAP

    def test_to_dict(self, classifier: RuleClassifier) -> None:
        """Test the JSON-friendly form."""
        result = classifier.classify("", "urgent deadline tomorrow")
        assert result.to_dict() == {
            "summary": result.summary,
            "tag": "Urgent",
            "method": "rules",
        }
