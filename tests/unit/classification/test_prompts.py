"""
Unit tests for prompt building.
"""

import pytest

from inbox_triage.classification.prompts import (
    build_classification_prompt,
    build_user_message,
    get_system_prompt,
    truncate_content,
)
from inbox_triage.classification.schemas import ClassificationContext
from inbox_triage.version import PROMPT_VERSION


class TestPrompts:

    def test_current_prompt_version_registered(self):
        assert "category" in get_system_prompt(PROMPT_VERSION)

    def test_unknown_version(self):
        with pytest.raises(ValueError, match="Unknown prompt version"):
            get_system_prompt("inbox-prompt-0.1")

    def test_truncation(self):
        assert truncate_content("x" * 5000, max_length=4000) == "x" * 4000
        assert truncate_content(None) == ""

    def test_user_message_includes_context(self):
        context = ClassificationContext(areas=["Health", "Work"], projects=["Launch"], source="email")

        message = build_user_message("Book a dentist appointment", context)

        assert "Book a dentist appointment" in message
        assert "Source: email" in message
        assert "User's areas: Health, Work" in message
        assert "User's active projects: Launch" in message

    def test_user_message_without_context(self):
        message = build_user_message("Read later")
        assert "Context:" not in message

    def test_build_classification_prompt(self):
        system_prompt, user_message = build_classification_prompt("Buy milk")
        assert system_prompt == get_system_prompt()
        assert "Buy milk" in user_message
