"""Unit tests for model response validation and sanitization."""

import pytest

from ragchat.core.normalizer import (
    COERCED_ARRAY_FIELDS,
    EMITTED_ARRAY_FIELDS,
    MalformedResponseError,
    ValidationFailure,
    coerce_response,
    ensure_array_fields,
    sanitize_response,
    text_from_content,
)


class TestCoerceResponse:
    """Tests for coerce_response."""

    def test_bare_string(self):
        """A bare string becomes a record with a generated id."""
        check = coerce_response("Hello")

        assert check.ok
        assert check.record["text"] == "Hello"
        assert check.record["messageId"].startswith("msg_")
        assert check.record["content"] == "Hello"

    @pytest.mark.parametrize("raw", [None, 42, ["a", "b"], 3.5])
    def test_non_object_rejected(self, raw):
        """Anything that is not a mapping is malformed."""
        check = coerce_response(raw)

        assert not check.ok
        assert check.failure is ValidationFailure.NOT_AN_OBJECT

    def test_text_derived_from_content(self):
        """Missing text is joined from content parts."""
        check = coerce_response({
            "messageId": "m1",
            "content": [{"type": "text", "text": "line one"}, {"type": "text", "text": "line two"}],
        })

        assert check.record["text"] == "line one\nline two"

    def test_existing_text_kept(self):
        check = coerce_response({"text": "kept", "content": [{"text": "ignored"}]})

        assert check.record["text"] == "kept"

    def test_generated_ids_are_unique(self):
        first = coerce_response("Hello").record["messageId"]
        second = coerce_response("Hello").record["messageId"]

        assert first != second

    def test_input_not_mutated(self):
        raw = {"content": [{"text": "a"}]}

        coerce_response(raw)

        assert "text" not in raw


class TestTextFromContent:
    """Tests for text_from_content."""

    def test_mixed_parts(self):
        """Mappings contribute .text, other values their string form."""
        assert text_from_content([{"text": "a"}, "b", {"type": "image"}, None, 7]) == "a\nb\n\n\n7"

    def test_empty(self):
        assert text_from_content([]) == ""


class TestSanitizeResponse:
    """Tests for sanitize_response."""

    def test_strips_internal_keys(self):
        """Prompt-only fields leave both records."""
        user_message = {"text": "hi", "ragPrompt": "secret", "requestPrompt": "p"}
        check = sanitize_response(
            {"text": "answer", "ragContext": "ctx", "ragPrompt": "secret"},
            user_message,
        )

        assert check.ok
        assert "ragContext" not in check.record
        assert "ragPrompt" not in check.record
        assert user_message == {"text": "hi"}

    @pytest.mark.parametrize("field", COERCED_ARRAY_FIELDS)
    def test_coerces_non_list_fields(self, field):
        """Non-list values of list-shaped fields become []."""
        check = sanitize_response({"text": "answer", field: {"not": "a list"}})

        assert check.record[field] == []

    def test_leaves_lists_alone(self):
        check = sanitize_response({"text": "answer", "citations": [{"id": 1}]})

        assert check.record["citations"] == [{"id": 1}]

    def test_rederives_text(self):
        """Non-string text is rebuilt from content."""
        check = sanitize_response({"text": 123, "content": [{"text": "from content"}]})

        assert check.record["text"] == "from content"

    def test_missing_text_rejected(self):
        """No text and no content is a missing-text failure."""
        check = sanitize_response({})

        assert check.failure is ValidationFailure.MISSING_TEXT
        with pytest.raises(MalformedResponseError) as exc_info:
            check.unwrap()
        assert exc_info.value.status_code == 500
        assert "missing text" in str(exc_info.value)

    def test_content_object_does_not_supply_text(self):
        """A coerced content field cannot provide text."""
        check = sanitize_response({"content": {"text": "hidden"}})

        assert check.failure is ValidationFailure.MISSING_TEXT

    def test_response_copied(self):
        response = {"text": "answer", "files": "oops"}

        check = sanitize_response(response)

        assert response["files"] == "oops"
        assert check.record is not response


class TestEnsureArrayFields:
    """Tests for ensure_array_fields."""

    def test_defaults_every_field(self):
        record = {"text": "x", "sources": None, "spans": "bad", "files": [1]}

        ensure_array_fields(record)

        for field in EMITTED_ARRAY_FIELDS:
            assert isinstance(record[field], list)
        assert record["files"] == [1]

    def test_none_record(self):
        ensure_array_fields(None)
