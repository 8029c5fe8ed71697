"""Unit tests for prompt context formatting."""

from ragchat.core.context import (
    MAX_CONTEXT_CHARS,
    TRUNCATION_MARKER,
    build_model_input,
    format_rag_context,
)
from ragchat.core.retrieval import RetrievalResult


def _result(text, **metadata):
    return RetrievalResult(text=text, distance=0.1, metadata=metadata)


class TestFormatRagContext:
    """Tests for format_rag_context."""

    def test_empty_results(self):
        """No results means no injection."""
        assert format_rag_context([]) == ""

    def test_header_precedence(self):
        """Title wins over section path, which wins over source."""
        context = format_rag_context([
            _result("a", title="Title", section_path="Guide > Intro", source="a.md"),
            _result("b", section_path="Guide > Setup", source="b.md"),
            _result("c", source="c.md"),
            _result("d"),
        ])

        assert context == (
            "• Title\na\n\n"
            "• Guide > Setup\nb\n\n"
            "• c.md\nc\n\n"
            "• Source\nd"
        )

    def test_url_suffix(self):
        """A url is appended to the header in parentheses."""
        context = format_rag_context([_result("body", title="Docs", url="https://docs.example.com")])

        assert context == "• Docs (https://docs.example.com)\nbody"

    def test_order_preserved(self):
        """Blocks follow the ranking order."""
        context = format_rag_context([_result("first"), _result("second"), _result("third")])

        assert context.index("first") < context.index("second") < context.index("third")

    def test_truncation(self):
        """Long output is cut at exactly the limit and marked."""
        context = format_rag_context([_result("x" * 9000, title="Big")])

        assert len(context) == MAX_CONTEXT_CHARS + len(TRUNCATION_MARKER)
        assert context.endswith("\n…")
        assert context[:MAX_CONTEXT_CHARS] == ("• Big\n" + "x" * 9000)[:MAX_CONTEXT_CHARS]

    def test_exact_limit_not_truncated(self):
        """Output of exactly the limit is left alone."""
        header = "• Source\n"
        context = format_rag_context([_result("y" * (MAX_CONTEXT_CHARS - len(header)))])

        assert len(context) == MAX_CONTEXT_CHARS
        assert not context.endswith(TRUNCATION_MARKER)

    def test_custom_limit(self):
        """The limit can be configured."""
        context = format_rag_context([_result("abcdefghij")], max_chars=5)

        assert context == "• Sou\n…"


class TestBuildModelInput:
    """Tests for build_model_input."""

    def test_prefixes_context(self):
        assert build_model_input("CTX", "question") == "CTX\n\nquestion"

    def test_empty_context_leaves_text(self):
        assert build_model_input("", "question") == "question"
