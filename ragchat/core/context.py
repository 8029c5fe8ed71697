"""Prompt context built from retrieved passages."""

from typing import Sequence

from ragchat.core.retrieval import RetrievalResult

MAX_CONTEXT_CHARS = 8000
TRUNCATION_MARKER = "\n…"


def _block_header(metadata: dict) -> str:
    title = (
        metadata.get("title")
        or metadata.get("section_path")
        or metadata.get("source")
        or "Source"
    )
    url = metadata.get("url")
    return f"• {title} ({url})" if url else f"• {title}"


def format_rag_context(
    results: Sequence[RetrievalResult],
    max_chars: int = MAX_CONTEXT_CHARS,
) -> str:
    """Join retrieved passages into a single prompt prefix.

    Returns an empty string when there is nothing to inject. Output longer
    than ``max_chars`` is cut at exactly ``max_chars`` characters and
    suffixed with an ellipsis line.
    """
    if not results:
        return ""

    blocks = [f"{_block_header(r.metadata or {})}\n{r.text}" for r in results]
    joined = "\n\n".join(blocks)
    if len(joined) > max_chars:
        return joined[:max_chars] + TRUNCATION_MARKER
    return joined


def build_model_input(context: str, text: str) -> str:
    """Prefix the user's text with RAG context, if any."""
    if context:
        return f"{context}\n\n{text}"
    return text
