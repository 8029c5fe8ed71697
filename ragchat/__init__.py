"""Chat backend with retrieval-augmented generation."""

__version__ = "1.0.0"
