"""Upload images pasted into Markdown documents and relink them."""

__version__ = "0.3.0"
