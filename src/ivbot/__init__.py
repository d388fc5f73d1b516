"""Instant View rhash bot: resolves reader-view templates for pasted article links."""

__version__ = "0.1.0"
