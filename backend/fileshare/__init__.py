"""File sharing backend: uploads, reconciled listings and streamed downloads."""

__version__ = "1.0.0"
