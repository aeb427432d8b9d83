"""AudioScholar lecture recording and summarization service."""

__version__ = "0.4.0"
