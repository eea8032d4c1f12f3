"""Scheduled mailbox automation with upstream retry, circuit breaking and caching."""

__version__ = "0.1.0"
