"""Unfurl cleaner: minimal link previews reposted as the original author."""

__version__ = "0.1.0"
