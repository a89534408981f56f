"""Prompt queue driver for a chat-driven agent in a debuggable desktop app."""

__version__ = "0.1.0"
