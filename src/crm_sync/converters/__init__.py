"""Markup conversion for synced comment bodies."""

from .bbcode import bbcode_to_html

__all__ = ["bbcode_to_html"]
