"""Bracket-tag (BBCode-style) comment markup to HTML.

CRM comment bodies use ``[URL=...]``, ``[FONT=...]``, ``[IMG ...]`` style
tags.  ``bbcode_to_html`` rewrites every bracket tag into an HTML tag.
Content outside the tags is passed through verbatim: this is a format
translator, not a sanitizer.
"""

import re

# Any [tag] or [/tag]; brackets may not nest.
_TAG_PATTERN = re.compile(r"\[(/?[^\[\]]+)\]")

# Tag name -> inline style property of the emitted span.
_SPAN_STYLES = (
    ("FONT", "font"),
    ("SIZE", "font-size"),
    ("COLOR", "color"),
)


def _tag_value(args: str) -> str:
    """Raw text after the first ``=`` of a tag."""
    return args.partition("=")[2]


def _rewrite_tag(match: re.Match) -> str:
    args = match.group(1)

    if args.startswith("/URL"):
        return "</a>"
    if args.startswith("URL="):
        return f'<a href="{args[4:]}">'

    for name, prop in _SPAN_STYLES:
        if f"/{name}" in args:
            return "</span>"
        if name in args:
            return f'<span style="{prop}: {_tag_value(args)};">'

    # [IMG attrs]url[/IMG] -> <img attrs src="url"/>
    if "/IMG" in args:
        return '"/>'
    if "IMG" in args:
        attrs = args[3:].strip()
        return f'<img {attrs} src="' if attrs else '<img src="'

    if "/TABLE" in args:
        return "</table>"
    if "TABLE" in args:
        return "<table>"

    return f"<{args}>"


def bbcode_to_html(text: str) -> str:
    """Translate bracket-tag markup into HTML.

    Newlines become ``</br>`` line breaks; unknown tags pass through as
    same-named angle-bracket tags.

    >>> bbcode_to_html("Hello[URL=http://x]click[/URL]\\nworld")
    'Hello<a href="http://x">click</a></br>\\nworld'
    """
    text = text.replace("\n", "</br>\n")
    return _TAG_PATTERN.sub(_rewrite_tag, text)
