"""Render model-written markdown to sanitized, syntax-highlighted HTML."""

from __future__ import annotations

import markdown
import nh3

_ALLOWED_TAGS = {
    "a", "blockquote", "br", "code", "div", "em", "h1", "h2", "h3", "h4", "h5", "h6",
    "hr", "li", "ol", "p", "pre", "span", "strong", "table", "tbody", "td", "th",
    "thead", "tr", "ul",
}
_ALLOWED_ATTRIBUTES = {
    "a": {"href", "title"},
    "code": {"class"},
    "div": {"class", "style"},
    "pre": {"class", "style"},
    "span": {"class", "style"},
    "td": {"style"},
    "th": {"style"},
}
_EXTENSION_CONFIGS = {
    "codehilite": {
        "guess_lang": False,
        "noclasses": True,
        "pygments_style": "monokai",
    },
}


def render_markdown(text: str) -> str:
    """Convert markdown to HTML with inline pygments styles, then sanitize it."""
    raw_html = markdown.markdown(
        text,
        extensions=["fenced_code", "codehilite", "tables"],
        extension_configs=_EXTENSION_CONFIGS,
        output_format="html",
    )
    return nh3.clean(
        raw_html,
        tags=_ALLOWED_TAGS,
        attributes=_ALLOWED_ATTRIBUTES,
        url_schemes={"http", "https", "mailto"},
        link_rel="noopener noreferrer",
    )
