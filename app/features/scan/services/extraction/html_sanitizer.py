import re
from html import escape
from typing import Optional

import bleach
from bs4 import BeautifulSoup, Comment

from app.platform.config import settings


class HtmlSanitizer:
    """
    Turns extracted page HTML into an editor-safe, image-free subset.

    Running the sanitizer on its own output returns it unchanged.
    """

    # Removed with their contents
    REMOVE_TAGS = [
        "script", "style", "noscript", "svg", "iframe", "canvas", "form",
        "header", "nav", "footer", "aside",
        "figure", "picture", "img", "source", "video", "audio", "track", "embed", "object",
        "head", "title", "meta", "link", "template", "button", "input", "select", "textarea",
    ]

    ALLOWED_TAGS = frozenset([
        "p", "br", "strong", "b", "em", "i", "u", "s", "blockquote", "code", "pre",
        "h1", "h2", "h3", "h4", "h5", "h6",
        "ul", "ol", "li", "hr",
        "table", "thead", "tbody", "tr", "th", "td",
        "a", "span", "div",
    ])

    ALLOWED_ATTRIBUTES = {
        "a": ["href", "title", "target", "rel"],
        "table": ["border", "cellpadding", "cellspacing"],
    }

    ALLOWED_PROTOCOLS = frozenset(["http", "https", "mailto"])

    EMPTY_BLOCK_RE = re.compile(r"<(p|div)>(?:\s|&nbsp;|&#160;|\xa0|<br\s*/?>)*</\1>", re.IGNORECASE)
    BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")

    @staticmethod
    def _strip_dom(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()
        for tag in soup.find_all(HtmlSanitizer.REMOVE_TAGS):
            if not tag.decomposed:
                tag.decompose()
        return str(soup)

    @staticmethod
    def _clean(html: str) -> str:
        cleaned = bleach.clean(
            html,
            tags=HtmlSanitizer.ALLOWED_TAGS,
            attributes=HtmlSanitizer.ALLOWED_ATTRIBUTES,
            protocols=HtmlSanitizer.ALLOWED_PROTOCOLS,
            strip=True,
            strip_comments=True,
        )

        # Stripping leaves empty wrappers behind; nested ones need several passes
        previous = None
        while previous != cleaned:
            previous = cleaned
            cleaned = HtmlSanitizer.EMPTY_BLOCK_RE.sub("", cleaned)

        cleaned = HtmlSanitizer.BLANK_LINES_RE.sub("\n\n", cleaned)
        return cleaned.strip()

    @staticmethod
    def _truncate(html: str, max_length: int) -> str:
        """Keep whole top-level nodes while they fit."""
        soup = BeautifulSoup(html, "html.parser")
        parts = []
        size = 0
        for node in list(soup.contents):
            chunk = str(node)
            if size + len(chunk) > max_length:
                break
            parts.append(chunk)
            size += len(chunk)

        if not parts:
            text = soup.get_text(" ", strip=True)
            return f"<p>{escape(text[:max(0, max_length - 7)], quote=False)}</p>"
        return "".join(parts)

    @staticmethod
    def sanitize(html: str, max_length: Optional[int] = None) -> str:
        if not html:
            return ""
        max_length = max_length or settings.CONTENT_HTML_MAX_LENGTH

        cleaned = HtmlSanitizer._clean(HtmlSanitizer._strip_dom(html))
        if len(cleaned) > max_length:
            cleaned = HtmlSanitizer._clean(HtmlSanitizer._truncate(cleaned, max_length))
        return cleaned


def sanitize_html_for_editor(html: str, max_length: Optional[int] = None) -> str:
    return HtmlSanitizer.sanitize(html, max_length)


def html_to_text(html: str) -> str:
    """Plain text with whitespace collapsed."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def count_words(text: str) -> int:
    return len(text.split()) if text else 0
