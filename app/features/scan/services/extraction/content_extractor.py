import copy
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from app.features.scan.services.extraction.html_sanitizer import (
    count_words,
    html_to_text,
    sanitize_html_for_editor,
)
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

NOISE_TAGS = ["header", "nav", "footer", "aside", "script", "style", "noscript", "iframe", "svg", "canvas"]

TITLE_MAX_LENGTH = 70
DESCRIPTION_MAX_LENGTH = 110


@dataclass
class ExtractedContent:
    title: str
    description: str
    content_html: str
    text: str
    word_count: int
    strategy: str


def safe_trim(value: Optional[str], max_length: int) -> str:
    s = re.sub(r"\s+", " ", str(value or "")).strip()
    if not s:
        return ""
    return s[:max_length - 1] + "…" if len(s) > max_length else s


def slug_title(url: str) -> str:
    """Last path segment with dashes/underscores as spaces."""
    try:
        segments = [seg for seg in urlparse(url).path.split("/") if seg]
    except ValueError:
        return ""
    if not segments:
        return ""
    return re.sub(r"[-_]+", " ", unquote(segments[-1])).strip()


class ContentExtractor:
    """
    Main-content extraction.

    Strategy order: readability, then ``<main>``, then ``<article>``, then
    ``<body>``. Whatever wins is run through the editor sanitizer.
    """

    def __init__(self, min_readability_length: Optional[int] = None, max_html_length: Optional[int] = None):
        self.min_readability_length = min_readability_length or settings.READABILITY_MIN_TEXT_LENGTH
        self.max_html_length = max_html_length or settings.CONTENT_HTML_MAX_LENGTH

    @staticmethod
    def extract_meta_description(soup: BeautifulSoup) -> str:
        for attr, name in (("name", "description"), ("property", "og:description")):
            tag = soup.find("meta", attrs={attr: re.compile(f"^{re.escape(name)}$", re.I)})
            if tag and tag.get("content"):
                return tag["content"].strip()
        return ""

    @staticmethod
    def extract_title_tag(soup: BeautifulSoup) -> str:
        if soup.title and soup.title.string:
            return re.sub(r"\s+", " ", soup.title.string).strip()
        return ""

    def _readability(self, html: str, url: str) -> Tuple[str, str]:
        """Returns (summary_html, title); empty strings when readability gives up."""
        try:
            doc = Document(html, url=url)
            summary = doc.summary(html_partial=True)
            title = doc.short_title() or doc.title()
        except (Unparseable, ParserError, ValueError) as e:
            logger.debug(f"Readability failed for {url}: {e}")
            return "", ""
        if title and title.strip() == "[no-title]":
            title = ""
        return summary or "", (title or "").strip()

    @staticmethod
    def _inner_html(tag) -> str:
        return "".join(str(child) for child in tag.contents)

    def extract(self, html: str, url: str) -> ExtractedContent:
        soup = BeautifulSoup(html or "", "lxml")
        title_tag = self.extract_title_tag(soup)
        description = self.extract_meta_description(soup)

        stripped = copy.copy(soup)
        for tag in stripped.find_all(NOISE_TAGS):
            if not tag.decomposed:
                tag.decompose()

        readable_html, readable_title = self._readability(str(stripped), url) if html else ("", "")
        readable_text = html_to_text(readable_html)

        strategy = "body"
        candidate = ""
        if len(readable_text) >= self.min_readability_length:
            strategy, candidate = "readability", readable_html
        else:
            for name in ("main", "article"):
                node = stripped.find(name)
                if node is not None:
                    strategy, candidate = name, self._inner_html(node)
                    break
            else:
                body = stripped.body
                candidate = self._inner_html(body) if body is not None else str(stripped)

        content_html = sanitize_html_for_editor(candidate, self.max_html_length)

        if strategy == "readability":
            text = readable_text
        else:
            text = html_to_text(content_html)

        title = readable_title or title_tag or slug_title(url) or url

        return ExtractedContent(
            title=safe_trim(title, TITLE_MAX_LENGTH),
            description=safe_trim(description, DESCRIPTION_MAX_LENGTH),
            content_html=content_html,
            text=text,
            word_count=count_words(text),
            strategy=strategy,
        )
