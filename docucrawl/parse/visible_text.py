"""Link and visible-text extraction from rendered HTML."""
from __future__ import annotations

import re
from typing import List, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

INVISIBLE_TAGS = ["script", "style", "noscript", "template", "head", "svg", "iframe"]

_HIDDEN_STYLE = re.compile(r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def _is_hidden(element: Tag) -> bool:
    if element.has_attr("hidden"):
        return True
    if str(element.get("aria-hidden", "")).lower() == "true":
        return True
    return bool(_HIDDEN_STYLE.search(str(element.get("style", ""))))


def extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Absolute ``http*`` anchor targets in document order, without duplicates."""
    links: List[str] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = urljoin(base_url, anchor["href"].strip())
        if not href.startswith("http") or href in seen:
            continue
        seen.add(href)
        links.append(href)
    return links


def extract_visible_text(soup: BeautifulSoup) -> str:
    """Text a reader would see, skipping hidden subtrees and non-content tags."""
    for element in soup.find_all(INVISIBLE_TAGS):
        element.decompose()
    for element in soup.find_all(_is_hidden):
        if not element.decomposed:
            element.decompose()
    root = soup.body or soup
    return _WHITESPACE.sub(" ", root.get_text(" ")).strip()


def extract_page(html: str, base_url: str) -> Tuple[List[str], str]:
    """Return ``(links, text)`` for a rendered page."""
    soup = BeautifulSoup(html, "html.parser")
    links = extract_links(soup, base_url)
    return links, extract_visible_text(soup)
