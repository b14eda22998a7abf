from __future__ import annotations

import math
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from deep_extract.tools.web_utils import clean_text

STRIP_TAGS = ("script", "style", "noscript", "iframe", "svg")
WALK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre", "code", "a"]


@dataclass(slots=True)
class LocalMarkdown:
    title: str
    content: str
    tokens: int


def estimate_tokens(text: str | None) -> int:
    words = [w for w in clean_text(text).split(" ") if w]
    return max(0, int(math.floor(len(words) * 1.35 + 0.5)))


def _link_markdown(node: Tag, page_url: str) -> str:
    text = clean_text(node.get_text(" "))
    href = str(node.get("href") or "").strip()
    if not text and not href:
        return ""
    if not href:
        return text
    try:
        absolute = urljoin(page_url, href)
    except ValueError:
        return text or href
    return f"[{text or absolute}]({absolute})"


def _join_lines(lines: list[str]) -> str:
    trimmed = [str(line or "").rstrip() for line in lines]
    kept = [
        line
        for index, line in enumerate(trimmed)
        if line or index == 0 or trimmed[index - 1] != ""
    ]
    return "\n".join(kept).strip()


def convert_html_to_markdown(html: str | None, page_url: str) -> LocalMarkdown:
    """Deterministic tag-walk conversion of an HTML document to Markdown.

    Headings, paragraphs, list items, quotes, code and links are emitted in
    document order under a leading ``# <title>`` line. Nested matches (a link
    inside a paragraph) are emitted for both elements.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for node in soup.find_all(STRIP_TAGS):
        node.decompose()

    title_tag = soup.find("title")
    h1_tag = soup.find("h1")
    title = (
        clean_text(title_tag.get_text(" ") if title_tag else "")
        or clean_text(h1_tag.get_text(" ") if h1_tag else "")
        or page_url
    )
    lines = [f"# {title}", ""]

    root = soup.find("main") or soup.find("body") or soup
    for element in root.find_all(WALK_TAGS):
        tag = element.name.lower()
        if tag == "a":
            link = _link_markdown(element, page_url)
            if link:
                lines.append(link)
            continue

        text = clean_text(element.get_text(" "))
        if not text:
            continue
        if tag.startswith("h") and len(tag) == 2:
            lines.extend([f"{'#' * int(tag[1])} {text}", ""])
        elif tag == "p":
            lines.extend([text, ""])
        elif tag == "li":
            lines.append(f"- {text}")
        elif tag == "blockquote":
            lines.extend([f"> {text}", ""])
        else:
            lines.extend(["```", text, "```", ""])

    markdown = _join_lines(lines)
    return LocalMarkdown(title=title, content=markdown, tokens=estimate_tokens(markdown))
