"""Single-URL base extractor.

Fetches only the target URL with httpx and derives the minimal base-crawl
shape the deep pipeline enriches: brand, page summary, coarse section
types, social links, a confidence estimate and the raw HTML. It does not
follow links.
"""
from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from deep_extract.services.env_safety import sanitize_ssl_keylogfile
from deep_extract.tools.http_utils import USER_AGENT
from deep_extract.tools.web_utils import clean_text, host_of

SOCIAL_HOSTS = {
    "linkedin": "linkedin.com",
    "instagram": "instagram.com",
    "facebook": "facebook.com",
    "x": "x.com",
    "twitter": "twitter.com",
    "youtube": "youtube.com",
    "tiktok": "tiktok.com",
}

SECTION_PATTERNS = (
    ("SERVICES", re.compile(r"services|solutions|what we do|expertise|offer")),
    ("PROJECTS", re.compile(r"projects|portfolio|references|case stud|developments")),
    ("TESTIMONIALS", re.compile(r"testimonial|what clients say|reviews")),
    ("TEAM", re.compile(r"team|our people|leadership|founder")),
    ("FAQ", re.compile(r"faq|frequently asked|questions")),
    ("CONTACT", re.compile(r"contact|get in touch|reach us|location|address")),
    ("FEATURES", re.compile(r"feature|benefit|why us|why choose|advantages")),
)


def _meta(soup: BeautifulSoup, *, name: str | None = None, prop: str | None = None) -> str:
    attrs = {"name": name} if name else {"property": prop}
    tag = soup.find("meta", attrs=attrs)
    return clean_text(tag.get("content")) if tag and tag.get("content") else ""


def _social_links(soup: BeautifulSoup, base_url: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for anchor in soup.find_all("a", href=True):
        href = urljoin(base_url, anchor["href"])
        host = host_of(href)
        for key, social_host in SOCIAL_HOSTS.items():
            if key not in found and (host == social_host or host.endswith(f".{social_host}")):
                found[key] = href
    return found


def _sections(soup: BeautifulSoup) -> list[dict[str, Any]]:
    sections: list[dict[str, Any]] = []
    seen: set[str] = set()
    for heading in soup.find_all(["h1", "h2", "h3"]):
        text = clean_text(heading.get_text(" "))
        low = text.lower()
        for section_type, pattern in SECTION_PATTERNS:
            if section_type not in seen and pattern.search(low):
                seen.add(section_type)
                sections.append({"type": section_type, "title": text})
                break
    return sections


def parse_page(html: str, page_url: str) -> dict[str, Any]:
    """Brand, page summary, sections and social links from one HTML document."""
    soup = BeautifulSoup(html or "", "html.parser")
    title = clean_text(soup.title.string) if soup.title and soup.title.string else ""
    site_name = _meta(soup, prop="og:site_name")
    description = _meta(soup, name="description") or _meta(soup, prop="og:description")
    h1 = soup.find("h1")
    name = site_name or (clean_text(re.split(r"\s[|\-–]\s", title)[0]) if title else "")

    text_samples = [
        text
        for text in (clean_text(p.get_text(" ")) for p in soup.find_all("p"))
        if len(text) >= 40
    ][:3]

    return {
        "brand": {
            "name": name or None,
            "canonicalName": site_name or None,
            "tagline": description or (clean_text(h1.get_text(" ")) if h1 else None) or None,
            "social": _social_links(soup, page_url),
        },
        "page": {
            "url": page_url,
            "title": title or None,
            "pageType": "home",
            "textSamples": text_samples,
        },
        "sections": _sections(soup),
    }


def estimate_confidence(parsed: dict[str, Any]) -> dict[str, Any]:
    brand = parsed["brand"]
    fields = {
        "brand.name": 0.8 if brand.get("name") else 0.2,
        "brand.tagline": 0.7 if brand.get("tagline") else 0.2,
        "content.sections": round(min(1.0, 0.2 + 0.15 * len(parsed["sections"])), 3),
    }
    return {
        "overall": round(sum(fields.values()) / len(fields), 3),
        "fields": fields,
        "explain": {"content.sections": f"sections: {len(parsed['sections'])}"},
    }


class StaticPageExtractor:
    """Base extractor that fetches just the requested URL."""

    def __init__(self, *, user_agent: str = USER_AGENT):
        self.user_agent = user_agent

    async def extract(
        self,
        *,
        url: str,
        max_pages: int = 1,
        max_depth: int = 0,
        timeout_ms: int = 12000,
        ignore_robots: bool = True,
        site_map_mode: str | None = None,
    ) -> dict[str, Any]:
        sanitize_ssl_keylogfile()
        warnings: list[dict[str, str]] = []
        try:
            async with httpx.AsyncClient(timeout=timeout_ms / 1000, follow_redirects=True) as client:
                response = await client.get(url, headers={"User-Agent": self.user_agent})
                response.raise_for_status()
                html = response.text
                final_url = str(response.url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning(f"Static fetch failed for {url}: {exc}")
            warnings.append({"code": "fetch_failed", "message": f"Unable to fetch {url}: {exc}"})
            return {
                "inputUrl": url,
                "finalUrl": url,
                "brand": {"name": host_of(url) or None, "social": {}},
                "content": {"pages": [], "sections": []},
                "website": {"structure": []},
                "confidence": {"overall": 0.1, "fields": {}, "explain": {}},
                "warnings": warnings,
                "_crawlPages": [],
            }

        parsed = parse_page(html, final_url)
        logger.info(f"Static fetch {final_url}: {len(html)} bytes, {len(parsed['sections'])} sections")
        return {
            "inputUrl": url,
            "finalUrl": final_url,
            "brand": parsed["brand"],
            "content": {"pages": [parsed["page"]], "sections": parsed["sections"]},
            "website": {"structure": [{"url": final_url, "depth": 0}]},
            "confidence": estimate_confidence(parsed),
            "warnings": warnings,
            "_crawlPages": [{"url": final_url, "html": html}],
        }
