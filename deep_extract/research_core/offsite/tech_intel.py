from __future__ import annotations

from urllib.parse import urlparse

from deep_extract.models.interfaces import EvidenceSource, ProviderOutcome, append_field_link
from deep_extract.research_core.offsite.base import ProviderContext

CMS_MARKERS = (
    (("wp-content", "wordpress"), "WordPress"),
    (("shopify",), "Shopify"),
    (("wix.com", "wix-code"), "Wix"),
    (("webflow",), "Webflow"),
    (("drupal-settings-json", "drupal"), "Drupal"),
    (("joomla",), "Joomla"),
)

TRACKER_MARKERS = (
    (("googletagmanager.com",), "Google Tag Manager"),
    (("google-analytics.com", "gtag("), "Google Analytics"),
    (("facebook.net", "fbq("), "Meta Pixel"),
    (("hotjar",), "Hotjar"),
    (("clarity.ms",), "Microsoft Clarity"),
    (("segment.com", "analytics.track("), "Segment"),
)

CDN_MARKERS = (
    (("cloudflare",), "Cloudflare"),
    (("cdn.jsdelivr.net",), "jsDelivr"),
    (("unpkg.com",), "unpkg"),
    (("fastly",), "Fastly"),
    (("akamai",), "Akamai"),
)

HOSTING_SUFFIXES = (("vercel.app", "Vercel"), ("netlify.app", "Netlify"))


def _match_markers(html: str, markers: tuple[tuple[tuple[str, ...], str], ...]) -> list[str]:
    low = str(html or "").lower()
    return [label for needles, label in markers if any(needle in low for needle in needles)]


def detect_cms(html: str) -> list[str]:
    return _match_markers(html, CMS_MARKERS)


def detect_trackers(html: str) -> list[str]:
    return _match_markers(html, TRACKER_MARKERS)


def detect_cdn(html: str) -> list[str]:
    return _match_markers(html, CDN_MARKERS)


def detect_hosting(page_url: str | None) -> list[str]:
    try:
        host = urlparse(str(page_url or "")).hostname or ""
    except ValueError:
        return []
    return [label for suffix, label in HOSTING_SUFFIXES if host.endswith(suffix)]


async def run_tech_intel_provider(context: ProviderContext) -> ProviderOutcome:
    """Substring fingerprinting of the crawled raw HTML. Free; makes no network calls."""
    outcome = ProviderOutcome(findings={"cms": [], "trackers": [], "cdn": [], "hosting": [], "evidence": []})
    findings = outcome.findings
    raw_items = [item for item in (context.artifacts.list() if context.artifacts else []) if item.type == "raw_html"]

    pages = (context.base_result.get("content") or {}).get("pages") or []
    for page in pages:
        page_url = page.get("url")
        artifact = next((item for item in raw_items if item.metadata.get("url") == page_url), None)
        if not page_url or artifact is None:
            continue

        source_id = f"tech:{page_url}"
        outcome.evidence.append(
            EvidenceSource(
                id=source_id,
                step="offsite.tech_intel",
                type="tech_fingerprint",
                url=page_url,
                title=f"Tech fingerprint {page_url}",
                artifact_id=artifact.id,
            )
        )
        findings["evidence"].append(page_url)
        for field_path in ("outside.tech.cms", "outside.tech.trackers", "outside.tech.cdn"):
            append_field_link(outcome.field_links, field_path, source_id)

    raw_html = "\n".join(context.artifacts.read_text(item) for item in raw_items) if context.artifacts else ""
    findings["cms"] = detect_cms(raw_html)
    findings["trackers"] = detect_trackers(raw_html)
    findings["cdn"] = detect_cdn(raw_html)
    findings["hosting"] = detect_hosting(context.base_result.get("finalUrl"))
    return outcome
