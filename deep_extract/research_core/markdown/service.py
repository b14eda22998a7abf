from __future__ import annotations

import time
from typing import Any

from loguru import logger

from deep_extract.models.interfaces import (
    MarkdownCandidate,
    MarkdownDocument,
    RenderResult,
    RunWarning,
    utc_now_iso,
)
from deep_extract.models.job import MarkdownOptions
from deep_extract.research_core.artifacts.manager import ArtifactManager, sanitize_file_name
from deep_extract.research_core.markdown.local_converter import convert_html_to_markdown, estimate_tokens
from deep_extract.research_core.markdown.remote_client import convert_via_markdown_new
from deep_extract.research_core.markdown.selector import select_canonical_markdown
from deep_extract.tools.web_utils import slugify_url

SNIPPET_CHARS = 420


def _uses_remote(options: MarkdownOptions) -> bool:
    return options.mode in {"hybrid", "remote"} and options.remote_provider == "markdown_new"


def _source_html(
    page_url: str,
    *,
    rendered: dict[str, str],
    crawl_html: dict[str, str],
    artifacts: ArtifactManager,
) -> str:
    artifact_id = rendered.get(page_url)
    if artifact_id:
        for item in artifacts.list():
            if item.id == artifact_id:
                html = artifacts.read_text(item)
                if html:
                    return html
                break
    return crawl_html.get(page_url, "")


async def build_markdown_corpus(
    *,
    base_result: dict[str, Any],
    render_result: RenderResult | None,
    artifacts: ArtifactManager,
    warnings: list[RunWarning],
    options: MarkdownOptions | None = None,
) -> dict[str, Any]:
    """Convert each crawled page into a canonical Markdown document.

    Rendered HTML is preferred over crawl HTML as the local converter's
    input. Per page, the local and (mode permitting) remote candidates are
    scored and the winner is persisted under ``markdown/canonical``. A
    quality report with every candidate's score is written under
    ``markdown/meta``.
    """
    options = options or MarkdownOptions()
    if not options.enabled:
        return {"generatedAt": utc_now_iso(), "documents": []}

    crawl_html = {
        str(page.get("url")): str(page.get("html") or "")
        for page in base_result.get("_crawlPages") or []
        if page.get("url")
    }
    rendered = {
        page.url: page.html_artifact_id
        for page in (render_result.rendered_pages if render_result else [])
    }
    pages = list((base_result.get("content") or {}).get("pages") or [])[: options.max_docs]

    documents: list[MarkdownDocument] = []
    quality_report: list[dict[str, Any]] = []

    for page in pages:
        page_url = str(page.get("url") or "")
        if not page_url:
            continue
        page_type = page.get("pageType") or None
        file_base = sanitize_file_name(slugify_url(page_url), fallback="page")
        candidates: list[MarkdownCandidate] = []

        html = _source_html(page_url, rendered=rendered, crawl_html=crawl_html, artifacts=artifacts)
        if html:
            local = convert_html_to_markdown(html, page_url)
            local_artifact = artifacts.write_text(
                type="markdown_local",
                directory="markdown/local",
                file_name=f"{file_base}.md",
                content=local.content,
                metadata={"url": page_url, "pageType": page_type},
            )
            candidates.append(
                MarkdownCandidate(
                    source="local",
                    artifact_id=local_artifact.id,
                    title=local.title or page.get("title") or None,
                    content=local.content,
                    tokens=local.tokens or estimate_tokens(local.content),
                )
            )
        else:
            warnings.append(
                RunWarning(
                    code="markdown_local_missing_html",
                    message=f"No HTML source available for markdown conversion ({page_url})",
                )
            )

        if _uses_remote(options):
            remote = await convert_via_markdown_new(
                page_url,
                method=options.method,
                retain_images=options.retain_images,
            )
            if remote.ok and remote.content:
                remote_artifact = artifacts.write_text(
                    type="markdown_remote",
                    directory="markdown/remote",
                    file_name=f"{file_base}.md",
                    content=remote.content,
                    metadata={
                        "url": page_url,
                        "pageType": page_type,
                        "method": remote.method or options.method,
                        "durationMs": remote.duration_ms,
                    },
                )
                candidates.append(
                    MarkdownCandidate(
                        source="remote",
                        artifact_id=remote_artifact.id,
                        title=remote.title or page.get("title") or None,
                        content=remote.content,
                        tokens=remote.tokens or estimate_tokens(remote.content),
                    )
                )
            else:
                logger.warning(f"Remote markdown failed for {page_url}: {remote.error}")
                warnings.append(
                    RunWarning(
                        code="markdown_remote_failed",
                        message=f"markdown.new conversion failed for {page_url}: {remote.error or 'unknown error'}",
                    )
                )

        winner, ranked = select_canonical_markdown(candidates)
        if winner is None:
            continue

        canonical = artifacts.write_text(
            type="markdown_canonical",
            directory="markdown/canonical",
            file_name=f"{file_base}.md",
            content=winner.content,
            metadata={
                "url": page_url,
                "pageType": page_type,
                "selectedSource": winner.source,
                "qualityScore": winner.quality_score,
            },
        )
        documents.append(
            MarkdownDocument(
                url=page_url,
                page_type=page_type,
                title=winner.title or page.get("title") or None,
                artifact_id=canonical.id,
                source=winner.source,
                tokens=winner.tokens or estimate_tokens(winner.content),
                quality_score=winner.quality_score,
                snippet=winner.content[:SNIPPET_CHARS],
            )
        )
        quality_report.append(
            {
                "url": page_url,
                "selectedSource": winner.source,
                "selectedQualityScore": winner.quality_score,
                "candidates": [
                    {
                        "source": item.source,
                        "artifactId": item.artifact_id,
                        "qualityScore": item.quality_score,
                    }
                    for item in ranked
                ],
            }
        )

    report = artifacts.write_json(
        type="markdown_quality_report",
        directory="markdown/meta",
        file_name=f"quality-{int(time.time() * 1000)}.json",
        data=quality_report,
    )
    logger.info(f"Markdown corpus built: {len(documents)} documents from {len(pages)} pages")

    return {
        "generatedAt": utc_now_iso(),
        "documents": [doc.to_dict() for doc in documents[: options.max_docs]],
        "qualityReportArtifactId": report.id,
    }
