from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from deep_extract.models.interfaces import RenderedPage, RenderResult, RunWarning
from deep_extract.models.job import MarkdownOptions
from deep_extract.research_core.artifacts.manager import ArtifactManager
from deep_extract.research_core.markdown import remote_client
from deep_extract.research_core.markdown.remote_client import RemoteMarkdown, convert_via_markdown_new
from deep_extract.research_core.markdown.service import build_markdown_corpus

RICH_REMOTE = "# Acme Studio\n\n" + "\n\n".join(
    f"## Project {i}\n\n- concept\n- delivery\n\n[Case study](https://acme.cz/p/{i})\n\n" + "text " * 90
    for i in range(5)
)


def _base_result() -> dict:
    return {
        "content": {
            "pages": [
                {"url": "https://acme.cz/", "pageType": "home", "title": "Acme"},
                {"url": "https://acme.cz/contact", "pageType": "contact"},
            ]
        },
        "_crawlPages": [
            {"url": "https://acme.cz/", "html": "<title>Acme</title><main><p>Short</p></main>"},
        ],
    }


@pytest.mark.asyncio
async def test_disabled_markdown_returns_empty_corpus(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    corpus = await build_markdown_corpus(
        base_result=_base_result(),
        render_result=None,
        artifacts=artifacts,
        warnings=[],
        options=MarkdownOptions(enabled=False),
    )
    assert corpus["documents"] == []
    assert artifacts.list() == []


@pytest.mark.asyncio
async def test_local_mode_never_calls_remote(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    warnings: list[RunWarning] = []
    remote = AsyncMock()
    with patch("deep_extract.research_core.markdown.service.convert_via_markdown_new", remote):
        corpus = await build_markdown_corpus(
            base_result=_base_result(),
            render_result=None,
            artifacts=artifacts,
            warnings=warnings,
            options=MarkdownOptions(mode="local"),
        )

    remote.assert_not_awaited()
    assert [doc["url"] for doc in corpus["documents"]] == ["https://acme.cz/"]
    assert corpus["documents"][0]["source"] == "local"
    assert [w.code for w in warnings] == ["markdown_local_missing_html"]
    types = [a.type for a in artifacts.list()]
    assert types.count("markdown_local") == 1
    assert types.count("markdown_canonical") == 1
    assert types[-1] == "markdown_quality_report"


@pytest.mark.asyncio
async def test_hybrid_mode_prefers_rich_remote(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    remote = AsyncMock(return_value=RemoteMarkdown(ok=True, duration_ms=120, title="Acme Studio", content=RICH_REMOTE))
    with patch("deep_extract.research_core.markdown.service.convert_via_markdown_new", remote):
        corpus = await build_markdown_corpus(
            base_result=_base_result(),
            render_result=None,
            artifacts=artifacts,
            warnings=[],
            options=MarkdownOptions(mode="hybrid"),
        )

    assert remote.await_count == 2
    assert all(doc["source"] == "remote" for doc in corpus["documents"])
    assert len(corpus["documents"]) == 2
    assert all(0 <= doc["qualityScore"] <= 1 for doc in corpus["documents"])

    report = next(a for a in artifacts.list() if a.type == "markdown_quality_report")
    assert corpus["qualityReportArtifactId"] == report.id
    entries = json.loads(artifacts.read_text(report))
    assert len(entries[0]["candidates"]) == 2


@pytest.mark.asyncio
async def test_remote_failure_becomes_warning(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    warnings: list[RunWarning] = []
    remote = AsyncMock(return_value=RemoteMarkdown(ok=False, duration_ms=5, error="markdown.new timeout"))
    with patch("deep_extract.research_core.markdown.service.convert_via_markdown_new", remote):
        corpus = await build_markdown_corpus(
            base_result=_base_result(),
            render_result=None,
            artifacts=artifacts,
            warnings=warnings,
            options=MarkdownOptions(mode="remote"),
        )

    assert [doc["source"] for doc in corpus["documents"]] == ["local"]
    codes = [w.code for w in warnings]
    assert codes.count("markdown_remote_failed") == 2
    assert "markdown_local_missing_html" in codes


@pytest.mark.asyncio
async def test_rendered_html_preferred_over_crawl_html(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    rendered = artifacts.write_text(
        type="rendered_html",
        directory="rendered",
        file_name="home.html",
        content="<title>Rendered Acme</title><main><p>Hydrated content</p></main>",
    )
    render_result = RenderResult(
        rendered_pages=[
            RenderedPage(
                url="https://acme.cz/",
                html_artifact_id=rendered.id,
                screenshot_artifact_id=None,
                captcha_detected=False,
                captcha_solved=False,
            )
        ]
    )
    corpus = await build_markdown_corpus(
        base_result=_base_result(),
        render_result=render_result,
        artifacts=artifacts,
        warnings=[],
        options=MarkdownOptions(mode="local"),
    )
    assert "Hydrated content" in corpus["documents"][0]["snippet"]


@pytest.mark.asyncio
async def test_max_docs_limits_pages(tmp_path: Path):
    artifacts = ArtifactManager(job_id="j", root=tmp_path)
    warnings: list[RunWarning] = []
    corpus = await build_markdown_corpus(
        base_result=_base_result(),
        render_result=None,
        artifacts=artifacts,
        warnings=warnings,
        options=MarkdownOptions(mode="local", max_docs=1),
    )
    assert len(corpus["documents"]) == 1
    assert warnings == []


def _mock_client(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(remote_client.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_remote_client_parses_success(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body == {"url": "https://acme.cz/", "method": "auto", "retain_images": False}
        return httpx.Response(
            200,
            json={"success": True, "title": "Acme", "content": "# Acme", "method": "ai", "tokens": 12, "duration_ms": 40},
        )

    _mock_client(monkeypatch, handler)
    result = await convert_via_markdown_new("https://acme.cz/", endpoint="https://md.example/convert")
    assert result.ok
    assert result.content == "# Acme"
    assert result.method == "ai"
    assert result.tokens == 12
    assert result.duration_ms == 40


@pytest.mark.asyncio
async def test_remote_client_reports_unsuccessful_payload(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(200, json={"success": False, "error": "blocked"}))
    result = await convert_via_markdown_new("https://acme.cz/", endpoint="https://md.example/convert")
    assert not result.ok
    assert result.error == "blocked"


@pytest.mark.asyncio
async def test_remote_client_reports_http_error(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(502, text="bad gateway"))
    result = await convert_via_markdown_new("https://acme.cz/", endpoint="https://md.example/convert")
    assert not result.ok
    assert "502" in result.error


@pytest.mark.asyncio
async def test_remote_client_reports_timeout(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    _mock_client(monkeypatch, handler)
    result = await convert_via_markdown_new("https://acme.cz/", endpoint="https://md.example/convert")
    assert not result.ok
    assert result.error == "markdown.new timeout"
