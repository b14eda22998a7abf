from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol

from loguru import logger

from deep_extract.config import settings
from deep_extract.models.events import PHASE_RATIOS, Phase, ProgressCallback, ProgressEvent
from deep_extract.models.interfaces import Coverage, RenderResult, RunWarning, utc_now_iso
from deep_extract.models.job import DeepResearchJob, MarkdownOptions
from deep_extract.models.result import DeepResearchResult, drop_invalid_urls
from deep_extract.research_core.artifacts.manager import ArtifactManager, sanitize_file_name
from deep_extract.research_core.markdown.service import build_markdown_corpus
from deep_extract.research_core.offsite.registry import PROVIDERS, OffsiteSummary, run_offsite_providers
from deep_extract.research_core.render.service import render_with_browser
from deep_extract.research_core.synthesis.confidence import compute_deep_confidence
from deep_extract.research_core.synthesis.provenance import build_provenance
from deep_extract.research_core.synthesis.service import fallback_synthesis, synthesize_research
from deep_extract.services.logger import log_event, log_research_step
from deep_extract.services.repositories import ArtifactRepository
from deep_extract.services.secrets import SecretStore, read_secret, to_api_key
from deep_extract.tools.web_utils import host_of, slugify_url


class BaseExtractor(Protocol):
    async def extract(
        self,
        *,
        url: str,
        max_pages: int,
        max_depth: int,
        timeout_ms: int,
        ignore_robots: bool,
        site_map_mode: str | None,
    ) -> dict[str, Any]: ...


# providerKeyRefs entry -> (key passed to providers, settings fallback attribute)
PROVIDER_KEY_REFS = {
    "serpapiRef": ("serpapi", "serpapi_api_key"),
    "companyDataRef": ("company_data", "company_data_api_key"),
    "socialRef": ("social", "social_enrich_api_key"),
    "exaRef": ("exa", "exa_api_key"),
}


@dataclass
class _RunState:
    """Mutable bookkeeping for one run."""

    job: DeepResearchJob
    started: float
    deadline: float
    progress: ProgressCallback | None
    should_cancel: Callable[[], bool] | None
    warnings: list[RunWarning] = field(default_factory=list)
    coverage: Coverage = field(default_factory=Coverage)
    cancelled: bool = False

    def time_left_ms(self) -> int:
        return int((self.deadline - time.monotonic()) * 1000)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def warn(self, code: str, message: str) -> None:
        self.warnings.append(RunWarning(code=code, message=message))

    def warn_all(self, code: str, messages: list[str]) -> None:
        for message in messages:
            if message:
                self.warn(code, str(message))


def _normalize_base_warnings(items: list[Any]) -> list[RunWarning]:
    warnings: list[RunWarning] = []
    for item in items or []:
        if isinstance(item, dict) and item.get("message"):
            warnings.append(RunWarning(code=str(item.get("code") or "warning"), message=str(item["message"])))
        elif isinstance(item, str) and item:
            warnings.append(RunWarning(code="warning", message=item))
    return warnings


def _dedupe_warnings(warnings: list[RunWarning]) -> list[dict[str, str]]:
    seen: set[tuple[str, str]] = set()
    out: list[dict[str, str]] = []
    for warning in warnings:
        key = (warning.code, warning.message)
        if key in seen:
            continue
        seen.add(key)
        out.append(warning.to_dict())
    return out


def _public_base(base_result: dict[str, Any]) -> dict[str, Any]:
    """Base crawl fields without private ``_``-prefixed keys."""
    return {key: value for key, value in base_result.items() if not key.startswith("_")}


class DeepResearchOrchestrator:
    """Runs one deep extraction job end to end.

    Phases: discovering, crawling, rendering, markdown, offsite,
    synthesizing. All run sequentially under one wall-clock deadline
    (``startedAt + maxDurationMs``). A phase that cannot fit in the remaining
    time is skipped or degraded and recorded in ``coverage``; the run itself
    never aborts for time, budget or missing credentials.
    """

    def __init__(
        self,
        *,
        base_extractor: BaseExtractor,
        secrets: SecretStore | None = None,
        artifacts_repo: ArtifactRepository | None = None,
        extraction_dir: str | Path | None = None,
        openai_api_key: str | None = None,
        openai_model: str | None = None,
        llm: Any = None,
    ):
        self.base_extractor = base_extractor
        self.secrets = secrets
        self.artifacts_repo = artifacts_repo
        self.extraction_dir = Path(extraction_dir or settings.extraction_dir)
        self.openai_api_key = openai_api_key or settings.openai_api_key or None
        self.openai_model = openai_model or settings.synthesis_model
        self.llm = llm

    def get_provider_keys(self, job: DeepResearchJob) -> dict[str, str | None]:
        refs = job.offsite.provider_key_refs if job.offsite else {}
        keys: dict[str, str | None] = {}
        for ref_name, (key, setting_name) in PROVIDER_KEY_REFS.items():
            value = to_api_key(read_secret(self.secrets, refs.get(ref_name)))
            keys[key] = value or getattr(settings, setting_name) or None
        return keys

    async def _emit(
        self,
        state: _RunState,
        phase: Phase,
        message: str,
        *,
        cost: dict[str, Any] | None = None,
    ) -> None:
        log_research_step(state.job.job_id, phase.value, "started" if phase != Phase.COMPLETED else "completed")
        if state.progress is None:
            return
        event = ProgressEvent(
            phase=phase,
            ratio=PHASE_RATIOS[phase],
            message=message,
            elapsed_ms=state.elapsed_ms() if phase == Phase.COMPLETED else None,
            cost=cost,
        )
        result = state.progress(event)
        if inspect.isawaitable(result):
            await result

    def _check_cancel(self, state: _RunState, phase: Phase) -> bool:
        if state.cancelled:
            state.coverage.skipped(phase.value)
            return True
        if state.should_cancel is not None and state.should_cancel():
            state.cancelled = True
            logger.warning(f"Job {state.job.job_id} cancelled before {phase.value}")
            state.warn("cancelled", f"Run cancelled before {phase.value} phase")
            state.coverage.skipped(phase.value, f"Run cancelled before {phase.value} phase")
            return True
        return False

    async def _render(
        self,
        state: _RunState,
        base_result: dict[str, Any],
        artifacts: ArtifactManager,
    ) -> RenderResult:
        job = state.job
        render_result = RenderResult()
        if self._check_cancel(state, Phase.RENDERING):
            return render_result

        await self._emit(state, Phase.RENDERING, "Rendering JS pages and collecting screenshots")
        if job.quality_profile == "local_only":
            state.coverage.skipped("rendering", "Rendering skipped due to qualityProfile=local_only")
            return render_result

        if state.time_left_ms() > settings.render_min_remaining_ms:
            render_warnings: list[str] = []
            render_result = await render_with_browser(
                pages=(base_result.get("content") or {}).get("pages") or [],
                final_url=base_result.get("finalUrl"),
                auth=job.auth,
                captcha=job.captcha,
                artifacts=artifacts,
                secrets=self.secrets,
                warnings=render_warnings,
                max_duration_ms=max(20000, min(settings.render_phase_cap_ms, state.time_left_ms() - 5000)),
            )
            state.warn_all("render_warning", render_warnings)
        else:
            state.coverage.gaps.append("Rendering skipped due to maxDuration budget")
            state.warn("duration_budget", "Rendering phase skipped because maxDurationMs budget is nearly exhausted")

        if render_result.rendered_pages:
            state.coverage.completed("rendering")
        else:
            state.coverage.skipped("rendering", "Rendered DOM/screenshot coverage is partial or unavailable")
        return render_result

    async def _markdown(
        self,
        state: _RunState,
        base_result: dict[str, Any],
        render_result: RenderResult,
        artifacts: ArtifactManager,
    ) -> dict[str, Any]:
        corpus: dict[str, Any] = {"generatedAt": utc_now_iso(), "documents": []}
        if self._check_cancel(state, Phase.MARKDOWN):
            return corpus

        await self._emit(state, Phase.MARKDOWN, "Converting HTML artifacts into Markdown corpus")
        if state.time_left_ms() <= settings.markdown_min_remaining_ms:
            state.coverage.skipped("markdown", "Markdown conversion skipped due to maxDuration budget")
            state.warn("duration_budget", "Markdown conversion skipped because maxDurationMs budget is nearly exhausted")
            return corpus

        options: MarkdownOptions = state.job.markdown
        if state.job.quality_profile == "local_only" and options.mode != "local":
            options = options.model_copy(update={"mode": "local"})

        corpus = await build_markdown_corpus(
            base_result=base_result,
            render_result=render_result,
            artifacts=artifacts,
            warnings=state.warnings,
            options=options,
        )
        state.coverage.completed("markdown")
        return corpus

    async def _offsite(
        self,
        state: _RunState,
        base_result: dict[str, Any],
        artifacts: ArtifactManager,
        domain: str,
    ) -> OffsiteSummary:
        job = state.job
        summary = OffsiteSummary()
        if self._check_cancel(state, Phase.OFFSITE):
            return summary

        await self._emit(state, Phase.OFFSITE, "Collecting off-site intelligence")
        if job.offsite is None or not job.offsite.enabled:
            state.coverage.skipped("offsite", "Off-site intelligence disabled")
            return summary

        if state.time_left_ms() <= settings.offsite_min_remaining_ms:
            state.coverage.skipped("offsite", "Off-site intelligence skipped due to maxDuration budget")
            state.warn("duration_budget", "Off-site phase skipped because maxDurationMs budget is nearly exhausted")
            return summary

        brand = base_result.get("brand") or {}
        summary = await run_offsite_providers(
            providers=job.offsite.providers,
            domain=domain,
            brand_name=brand.get("canonicalName") or brand.get("name") or brand.get("tagline") or domain,
            budget_usd=job.effective_budget_usd,
            locale_hints=job.locale_hints,
            keys=self.get_provider_keys(job),
            base_result=base_result,
            artifacts=artifacts,
            registry=PROVIDERS,
        )
        state.warn_all("offsite_warning", summary.warnings)
        state.coverage.completed("offsite")
        if not summary.within_budget:
            state.coverage.gaps.append("Budget cap reached before all off-site probes completed")
        return summary

    async def _synthesize(
        self,
        state: _RunState,
        base_result: dict[str, Any],
        markdown_corpus: dict[str, Any],
        outside: dict[str, Any],
    ) -> dict[str, Any]:
        if self._check_cancel(state, Phase.SYNTHESIZING):
            return fallback_synthesis(base_result=base_result, markdown_corpus=markdown_corpus, outside=outside)

        await self._emit(state, Phase.SYNTHESIZING, "Generating bilingual CZ+EN strategic synthesis")
        skip_llm = state.time_left_ms() <= settings.llm_min_remaining_ms
        if skip_llm:
            state.warn("duration_budget", "LLM synthesis skipped due to remaining maxDurationMs budget")
            state.coverage.gaps.append("LLM synthesis degraded to fallback output due to maxDuration budget")

        synthesis_warnings: list[str] = []
        research = await synthesize_research(
            url=state.job.url,
            base_result=base_result,
            markdown_corpus=markdown_corpus,
            outside=outside,
            api_key=None if skip_llm else self.openai_api_key,
            model=self.openai_model,
            warnings=synthesis_warnings,
            llm=self.llm,
        )
        state.warn_all("synthesis_fallback", synthesis_warnings)
        state.coverage.completed("synthesizing")
        return research

    def _write_raw_html(self, base_result: dict[str, Any], artifacts: ArtifactManager) -> None:
        crawl_html = {
            page.get("url"): page.get("html") or ""
            for page in base_result.get("_crawlPages") or []
            if isinstance(page, dict)
        }
        for page in (base_result.get("content") or {}).get("pages") or []:
            page_url = page.get("url")
            if not page_url:
                continue
            artifacts.write_text(
                type="raw_html",
                directory="raw-html",
                file_name=f"{slugify_url(page_url)}.html",
                content=crawl_html.get(page_url, ""),
                metadata={"url": page_url},
            )

    async def run(
        self,
        job: DeepResearchJob,
        progress: ProgressCallback | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> DeepResearchResult:
        """Execute the job and return the validated result document."""
        started = time.monotonic()
        max_duration_ms = job.effective_max_duration_ms
        state = _RunState(
            job=job,
            started=started,
            deadline=started + max_duration_ms / 1000,
            progress=progress,
            should_cancel=should_cancel,
        )
        logger.info(
            f"Deep extraction {job.job_id} started: {job.url} "
            f"(profile={job.quality_profile}, mode={job.mode}, budget=${job.effective_budget_usd})"
        )

        await self._emit(state, Phase.DISCOVERING, "Preparing deep extraction run")
        state.coverage.completed("discovering")

        domain = host_of(job.url)
        artifacts = ArtifactManager(
            job_id=job.job_id,
            root=self.extraction_dir / sanitize_file_name(job.job_id, fallback="adhoc"),
            repo=self.artifacts_repo,
        )

        await self._emit(state, Phase.CRAWLING, "Running baseline crawl and extraction")
        base_result = await self.base_extractor.extract(
            url=job.url,
            max_pages=job.max_pages,
            max_depth=job.max_depth,
            timeout_ms=settings.base_crawl_timeout_ms,
            ignore_robots=job.ignore_robots,
            site_map_mode=job.site_map_mode,
        )
        base_result["content"] = base_result.get("content") or {}
        state.warnings.extend(_normalize_base_warnings(base_result.get("warnings") or []))
        state.coverage.completed("crawling")
        self._write_raw_html(base_result, artifacts)

        render_result = await self._render(state, base_result, artifacts)
        markdown_corpus = await self._markdown(state, base_result, render_result, artifacts)
        if not base_result["content"].get("markdownCorpus"):
            base_result["content"]["markdownCorpus"] = markdown_corpus

        offsite = await self._offsite(state, base_result, artifacts, domain)
        outside = drop_invalid_urls(offsite.outside)

        research = await self._synthesize(state, base_result, markdown_corpus, outside)

        provenance = build_provenance(
            pages=(base_result.get("content") or {}).get("pages") or [],
            markdown_documents=markdown_corpus.get("documents") or [],
            provider_sources=offsite.sources,
            provider_field_links=offsite.field_links,
        )

        cost = {
            "budgetUsd": job.effective_budget_usd,
            "totalUsd": offsite.total_usd,
            "providers": offsite.provider_costs,
            "withinBudget": offsite.within_budget,
        }
        if cost["totalUsd"] > cost["budgetUsd"]:
            state.coverage.gaps.append("Total provider cost exceeded configured budget cap")
        if time.monotonic() > state.deadline:
            state.warn(
                "duration_budget_exceeded",
                f"Extraction exceeded maxDurationMs ({max_duration_ms}) but returned partial result",
            )
            state.coverage.gaps.append("Hard duration target was exceeded")

        confidence = compute_deep_confidence(base_result.get("confidence"), outside, len(state.warnings))

        payload = {
            **_public_base(base_result),
            "inputUrl": base_result.get("inputUrl") or job.url,
            "apiVersion": "3.0",
            "research": research,
            "outside": outside,
            "provenance": provenance,
            "artifacts": {
                "root": str(artifacts.root),
                "items": [item.to_dict() for item in artifacts.list()],
            },
            "cost": cost,
            "coverage": state.coverage.to_dict(),
            "warnings": _dedupe_warnings(state.warnings),
            "confidence": confidence.to_dict(),
        }
        result = DeepResearchResult.model_validate(payload)

        snapshot = artifacts.write_json(
            type="result_snapshot",
            directory="evidence",
            file_name="result.json",
            data=result.to_payload(),
            metadata={"generatedAt": utc_now_iso(), "durationMs": state.elapsed_ms()},
        )
        log_event("result_snapshot", "Result snapshot written", job_id=job.job_id, path=snapshot.path)

        await self._emit(state, Phase.COMPLETED, "Extraction completed", cost=cost)
        logger.info(
            f"Deep extraction {job.job_id} finished in {state.elapsed_ms()}ms: "
            f"completed={state.coverage.completed_steps} skipped={state.coverage.skipped_steps} "
            f"cost=${cost['totalUsd']}"
        )
        return result
