from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from deep_extract.config import settings
from deep_extract.tools.web_utils import is_valid_url

RunMode = Literal["fast", "balanced", "forensic"]
QualityProfile = Literal["local_only", "hybrid", "max_quality"]
AuthMode = Literal["none", "cookie", "form", "http_basic"]
MarkdownMode = Literal["local", "remote", "hybrid"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthOptions(_CamelModel):
    mode: AuthMode = "none"
    credential_ref: str | None = None


class CaptchaOptions(_CamelModel):
    enabled: bool = False
    provider: str | None = None
    api_key_ref: str | None = None


class OffsiteOptions(_CamelModel):
    enabled: bool = True
    providers: list[str] = Field(default_factory=list)
    # serpapiRef / companyDataRef / socialRef / exaRef -> secret store refs
    provider_key_refs: dict[str, str] = Field(default_factory=dict)


class MarkdownOptions(_CamelModel):
    enabled: bool = True
    mode: MarkdownMode = "hybrid"
    remote_provider: str = "markdown_new"
    method: str = "auto"
    retain_images: bool = False
    max_docs: int = Field(default_factory=lambda: settings.markdown_default_max_docs)

    @field_validator("max_docs")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, int(value or 0))


class DeepResearchJob(_CamelModel):
    """One deep extraction request as handed over by the job worker."""

    job_id: str = "adhoc"
    url: str
    mode: RunMode = "forensic"
    quality_profile: QualityProfile = "max_quality"
    site_map_mode: str = "template_samples"
    ignore_robots: bool = True
    max_duration_ms: int | None = None
    budget_usd: float | None = None
    locale_hints: list[str] = Field(default_factory=list)
    auth: AuthOptions | None = None
    captcha: CaptchaOptions | None = None
    offsite: OffsiteOptions | None = None
    markdown: MarkdownOptions = Field(default_factory=MarkdownOptions)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = str(value or "").strip()
        if not is_valid_url(value):
            raise ValueError(f"url must be an absolute http(s) URL: {value!r}")
        return value

    @property
    def effective_max_duration_ms(self) -> int:
        return max(
            settings.min_max_duration_ms,
            int(self.max_duration_ms or settings.default_max_duration_ms),
        )

    @property
    def effective_budget_usd(self) -> float:
        return float(self.budget_usd or settings.default_budget_usd)

    @property
    def max_pages(self) -> int:
        if self.quality_profile == "local_only":
            return {"fast": 6, "balanced": 9}.get(self.mode, 10)
        return {"fast": 8, "balanced": 12}.get(self.mode, 14)

    @property
    def max_depth(self) -> int:
        return 2 if self.mode == "fast" else 3
