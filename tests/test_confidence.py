from __future__ import annotations

import pytest

from deep_extract.models.result import empty_outside
from deep_extract.research_core.synthesis.confidence import compute_deep_confidence


def _outside(mentions: int = 0, registry: int = 0, competitors: int = 0) -> dict:
    outside = empty_outside()
    outside["pr"]["mentions"] = [{"title": str(i)} for i in range(mentions)]
    outside["company"]["registryFindings"] = [str(i) for i in range(registry)]
    outside["competitive"]["competitors"] = [{"domain": f"c{i}.com"} for i in range(competitors)]
    return outside


def test_blends_base_confidence_with_offsite_signals():
    record = compute_deep_confidence({"overall": 0.8}, _outside(mentions=5, registry=2, competitors=3), 4)

    assert record.extraction_confidence == pytest.approx(0.61)
    assert record.inference_confidence == pytest.approx(0.476)
    assert record.overall == pytest.approx(0.543)
    assert record.fields["outside.pr"] == pytest.approx(0.6)
    assert record.fields["outside.competitive"] == pytest.approx(0.5)
    assert record.fields["outside.company"] == pytest.approx(0.4)
    assert record.explain["outside.pr"] == "mentions: 5"


def test_terms_are_capped():
    record = compute_deep_confidence({"overall": 1.0}, _outside(mentions=100, registry=100, competitors=100), 0)
    assert record.extraction_confidence == 1.0
    assert record.inference_confidence == pytest.approx(0.6 + 0.25 + 0.15)
    assert record.fields["outside.pr"] == 1.0


def test_warning_penalty_is_capped_and_result_clamped():
    record = compute_deep_confidence({"overall": 0.1}, _outside(), 500)
    assert record.extraction_confidence == 0.0
    assert record.overall == 0.0


def test_deterministic_for_equal_inputs():
    args = ({"overall": 0.7, "fields": {"brand.name": 0.9}}, _outside(mentions=3, competitors=2), 2)
    assert compute_deep_confidence(*args) == compute_deep_confidence(*args)


def test_keeps_base_fields_and_explanations():
    record = compute_deep_confidence(
        {"overall": 0.5, "fields": {"brand.name": 0.9}, "explain": {"brand.name": "title tag"}}, _outside(), 0
    )
    assert record.fields["brand.name"] == 0.9
    assert record.explain["brand.name"] == "title tag"


def test_monotonic_in_mentions_and_warnings():
    base = {"overall": 0.6}
    fewer = compute_deep_confidence(base, _outside(mentions=1), 0)
    more = compute_deep_confidence(base, _outside(mentions=4), 0)
    assert more.overall >= fewer.overall

    clean = compute_deep_confidence(base, _outside(), 0)
    noisy = compute_deep_confidence(base, _outside(), 6)
    assert noisy.overall <= clean.overall


def test_missing_base_confidence_counts_as_zero():
    record = compute_deep_confidence(None, _outside(), 0)
    assert record.overall == 0.0
    assert set(record.fields) == {"outside.pr", "outside.competitive", "outside.company"}
