from __future__ import annotations

from deep_extract.models.interfaces import MarkdownCandidate
from deep_extract.research_core.markdown.selector import score_markdown_candidate, select_canonical_markdown


def _local_short() -> MarkdownCandidate:
    return MarkdownCandidate(source="local", artifact_id="local-1", title="Home", content="Welcome to Acme.", tokens=4)


def _remote_rich() -> MarkdownCandidate:
    sections = "\n\n".join(
        f"## Section {i}\n\n- point one\n- point two\n\n[Read more](https://acme.cz/{i})\n\n" + "word " * 80
        for i in range(6)
    )
    return MarkdownCandidate(
        source="remote",
        artifact_id="remote-1",
        title="Acme Studio | Architecture",
        content=f"# Acme Studio\n\n{sections}",
        tokens=0,
    )


def test_rich_remote_beats_short_local_in_either_order():
    for candidates in ([_local_short(), _remote_rich()], [_remote_rich(), _local_short()]):
        selected, ranked = select_canonical_markdown(candidates)
        assert selected is not None
        assert selected.artifact_id == "remote-1"
        assert [c.artifact_id for c in ranked] == ["remote-1", "local-1"]


def test_scores_are_bounded():
    for candidate in (_local_short(), _remote_rich()):
        score = score_markdown_candidate(candidate)
        assert 0.05 <= score <= 1.0


def test_empty_content_scores_floor():
    empty = MarkdownCandidate(source="remote", artifact_id="e", title="Title", content="   ", tokens=0)
    assert score_markdown_candidate(empty) == 0.05


def test_empty_candidates_are_not_selectable():
    empty = MarkdownCandidate(source="remote", artifact_id="e", title=None, content="", tokens=0)
    selected, ranked = select_canonical_markdown([empty, None])
    assert selected is None
    assert ranked == []


def test_ties_keep_input_order():
    first = MarkdownCandidate(source="local", artifact_id="a", title="Same", content="Same body", tokens=2)
    second = MarkdownCandidate(source="local", artifact_id="b", title="Same", content="Same body", tokens=2)
    selected, _ = select_canonical_markdown([first, second])
    assert selected.artifact_id == "a"


def test_generic_title_is_penalised():
    named = MarkdownCandidate(source="local", artifact_id="a", title="Services", content="Body text", tokens=2)
    generic = MarkdownCandidate(source="local", artifact_id="b", title="Home", content="Body text", tokens=2)
    assert score_markdown_candidate(named) > score_markdown_candidate(generic)


def test_selection_records_scores_on_ranked_copies():
    candidate = _local_short()
    selected, _ = select_canonical_markdown([candidate])
    assert candidate.quality_score == 0.0
    assert selected.quality_score == score_markdown_candidate(candidate)
