from __future__ import annotations

from adapters.cluster_formatting import clip, format_cluster, format_cluster_stats, format_working_set_change
from core.models import REASON_CLUSTER_CYCLE, Cluster, RelatedMessage, WorkingSetChange
from fakes import BASE_TIME, make_message


def _cluster(next_message=None, related=None) -> Cluster:
    return Cluster(
        focus=make_message(1, "The focus message"),
        related=tuple(related or ()),
        next=next_message,
        duration=20.0,
        timestamp=BASE_TIME,
        sequence_number=7,
    )


def test_clip_collapses_whitespace_and_truncates() -> None:
    assert clip("  one\n two  ", 20) == "one two"
    assert clip("abcdefghij", 5) == "abcd…"


def test_format_cluster_marks_focus_and_next() -> None:
    related = [RelatedMessage(make_message(2, "Related one"), 0.91), RelatedMessage(make_message(3), 0.4)]
    text = format_cluster(_cluster(next_message=related[0].message, related=related))
    lines = text.splitlines()

    assert "cluster 7 (20s)" in lines[0]
    assert lines[1].startswith("*")
    assert "The focus message" in lines[1]
    assert lines[2].startswith(">")
    assert lines[2].endswith("(0.91)")
    assert lines[3].startswith(" ")
    assert len(lines) == 4


def test_format_cluster_without_next() -> None:
    text = format_cluster(_cluster())

    assert text.splitlines()[-1].strip() == "(no next message: starting fresh)"


def test_format_cluster_next_outside_related() -> None:
    related = [RelatedMessage(make_message(2), 0.5)]
    text = format_cluster(_cluster(next_message=make_message(9, "From the pool"), related=related))

    assert text.splitlines()[-1].startswith(">")
    assert "From the pool" in text


def test_format_working_set_change() -> None:
    change = WorkingSetChange(removed=["1", "2"], added=[make_message(5)], reason=REASON_CLUSTER_CYCLE)

    assert format_working_set_change(change) == "working set cluster_cycle: -2 +1"


def test_format_cluster_stats() -> None:
    stats = {
        "total_messages": 3,
        "avg_similarity": 0.6,
        "min_similarity": 0.4,
        "max_similarity": 0.8,
        "diversity": 0.25,
    }

    assert format_cluster_stats(stats) == "  3 messages, similarity 0.40-0.80 (avg 0.60), diversity 0.25"
