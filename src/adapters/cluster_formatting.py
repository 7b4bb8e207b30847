"""Console formatting for clusters and working set changes.

The console host stands in for the particle renderer; keeping formatting here
prevents drift between the run loop and the stats command.
"""

from __future__ import annotations

from core.models import Cluster, Message, WorkingSetChange


def clip(text: str, max_chars: int) -> str:
    """Collapse whitespace and clip with an ellipsis."""

    flat = " ".join(text.split())
    if len(flat) <= max_chars:
        return flat
    return flat[: max(0, max_chars - 1)].rstrip() + "…"


def format_message_line(message: Message, max_chars: int, marker: str = " ") -> str:
    return f"{marker} #{message.id:>6}  {clip(message.content, max_chars)}"


def format_cluster(cluster: Cluster, max_chars: int = 80) -> str:
    """Render one cluster as a block of text.

    Markers: ``*`` focus, ``>`` next focus.
    """

    timestamp = cluster.timestamp.astimezone().strftime("%H:%M:%S %d-%m-%Y")
    lines = [
        f"[{timestamp}] cluster {cluster.sequence_number} ({cluster.duration:g}s)",
        format_message_line(cluster.focus, max_chars, marker="*"),
    ]
    for item in cluster.related:
        marker = ">" if item.message.id == cluster.next_id else " "
        line = format_message_line(item.message, max_chars, marker=marker)
        lines.append(f"{line}  ({item.similarity:.2f})")
    if cluster.next is None:
        lines.append("  (no next message: starting fresh)")
    elif all(item.message.id != cluster.next_id for item in cluster.related):
        lines.append(format_message_line(cluster.next, max_chars, marker=">"))
    return "\n".join(lines)


def format_working_set_change(change: WorkingSetChange) -> str:
    return f"working set {change.reason}: -{len(change.removed)} +{len(change.added)}"


def format_cluster_stats(stats: dict) -> str:
    return (
        f"  {stats['total_messages']} messages, similarity "
        f"{stats['min_similarity']:.2f}-{stats['max_similarity']:.2f} "
        f"(avg {stats['avg_similarity']:.2f}), diversity {stats['diversity']:.2f}"
    )
