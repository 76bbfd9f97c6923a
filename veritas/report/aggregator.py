"""Summary statistics over a verification result set."""

from typing import Iterable

from ..models.schemas import AnalysisStats, CheckStatus, VerificationItem

_FIELD_FOR_STATUS = {
    CheckStatus.ACCURATE: "accurate",
    CheckStatus.PARAPHRASED: "paraphrased",
    CheckStatus.MISATTRIBUTED: "misattributed",
    CheckStatus.UNVERIFIABLE: "unverifiable",
}


def aggregate(items: Iterable[VerificationItem]) -> AnalysisStats:
    """Count items per status.

    Always a full recount of the given items, so the result cannot drift
    from the result set it describes.
    """
    counts = {field: 0 for field in _FIELD_FOR_STATUS.values()}
    total = 0
    
    for item in items:
        counts[_FIELD_FOR_STATUS[item.status]] += 1
        total += 1
    
    return AnalysisStats(total=total, **counts)


def summarize(stats: AnalysisStats) -> str:
    """Generate a human-readable summary of the statistics."""
    if stats.total == 0:
        return "No quotations or attributions were found in the manuscript."
    
    summary_parts = [
        f"Checked {stats.total} citations.",
        f"Results: {stats.accurate} accurate, {stats.paraphrased} paraphrased, "
        f"{stats.misattributed} misattributed, {stats.unverifiable} unverifiable.",
    ]
    
    flagged = stats.misattributed + stats.unverifiable
    if flagged:
        summary_parts.append(f"{flagged / stats.total:.1%} need editorial attention.")
    
    return " ".join(summary_parts)
