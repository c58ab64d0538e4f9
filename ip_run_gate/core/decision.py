"""
Gate decision engine.

Decides whether a run may proceed from the records visible for its scope.
Every function here is pure: callers that observe the same snapshot reach
the same verdict without talking to each other.

Evaluation Order:
1. Canonical order - timestamp ascending, run id breaks ties
2. Gap replay - greedy walk keeping runs spaced by the minimum gap
3. Quota truncation - only the first N gap-admitted runs count
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List

from ip_run_gate.config.loader import PolicyConfig
from ip_run_gate.storage.models import UsageRecord, format_timestamp

SECONDS_PER_HOUR = 3600


class GateReason(str, Enum):
    """Why a run was (or was not) admitted."""
    NONE = ""
    GAP_NOT_SATISFIED = "gap_not_satisfied"
    MAX_RUNS_REACHED = "max_runs_reached"
    ERROR_FAIL_OPEN = "error_fail_open"


@dataclass(frozen=True)
class GateDecision:
    """Verdict returned to a calling run."""
    admit: bool
    uses_today: int
    last_use_utc: str
    reason: GateReason = GateReason.NONE

    @classmethod
    def fail_open(cls, uses_today: int = 0, last_use_utc: str = "") -> "GateDecision":
        """Permissive verdict used when the decision could not be computed."""
        return cls(
            admit=True,
            uses_today=uses_today,
            last_use_utc=last_use_utc,
            reason=GateReason.ERROR_FAIL_OPEN
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "admit": self.admit,
            "uses_today": self.uses_today,
            "last_use_utc": self.last_use_utc,
            "reason": self.reason.value,
        }


def canonical_order(records: Iterable[UsageRecord]) -> List[UsageRecord]:
    """Sort records by timestamp, breaking ties on run id."""
    return sorted(records, key=lambda record: record.sort_key)


def whole_hours_between(earlier: UsageRecord, later: UsageRecord) -> int:
    """Elapsed whole hours, truncated toward zero (6h59m counts as 6)."""
    seconds = (later.timestamp - earlier.timestamp).total_seconds()
    return int(seconds / SECONDS_PER_HOUR)


def replay_gap_admissions(ordered: List[UsageRecord], min_gap_hours: int) -> List[UsageRecord]:
    """Greedy single pass admitting runs spaced by at least the gap.

    The gap is measured from the last *admitted* run, so a skipped run
    never becomes the reference for the next one.

    Args:
        ordered: Records already in canonical order
        min_gap_hours: Minimum whole hours between admitted runs

    Returns:
        Admitted subsequence, still in canonical order
    """
    admitted: List[UsageRecord] = []
    for record in ordered:
        if not admitted or whole_hours_between(admitted[-1], record) >= min_gap_hours:
            admitted.append(record)
    return admitted


def truncate_to_quota(admitted: List[UsageRecord], max_runs: int) -> List[UsageRecord]:
    """Keep only the first ``max_runs`` admitted runs."""
    return admitted[:max_runs]


def decide(
    records: Iterable[UsageRecord],
    run_id: str,
    policy: PolicyConfig
) -> GateDecision:
    """
    Decide whether ``run_id`` may proceed given a scope snapshot.

    A run missing from a non-empty snapshot (its own append not yet
    visible) is denied as a gap violation; no stronger answer exists.

    Args:
        records: Every record visible for the scope, in any order
        run_id: Run identifier of the calling request
        policy: Quota and gap thresholds

    Returns:
        GateDecision for the calling run
    """
    ordered = canonical_order(records)
    if not ordered:
        return GateDecision(admit=True, uses_today=0, last_use_utc="")

    uses_today = len(ordered)
    last_use_utc = format_timestamp(ordered[-1].timestamp)

    gap_admitted = replay_gap_admissions(ordered, policy.min_gap_hours)
    quota_admitted = truncate_to_quota(gap_admitted, policy.max_runs_per_day)

    if any(record.run_id == run_id for record in quota_admitted):
        return GateDecision(admit=True, uses_today=uses_today, last_use_utc=last_use_utc)

    if any(record.run_id == run_id for record in gap_admitted):
        reason = GateReason.MAX_RUNS_REACHED
    else:
        reason = GateReason.GAP_NOT_SATISFIED

    return GateDecision(
        admit=False,
        uses_today=uses_today,
        last_use_utc=last_use_utc,
        reason=reason
    )
