"""Vote counting and pass/quorum status for ballots.

Everything here is read-only: callers get plain dicts that are safe to return
as JSON.
"""

from __future__ import annotations

import math
from decimal import Decimal

from django.conf import settings
from django.db.models import Count

from ballots.models import Ballot, BallotVoter, Vote, VoteChoice

SIMPLE_MAJORITY_DISPLAY_PERCENTAGE = 50.01
SUPERMAJORITY_DISPLAY_PERCENTAGE = 66.67
UNANIMOUS_DISPLAY_PERCENTAGE = 100.0


def vote_counts(*, ballot: Ballot | int) -> dict[str, int]:
    ballot_id = ballot.pk if isinstance(ballot, Ballot) else int(ballot)
    counts = {VoteChoice.yea.value: 0, VoteChoice.nay.value: 0, VoteChoice.abstain.value: 0, "total": 0}

    rows = Vote.objects.filter(ballot_id=ballot_id).values("vote_choice").annotate(n=Count("id")).order_by()
    for row in rows:
        n = int(row["n"])
        counts[str(row["vote_choice"])] = n
        counts["total"] += n
    return counts


def _custom_percentage(value: Decimal | float | int | None) -> float | None:
    if value is None:
        return None
    pct = float(value)
    return pct if pct > 0 else None


def required_votes(
    *,
    total_eligible: int,
    threshold: str,
    custom_percentage: Decimal | float | int | None = None,
) -> int:
    n = int(total_eligible)
    match threshold:
        case Ballot.Threshold.simple_majority:
            return n // 2 + 1
        case Ballot.Threshold.supermajority:
            # Integer form of ceil(n * 2 / 3); avoids float rounding at exact thirds.
            return (n * 2 + 2) // 3
        case Ballot.Threshold.unanimous:
            return n
        case Ballot.Threshold.custom:
            pct = _custom_percentage(custom_percentage)
            if pct is None:
                return n
            return math.ceil(Decimal(n) * Decimal(str(pct)) / Decimal(100))
        case _:
            return n // 2 + 1


def threshold_percentage_for_display(
    *,
    threshold: str,
    custom_percentage: Decimal | float | int | None = None,
) -> float:
    match threshold:
        case Ballot.Threshold.supermajority:
            return SUPERMAJORITY_DISPLAY_PERCENTAGE
        case Ballot.Threshold.unanimous:
            return UNANIMOUS_DISPLAY_PERCENTAGE
        case Ballot.Threshold.custom:
            return _custom_percentage(custom_percentage) or SIMPLE_MAJORITY_DISPLAY_PERCENTAGE
        case _:
            return SIMPLE_MAJORITY_DISPLAY_PERCENTAGE


def total_eligible_voters(*, ballot: Ballot) -> int:
    """Return the eligible voter count used for threshold and quorum math.

    Eligibility is read live from the ballot's voter links, so voters added or
    removed after opening change the result. When BALLOT_FREEZE_ELIGIBILITY_AT_OPEN
    is enabled, the count snapshotted at open time wins.
    """

    if settings.BALLOT_FREEZE_ELIGIBILITY_AT_OPEN and ballot.eligible_voter_snapshot is not None:
        return int(ballot.eligible_voter_snapshot)
    return BallotVoter.objects.filter(ballot_id=ballot.pk).count()


def passing_status(*, ballot: Ballot | int) -> dict[str, object]:
    if not isinstance(ballot, Ballot):
        ballot = Ballot.objects.get(pk=ballot)

    counts = vote_counts(ballot=ballot)
    eligible = total_eligible_voters(ballot=ballot)

    required = required_votes(
        total_eligible=eligible,
        threshold=ballot.voting_threshold,
        custom_percentage=ballot.threshold_percentage,
    )
    display_percentage = threshold_percentage_for_display(
        threshold=ballot.voting_threshold,
        custom_percentage=ballot.threshold_percentage,
    )

    yea = counts[VoteChoice.yea.value]
    total_cast = counts[VoteChoice.yea.value] + counts[VoteChoice.nay.value] + counts[VoteChoice.abstain.value]
    current_percentage = yea * 100 / eligible if eligible > 0 else 0

    quorum_required = ballot.quorum_required
    quorum_met = total_cast >= quorum_required if quorum_required else True
    quorum_needed = max(0, quorum_required - total_cast) if quorum_required else None

    return {
        "is_passing": bool(yea >= required and quorum_met),
        "votes_needed": max(0, required - yea),
        "required_votes": required,
        "total_eligible_voters": eligible,
        "threshold_percentage": display_percentage,
        "current_percentage": current_percentage,
        "total_votes_cast": total_cast,
        "vote_counts": counts,
        "quorum_required": quorum_required,
        "quorum_met": quorum_met,
        "quorum_needed": quorum_needed,
    }
