from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import transaction
from django.utils import timezone

from ballots.exceptions import BallotError, BallotNotOpenError, InvalidTransitionError
from ballots.models import Ballot, BallotVoter, Organization, Voter, VoterList
from ballots.notifications import notify_new_ballot, notify_voting_opened

logger = logging.getLogger(__name__)

# Forward-only; there is no way back to draft and nothing after closed.
ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        (Ballot.Status.draft.value, Ballot.Status.open.value),
        (Ballot.Status.open.value, Ballot.Status.closed.value),
    }
)


def normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _normalized_emails(emails: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for raw in emails:
        email = normalize_email(raw)
        if not email or email in seen:
            continue
        try:
            validate_email(email)
        except ValidationError as exc:
            raise BallotError(f"Invalid voter email: {raw!r}") from exc
        seen.add(email)
        result.append(email)
    return result


def get_or_create_voter(*, email: str, name: str = "", user: object | None = None) -> Voter:
    """Return the voter for an email, creating it on first reference.

    An existing voter without a user link is attached to `user` when given.
    """

    normalized = normalize_email(email)
    if not normalized:
        raise BallotError("Voter email is required")

    voter, created = Voter.objects.get_or_create(
        email=normalized,
        defaults={"name": name, "user_id": getattr(user, "pk", None)},
    )
    if not created and user is not None and voter.user_id is None:
        voter.user_id = user.pk
        voter.save(update_fields=["user"])
    return voter


def _link_voters(*, ballot: Ballot, voter_ids: Iterable[int]) -> int:
    existing = set(BallotVoter.objects.filter(ballot=ballot).values_list("voter_id", flat=True))
    links: list[BallotVoter] = []
    for voter_id in voter_ids:
        if voter_id in existing:
            continue
        existing.add(voter_id)
        links.append(BallotVoter(ballot=ballot, voter_id=voter_id))
    BallotVoter.objects.bulk_create(links, ignore_conflicts=True)
    return len(links)


@transaction.atomic
def add_ballot_voters(*, ballot: Ballot, emails: Iterable[str]) -> int:
    voter_ids = [get_or_create_voter(email=email).pk for email in _normalized_emails(emails)]
    added = _link_voters(ballot=ballot, voter_ids=voter_ids)
    if added:
        logger.info("Added %d voter(s) to ballot %s", added, ballot.pk)
    return added


def remove_ballot_voter(*, ballot: Ballot, voter: Voter) -> bool:
    deleted, _ = BallotVoter.objects.filter(ballot=ballot, voter=voter).delete()
    return bool(deleted)


def ballot_voters(*, ballot: Ballot) -> list[Voter]:
    return list(Voter.objects.filter(ballot_links__ballot=ballot).order_by("email", "id"))


def _validate_threshold(*, voting_threshold: str, threshold_percentage: object) -> Decimal | None:
    if voting_threshold not in Ballot.Threshold.values:
        raise BallotError(f"Unknown voting threshold: {voting_threshold!r}")

    if voting_threshold != Ballot.Threshold.custom:
        return None

    if threshold_percentage in (None, ""):
        raise BallotError("A threshold percentage is required for a custom threshold")
    try:
        pct = Decimal(str(threshold_percentage))
    except InvalidOperation as exc:
        raise BallotError("Threshold percentage must be a number") from exc
    if pct < Decimal("0.01") or pct > Decimal("100"):
        raise BallotError("Threshold percentage must be between 0.01 and 100")
    return pct


@transaction.atomic
def create_ballot(
    *,
    creator: object,
    title: str,
    voting_opens_at: datetime.datetime,
    voting_closes_at: datetime.datetime,
    description: str = "",
    organization: Organization | None = None,
    voter_list: VoterList | None = None,
    voter_emails: Iterable[str] = (),
    voting_threshold: str = Ballot.Threshold.simple_majority,
    threshold_percentage: Decimal | float | str | None = None,
    quorum_required: int | None = None,
) -> Ballot:
    """Create a draft ballot and seed its eligible voters.

    Eligibility is the union of the voter list's members and the explicit
    emails. Voters are created for unknown emails.
    """

    clean_title = str(title or "").strip()
    if not clean_title:
        raise BallotError("Title is required")
    if voting_closes_at <= voting_opens_at:
        raise BallotError("Voting must close after it opens")

    pct = _validate_threshold(voting_threshold=voting_threshold, threshold_percentage=threshold_percentage)

    if quorum_required is not None and int(quorum_required) < 1:
        raise BallotError("Quorum must be at least 1")

    emails = _normalized_emails(voter_emails)
    if voter_list is None and not emails:
        raise BallotError("Either a voter list or voter emails are required")

    ballot = Ballot.objects.create(
        title=clean_title,
        description=str(description or ""),
        creator_id=creator.pk,
        organization=organization,
        voter_list=voter_list,
        voting_opens_at=voting_opens_at,
        voting_closes_at=voting_closes_at,
        voting_threshold=voting_threshold,
        threshold_percentage=pct,
        quorum_required=quorum_required,
        status=Ballot.Status.draft,
    )

    voter_ids: list[int] = []
    if voter_list is not None:
        voter_ids.extend(voter_list.members.order_by("id").values_list("voter_id", flat=True))
    voter_ids.extend(get_or_create_voter(email=email).pk for email in emails)
    eligible = _link_voters(ballot=ballot, voter_ids=voter_ids)

    notify_new_ballot(ballot=ballot)

    logger.info("Created ballot %s with %d eligible voter(s)", ballot.pk, eligible)
    return ballot


def _snapshot_eligibility(*, ballot_id: int) -> None:
    if not settings.BALLOT_FREEZE_ELIGIBILITY_AT_OPEN:
        return
    count = BallotVoter.objects.filter(ballot_id=ballot_id).count()
    Ballot.objects.filter(pk=ballot_id).update(eligible_voter_snapshot=count)


def transition_status(*, ballot_id: int, from_status: str, to_status: str) -> bool:
    """Move a ballot between statuses only if it is still in `from_status`.

    Returns False when another writer got there first; the row is left alone.
    A successful move also marks the new status as owing its transition emails
    until `clear_notice_pending` is called.
    """

    if (str(from_status), str(to_status)) not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(f"Cannot move a ballot from {from_status} to {to_status}")

    with transaction.atomic():
        updated = Ballot.objects.filter(pk=ballot_id, status=from_status).update(
            status=to_status,
            notice_pending=to_status,
            updated_at=timezone.now(),
        )
        if updated and to_status == Ballot.Status.open:
            _snapshot_eligibility(ballot_id=ballot_id)

    return bool(updated)


def clear_notice_pending(*, ballot_id: int, status: str) -> None:
    Ballot.objects.filter(pk=ballot_id, notice_pending=status).update(notice_pending="")


def open_voting(
    *,
    ballot: Ballot,
    opens_at: datetime.datetime,
    closes_at: datetime.datetime,
    send_notifications: bool = True,
) -> Ballot:
    if closes_at <= opens_at:
        raise BallotError("Voting must close after it opens")
    if ballot.status != Ballot.Status.draft:
        raise InvalidTransitionError("Only draft ballots can be opened")

    with transaction.atomic():
        updated = Ballot.objects.filter(pk=ballot.pk, status=Ballot.Status.draft).update(
            status=Ballot.Status.open,
            voting_opens_at=opens_at,
            voting_closes_at=closes_at,
            notice_pending=Ballot.Status.open if send_notifications else "",
            updated_at=timezone.now(),
        )
        if not updated:
            raise InvalidTransitionError("Only draft ballots can be opened")
        _snapshot_eligibility(ballot_id=ballot.pk)

    ballot.refresh_from_db()
    logger.info("Opened voting on ballot %s until %s", ballot.pk, ballot.voting_closes_at.isoformat())

    if send_notifications:
        outcome = notify_voting_opened(ballot=ballot)
        if outcome.errors:
            logger.warning(
                "Voting opened notifications incomplete ballot_id=%s sent=%d errors=%d",
                ballot.pk,
                outcome.sent,
                outcome.errors,
            )
        else:
            clear_notice_pending(ballot_id=ballot.pk, status=Ballot.Status.open)

    return ballot


def update_ballot_status(*, ballot: Ballot, status: str) -> Ballot:
    """Overwrite a ballot's status with no transition checks or notifications."""

    if status not in Ballot.Status.values:
        raise BallotError(f"Unknown ballot status: {status!r}")

    Ballot.objects.filter(pk=ballot.pk).update(status=status, updated_at=timezone.now())
    ballot.refresh_from_db(fields=["status", "updated_at"])
    return ballot


def ensure_voting_open(*, ballot: Ballot, now: datetime.datetime | None = None) -> None:
    current = now or timezone.now()
    if current < ballot.voting_opens_at:
        raise BallotNotOpenError("Voting has not started yet")
    # Closed from closes_at onwards, the same instant the scheduler closes it.
    if current >= ballot.voting_closes_at:
        raise BallotNotOpenError("Voting has ended")
    if ballot.status != Ballot.Status.open:
        raise BallotNotOpenError("Voting is not open for this ballot")
