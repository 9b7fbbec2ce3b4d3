"""One-vote-per-voter ledger with an append-only audit trail.

The unique constraint on Vote(ballot, voter) is the only duplicate guard: the
pre-check below is an optimisation, and a concurrent insert that loses the race
is reported as "not created" rather than as an error.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.db import IntegrityError, transaction

from ballots.exceptions import BallotError, NotEligibleError
from ballots.models import Ballot, Vote, VoteChoice, VoteEvent, Voter
from ballots.roles import ADMIN_ROLES, ActorRole
from ballots.tally import vote_counts


@dataclass(frozen=True)
class CastVoteResult:
    vote: Vote
    created: bool


def _normalize_choice(choice: str) -> str:
    value = str(choice or "").strip().lower()
    if value not in VoteChoice.values:
        raise BallotError(f"Invalid vote choice: {choice!r}")
    return value


def eligible_voter_for_user(*, ballot: Ballot, user: object) -> Voter:
    user_id = getattr(user, "pk", None)
    if user_id is None:
        raise NotEligibleError("User is not registered as a voter")

    voter = Voter.objects.filter(user_id=user_id, ballot_links__ballot=ballot).order_by("id").first()
    if voter is not None:
        return voter

    if Voter.objects.filter(user_id=user_id).exists():
        raise NotEligibleError("Voter is not eligible for this ballot")
    raise NotEligibleError("User is not registered as a voter")


def _current_vote(*, ballot: Ballot, voter: Voter, for_update: bool = False) -> Vote | None:
    votes = Vote.objects.select_for_update() if for_update else Vote.objects
    return votes.filter(ballot=ballot, voter=voter).first()


def user_vote(*, ballot: Ballot, user: object) -> Vote | None:
    user_id = getattr(user, "pk", None)
    if user_id is None:
        return None
    return Vote.objects.filter(ballot=ballot, voter__user_id=user_id).order_by("id").first()


def record_vote_event(
    *,
    ballot: Ballot,
    voter: Voter,
    acting_user: object,
    actor_role: ActorRole,
    event_type: str,
    previous_choice: str | None,
    new_choice: str | None,
    reason: str = "",
) -> VoteEvent:
    return VoteEvent.objects.create(
        ballot=ballot,
        voter=voter,
        actor_user_id=getattr(acting_user, "pk", None),
        actor_role=str(actor_role),
        event_type=event_type,
        previous_choice=previous_choice,
        new_choice=new_choice,
        reason=reason,
    )


def cast_vote(*, ballot: Ballot, acting_user: object, choice: str) -> CastVoteResult:
    """Record a user's first vote on a ballot.

    A voter gets exactly one vote. If one already exists it is returned
    unchanged with created=False; the request boundary decides whether that is
    a conflict.
    """

    vote_choice = _normalize_choice(choice)
    voter = eligible_voter_for_user(ballot=ballot, user=acting_user)

    existing = _current_vote(ballot=ballot, voter=voter)
    if existing is not None:
        return CastVoteResult(vote=existing, created=False)

    try:
        with transaction.atomic():
            vote = Vote.objects.create(ballot=ballot, voter=voter, vote_choice=vote_choice)
            record_vote_event(
                ballot=ballot,
                voter=voter,
                acting_user=acting_user,
                actor_role=ActorRole.user,
                event_type=VoteEvent.EventType.cast,
                previous_choice=None,
                new_choice=vote_choice,
            )
    except IntegrityError:
        return CastVoteResult(vote=Vote.objects.get(ballot=ballot, voter=voter), created=False)

    return CastVoteResult(vote=vote, created=True)


def _require_admin_role(actor_role: ActorRole | str) -> ActorRole:
    try:
        role = ActorRole(str(actor_role))
    except ValueError as exc:
        raise BallotError(f"Unknown actor role: {actor_role!r}") from exc
    if role not in ADMIN_ROLES:
        raise BallotError("Vote overrides require an admin or owner role")
    return role


@transaction.atomic
def admin_set_vote(
    *,
    ballot: Ballot,
    voter: Voter,
    new_choice: str,
    acting_user: object,
    acting_role: ActorRole | str,
    reason: str | None = None,
) -> Vote:
    role = _require_admin_role(acting_role)
    choice = _normalize_choice(new_choice)
    note = str(reason or "").strip()

    existing = _current_vote(ballot=ballot, voter=voter, for_update=True)
    if existing is None:
        try:
            with transaction.atomic():
                vote = Vote.objects.create(ballot=ballot, voter=voter, vote_choice=choice)
        except IntegrityError:
            # A user cast landed between the lookup and the insert.
            existing = Vote.objects.select_for_update().get(ballot=ballot, voter=voter)
        else:
            record_vote_event(
                ballot=ballot,
                voter=voter,
                acting_user=acting_user,
                actor_role=role,
                event_type=VoteEvent.EventType.override,
                previous_choice=None,
                new_choice=choice,
                reason=note,
            )
            return vote

    previous = existing.vote_choice
    if previous == choice:
        # Re-affirming is only worth an audit row when someone said why.
        if note:
            record_vote_event(
                ballot=ballot,
                voter=voter,
                acting_user=acting_user,
                actor_role=role,
                event_type=VoteEvent.EventType.override,
                previous_choice=previous,
                new_choice=choice,
                reason=note,
            )
        return existing

    existing.vote_choice = choice
    existing.save(update_fields=["vote_choice", "updated_at"])
    record_vote_event(
        ballot=ballot,
        voter=voter,
        acting_user=acting_user,
        actor_role=role,
        event_type=VoteEvent.EventType.override,
        previous_choice=previous,
        new_choice=choice,
        reason=note,
    )
    return existing


@transaction.atomic
def admin_clear_vote(
    *,
    ballot: Ballot,
    voter: Voter,
    acting_user: object,
    acting_role: ActorRole | str,
    reason: str | None = None,
) -> bool:
    role = _require_admin_role(acting_role)

    existing = _current_vote(ballot=ballot, voter=voter, for_update=True)
    if existing is None:
        return False

    previous = existing.vote_choice
    existing.delete()
    record_vote_event(
        ballot=ballot,
        voter=voter,
        acting_user=acting_user,
        actor_role=role,
        event_type=VoteEvent.EventType.clear,
        previous_choice=previous,
        new_choice=None,
        reason=str(reason or "").strip(),
    )
    return True


def enriched_votes_for_admin(*, ballot: Ballot) -> dict[str, object]:
    """Return current votes annotated with who last set them and when.

    Votes cast before event logging existed have no event row; they report
    role "user" and the vote's own updated_at.
    """

    votes = list(Vote.objects.filter(ballot=ballot).select_related("voter").order_by("-voted_at", "-id"))

    last_by_voter: dict[int, VoteEvent] = {}
    for event in VoteEvent.objects.filter(ballot=ballot).order_by("-created_at", "-id"):
        last_by_voter.setdefault(event.voter_id, event)

    enriched: list[dict[str, object]] = []
    for vote in votes:
        event = last_by_voter.get(vote.voter_id)
        enriched.append(
            {
                "id": vote.pk,
                "ballot_id": vote.ballot_id,
                "voter_id": vote.voter_id,
                "voter_email": vote.voter.email,
                "vote_choice": vote.vote_choice,
                "voted_at": vote.voted_at,
                "updated_at": vote.updated_at,
                "last_set_by_role": event.actor_role if event is not None else ActorRole.user.value,
                "last_set_at": event.created_at if event is not None else vote.updated_at,
            }
        )

    return {"votes": enriched, "vote_counts": vote_counts(ballot=ballot)}
