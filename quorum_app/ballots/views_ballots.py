"""JSON endpoints for ballots: creation, voting, admin overrides and status."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from ballots import lifecycle, notifications, tally, vote_ledger
from ballots.exceptions import (
    AlreadyVotedError,
    BallotError,
    BallotNotOpenError,
    InvalidTransitionError,
    NotEligibleError,
)
from ballots.forms import OVERRIDE_REASON_MAX_LENGTH, AdminSetVoteForm, BallotCreateForm, CastVoteForm, OpenVotingForm
from ballots.models import Ballot, BallotVoter, Notification, Vote, Voter, VoterList
from ballots.permissions import json_login_required
from ballots.rate_limit import allow_request
from ballots.roles import ballot_admin_role

logger = logging.getLogger(__name__)

ALREADY_VOTED_MESSAGE = "You have already voted on this ballot. Votes cannot be changed."


def _json_error(message: str, *, status: int, **extra: object) -> JsonResponse:
    return JsonResponse({"ok": False, "error": message, **extra}, status=status)


def _payload(request: HttpRequest) -> dict[str, object]:
    if request.content_type and request.content_type.startswith("application/json"):
        raw = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data
    return request.POST.dict()


def _get_ballot(ballot_id: int) -> Ballot | None:
    return Ballot.objects.filter(pk=ballot_id).first()


def _is_ballot_voter(*, user: object, ballot: Ballot) -> bool:
    return BallotVoter.objects.filter(ballot=ballot, voter__user_id=getattr(user, "pk", None)).exists()


def _ballot_payload(ballot: Ballot) -> dict[str, object]:
    return {
        "id": ballot.pk,
        "title": ballot.title,
        "description": ballot.description,
        "status": ballot.status,
        "voting_opens_at": ballot.voting_opens_at,
        "voting_closes_at": ballot.voting_closes_at,
        "voting_threshold": ballot.voting_threshold,
        "threshold_percentage": ballot.threshold_percentage,
        "quorum_required": ballot.quorum_required,
        "creator_id": ballot.creator_id,
        "organization_id": ballot.organization_id,
        "voter_list_id": ballot.voter_list_id,
    }


def _vote_payload(vote: Vote) -> dict[str, object]:
    return {
        "id": vote.pk,
        "ballot_id": vote.ballot_id,
        "voter_id": vote.voter_id,
        "vote_choice": vote.vote_choice,
        "voted_at": vote.voted_at,
        "updated_at": vote.updated_at,
    }


def _emit_rate_limit_denial_log(request: HttpRequest, *, endpoint: str, limit: int, window_seconds: int) -> None:
    log_payload: dict[str, str | int | bool] = {
        "event": "quorum.security.rate_limit.denied",
        "component": "ballots",
        "outcome": "denied",
        "endpoint": endpoint,
        "http_method": request.method or "",
        "limit": limit,
        "window_seconds": window_seconds,
    }

    request_id = str(request.headers.get("X-Request-ID") or "").strip()
    if request_id:
        log_payload["request_id"] = request_id

    user_id = getattr(request.user, "pk", None)
    if user_id is not None:
        log_payload["subject_hash"] = hmac.new(
            key=str(settings.SECRET_KEY).encode("utf-8"),
            msg=str(user_id).encode("utf-8"),
            digestmod=hashlib.sha256,
        ).hexdigest()

    logger.warning("Rate limit denied", extra=log_payload)


@require_POST
@json_login_required
def ballot_create(request: HttpRequest) -> HttpResponse:
    try:
        data = _payload(request)
    except (ValueError, json.JSONDecodeError) as exc:
        return _json_error(str(exc), status=400)

    form = BallotCreateForm(data)
    if not form.is_valid():
        return _json_error("Invalid request", status=400, details=form.errors.get_json_data())

    voter_list = None
    voter_list_id = form.cleaned_data.get("voter_list_id")
    if voter_list_id:
        voter_list = VoterList.objects.filter(pk=voter_list_id).first()
        if voter_list is None:
            return _json_error("Voter list not found", status=404)

    try:
        ballot = lifecycle.create_ballot(
            creator=request.user,
            title=form.cleaned_data["title"],
            description=form.cleaned_data.get("description") or "",
            voting_opens_at=form.cleaned_data["voting_opens_at"],
            voting_closes_at=form.cleaned_data["voting_closes_at"],
            voter_list=voter_list,
            voter_emails=form.cleaned_data["voter_emails"],
            voting_threshold=form.cleaned_data["voting_threshold"],
            threshold_percentage=form.cleaned_data.get("threshold_percentage"),
            quorum_required=form.cleaned_data.get("quorum_required"),
        )
    except BallotError as exc:
        return _json_error(str(exc), status=400)

    return JsonResponse({"ok": True, "ballot": _ballot_payload(ballot)}, status=201)


@require_GET
@json_login_required
def ballot_status(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None and not _is_ballot_voter(
        user=request.user, ballot=ballot
    ):
        return _json_error("Ballot not found", status=404)

    return JsonResponse({"ok": True, "ballot": _ballot_payload(ballot), **tally.passing_status(ballot=ballot)})


@require_POST
@json_login_required
def ballot_vote(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)

    try:
        data = _payload(request)
    except (ValueError, json.JSONDecodeError) as exc:
        return _json_error(str(exc), status=400)

    form = CastVoteForm(data)
    if not form.is_valid():
        return _json_error("Invalid request", status=400, details=form.errors.get_json_data())

    try:
        lifecycle.ensure_voting_open(ballot=ballot)
    except BallotNotOpenError as exc:
        return _json_error(str(exc), status=400)

    limit = settings.BALLOT_RATE_LIMIT_VOTE_LIMIT
    window_seconds = settings.BALLOT_RATE_LIMIT_VOTE_WINDOW_SECONDS
    if not allow_request(
        scope="ballots.vote",
        key_parts=[str(ballot.pk), str(request.user.pk)],
        limit=limit,
        window_seconds=window_seconds,
    ):
        _emit_rate_limit_denial_log(request, endpoint="ballot-vote", limit=limit, window_seconds=window_seconds)
        return _json_error("Too many vote submissions. Please try again later.", status=429)

    try:
        if vote_ledger.user_vote(ballot=ballot, user=request.user) is not None:
            raise AlreadyVotedError(ALREADY_VOTED_MESSAGE)
        result = vote_ledger.cast_vote(ballot=ballot, acting_user=request.user, choice=form.cleaned_data["vote_choice"])
        # Lost a race with a concurrent cast for the same voter.
        if not result.created:
            raise AlreadyVotedError(ALREADY_VOTED_MESSAGE)
    except NotEligibleError as exc:
        return _json_error(str(exc), status=403)
    except AlreadyVotedError as exc:
        return _json_error(str(exc), status=409)

    return JsonResponse(
        {"ok": True, "vote": _vote_payload(result.vote), "vote_counts": tally.vote_counts(ballot=ballot)},
        status=201,
    )


@require_GET
@json_login_required
def ballot_votes(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None:
        return _json_error("Forbidden", status=403)

    return JsonResponse({"ok": True, **vote_ledger.enriched_votes_for_admin(ballot=ballot)})


@require_http_methods(["PATCH", "DELETE"])
@json_login_required
def ballot_vote_override(request: HttpRequest, ballot_id: int, voter_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)

    role = ballot_admin_role(user=request.user, ballot=ballot)
    if role is None:
        return _json_error("Forbidden", status=403)

    voter = Voter.objects.filter(pk=voter_id, ballot_links__ballot=ballot).first()
    if voter is None:
        return _json_error("Voter not found for this ballot", status=404)

    try:
        data = json.loads(request.body.decode("utf-8") if request.body else "{}")
    except (ValueError, json.JSONDecodeError) as exc:
        return _json_error(str(exc), status=400)
    if not isinstance(data, dict):
        return _json_error("Request body must be a JSON object", status=400)

    if request.method == "DELETE":
        reason = str(data.get("reason") or "").strip()
        if len(reason) > OVERRIDE_REASON_MAX_LENGTH:
            return _json_error("Reason is too long", status=400)
        if not vote_ledger.admin_clear_vote(
            ballot=ballot,
            voter=voter,
            acting_user=request.user,
            acting_role=role,
            reason=reason or None,
        ):
            return _json_error("Vote not found", status=404)
        logger.info("Vote cleared ballot_id=%s voter_id=%s role=%s", ballot.pk, voter.pk, role)
        return JsonResponse({"ok": True, "vote_counts": tally.vote_counts(ballot=ballot)})

    form = AdminSetVoteForm(data)
    if not form.is_valid():
        return _json_error("Invalid request", status=400, details=form.errors.get_json_data())

    vote = vote_ledger.admin_set_vote(
        ballot=ballot,
        voter=voter,
        new_choice=form.cleaned_data["vote_choice"],
        acting_user=request.user,
        acting_role=role,
        reason=form.cleaned_data.get("reason") or None,
    )
    logger.info(
        "Vote override ballot_id=%s voter_id=%s role=%s choice=%s",
        ballot.pk,
        voter.pk,
        role,
        vote.vote_choice,
    )

    return JsonResponse({"ok": True, "vote": _vote_payload(vote), "vote_counts": tally.vote_counts(ballot=ballot)})


@require_POST
@json_login_required
def ballot_open(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None:
        return _json_error("Forbidden", status=403)

    try:
        data = _payload(request)
    except (ValueError, json.JSONDecodeError) as exc:
        return _json_error(str(exc), status=400)

    form = OpenVotingForm(data)
    if not form.is_valid():
        return _json_error("Invalid request", status=400, details=form.errors.get_json_data())

    send_notifications = data.get("send_notifications", True)
    if isinstance(send_notifications, str):
        send_notifications = send_notifications.strip().lower() not in {"0", "false", "no", "off"}

    try:
        ballot = lifecycle.open_voting(
            ballot=ballot,
            opens_at=form.cleaned_data["voting_opens_at"],
            closes_at=form.cleaned_data["voting_closes_at"],
            send_notifications=bool(send_notifications),
        )
    except InvalidTransitionError as exc:
        return _json_error(str(exc), status=409)
    except BallotError as exc:
        return _json_error(str(exc), status=400)

    return JsonResponse({"ok": True, "ballot": _ballot_payload(ballot)})


@require_http_methods(["GET", "POST"])
@json_login_required
def ballot_voters(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None:
        return _json_error("Forbidden", status=403)

    if request.method == "POST":
        try:
            data = _payload(request)
        except (ValueError, json.JSONDecodeError) as exc:
            return _json_error(str(exc), status=400)

        emails = data.get("emails")
        if isinstance(emails, str):
            emails = [e.strip() for e in emails.replace("\n", ",").split(",") if e.strip()]
        if not isinstance(emails, list) or not emails:
            return _json_error("emails is required", status=400)

        try:
            added = lifecycle.add_ballot_voters(ballot=ballot, emails=[str(e) for e in emails])
        except BallotError as exc:
            return _json_error(str(exc), status=400)
        return JsonResponse({"ok": True, "added": added})

    voters = [
        {"id": v.pk, "email": v.email, "name": v.name, "user_id": v.user_id}
        for v in lifecycle.ballot_voters(ballot=ballot)
    ]
    return JsonResponse({"ok": True, "voters": voters})


@require_http_methods(["DELETE"])
@json_login_required
def ballot_voter_remove(request: HttpRequest, ballot_id: int, voter_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None:
        return _json_error("Forbidden", status=403)

    voter = Voter.objects.filter(pk=voter_id).first()
    if voter is None or not lifecycle.remove_ballot_voter(ballot=ballot, voter=voter):
        return _json_error("Voter not found for this ballot", status=404)
    return JsonResponse({"ok": True})


@require_POST
@json_login_required
def ballot_invitations(request: HttpRequest, ballot_id: int) -> HttpResponse:
    ballot = _get_ballot(ballot_id)
    if ballot is None:
        return _json_error("Ballot not found", status=404)
    if ballot_admin_role(user=request.user, ballot=ballot) is None:
        return _json_error("Forbidden", status=403)
    if ballot.status == Ballot.Status.closed:
        return _json_error("Voting is closed for this ballot", status=409)

    sent = notifications.send_voter_invitations(ballot=ballot)
    return JsonResponse({"ok": True, "sent": sent})


def _notification_payload(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.pk,
        "type": notification.type,
        "message": notification.message,
        "ballot_id": notification.ballot_id,
        "sent_at": notification.sent_at,
        "read_at": notification.read_at,
    }


@require_GET
@json_login_required
def notification_list(request: HttpRequest) -> HttpResponse:
    items = [_notification_payload(n) for n in notifications.user_notifications(user=request.user)]
    return JsonResponse({"ok": True, "notifications": items})


@require_POST
@json_login_required
def notification_read(request: HttpRequest, notification_id: int) -> HttpResponse:
    notification = notifications.mark_notification_read(notification_id=notification_id, user=request.user)
    if notification is None:
        return _json_error("Notification not found", status=404)
    return JsonResponse({"ok": True, "notification": _notification_payload(notification)})
