from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Literal

import post_office.mail
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction
from django.utils import timezone
from post_office.models import STATUS, EmailTemplate

from ballots.exceptions import NotificationSendError
from ballots.models import Ballot, BallotVoter, Notification

logger = logging.getLogger(__name__)

NotificationEvent = Literal["open-reminder", "close-reminder", "opened", "closed"]

VOTING_OPENED_MESSAGE = "Voting is now open"
VOTING_CLOSED_MESSAGE = "Voting is now closed"


@dataclass(frozen=True)
class Recipient:
    voter_id: int
    email: str
    name: str
    user_id: int | None


@dataclass
class DispatchOutcome:
    sent: int = 0
    skipped: int = 0
    errors: int = 0


def _post_office_json_context(context: Mapping[str, object]) -> dict[str, object]:
    """Coerce context values to JSON-safe payloads for django-post-office."""
    encoded = json.dumps(dict(context), cls=DjangoJSONEncoder)
    decoded = json.loads(encoded)
    if isinstance(decoded, dict):
        return {str(k): v for k, v in decoded.items()}
    return {}


def _format_datetime(dt: datetime.datetime | None) -> str:
    if dt is None:
        return ""
    value = dt
    if timezone.is_naive(value):
        value = timezone.make_aware(value, timezone=datetime.UTC)
    return f"{value.astimezone(datetime.UTC).strftime('%Y-%m-%d %H:%M')} (UTC)"


def ballot_url(*, ballot: Ballot) -> str:
    base = str(settings.PUBLIC_BASE_URL or "").strip().rstrip("/")
    path = f"/ballots/{ballot.pk}"
    if not base:
        return path
    return f"{base}{path}"


def build_idempotency_key(*, ballot_id: int, event: NotificationEvent, occurrence: datetime.datetime) -> str:
    return f"ballot:{ballot_id}:{event}:{occurrence.astimezone(datetime.UTC).isoformat()}"


def ballot_recipients(*, ballot: Ballot) -> list[Recipient]:
    links = (
        BallotVoter.objects.filter(ballot=ballot)
        .select_related("voter")
        .order_by("id")
    )
    recipients: list[Recipient] = []
    for link in links:
        email = str(link.voter.email or "").strip()
        if not email:
            continue
        recipients.append(
            Recipient(
                voter_id=link.voter.pk,
                email=email,
                name=str(link.voter.name or ""),
                user_id=link.voter.user_id,
            )
        )
    return recipients


def ballot_email_context(*, ballot: Ballot, recipient: Recipient | None = None) -> dict[str, object]:
    return {
        "ballot_id": ballot.pk,
        "ballot_title": ballot.title,
        "ballot_description": ballot.description,
        "ballot_url": ballot_url(ballot=ballot),
        "voting_opens_at": _format_datetime(ballot.voting_opens_at),
        "voting_closes_at": _format_datetime(ballot.voting_closes_at),
        "voting_threshold": ballot.get_voting_threshold_display(),
        "voter_email": recipient.email if recipient is not None else "",
        "voter_name": (recipient.name or recipient.email) if recipient is not None else "",
    }


def send_ballot_email(*, recipient_email: str, template_name: str, context: Mapping[str, object]) -> bool:
    """Send a templated email immediately and report whether delivery was confirmed.

    post_office records the attempt either way; only STATUS.sent counts as a
    confirmed send. Transport errors surface as a failed status, template and
    database errors propagate to the caller.
    """

    template = EmailTemplate.objects.get(name=template_name, language="")
    json_context = _post_office_json_context(context)
    email = post_office.mail.send(
        recipients=[recipient_email],
        sender=settings.DEFAULT_FROM_EMAIL,
        template=template,
        context=json_context,
        priority="now",
        render_on_delivery=False,
    )

    # Keep the template and context on the Email row for the admin UI.
    email.template = template
    email.context = json_context
    email.save(update_fields=["template", "context"])

    sent = email.status == STATUS.sent
    if not sent:
        logger.warning(
            "Ballot email not confirmed as sent template=%s email_id=%s status=%s",
            template_name,
            email.pk,
            email.status,
        )
    return sent


def already_notified_voter_ids(
    *,
    ballot: Ballot,
    voter_ids: Iterable[int],
    idempotency_key: str,
) -> set[int]:
    ids = list(voter_ids)
    if not ids:
        return set()
    return set(
        Notification.objects.filter(
            ballot=ballot,
            voter_id__in=ids,
            idempotency_key=idempotency_key,
        ).values_list("voter_id", flat=True)
    )


def record_notification(
    *,
    ballot: Ballot,
    recipient: Recipient,
    notification_type: str,
    message: str,
    idempotency_key: str,
) -> bool:
    """Persist the idempotency marker for a sent notification.

    Returns False when an overlapping run already recorded the same key.
    """

    try:
        with transaction.atomic():
            Notification.objects.create(
                user_id=recipient.user_id,
                voter_id=recipient.voter_id,
                ballot=ballot,
                type=notification_type,
                message=message,
                idempotency_key=idempotency_key,
            )
    except IntegrityError:
        logger.info(
            "Notification already recorded by a concurrent run ballot_id=%s voter_id=%s key=%s",
            ballot.pk,
            recipient.voter_id,
            idempotency_key,
        )
        return False
    return True


def dispatch_keyed_notifications(
    *,
    ballot: Ballot,
    event: NotificationEvent,
    occurrence: datetime.datetime,
    notification_type: str,
    template_name: str,
    message: str,
    extra_context: Mapping[str, object] | None = None,
    dry_run: bool = False,
) -> DispatchOutcome:
    """Email every eligible voter once per (ballot, event, occurrence).

    Recipients that already have a notification for the key are skipped. A
    notification row is written only after the email is confirmed as sent, so a
    failed send is retried by the next run.
    """

    outcome = DispatchOutcome()
    key = build_idempotency_key(ballot_id=ballot.pk, event=event, occurrence=occurrence)
    recipients = ballot_recipients(ballot=ballot)
    notified = already_notified_voter_ids(
        ballot=ballot,
        voter_ids=[r.voter_id for r in recipients],
        idempotency_key=key,
    )

    for recipient in recipients:
        if recipient.voter_id in notified:
            outcome.skipped += 1
            continue

        if dry_run:
            outcome.sent += 1
            continue

        context = {
            **ballot_email_context(ballot=ballot, recipient=recipient),
            "message": message,
            **(extra_context or {}),
        }
        try:
            if not send_ballot_email(
                recipient_email=recipient.email,
                template_name=template_name,
                context=context,
            ):
                raise NotificationSendError(f"{event} email to voter {recipient.voter_id} was not confirmed")
        except Exception:
            logger.exception(
                "Ballot %s email failed ballot_id=%s voter_id=%s",
                event,
                ballot.pk,
                recipient.voter_id,
            )
            outcome.errors += 1
            continue

        if record_notification(
            ballot=ballot,
            recipient=recipient,
            notification_type=notification_type,
            message=message,
            idempotency_key=key,
        ):
            outcome.sent += 1

    return outcome


def send_voter_invitations(*, ballot: Ballot) -> int:
    """Send the invitation email to every eligible voter; return the confirmed count."""

    recipients = ballot_recipients(ballot=ballot)
    sent = 0
    for recipient in recipients:
        context = {
            **ballot_email_context(ballot=ballot, recipient=recipient),
            "is_registered_user": recipient.user_id is not None,
        }
        try:
            if send_ballot_email(
                recipient_email=recipient.email,
                template_name=settings.BALLOT_VOTER_INVITATION_EMAIL_TEMPLATE_NAME,
                context=context,
            ):
                sent += 1
        except Exception:
            logger.exception("Voter invitation failed ballot_id=%s voter_id=%s", ballot.pk, recipient.voter_id)

    logger.info("Sent %d/%d voter invitations for ballot %s", sent, len(recipients), ballot.pk)
    return sent


def notify_new_ballot(*, ballot: Ballot) -> Notification:
    return Notification.objects.create(
        user_id=ballot.creator_id,
        ballot=ballot,
        type=Notification.Type.new_ballot,
        message=f'Your ballot "{ballot.title}" has been created and is ready for voting.',
    )


def user_notifications(*, user: object) -> list[Notification]:
    return list(Notification.objects.filter(user_id=getattr(user, "pk", None)).order_by("-sent_at", "-id"))


def mark_notification_read(*, notification_id: int, user: object) -> Notification | None:
    now = timezone.now()
    updated = Notification.objects.filter(
        pk=notification_id,
        user_id=getattr(user, "pk", None),
        read_at__isnull=True,
    ).update(read_at=now)
    if not updated:
        return Notification.objects.filter(pk=notification_id, user_id=getattr(user, "pk", None)).first()
    return Notification.objects.get(pk=notification_id)


def notify_voting_opened(*, ballot: Ballot, dry_run: bool = False) -> DispatchOutcome:
    return dispatch_keyed_notifications(
        ballot=ballot,
        event="opened",
        occurrence=ballot.voting_opens_at,
        notification_type=Notification.Type.voting_opened,
        template_name=settings.BALLOT_VOTING_OPENED_EMAIL_TEMPLATE_NAME,
        message=VOTING_OPENED_MESSAGE,
        dry_run=dry_run,
    )


def notify_voting_closed(*, ballot: Ballot, dry_run: bool = False) -> DispatchOutcome:
    return dispatch_keyed_notifications(
        ballot=ballot,
        event="closed",
        occurrence=ballot.voting_closes_at,
        notification_type=Notification.Type.voting_closed,
        template_name=settings.BALLOT_VOTING_CLOSED_EMAIL_TEMPLATE_NAME,
        message=VOTING_CLOSED_MESSAGE,
        dry_run=dry_run,
    )
