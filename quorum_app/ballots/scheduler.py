"""Time-driven ballot tick: reminders, automatic transitions and their emails.

Each phase runs on its own and a failure in one never stops the others. Safe to
run concurrently with itself: transitions are compare-and-swap updates and a
notification is only recorded after its email was confirmed, keyed so a re-run
skips recipients that were already reached. A transition whose emails did not
all go out stays marked on the ballot and is retried by later ticks.
"""

from __future__ import annotations

import datetime
import logging
import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field

from django.conf import settings
from django.db.models import QuerySet
from django.utils import timezone

from ballots.lifecycle import clear_notice_pending, transition_status
from ballots.models import Ballot, Notification
from ballots.notifications import (
    DispatchOutcome,
    dispatch_keyed_notifications,
    notify_voting_closed,
    notify_voting_opened,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronConfig:
    open_reminder_minutes: int = 15
    close_reminder_minutes: int = 15
    batch_size: int = 50
    dry_run: bool = False
    max_iterations: int = 10

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.open_reminder_minutes < 0 or self.close_reminder_minutes < 0:
            raise ValueError("reminder windows cannot be negative")

    @classmethod
    def from_settings(cls, **overrides: object) -> CronConfig:
        values: dict[str, object] = {
            "open_reminder_minutes": settings.BALLOT_CRON_OPEN_REMINDER_MINUTES,
            "close_reminder_minutes": settings.BALLOT_CRON_CLOSE_REMINDER_MINUTES,
            "batch_size": settings.BALLOT_CRON_BATCH_SIZE,
            "dry_run": settings.BALLOT_CRON_DRY_RUN,
            "max_iterations": settings.BALLOT_CRON_MAX_ITERATIONS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class ReminderCount:
    ballot_id: int
    count: int


@dataclass
class CronRunResult:
    now: datetime.datetime
    opened: list[int] = field(default_factory=list)
    closed: list[int] = field(default_factory=list)
    open_reminders: list[ReminderCount] = field(default_factory=list)
    close_reminders: list[ReminderCount] = field(default_factory=list)
    notice_retries: list[ReminderCount] = field(default_factory=list)
    skipped: int = 0
    errors: int = 0

    def absorb(self, outcome: DispatchOutcome) -> None:
        self.skipped += outcome.skipped
        self.errors += outcome.errors

    def as_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["now"] = self.now.isoformat()
        return data


def _minutes_until(when: datetime.datetime, now: datetime.datetime) -> int:
    return max(1, math.ceil((when - now).total_seconds() / 60))


def _plural_minutes(minutes: int) -> str:
    return f"{minutes} minute{'' if minutes == 1 else 's'}"


def _iterate_batches(
    *,
    queryset: QuerySet[Ballot],
    config: CronConfig,
    handle: Callable[[Ballot], None],
) -> None:
    """Walk a queryset in primary-key order, one batch at a time.

    Keyset pagination guarantees progress even when handled rows still match
    the filter afterwards (dry runs, reminders, lost CAS races).
    """

    last_id = 0
    for _ in range(config.max_iterations):
        batch = list(queryset.filter(pk__gt=last_id).order_by("pk")[: config.batch_size])
        for ballot in batch:
            handle(ballot)
        if len(batch) < config.batch_size:
            return
        last_id = batch[-1].pk

    logger.warning("Ballot cron stopped after %d batch(es); more work remains", config.max_iterations)


def _remind_open(*, ballot: Ballot, now: datetime.datetime, config: CronConfig, result: CronRunResult) -> None:
    minutes = _minutes_until(ballot.voting_opens_at, now)
    message = f"Ballot opens in {_plural_minutes(minutes)}"
    outcome = dispatch_keyed_notifications(
        ballot=ballot,
        event="open-reminder",
        occurrence=ballot.voting_opens_at,
        notification_type=Notification.Type.voting_reminder,
        template_name=settings.BALLOT_OPEN_REMINDER_EMAIL_TEMPLATE_NAME,
        message=message,
        extra_context={"minutes": minutes},
        dry_run=config.dry_run,
    )
    result.absorb(outcome)
    result.open_reminders.append(ReminderCount(ballot_id=ballot.pk, count=outcome.sent))


def _remind_close(*, ballot: Ballot, now: datetime.datetime, config: CronConfig, result: CronRunResult) -> None:
    minutes = _minutes_until(ballot.voting_closes_at, now)
    message = f"Ballot closes in {_plural_minutes(minutes)}"
    outcome = dispatch_keyed_notifications(
        ballot=ballot,
        event="close-reminder",
        occurrence=ballot.voting_closes_at,
        notification_type=Notification.Type.voting_reminder,
        template_name=settings.BALLOT_CLOSE_REMINDER_EMAIL_TEMPLATE_NAME,
        message=message,
        extra_context={"minutes": minutes},
        dry_run=config.dry_run,
    )
    result.absorb(outcome)
    result.close_reminders.append(ReminderCount(ballot_id=ballot.pk, count=outcome.sent))


def _settle_notices(*, ballot: Ballot, outcome: DispatchOutcome, config: CronConfig) -> None:
    if config.dry_run or outcome.errors:
        return
    clear_notice_pending(ballot_id=ballot.pk, status=ballot.status)


def _open(*, ballot: Ballot, config: CronConfig, result: CronRunResult) -> None:
    if not config.dry_run:
        if not transition_status(
            ballot_id=ballot.pk,
            from_status=Ballot.Status.draft,
            to_status=Ballot.Status.open,
        ):
            return
        ballot.status = Ballot.Status.open
    result.opened.append(ballot.pk)
    outcome = notify_voting_opened(ballot=ballot, dry_run=config.dry_run)
    result.absorb(outcome)
    _settle_notices(ballot=ballot, outcome=outcome, config=config)


def _close(*, ballot: Ballot, config: CronConfig, result: CronRunResult) -> None:
    if not config.dry_run:
        if not transition_status(
            ballot_id=ballot.pk,
            from_status=Ballot.Status.open,
            to_status=Ballot.Status.closed,
        ):
            return
        ballot.status = Ballot.Status.closed
    result.closed.append(ballot.pk)
    outcome = notify_voting_closed(ballot=ballot, dry_run=config.dry_run)
    result.absorb(outcome)
    _settle_notices(ballot=ballot, outcome=outcome, config=config)


def _retry_notices(*, ballot: Ballot, config: CronConfig, result: CronRunResult) -> None:
    if ballot.status == Ballot.Status.open:
        if ballot.pk in result.opened:
            return
        outcome = notify_voting_opened(ballot=ballot, dry_run=config.dry_run)
    else:
        if ballot.pk in result.closed:
            return
        outcome = notify_voting_closed(ballot=ballot, dry_run=config.dry_run)
    result.absorb(outcome)
    result.notice_retries.append(ReminderCount(ballot_id=ballot.pk, count=outcome.sent))
    _settle_notices(ballot=ballot, outcome=outcome, config=config)


def tick(config: CronConfig, *, now: datetime.datetime | None = None) -> CronRunResult:
    """Run one scheduler pass and report what happened.

    Never raises for phase or recipient failures; they are logged and counted in
    `errors`.
    """

    current = now or timezone.now()
    result = CronRunResult(now=current)

    phases: list[tuple[str, QuerySet[Ballot], Callable[[Ballot], None]]] = [
        (
            "open reminder",
            Ballot.objects.opening_between(
                start=current,
                end=current + datetime.timedelta(minutes=config.open_reminder_minutes),
            ),
            lambda b: _remind_open(ballot=b, now=current, config=config, result=result),
        ),
        (
            "close reminder",
            Ballot.objects.closing_between(
                start=current,
                end=current + datetime.timedelta(minutes=config.close_reminder_minutes),
            ),
            lambda b: _remind_close(ballot=b, now=current, config=config, result=result),
        ),
        (
            "open transition",
            Ballot.objects.due_to_open(now=current),
            lambda b: _open(ballot=b, config=config, result=result),
        ),
        (
            "close transition",
            Ballot.objects.due_to_close(now=current),
            lambda b: _close(ballot=b, config=config, result=result),
        ),
        (
            "notice retry",
            Ballot.objects.with_pending_notices(),
            lambda b: _retry_notices(ballot=b, config=config, result=result),
        ),
    ]

    for name, queryset, handle in phases:
        try:
            _iterate_batches(queryset=queryset, config=config, handle=handle)
        except Exception:
            logger.exception("Ballot cron %s phase failed", name)
            result.errors += 1

    logger.info(
        "Ballot cron tick dry_run=%s opened=%d closed=%d open_reminders=%d close_reminders=%d "
        "notice_retries=%d skipped=%d errors=%d",
        config.dry_run,
        len(result.opened),
        len(result.closed),
        len(result.open_reminders),
        len(result.close_reminders),
        len(result.notice_retries),
        result.skipped,
        result.errors,
    )
    return result
