from __future__ import annotations

import datetime
from collections.abc import Iterable

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone
from post_office.models import EmailTemplate

from ballots.models import Ballot, BallotVoter, Vote, Voter

BALLOT_TEMPLATE_SETTINGS = (
    "BALLOT_OPEN_REMINDER_EMAIL_TEMPLATE_NAME",
    "BALLOT_CLOSE_REMINDER_EMAIL_TEMPLATE_NAME",
    "BALLOT_VOTING_OPENED_EMAIL_TEMPLATE_NAME",
    "BALLOT_VOTING_CLOSED_EMAIL_TEMPLATE_NAME",
    "BALLOT_VOTER_INVITATION_EMAIL_TEMPLATE_NAME",
)


def make_user(username: str, **extra: object):
    return get_user_model().objects.create_user(
        username=username,
        email=extra.pop("email", f"{username}@example.com"),
        password="pw-not-used",
        **extra,
    )


def make_ballot(
    *,
    creator,
    status: str = Ballot.Status.draft,
    opens_at: datetime.datetime | None = None,
    closes_at: datetime.datetime | None = None,
    **fields: object,
) -> Ballot:
    now = timezone.now()
    opens = opens_at or now - datetime.timedelta(hours=1)
    closes = closes_at or opens + datetime.timedelta(days=1)
    return Ballot.objects.create(
        title=str(fields.pop("title", "Adopt the budget")),
        creator=creator,
        voting_opens_at=opens,
        voting_closes_at=closes,
        status=status,
        **fields,
    )


def add_voters(ballot: Ballot, emails: Iterable[str], *, users: dict[str, object] | None = None) -> list[Voter]:
    linked = users or {}
    voters: list[Voter] = []
    for email in emails:
        user = linked.get(email)
        voter, _ = Voter.objects.get_or_create(email=email, defaults={"user": user})
        BallotVoter.objects.get_or_create(ballot=ballot, voter=voter)
        voters.append(voter)
    return voters


def add_anonymous_voters(ballot: Ballot, count: int, *, prefix: str = "voter") -> list[Voter]:
    return add_voters(ballot, [f"{prefix}{i}-{ballot.pk}@example.com" for i in range(count)])


def cast(ballot: Ballot, voters: Iterable[Voter], choice: str) -> None:
    for voter in voters:
        Vote.objects.create(ballot=ballot, voter=voter, vote_choice=choice)


def ensure_ballot_email_templates() -> None:
    for setting_name in BALLOT_TEMPLATE_SETTINGS:
        EmailTemplate.objects.update_or_create(
            name=getattr(settings, setting_name),
            defaults={
                "subject": "{{ ballot_title }}",
                "content": "{{ message }} {{ ballot_url }}",
                "html_content": "<p>{{ message }} {{ ballot_url }}</p>",
            },
        )
