from __future__ import annotations

import datetime
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q


class Organization(models.Model):
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=64, unique=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:
        return self.name


class OrganizationMembership(models.Model):
    class Role(models.TextChoices):
        owner = "owner", "Owner"
        admin = "admin", "Admin"
        editor = "editor", "Editor"
        member = "member", "Member"
        viewer = "viewer", "Viewer"

    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name="memberships")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="organization_memberships",
    )
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.member)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "user"],
                name="uniq_orgmembership_org_user",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.organization_id}:{self.user_id}:{self.role}"


class Voter(models.Model):
    email = models.EmailField(max_length=255, unique=True)
    name = models.CharField(max_length=255, blank=True, default="")

    # Voters may be invited before they have an account.
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="voter_records",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("email", "id")

    def __str__(self) -> str:
        return self.email


class VoterList(models.Model):
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="voter_lists",
    )
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="voter_lists",
    )
    voters = models.ManyToManyField(Voter, through="VoterListMember", related_name="voter_lists")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name", "id")

    def __str__(self) -> str:
        return self.name


class VoterListMember(models.Model):
    voter_list = models.ForeignKey(VoterList, on_delete=models.CASCADE, related_name="members")
    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="list_memberships")
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["voter_list", "voter"],
                name="uniq_voterlistmember_list_voter",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.voter_list_id}:{self.voter_id}"


class BallotQuerySet(models.QuerySet["Ballot"]):
    def due_to_open(self, *, now: datetime.datetime) -> BallotQuerySet:
        return self.filter(status=Ballot.Status.draft, voting_opens_at__lte=now)

    def due_to_close(self, *, now: datetime.datetime) -> BallotQuerySet:
        return self.filter(status=Ballot.Status.open, voting_closes_at__lte=now)

    def opening_between(self, *, start: datetime.datetime, end: datetime.datetime) -> BallotQuerySet:
        return self.filter(voting_opens_at__gte=start, voting_opens_at__lte=end)

    def closing_between(self, *, start: datetime.datetime, end: datetime.datetime) -> BallotQuerySet:
        return self.filter(
            status=Ballot.Status.open,
            voting_closes_at__gte=start,
            voting_closes_at__lte=end,
        )

    def with_pending_notices(self) -> BallotQuerySet:
        """Ballots whose last transition still owes opened or closed emails."""
        return self.filter(
            Q(status=Ballot.Status.open, notice_pending=Ballot.Status.open)
            | Q(status=Ballot.Status.closed, notice_pending=Ballot.Status.closed)
        )


class Ballot(models.Model):
    class Status(models.TextChoices):
        draft = "draft", "Draft"
        open = "open", "Open"
        closed = "closed", "Closed"

    class Threshold(models.TextChoices):
        simple_majority = "simple_majority", "Simple majority"
        supermajority = "supermajority", "Supermajority"
        unanimous = "unanimous", "Unanimous"
        custom = "custom", "Custom"

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="created_ballots",
    )
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="ballots",
    )
    voter_list = models.ForeignKey(
        VoterList,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="ballots",
    )

    voting_opens_at = models.DateTimeField()
    voting_closes_at = models.DateTimeField()
    voting_threshold = models.CharField(
        max_length=32,
        choices=Threshold.choices,
        default=Threshold.simple_majority,
    )
    threshold_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        blank=True,
        null=True,
        validators=[MinValueValidator(Decimal("0.01")), MaxValueValidator(Decimal("100"))],
        help_text="Required share of eligible voters when the threshold is custom.",
    )
    quorum_required = models.PositiveIntegerField(
        blank=True,
        null=True,
        validators=[MinValueValidator(1)],
        help_text="Minimum number of votes cast (any choice) for the ballot to pass.",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.draft)

    # Set at draft -> open only when BALLOT_FREEZE_ELIGIBILITY_AT_OPEN is enabled.
    eligible_voter_snapshot = models.PositiveIntegerField(blank=True, null=True)

    # Status whose transition emails have not all been confirmed yet; empty when settled.
    notice_pending = models.CharField(max_length=16, blank=True, default="")

    voters = models.ManyToManyField(Voter, through="BallotVoter", related_name="ballots")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BallotQuerySet.as_manager()

    class Meta:
        ordering = ("-created_at", "id")
        constraints = [
            models.CheckConstraint(
                condition=Q(voting_closes_at__gt=F("voting_opens_at")),
                name="ballot_closes_after_opens",
            ),
            models.CheckConstraint(
                condition=~Q(voting_threshold="custom")
                | Q(threshold_percentage__isnull=False, threshold_percentage__gt=0),
                name="ballot_custom_threshold_has_percentage",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "voting_opens_at"], name="ballot_status_opens"),
            models.Index(fields=["status", "voting_closes_at"], name="ballot_status_closes"),
            models.Index(fields=["voting_opens_at"], name="ballot_opens"),
        ]

    def __str__(self) -> str:
        return self.title


class BallotVoter(models.Model):
    ballot = models.ForeignKey(Ballot, on_delete=models.CASCADE, related_name="ballot_voters")
    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="ballot_links")
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("added_at", "id")
        constraints = [
            models.UniqueConstraint(
                fields=["ballot", "voter"],
                name="uniq_ballotvoter_ballot_voter",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.ballot_id}:{self.voter_id}"


class VoteChoice(models.TextChoices):
    yea = "yea", "Yea"
    nay = "nay", "Nay"
    abstain = "abstain", "Abstain"


class Vote(models.Model):
    ballot = models.ForeignKey(Ballot, on_delete=models.CASCADE, related_name="votes")
    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="votes")
    vote_choice = models.CharField(max_length=16, choices=VoteChoice.choices)

    voted_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-voted_at", "id")
        constraints = [
            # The only guard against duplicate votes; concurrent casts race on it.
            models.UniqueConstraint(
                fields=["ballot", "voter"],
                name="uniq_vote_ballot_voter",
            ),
        ]

    def __str__(self) -> str:
        return f"vote:{self.ballot_id}:{self.voter_id}:{self.vote_choice}"


class VoteEvent(models.Model):
    class ActorRole(models.TextChoices):
        user = "user", "User"
        admin = "admin", "Admin"
        owner = "owner", "Owner"

    class EventType(models.TextChoices):
        cast = "cast", "Cast"
        override = "override", "Override"
        clear = "clear", "Clear"

    ballot = models.ForeignKey(Ballot, on_delete=models.CASCADE, related_name="vote_events")
    voter = models.ForeignKey(Voter, on_delete=models.CASCADE, related_name="vote_events")
    actor_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )
    actor_role = models.CharField(max_length=16, choices=ActorRole.choices)
    event_type = models.CharField(max_length=16, choices=EventType.choices)
    previous_choice = models.CharField(max_length=16, choices=VoteChoice.choices, blank=True, null=True)
    new_choice = models.CharField(max_length=16, choices=VoteChoice.choices, blank=True, null=True)
    reason = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        indexes = [
            models.Index(fields=["ballot", "voter", "created_at"], name="voteevent_ballot_voter_at"),
        ]

    def __str__(self) -> str:
        return f"{self.ballot_id}:{self.voter_id}:{self.event_type}"

    def save(self, *args, **kwargs) -> None:
        if not self._state.adding:
            raise ValueError("Vote events are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Vote events are append-only")


class Notification(models.Model):
    class Type(models.TextChoices):
        new_ballot = "new_ballot", "New ballot"
        voting_reminder = "voting_reminder", "Voting reminder"
        voting_closed = "voting_closed", "Voting closed"
        voting_opened = "voting_opened", "Voting opened"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="ballot_notifications",
    )
    voter = models.ForeignKey(
        Voter,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="notifications",
    )
    ballot = models.ForeignKey(
        Ballot,
        on_delete=models.CASCADE,
        blank=True,
        null=True,
        related_name="notifications",
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    message = models.TextField()

    # ballot:{id}:{event}:{occurrence}; one row per recipient per key.
    idempotency_key = models.CharField(max_length=255, blank=True, null=True)

    sent_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ("-sent_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=["voter", "idempotency_key"],
                name="uniq_notification_voter_idempotency_key",
                condition=Q(idempotency_key__isnull=False),
            ),
        ]
        indexes = [
            models.Index(fields=["ballot", "type"], name="notification_ballot_type"),
            models.Index(fields=["user", "sent_at"], name="notification_user_sent"),
        ]

    def __str__(self) -> str:
        return f"{self.type}:{self.ballot_id}:{self.voter_id or self.user_id}"
