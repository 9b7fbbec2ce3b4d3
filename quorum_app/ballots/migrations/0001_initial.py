from __future__ import annotations

from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("slug", models.SlugField(max_length=64, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ("name", "id"),
            },
        ),
        migrations.CreateModel(
            name="OrganizationMembership",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("owner", "Owner"),
                            ("admin", "Admin"),
                            ("editor", "Editor"),
                            ("member", "Member"),
                            ("viewer", "Viewer"),
                        ],
                        default="member",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="memberships",
                        to="ballots.organization",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="organization_memberships",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ("created_at", "id"),
                "constraints": [
                    models.UniqueConstraint(fields=("organization", "user"), name="uniq_orgmembership_org_user"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Voter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=255, unique=True)),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="voter_records",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ("email", "id"),
            },
        ),
        migrations.CreateModel(
            name="VoterList",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voter_lists",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voter_lists",
                        to="ballots.organization",
                    ),
                ),
            ],
            options={
                "ordering": ("name", "id"),
            },
        ),
        migrations.CreateModel(
            name="VoterListMember",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("added_at", models.DateTimeField(auto_now_add=True)),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="list_memberships",
                        to="ballots.voter",
                    ),
                ),
                (
                    "voter_list",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="members",
                        to="ballots.voterlist",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("voter_list", "voter"), name="uniq_voterlistmember_list_voter"),
                ],
            },
        ),
        migrations.AddField(
            model_name="voterlist",
            name="voters",
            field=models.ManyToManyField(
                related_name="voter_lists",
                through="ballots.VoterListMember",
                to="ballots.voter",
            ),
        ),
        migrations.CreateModel(
            name="Ballot",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("voting_opens_at", models.DateTimeField()),
                ("voting_closes_at", models.DateTimeField()),
                (
                    "voting_threshold",
                    models.CharField(
                        choices=[
                            ("simple_majority", "Simple majority"),
                            ("supermajority", "Supermajority"),
                            ("unanimous", "Unanimous"),
                            ("custom", "Custom"),
                        ],
                        default="simple_majority",
                        max_length=32,
                    ),
                ),
                (
                    "threshold_percentage",
                    models.DecimalField(
                        blank=True,
                        decimal_places=2,
                        help_text="Required share of eligible voters when the threshold is custom.",
                        max_digits=5,
                        null=True,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0.01")),
                            django.core.validators.MaxValueValidator(Decimal("100")),
                        ],
                    ),
                ),
                (
                    "quorum_required",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Minimum number of votes cast (any choice) for the ballot to pass.",
                        null=True,
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("draft", "Draft"), ("open", "Open"), ("closed", "Closed")],
                        default="draft",
                        max_length=16,
                    ),
                ),
                ("eligible_voter_snapshot", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "creator",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="created_ballots",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "organization",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ballots",
                        to="ballots.organization",
                    ),
                ),
                (
                    "voter_list",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="ballots",
                        to="ballots.voterlist",
                    ),
                ),
            ],
            options={
                "ordering": ("-created_at", "id"),
                "indexes": [
                    models.Index(fields=["status", "voting_opens_at"], name="ballot_status_opens"),
                    models.Index(fields=["status", "voting_closes_at"], name="ballot_status_closes"),
                    models.Index(fields=["voting_opens_at"], name="ballot_opens"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("voting_closes_at__gt", models.F("voting_opens_at"))),
                        name="ballot_closes_after_opens",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("voting_threshold", "custom"), _negated=True),
                            models.Q(("threshold_percentage__isnull", False), ("threshold_percentage__gt", 0)),
                            _connector="OR",
                        ),
                        name="ballot_custom_threshold_has_percentage",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="BallotVoter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("added_at", models.DateTimeField(auto_now_add=True)),
                (
                    "ballot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ballot_voters",
                        to="ballots.ballot",
                    ),
                ),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ballot_links",
                        to="ballots.voter",
                    ),
                ),
            ],
            options={
                "ordering": ("added_at", "id"),
                "constraints": [
                    models.UniqueConstraint(fields=("ballot", "voter"), name="uniq_ballotvoter_ballot_voter"),
                ],
            },
        ),
        migrations.AddField(
            model_name="ballot",
            name="voters",
            field=models.ManyToManyField(
                related_name="ballots",
                through="ballots.BallotVoter",
                to="ballots.voter",
            ),
        ),
        migrations.CreateModel(
            name="Vote",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "vote_choice",
                    models.CharField(
                        choices=[("yea", "Yea"), ("nay", "Nay"), ("abstain", "Abstain")],
                        max_length=16,
                    ),
                ),
                ("voted_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "ballot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="votes",
                        to="ballots.ballot",
                    ),
                ),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="votes",
                        to="ballots.voter",
                    ),
                ),
            ],
            options={
                "ordering": ("-voted_at", "id"),
                "constraints": [
                    models.UniqueConstraint(fields=("ballot", "voter"), name="uniq_vote_ballot_voter"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoteEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "actor_role",
                    models.CharField(
                        choices=[("user", "User"), ("admin", "Admin"), ("owner", "Owner")],
                        max_length=16,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[("cast", "Cast"), ("override", "Override"), ("clear", "Clear")],
                        max_length=16,
                    ),
                ),
                (
                    "previous_choice",
                    models.CharField(
                        blank=True,
                        choices=[("yea", "Yea"), ("nay", "Nay"), ("abstain", "Abstain")],
                        max_length=16,
                        null=True,
                    ),
                ),
                (
                    "new_choice",
                    models.CharField(
                        blank=True,
                        choices=[("yea", "Yea"), ("nay", "Nay"), ("abstain", "Abstain")],
                        max_length=16,
                        null=True,
                    ),
                ),
                ("reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor_user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "ballot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_events",
                        to="ballots.ballot",
                    ),
                ),
                (
                    "voter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="vote_events",
                        to="ballots.voter",
                    ),
                ),
            ],
            options={
                "ordering": ("created_at", "id"),
                "indexes": [
                    models.Index(fields=["ballot", "voter", "created_at"], name="voteevent_ballot_voter_at"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("new_ballot", "New ballot"),
                            ("voting_reminder", "Voting reminder"),
                            ("voting_closed", "Voting closed"),
                            ("voting_opened", "Voting opened"),
                        ],
                        max_length=32,
                    ),
                ),
                ("message", models.TextField()),
                ("idempotency_key", models.CharField(blank=True, max_length=255, null=True)),
                ("sent_at", models.DateTimeField(auto_now_add=True)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                (
                    "ballot",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="ballots.ballot",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ballot_notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "voter",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="ballots.voter",
                    ),
                ),
            ],
            options={
                "ordering": ("-sent_at", "-id"),
                "indexes": [
                    models.Index(fields=["ballot", "type"], name="notification_ballot_type"),
                    models.Index(fields=["user", "sent_at"], name="notification_user_sent"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("idempotency_key__isnull", False)),
                        fields=("voter", "idempotency_key"),
                        name="uniq_notification_voter_idempotency_key",
                    ),
                ],
            },
        ),
    ]
