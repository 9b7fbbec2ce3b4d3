import datetime
import json
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from ballots.models import Ballot, Notification, Vote, VoteChoice, VoteEvent, VoterList, VoterListMember
from ballots.tests.helpers import add_voters, make_ballot, make_user


class _ViewTestCase(TestCase):
    def setUp(self) -> None:
        super().setUp()
        cache.clear()
        self.owner = make_user("owner")
        self.alice = make_user("alice")
        self.bob = make_user("bob")
        self.ballot = make_ballot(creator=self.owner, status=Ballot.Status.open)
        self.alice_voter, self.bob_voter = add_voters(
            self.ballot,
            ["alice@example.com", "bob@example.com"],
            users={"alice@example.com": self.alice, "bob@example.com": self.bob},
        )

    def _post_json(self, url: str, payload: object):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")


class BallotVoteViewTests(_ViewTestCase):
    def _url(self, ballot_id: int | None = None) -> str:
        return reverse("ballot-vote", args=[ballot_id or self.ballot.pk])

    def test_requires_login(self) -> None:
        resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json(), {"ok": False, "error": "Authentication required."})

    def test_rejects_get(self) -> None:
        self.client.force_login(self.alice)

        self.assertEqual(self.client.get(self._url()).status_code, 405)

    def test_missing_ballot(self) -> None:
        self.client.force_login(self.alice)

        resp = self._post_json(self._url(999999), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 404)

    def test_invalid_choice(self) -> None:
        self.client.force_login(self.alice)

        resp = self._post_json(self._url(), {"vote_choice": "maybe"})

        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["ok"])
        self.assertIn("vote_choice", resp.json()["details"])

    def test_malformed_json(self) -> None:
        self.client.force_login(self.alice)

        resp = self.client.post(self._url(), data="{not json", content_type="application/json")

        self.assertEqual(resp.status_code, 400)

    def test_ballot_not_open(self) -> None:
        Ballot.objects.filter(pk=self.ballot.pk).update(status=Ballot.Status.draft)
        self.client.force_login(self.alice)

        resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Voting is not open for this ballot")

    def test_window_ended(self) -> None:
        now = timezone.now()
        Ballot.objects.filter(pk=self.ballot.pk).update(
            voting_opens_at=now - datetime.timedelta(days=2),
            voting_closes_at=now - datetime.timedelta(days=1),
        )
        self.client.force_login(self.alice)

        resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Voting has ended")

    def test_not_eligible(self) -> None:
        outsider = make_user("outsider")
        self.client.force_login(outsider)

        resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["error"], "User is not registered as a voter")

    def test_cast_then_conflict(self) -> None:
        self.client.force_login(self.alice)

        first = self._post_json(self._url(), {"vote_choice": "yea"})
        second = self._post_json(self._url(), {"vote_choice": "nay"})

        self.assertEqual(first.status_code, 201)
        body = first.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["vote"]["vote_choice"], "yea")
        self.assertEqual(body["vote"]["voter_id"], self.alice_voter.pk)
        self.assertEqual(body["vote_counts"], {"yea": 1, "nay": 0, "abstain": 0, "total": 1})

        self.assertEqual(second.status_code, 409)
        self.assertEqual(
            second.json()["error"],
            "You have already voted on this ballot. Votes cannot be changed.",
        )
        self.assertEqual(Vote.objects.get(ballot=self.ballot).vote_choice, VoteChoice.yea)

    def test_form_encoded_body(self) -> None:
        self.client.force_login(self.alice)

        resp = self.client.post(self._url(), data={"vote_choice": "abstain"})

        self.assertEqual(resp.status_code, 201)

    def test_lost_race_is_a_conflict(self) -> None:
        self.client.force_login(self.alice)
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.nay)

        with patch("ballots.views_ballots.vote_ledger.user_vote", return_value=None):
            resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 409)

    @override_settings(BALLOT_RATE_LIMIT_VOTE_LIMIT=2, BALLOT_RATE_LIMIT_VOTE_WINDOW_SECONDS=60)
    def test_rate_limited(self) -> None:
        self.client.force_login(self.alice)

        self._post_json(self._url(), {"vote_choice": "yea"})
        self._post_json(self._url(), {"vote_choice": "yea"})
        with self.assertLogs("ballots.views_ballots", level="WARNING") as logs:
            resp = self._post_json(self._url(), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json()["error"], "Too many vote submissions. Please try again later.")
        record = logs.records[0]
        self.assertEqual(record.event, "quorum.security.rate_limit.denied")
        self.assertEqual(record.endpoint, "ballot-vote")
        self.assertEqual(record.limit, 2)
        self.assertEqual(len(record.subject_hash), 64)

        # Another voter on the same ballot has their own budget.
        self.client.force_login(self.bob)
        self.assertEqual(self._post_json(self._url(), {"vote_choice": "nay"}).status_code, 201)


class BallotStatusViewTests(_ViewTestCase):
    def test_voter_sees_tally(self) -> None:
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.yea)
        self.client.force_login(self.bob)

        resp = self.client.get(reverse("ballot-status", args=[self.ballot.pk]))

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["ballot"]["id"], self.ballot.pk)
        self.assertEqual(body["total_eligible_voters"], 2)
        self.assertEqual(body["required_votes"], 2)
        self.assertEqual(body["votes_needed"], 1)
        self.assertFalse(body["is_passing"])
        self.assertEqual(body["vote_counts"]["yea"], 1)

    def test_creator_sees_tally(self) -> None:
        self.client.force_login(self.owner)

        self.assertEqual(self.client.get(reverse("ballot-status", args=[self.ballot.pk])).status_code, 200)

    def test_outsider_gets_not_found(self) -> None:
        self.client.force_login(make_user("outsider"))

        resp = self.client.get(reverse("ballot-status", args=[self.ballot.pk]))

        self.assertEqual(resp.status_code, 404)


class AdminVoteViewTests(_ViewTestCase):
    def _override_url(self, voter_id: int) -> str:
        return reverse("ballot-vote-override", args=[self.ballot.pk, voter_id])

    def _patch(self, url: str, payload: object):
        return self.client.patch(url, data=json.dumps(payload), content_type="application/json")

    def test_votes_listing_is_admin_only(self) -> None:
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.yea)

        self.client.force_login(self.alice)
        self.assertEqual(self.client.get(reverse("ballot-votes", args=[self.ballot.pk])).status_code, 403)

        self.client.force_login(self.owner)
        resp = self.client.get(reverse("ballot-votes", args=[self.ballot.pk]))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(len(body["votes"]), 1)
        self.assertEqual(body["votes"][0]["voter_email"], "alice@example.com")
        self.assertEqual(body["votes"][0]["last_set_by_role"], "user")
        self.assertEqual(body["vote_counts"]["total"], 1)

    def test_override_requires_admin(self) -> None:
        self.client.force_login(self.bob)

        resp = self._patch(self._override_url(self.alice_voter.pk), {"vote_choice": "nay"})

        self.assertEqual(resp.status_code, 403)
        self.assertFalse(Vote.objects.exists())

    def test_override_rejects_body_that_is_not_utf8(self) -> None:
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.yea)
        self.client.force_login(self.owner)
        url = self._override_url(self.alice_voter.pk)

        patched = self.client.patch(url, data=b"\xff\xfe{", content_type="application/json")
        deleted = self.client.delete(url, data=b"\xff\xfe{", content_type="application/json")

        self.assertEqual(patched.status_code, 400)
        self.assertEqual(deleted.status_code, 400)
        self.assertFalse(patched.json()["ok"])
        self.assertEqual(Vote.objects.get(ballot=self.ballot, voter=self.alice_voter).vote_choice, "yea")
        self.assertFalse(VoteEvent.objects.exists())

    def test_override_sets_vote_and_logs_event(self) -> None:
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.yea)
        self.client.force_login(self.owner)

        resp = self._patch(self._override_url(self.alice_voter.pk), {"vote_choice": "nay", "reason": "Paper ballot"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["vote"]["vote_choice"], "nay")
        self.assertEqual(resp.json()["vote_counts"]["nay"], 1)
        event = VoteEvent.objects.get(ballot=self.ballot)
        self.assertEqual(event.actor_role, "owner")
        self.assertEqual(event.actor_user_id, self.owner.pk)
        self.assertEqual(event.reason, "Paper ballot")

    def test_override_validates_payload(self) -> None:
        self.client.force_login(self.owner)
        url = self._override_url(self.alice_voter.pk)

        self.assertEqual(self._patch(url, {"vote_choice": "maybe"}).status_code, 400)
        self.assertEqual(self._patch(url, {"vote_choice": "yea", "reason": "x" * 501}).status_code, 400)
        self.assertEqual(self._patch(url, ["yea"]).status_code, 400)
        self.assertFalse(Vote.objects.exists())

    def test_override_unknown_voter(self) -> None:
        other_ballot = make_ballot(creator=self.owner, title="Other")
        (stranger,) = add_voters(other_ballot, ["carol@example.com"])
        self.client.force_login(self.owner)

        resp = self._patch(self._override_url(stranger.pk), {"vote_choice": "yea"})

        self.assertEqual(resp.status_code, 404)

    def test_delete_clears_vote(self) -> None:
        Vote.objects.create(ballot=self.ballot, voter=self.alice_voter, vote_choice=VoteChoice.yea)
        self.client.force_login(self.owner)
        url = self._override_url(self.alice_voter.pk)

        first = self.client.delete(url, data=json.dumps({"reason": "Duplicate"}), content_type="application/json")
        second = self.client.delete(url)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["vote_counts"]["total"], 0)
        self.assertEqual(second.status_code, 404)
        self.assertEqual(VoteEvent.objects.get(ballot=self.ballot).event_type, VoteEvent.EventType.clear)


class BallotManagementViewTests(_ViewTestCase):
    def test_create_ballot(self) -> None:
        self.client.force_login(self.owner)
        opens = timezone.now() + datetime.timedelta(days=1)

        resp = self._post_json(
            reverse("ballot-create"),
            {
                "title": "Adopt the bylaws",
                "voting_opens_at": opens.isoformat(),
                "voting_closes_at": (opens + datetime.timedelta(days=2)).isoformat(),
                "voting_threshold": "supermajority",
                "voter_emails": ["dave@example.com", "erin@example.com"],
            },
        )

        self.assertEqual(resp.status_code, 201)
        ballot = Ballot.objects.get(pk=resp.json()["ballot"]["id"])
        self.assertEqual(ballot.status, Ballot.Status.draft)
        self.assertEqual(ballot.creator_id, self.owner.pk)
        self.assertEqual(ballot.voting_threshold, Ballot.Threshold.supermajority)
        self.assertEqual(ballot.ballot_voters.count(), 2)
        self.assertTrue(Notification.objects.filter(ballot=ballot, type=Notification.Type.new_ballot).exists())

    def test_create_from_voter_list(self) -> None:
        voter_list = VoterList.objects.create(name="Board", created_by=self.owner)
        VoterListMember.objects.create(voter_list=voter_list, voter=self.alice_voter)
        self.client.force_login(self.owner)
        opens = timezone.now() + datetime.timedelta(days=1)

        resp = self._post_json(
            reverse("ballot-create"),
            {
                "title": "Board vote",
                "voting_opens_at": opens.isoformat(),
                "voting_closes_at": (opens + datetime.timedelta(days=2)).isoformat(),
                "voter_list_id": voter_list.pk,
            },
        )

        self.assertEqual(resp.status_code, 201)
        ballot = Ballot.objects.get(pk=resp.json()["ballot"]["id"])
        self.assertEqual(list(ballot.ballot_voters.values_list("voter_id", flat=True)), [self.alice_voter.pk])

    def test_create_validation(self) -> None:
        self.client.force_login(self.owner)
        opens = timezone.now() + datetime.timedelta(days=1)
        base = {
            "title": "Budget",
            "voting_opens_at": opens.isoformat(),
            "voting_closes_at": (opens + datetime.timedelta(days=2)).isoformat(),
            "voter_emails": "a@example.com, b@example.com",
        }

        cases = [
            ({**base, "voting_closes_at": opens.isoformat()}, 400),
            ({**base, "voting_threshold": "custom"}, 400),
            ({**base, "voter_emails": ""}, 400),
            ({**base, "voter_emails": "not-an-email"}, 400),
            ({**base, "voter_list_id": 999999}, 404),
        ]
        for payload, expected in cases:
            with self.subTest(payload=payload):
                self.assertEqual(self._post_json(reverse("ballot-create"), payload).status_code, expected)

        self.assertEqual(Ballot.objects.count(), 1)

    def test_open_ballot(self) -> None:
        draft = make_ballot(creator=self.owner, title="Draft")
        add_voters(draft, ["alice@example.com"])
        opens = timezone.now()
        payload = {
            "voting_opens_at": opens.isoformat(),
            "voting_closes_at": (opens + datetime.timedelta(days=1)).isoformat(),
            "send_notifications": False,
        }
        url = reverse("ballot-open", args=[draft.pk])

        self.client.force_login(self.alice)
        self.assertEqual(self._post_json(url, payload).status_code, 403)

        self.client.force_login(self.owner)
        with patch("ballots.lifecycle.notify_voting_opened") as notify:
            first = self._post_json(url, payload)
            second = self._post_json(url, payload)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["ballot"]["status"], "open")
        self.assertEqual(second.status_code, 409)
        notify.assert_not_called()

    def test_voters_add_list_remove(self) -> None:
        self.client.force_login(self.owner)
        url = reverse("ballot-voters", args=[self.ballot.pk])

        added = self._post_json(url, {"emails": "carol@example.com\nalice@example.com"})
        listing = self.client.get(url)

        self.assertEqual(added.status_code, 200)
        self.assertEqual(added.json()["added"], 1)
        emails = [v["email"] for v in listing.json()["voters"]]
        self.assertEqual(emails, ["alice@example.com", "bob@example.com", "carol@example.com"])

        remove_url = reverse("ballot-voter-remove", args=[self.ballot.pk, self.bob_voter.pk])
        self.assertEqual(self.client.delete(remove_url).status_code, 200)
        self.assertEqual(self.client.delete(remove_url).status_code, 404)

    def test_voters_requires_admin_and_emails(self) -> None:
        url = reverse("ballot-voters", args=[self.ballot.pk])

        self.client.force_login(self.alice)
        self.assertEqual(self.client.get(url).status_code, 403)

        self.client.force_login(self.owner)
        self.assertEqual(self._post_json(url, {}).status_code, 400)
        self.assertEqual(self._post_json(url, {"emails": ["broken"]}).status_code, 400)

    def test_invitations(self) -> None:
        self.client.force_login(self.owner)

        with patch("ballots.views_ballots.notifications.send_voter_invitations", return_value=2) as send:
            resp = self.client.post(reverse("ballot-invitations", args=[self.ballot.pk]))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True, "sent": 2})
        send.assert_called_once()

        Ballot.objects.filter(pk=self.ballot.pk).update(status=Ballot.Status.closed)
        self.assertEqual(self.client.post(reverse("ballot-invitations", args=[self.ballot.pk])).status_code, 409)


class NotificationViewTests(_ViewTestCase):
    def test_list_and_mark_read(self) -> None:
        mine = Notification.objects.create(user=self.alice, ballot=self.ballot, type="new_ballot", message="Hi")
        Notification.objects.create(user=self.bob, ballot=self.ballot, type="new_ballot", message="Not yours")
        self.client.force_login(self.alice)

        listing = self.client.get(reverse("notification-list"))
        read = self.client.post(reverse("notification-read", args=[mine.pk]))

        self.assertEqual([n["id"] for n in listing.json()["notifications"]], [mine.pk])
        self.assertEqual(read.status_code, 200)
        self.assertIsNotNone(read.json()["notification"]["read_at"])

    def test_cannot_read_someone_elses(self) -> None:
        theirs = Notification.objects.create(user=self.bob, ballot=self.ballot, type="new_ballot", message="x")
        self.client.force_login(self.alice)

        resp = self.client.post(reverse("notification-read", args=[theirs.pk]))

        self.assertEqual(resp.status_code, 404)
        theirs.refresh_from_db()
        self.assertIsNone(theirs.read_at)


@override_settings(CRON_SECRET="s3cret")
class CronTickViewTests(TestCase):
    def test_get_not_allowed(self) -> None:
        resp = self.client.get(reverse("ballot-cron-tick"))

        self.assertEqual(resp.status_code, 405)
        self.assertEqual(resp["Allow"], "POST")

    def test_bad_secret(self) -> None:
        with self.assertLogs("ballots.views_cron", level="WARNING"):
            missing = self.client.post(reverse("ballot-cron-tick"))
        with self.assertLogs("ballots.views_cron", level="WARNING"):
            wrong = self.client.post(reverse("ballot-cron-tick"), headers={"X-Cron-Secret": "nope"})

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(wrong.status_code, 401)

    @override_settings(CRON_SECRET="")
    def test_unset_secret_rejects_everything(self) -> None:
        with self.assertLogs("ballots.views_cron", level="WARNING"):
            resp = self.client.post(reverse("ballot-cron-tick"), headers={"X-Cron-Secret": ""})

        self.assertEqual(resp.status_code, 401)

    def test_runs_tick(self) -> None:
        ballot = make_ballot(
            creator=make_user("owner"),
            opens_at=timezone.now() - datetime.timedelta(minutes=1),
            closes_at=timezone.now() + datetime.timedelta(hours=1),
        )

        resp = self.client.post(reverse("ballot-cron-tick"), headers={"X-Cron-Secret": "s3cret"})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["opened"], [ballot.pk])
        self.assertEqual(body["errors"], 0)
        ballot.refresh_from_db()
        self.assertEqual(ballot.status, Ballot.Status.open)
