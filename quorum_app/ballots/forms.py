from decimal import Decimal

from django import forms

from ballots.models import Ballot, VoteChoice

OVERRIDE_REASON_MAX_LENGTH = 500


class CastVoteForm(forms.Form):
    vote_choice = forms.ChoiceField(choices=VoteChoice.choices)


class AdminSetVoteForm(forms.Form):
    vote_choice = forms.ChoiceField(choices=VoteChoice.choices)
    reason = forms.CharField(required=False, max_length=OVERRIDE_REASON_MAX_LENGTH, strip=True)


class OpenVotingForm(forms.Form):
    voting_opens_at = forms.DateTimeField()
    voting_closes_at = forms.DateTimeField()

    def clean(self) -> dict[str, object]:
        cleaned = super().clean()
        opens_at = cleaned.get("voting_opens_at")
        closes_at = cleaned.get("voting_closes_at")
        if opens_at and closes_at and closes_at <= opens_at:
            self.add_error("voting_closes_at", "Voting must close after it opens.")
        return cleaned


class BallotCreateForm(forms.Form):
    title = forms.CharField(max_length=255)
    description = forms.CharField(required=False)
    voting_opens_at = forms.DateTimeField()
    voting_closes_at = forms.DateTimeField()
    voting_threshold = forms.ChoiceField(
        choices=Ballot.Threshold.choices,
        required=False,
        initial=Ballot.Threshold.simple_majority,
    )
    threshold_percentage = forms.DecimalField(
        required=False,
        max_digits=5,
        decimal_places=2,
        min_value=Decimal("0.01"),
        max_value=Decimal("100"),
    )
    quorum_required = forms.IntegerField(required=False, min_value=1)
    voter_list_id = forms.IntegerField(required=False, min_value=1)
    voter_emails = forms.CharField(required=False)

    def clean_voting_threshold(self) -> str:
        return self.cleaned_data.get("voting_threshold") or Ballot.Threshold.simple_majority

    def clean_voter_emails(self) -> list[str]:
        raw = self.data.get("voter_emails")
        if isinstance(raw, list):
            parts = [str(v) for v in raw]
        else:
            parts = str(raw or "").replace("\n", ",").split(",")
        return [p.strip() for p in parts if p.strip()]

    def clean(self) -> dict[str, object]:
        cleaned = super().clean()
        opens_at = cleaned.get("voting_opens_at")
        closes_at = cleaned.get("voting_closes_at")
        if opens_at and closes_at and closes_at <= opens_at:
            self.add_error("voting_closes_at", "Voting must close after it opens.")

        if cleaned.get("voting_threshold") == Ballot.Threshold.custom and cleaned.get("threshold_percentage") is None:
            self.add_error("threshold_percentage", "A percentage is required for a custom threshold.")

        if not cleaned.get("voter_list_id") and not cleaned.get("voter_emails"):
            raise forms.ValidationError("Either a voter list or voter emails are required.")
        return cleaned
