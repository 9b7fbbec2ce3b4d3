from __future__ import annotations

from django.db import migrations

_FOOTER_HTML = '<p><a href="{{ ballot_url }}">View the ballot</a></p>\n'
_FOOTER_TEXT = "View the ballot: {{ ballot_url }}\n"

TEMPLATES: list[dict[str, str]] = [
    {
        "name": "ballot-open-reminder",
        "description": "Reminder sent shortly before a ballot opens for voting",
        "subject": "Ballot opens in {{ minutes }} min: {{ ballot_title }}",
        "html_content": (
            "<p>Hello {{ voter_name }},</p>\n"
            "<p>Reminder: <strong>{{ ballot_title }}</strong> opens in {{ minutes }} "
            "minute{{ minutes|pluralize }} ({{ voting_opens_at }}).</p>\n" + _FOOTER_HTML
        ),
        "content": (
            "Hello {{ voter_name }},\n\n"
            "Reminder: {{ ballot_title }} opens in {{ minutes }} minute{{ minutes|pluralize }} "
            "({{ voting_opens_at }}).\n\n" + _FOOTER_TEXT
        ),
    },
    {
        "name": "ballot-close-reminder",
        "description": "Reminder sent shortly before an open ballot closes",
        "subject": "Ballot closes in {{ minutes }} min: {{ ballot_title }}",
        "html_content": (
            "<p>Hello {{ voter_name }},</p>\n"
            "<p>Reminder: <strong>{{ ballot_title }}</strong> closes in {{ minutes }} "
            "minute{{ minutes|pluralize }} ({{ voting_closes_at }}).</p>\n" + _FOOTER_HTML
        ),
        "content": (
            "Hello {{ voter_name }},\n\n"
            "Reminder: {{ ballot_title }} closes in {{ minutes }} minute{{ minutes|pluralize }} "
            "({{ voting_closes_at }}).\n\n" + _FOOTER_TEXT
        ),
    },
    {
        "name": "ballot-voting-opened",
        "description": "Sent to eligible voters when a ballot opens",
        "subject": "Voting is now open: {{ ballot_title }}",
        "html_content": (
            "<p>Hello {{ voter_name }},</p>\n"
            "<p>Voting is now open for <strong>{{ ballot_title }}</strong>. "
            "Voting closes {{ voting_closes_at }}.</p>\n" + _FOOTER_HTML
        ),
        "content": (
            "Hello {{ voter_name }},\n\n"
            "Voting is now open for {{ ballot_title }}. Voting closes {{ voting_closes_at }}.\n\n" + _FOOTER_TEXT
        ),
    },
    {
        "name": "ballot-voting-closed",
        "description": "Sent to eligible voters when a ballot closes",
        "subject": "Voting has closed: {{ ballot_title }}",
        "html_content": (
            "<p>Hello {{ voter_name }},</p>\n"
            "<p>Voting for <strong>{{ ballot_title }}</strong> closed {{ voting_closes_at }}.</p>\n"
            + _FOOTER_HTML
        ),
        "content": (
            "Hello {{ voter_name }},\n\n"
            "Voting for {{ ballot_title }} closed {{ voting_closes_at }}.\n\n" + _FOOTER_TEXT
        ),
    },
    {
        "name": "ballot-voter-invitation",
        "description": "Invitation to vote on a ballot",
        "subject": "You're invited to vote: {{ ballot_title }}",
        "html_content": (
            "<p>Hello {{ voter_name }},</p>\n"
            "<p>You have been invited to vote on <strong>{{ ballot_title }}</strong>.</p>\n"
            "<p>Voting opens {{ voting_opens_at }} and closes {{ voting_closes_at }}.</p>\n"
            "{% if not is_registered_user %}<p>Sign up with {{ voter_email }} to cast your vote.</p>\n{% endif %}"
            + _FOOTER_HTML
        ),
        "content": (
            "Hello {{ voter_name }},\n\n"
            "You have been invited to vote on {{ ballot_title }}.\n"
            "Voting opens {{ voting_opens_at }} and closes {{ voting_closes_at }}.\n"
            "{% if not is_registered_user %}Sign up with {{ voter_email }} to cast your vote.\n{% endif %}\n"
            + _FOOTER_TEXT
        ),
    },
]


def add_ballot_email_templates(apps, schema_editor) -> None:
    EmailTemplate = apps.get_model("post_office", "EmailTemplate")

    for template in TEMPLATES:
        EmailTemplate.objects.update_or_create(
            name=template["name"],
            defaults={
                "description": template["description"],
                "subject": template["subject"],
                "html_content": template["html_content"],
                "content": template["content"],
            },
        )


def noop_reverse(apps, schema_editor) -> None:
    # Keep templates on rollback to avoid losing admin edits.
    return


class Migration(migrations.Migration):
    dependencies = [
        ("ballots", "0001_initial"),
        ("post_office", "0013_email_recipient_delivery_status_alter_log_status"),
    ]

    operations = [
        migrations.RunPython(
            add_ballot_email_templates,
            reverse_code=noop_reverse,
        ),
    ]
