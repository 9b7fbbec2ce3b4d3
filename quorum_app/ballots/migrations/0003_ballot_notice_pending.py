from __future__ import annotations

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("ballots", "0002_create_ballot_email_templates"),
    ]

    operations = [
        migrations.AddField(
            model_name="ballot",
            name="notice_pending",
            field=models.CharField(blank=True, default="", max_length=16),
        ),
    ]
