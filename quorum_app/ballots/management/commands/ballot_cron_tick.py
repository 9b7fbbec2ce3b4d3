from typing import override

from django.core.management.base import BaseCommand, CommandError

from ballots.scheduler import CronConfig, tick


class Command(BaseCommand):
    help = "Open and close due ballots, retry unsent transition emails and send reminders via django-post-office."

    @override
    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without mutating data or sending email.",
        )
        parser.add_argument("--batch-size", type=int, default=None, help="Ballots fetched per batch.")
        parser.add_argument("--max-iterations", type=int, default=None, help="Batches per phase before stopping.")
        parser.add_argument(
            "--open-reminder-minutes",
            type=int,
            default=None,
            help="Remind voters this many minutes before a ballot opens.",
        )
        parser.add_argument(
            "--close-reminder-minutes",
            type=int,
            default=None,
            help="Remind voters this many minutes before a ballot closes.",
        )

    @override
    def handle(self, *args, **options) -> None:
        try:
            config = CronConfig.from_settings(
                dry_run=True if options.get("dry_run") else None,
                batch_size=options.get("batch_size"),
                max_iterations=options.get("max_iterations"),
                open_reminder_minutes=options.get("open_reminder_minutes"),
                close_reminder_minutes=options.get("close_reminder_minutes"),
            )
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        result = tick(config)

        prefix = "[dry-run] " if config.dry_run else ""
        for ballot_id in result.opened:
            self.stdout.write(f"{prefix}{'Would open' if config.dry_run else 'Opened'} ballot {ballot_id}.")
        for ballot_id in result.closed:
            self.stdout.write(f"{prefix}{'Would close' if config.dry_run else 'Closed'} ballot {ballot_id}.")
        for reminder in result.open_reminders:
            self.stdout.write(f"{prefix}Open reminders for ballot {reminder.ballot_id}: {reminder.count}.")
        for reminder in result.close_reminders:
            self.stdout.write(f"{prefix}Close reminders for ballot {reminder.ballot_id}: {reminder.count}.")
        for retry in result.notice_retries:
            self.stdout.write(f"{prefix}Transition emails retried for ballot {retry.ballot_id}: {retry.count}.")

        summary = (
            f"Opened {len(result.opened)} ballot(s), closed {len(result.closed)} ballot(s); "
            f"sent {sum(r.count for r in result.open_reminders)} open and "
            f"{sum(r.count for r in result.close_reminders)} close reminder(s); "
            f"skipped {result.skipped}; errors {result.errors}."
        )
        self.stdout.write(f"{prefix}{summary}")
