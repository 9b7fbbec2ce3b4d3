from django.apps import AppConfig


class BallotsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "ballots"
    verbose_name = "Ballots"

    def ready(self) -> None:
        from ballots.roles import role_claim_map

        # Fail at startup, not on the first admin request, if the role table is wrong.
        role_claim_map()
