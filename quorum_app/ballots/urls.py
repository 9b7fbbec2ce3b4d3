from django.urls import path

from ballots import views_ballots, views_cron, views_health

urlpatterns = [
    path("healthz", views_health.healthz, name="healthz"),
    path("readyz", views_health.readyz, name="readyz"),
    path("ballots", views_ballots.ballot_create, name="ballot-create"),
    path("ballots/<int:ballot_id>/status", views_ballots.ballot_status, name="ballot-status"),
    path("ballots/<int:ballot_id>/vote", views_ballots.ballot_vote, name="ballot-vote"),
    path("ballots/<int:ballot_id>/votes", views_ballots.ballot_votes, name="ballot-votes"),
    path(
        "ballots/<int:ballot_id>/votes/<int:voter_id>",
        views_ballots.ballot_vote_override,
        name="ballot-vote-override",
    ),
    path("ballots/<int:ballot_id>/open", views_ballots.ballot_open, name="ballot-open"),
    path("ballots/<int:ballot_id>/voters", views_ballots.ballot_voters, name="ballot-voters"),
    path(
        "ballots/<int:ballot_id>/voters/<int:voter_id>",
        views_ballots.ballot_voter_remove,
        name="ballot-voter-remove",
    ),
    path("ballots/<int:ballot_id>/invitations", views_ballots.ballot_invitations, name="ballot-invitations"),
    path("notifications", views_ballots.notification_list, name="notification-list"),
    path(
        "notifications/<int:notification_id>/read",
        views_ballots.notification_read,
        name="notification-read",
    ),
    path("cron/ballots/tick", views_cron.ballot_cron_tick, name="ballot-cron-tick"),
]
