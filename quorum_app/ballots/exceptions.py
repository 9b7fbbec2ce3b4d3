class BallotError(Exception):
    pass


class NotEligibleError(BallotError):
    """The acting user has no voter record or no eligibility link for the ballot."""


class AlreadyVotedError(BallotError):
    """Raised at the request boundary when a voter tries to cast a second vote."""


class BallotNotOpenError(BallotError):
    pass


class InvalidTransitionError(BallotError):
    pass


class NotificationSendError(BallotError):
    """A notification email was not confirmed as sent."""
