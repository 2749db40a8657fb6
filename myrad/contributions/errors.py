class ContributionError(Exception):
    pass


class UnknownProviderError(ContributionError):
    pass


class ContributionPreconditionError(ContributionError):
    pass


class EmptyContributionError(ContributionError):
    """The payload carries no orders, titles, rides or activities worth rewarding."""
