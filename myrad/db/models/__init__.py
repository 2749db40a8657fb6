from myrad.db.models.base import Base
from myrad.db.models.contributions import (
    CONTRIBUTION_MODELS,
    BlinkitContribution,
    ContributionEnvelope,
    GithubContribution,
    NetflixContribution,
    StravaContribution,
    UberEatsContribution,
    UberRidesContribution,
    ZeptoContribution,
    ZomatoContribution,
)
from myrad.db.models.points_history import PointsEntry
from myrad.db.models.referrals import Referral
from myrad.db.models.users import User

__all__ = [
    "Base",
    "CONTRIBUTION_MODELS",
    "BlinkitContribution",
    "ContributionEnvelope",
    "GithubContribution",
    "NetflixContribution",
    "PointsEntry",
    "Referral",
    "StravaContribution",
    "UberEatsContribution",
    "UberRidesContribution",
    "User",
    "ZeptoContribution",
    "ZomatoContribution",
]
