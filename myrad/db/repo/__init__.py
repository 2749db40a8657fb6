from myrad.db.repo.contributions_repo import ContributionsRepo
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.referrals_repo import ReferralsRepo
from myrad.db.repo.users_repo import UsersRepo

__all__ = ["ContributionsRepo", "PointsRepo", "ReferralsRepo", "UsersRepo"]
