class PointsError(Exception):
    pass


class UserNotFoundError(PointsError):
    pass


class PointsPreconditionError(PointsError):
    pass
