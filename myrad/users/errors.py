class UserError(Exception):
    pass


class UserPreconditionError(UserError):
    pass


class InvalidUsernameError(UserError):
    pass


class UsernameTakenError(UserError):
    pass
