class ReferralError(Exception):
    pass


class ReferralCodeError(ReferralError):
    pass


class ReferralCodeNotFoundError(ReferralCodeError):
    pass


class SelfReferralError(ReferralCodeError):
    pass


class ReferralAlreadyAppliedError(ReferralCodeError):
    pass
