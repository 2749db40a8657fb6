from __future__ import annotations

from myrad.referrals.reconciliation import (
    provision_referral_codes,
    recompute_success_counts,
    run_referral_reconciliation,
    sync_wallets,
    top_up_referrer_in_session,
)
from myrad.referrals.registration import apply_referral_code, get_referral_overview


class ReferralService:
    provision_referral_codes = staticmethod(provision_referral_codes)
    sync_wallets = staticmethod(sync_wallets)
    recompute_success_counts = staticmethod(recompute_success_counts)
    top_up_referrer_in_session = staticmethod(top_up_referrer_in_session)
    run_referral_reconciliation = staticmethod(run_referral_reconciliation)
    apply_referral_code = staticmethod(apply_referral_code)
    get_referral_overview = staticmethod(get_referral_overview)
