from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from myrad.contributions import service as contribution_service
from myrad.contributions.errors import (
    ContributionPreconditionError,
    EmptyContributionError,
    UnknownProviderError,
)
from myrad.contributions.types import (
    ContributionSubmission,
    SubmitAccepted,
    SubmitDuplicate,
    SubmitSkipped,
)
from myrad.db.repo.contributions_repo import ContributionsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.points.errors import UserNotFoundError


def _zomato_payload(*, orders: int = 10, gmv: int = 5000, window: int = 30) -> dict:
    return {
        "transaction_data": {
            "summary": {"total_orders": orders, "total_gmv": gmv, "data_window_days": window}
        }
    }


def _submission(provider: str = "zomato_order_history", **overrides) -> ContributionSubmission:
    values = {
        "user_id": "42",
        "provider_type": provider,
        "proof_id": "proof-a",
        "payload": _zomato_payload(),
    }
    values.update(overrides)
    return ContributionSubmission(**values)


class RepoCalls:
    def __init__(self) -> None:
        self.upserts: list[dict] = []
        self.rows_by_proof: dict[str, tuple[str, str]] = {}
        self.overwrites: list[tuple[str, dict]] = []
        self.active_lookups = 0
        self.opted_out_lookups = 0


@pytest.fixture
def repo_calls(monkeypatch) -> RepoCalls:
    calls = RepoCalls()

    async def _no_active(session, *, spec, fingerprint):
        calls.active_lookups += 1
        return None

    async def _no_opted_out(session, *, spec, user_id, fingerprint):
        calls.opted_out_lookups += 1
        return None

    async def _upsert(session, *, spec, values):
        calls.upserts.append(values)
        stored = calls.rows_by_proof.get(values["reclaim_proof_id"])
        if stored is None:
            calls.rows_by_proof[values["reclaim_proof_id"]] = (values["id"], values["user_id"])
            return values["id"], True
        stored_id, owner = stored
        if owner != values["user_id"]:
            return None
        return stored_id, False

    async def _overwrite(session, *, spec, contribution_id, values):
        calls.overwrites.append((contribution_id, values))
        return contribution_id

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _no_active)
    monkeypatch.setattr(ContributionsRepo, "find_opted_out_by_fingerprint_for_update", _no_opted_out)
    monkeypatch.setattr(ContributionsRepo, "upsert_by_proof_id", _upsert)
    monkeypatch.setattr(ContributionsRepo, "overwrite_by_id", _overwrite)
    return calls


async def test_submit_skips_empty_payload_without_touching_the_store(fake_store) -> None:
    outcome = await contribution_service.submit_contribution(fake_store, _submission(payload={}))

    assert isinstance(outcome, SubmitSkipped)
    assert fake_store.sessions == []


async def test_submit_rejects_unknown_provider_and_missing_proof(fake_store) -> None:
    with pytest.raises(UnknownProviderError):
        await contribution_service.submit_contribution(fake_store, _submission("friendster"))
    with pytest.raises(ContributionPreconditionError):
        await contribution_service.submit_contribution(fake_store, _submission(proof_id=""))
    assert fake_store.sessions == []


async def test_submit_new_fingerprint_inserts_and_commits(
    fake_store, repo_calls, fast_settings
) -> None:
    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(id="c-1"),
        settings=fast_settings,
    )

    assert outcome == SubmitAccepted(id="c-1", merged=False)
    assert repo_calls.upserts[0]["total_orders"] == 10
    assert repo_calls.upserts[0]["total_gmv"] == Decimal("5000.00")
    assert repo_calls.upserts[0]["opt_out"] is False
    assert fake_store.sessions[0].commits == 1


async def test_submit_generates_id_when_caller_has_none(
    fake_store, repo_calls, fast_settings
) -> None:
    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )

    millis, suffix = outcome.id.split("_")
    assert millis.isdigit()
    assert len(suffix) == 6


async def test_submit_duplicate_github_profile_is_rejected_and_rolled_back(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _existing(session, *, spec, fingerprint):
        assert fingerprint == ("octocat",)
        return SimpleNamespace(id="gh-1", reclaim_proof_id="proof-old")

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _existing)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission("github_profile", payload={"data": {"username": "octocat"}}),
        settings=fast_settings,
    )

    assert outcome == SubmitDuplicate(
        existing_id="gh-1",
        message="This GitHub profile has already been submitted.",
    )
    assert repo_calls.upserts == []
    assert fake_store.sessions[0].rollbacks == 1
    assert fake_store.sessions[0].commits == 0


async def test_submit_higher_order_count_overwrites_existing_row_in_place(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _existing(session, *, spec, fingerprint):
        return SimpleNamespace(
            id="z-1",
            reclaim_proof_id="proof-old",
            total_orders=8,
            data_window_days=30,
        )

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _existing)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(proof_id="proof-new", payload=_zomato_payload(orders=10)),
        settings=fast_settings,
    )

    assert outcome == SubmitAccepted(id="z-1", merged=True)
    assert repo_calls.upserts == []
    contribution_id, values = repo_calls.overwrites[0]
    assert contribution_id == "z-1"
    assert values["reclaim_proof_id"] == "proof-new"
    assert values["total_orders"] == 10


async def test_submit_equal_order_count_with_longer_window_is_a_duplicate(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _existing(session, *, spec, fingerprint):
        return SimpleNamespace(
            id="z-1",
            reclaim_proof_id="proof-old",
            total_orders=10,
            data_window_days=30,
        )

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _existing)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(user_id="77", proof_id="proof-new", payload=_zomato_payload(window=90)),
        settings=fast_settings,
    )

    assert outcome == SubmitDuplicate(
        existing_id="z-1",
        message="This Zomato data has already been submitted.",
    )
    assert repo_calls.overwrites == []


async def test_submit_equally_complete_resubmission_is_a_duplicate(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _existing(session, *, spec, fingerprint):
        return SimpleNamespace(
            id="z-1",
            reclaim_proof_id="proof-old",
            total_orders=10,
            data_window_days=30,
        )

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _existing)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(proof_id="proof-new"),
        settings=fast_settings,
    )

    assert isinstance(outcome, SubmitDuplicate)
    assert outcome.message == "This Zomato data has already been submitted."
    assert repo_calls.overwrites == []


async def test_submit_zepto_reuses_own_opted_out_row(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _opted_out(session, *, spec, user_id, fingerprint):
        assert user_id == "42"
        return SimpleNamespace(id="zp-1", reclaim_proof_id="proof-old")

    monkeypatch.setattr(ContributionsRepo, "find_opted_out_by_fingerprint_for_update", _opted_out)
    payload = {"transaction_data": {"summary": {"total_orders": 4, "total_spend": 800}}}

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission("zepto_order_history", payload=payload),
        settings=fast_settings,
    )

    assert outcome == SubmitAccepted(id="zp-1", merged=True)
    assert repo_calls.upserts == []
    assert repo_calls.overwrites[0][0] == "zp-1"


async def test_submit_blinkit_does_not_look_for_opted_out_rows(
    fake_store, repo_calls, fast_settings
) -> None:
    payload = {"transaction_data": {"summary": {"total_orders": 4, "total_spend": 800}}}

    await contribution_service.submit_contribution(
        fake_store,
        _submission("blinkit_order_history", payload=payload),
        settings=fast_settings,
    )

    assert repo_calls.active_lookups == 1
    assert repo_calls.opted_out_lookups == 0


async def test_submit_without_fingerprint_skips_duplicate_lookup(
    fake_store, repo_calls, fast_settings
) -> None:
    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(payload={"transaction_data": {"summary": {"total_orders": 3}}}),
        settings=fast_settings,
    )

    assert isinstance(outcome, SubmitAccepted)
    assert repo_calls.active_lookups == 0


async def test_submit_losing_fingerprint_race_reports_duplicate(
    fake_store, repo_calls, fast_settings, monkeypatch, driver_error
) -> None:
    winner = SimpleNamespace(
        id="z-winner",
        reclaim_proof_id="proof-b",
        total_orders=10,
        data_window_days=30,
    )
    lookups = iter([None, winner])

    async def _active(session, *, spec, fingerprint):
        return next(lookups)

    async def _upsert_conflicts(session, *, spec, values):
        raise IntegrityError(
            "INSERT",
            {},
            driver_error("23505", constraint_name="uq_zomato_contributions_active_fingerprint"),
        )

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _active)
    monkeypatch.setattr(ContributionsRepo, "upsert_by_proof_id", _upsert_conflicts)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )

    assert isinstance(outcome, SubmitDuplicate)
    assert outcome.existing_id == "z-winner"
    assert fake_store.sessions[0].savepoint_rollbacks == 1


async def test_submit_other_integrity_errors_propagate(
    fake_store, repo_calls, fast_settings, monkeypatch, driver_error
) -> None:
    async def _upsert_conflicts(session, *, spec, values):
        raise IntegrityError("INSERT", {}, driver_error("23505", constraint_name="pk_other"))

    monkeypatch.setattr(ContributionsRepo, "upsert_by_proof_id", _upsert_conflicts)

    with pytest.raises(IntegrityError):
        await contribution_service.submit_contribution(
            fake_store,
            _submission(),
            settings=fast_settings,
        )
    assert fake_store.sessions[0].rollbacks == 1


async def test_submit_retries_whole_transaction_on_serialization_failure(
    fake_store, repo_calls, fast_settings, monkeypatch, driver_error
) -> None:
    attempts = {"count": 0}

    async def _flaky_upsert(session, *, spec, values):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise OperationalError("INSERT", {}, driver_error("40001"))
        return values["id"], True

    monkeypatch.setattr(ContributionsRepo, "upsert_by_proof_id", _flaky_upsert)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(id="c-9"),
        settings=fast_settings,
    )

    assert outcome == SubmitAccepted(id="c-9", merged=False)
    assert len(fake_store.sessions) == 2
    assert fake_store.sessions[0].rollbacks == 1
    assert fake_store.sessions[1].commits == 1


@pytest.fixture
def known_user(monkeypatch) -> list[dict]:
    profile_updates: list[dict] = []

    async def _get_by_id(session, user_id):
        return SimpleNamespace(id=user_id, wallet_address=None)

    async def _update_profile(session, *, user_id, **values):
        profile_updates.append(values)
        return 1

    monkeypatch.setattr(UsersRepo, "get_by_id", _get_by_id)
    monkeypatch.setattr(UsersRepo, "update_profile", _update_profile)
    return profile_updates


async def test_record_contribution_awards_points_for_accepted_submission(
    fake_store, known_user, fast_settings, monkeypatch
) -> None:
    awards: list[dict] = []

    async def _submit(store, submission, *, settings=None):
        return SubmitAccepted(id="c-1")

    async def _award(store, **kwargs):
        awards.append(kwargs)

    monkeypatch.setattr(contribution_service, "submit_contribution", _submit)
    monkeypatch.setattr(contribution_service, "award_points", _award)

    result = await contribution_service.record_contribution(
        fake_store,
        _submission(wallet_address="0xabc"),
        settings=fast_settings,
    )

    assert result.points_awarded == 150
    assert awards[0]["user_id"] == 42
    assert awards[0]["points"] == 150
    assert awards[0]["reason"] == "data_contribution"
    assert known_user[0] == {"wallet_address": "0xabc"}
    assert "last_contribution_date" in known_user[1]


async def test_record_contribution_duplicate_awards_nothing(
    fake_store, known_user, fast_settings, monkeypatch
) -> None:
    async def _submit(store, submission, *, settings=None):
        return SubmitDuplicate(existing_id="c-0", message="dup")

    async def _award(store, **kwargs):
        raise AssertionError("duplicates must not be rewarded")

    monkeypatch.setattr(contribution_service, "submit_contribution", _submit)
    monkeypatch.setattr(contribution_service, "award_points", _award)

    result = await contribution_service.record_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )

    assert isinstance(result.outcome, SubmitDuplicate)
    assert result.points_awarded == 0


async def test_record_contribution_rejects_zero_orders_before_storing(
    fake_store, known_user, fast_settings, monkeypatch
) -> None:
    async def _submit(store, submission, *, settings=None):
        raise AssertionError("empty contributions must not be stored")

    monkeypatch.setattr(contribution_service, "submit_contribution", _submit)

    with pytest.raises(EmptyContributionError):
        await contribution_service.record_contribution(
            fake_store,
            _submission(payload=_zomato_payload(orders=0)),
            settings=fast_settings,
        )


async def test_record_contribution_unknown_user(fake_store, fast_settings, monkeypatch) -> None:
    async def _missing(session, user_id):
        return None

    monkeypatch.setattr(UsersRepo, "get_by_id", _missing)

    with pytest.raises(UserNotFoundError):
        await contribution_service.record_contribution(
            fake_store,
            _submission(),
            settings=fast_settings,
        )


async def test_resubmitting_the_same_proof_is_an_upsert_not_a_duplicate(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    async def _own_row(session, *, spec, fingerprint):
        return SimpleNamespace(
            id="z-1",
            reclaim_proof_id="proof-a",
            total_orders=10,
            data_window_days=30,
        )

    monkeypatch.setattr(ContributionsRepo, "find_active_by_fingerprint_for_update", _own_row)
    repo_calls.rows_by_proof["proof-a"] = ("z-1", "42")

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(id="c-new"),
        settings=fast_settings,
    )

    assert outcome == SubmitAccepted(id="z-1", merged=False, resubmitted=True)
    assert repo_calls.overwrites == []
    assert repo_calls.upserts[0]["reclaim_proof_id"] == "proof-a"
    assert fake_store.sessions[0].commits == 1


async def test_proof_held_by_another_user_is_a_duplicate(
    fake_store, repo_calls, fast_settings, monkeypatch
) -> None:
    repo_calls.rows_by_proof["proof-a"] = ("z-1", "7")

    async def _holder(session, *, spec, proof_id):
        return SimpleNamespace(id="z-1", reclaim_proof_id=proof_id, user_id="7")

    monkeypatch.setattr(ContributionsRepo, "get_by_proof_id", _holder)

    outcome = await contribution_service.submit_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )

    assert outcome == SubmitDuplicate(
        existing_id="z-1",
        message="This proof has already been submitted.",
    )
    assert repo_calls.rows_by_proof["proof-a"] == ("z-1", "7")
    assert fake_store.sessions[0].rollbacks == 1
    assert fake_store.sessions[0].commits == 0


@pytest.fixture
def recorded_awards(monkeypatch) -> list[dict]:
    awards: list[dict] = []

    async def _award(store, **kwargs):
        awards.append(kwargs)

    monkeypatch.setattr(contribution_service, "award_points", _award)
    return awards


async def test_record_contribution_pays_once_for_the_same_proof(
    fake_store, repo_calls, known_user, recorded_awards, fast_settings
) -> None:
    first = await contribution_service.record_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )
    replay = await contribution_service.record_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )

    assert len(repo_calls.rows_by_proof) == 1
    assert first.points_awarded == 150
    assert replay.points_awarded == 0
    assert replay.breakdown is None
    assert isinstance(replay.outcome, SubmitAccepted)
    assert replay.outcome.resubmitted is True
    assert replay.outcome.id == first.outcome.id
    assert [award["points"] for award in recorded_awards] == [150]


async def test_record_contribution_of_another_users_proof_pays_nothing(
    fake_store, repo_calls, known_user, recorded_awards, fast_settings, monkeypatch
) -> None:
    async def _holder(session, *, spec, proof_id):
        return SimpleNamespace(id="z-1", reclaim_proof_id=proof_id, user_id="42")

    monkeypatch.setattr(ContributionsRepo, "get_by_proof_id", _holder)

    await contribution_service.record_contribution(
        fake_store,
        _submission(),
        settings=fast_settings,
    )
    stolen = await contribution_service.record_contribution(
        fake_store,
        _submission(user_id="43"),
        settings=fast_settings,
    )

    assert isinstance(stolen.outcome, SubmitDuplicate)
    assert stolen.points_awarded == 0
    assert [award["user_id"] for award in recorded_awards] == [42]
    assert next(iter(repo_calls.rows_by_proof.values()))[1] == "42"
