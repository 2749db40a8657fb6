from __future__ import annotations

from types import SimpleNamespace

import pytest

from myrad.db.repo.contributions_repo import ContributionsRepo
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.optout import service as optout_service
from myrad.points.errors import UserNotFoundError


@pytest.fixture
def account(monkeypatch) -> SimpleNamespace:
    state = SimpleNamespace(
        user=SimpleNamespace(id=9, total_points=640, league="Silver"),
        flagged_tables=[],
        ledger=["a", "b", "c"],
        resets=[],
    )

    async def _lock(session, user_id):
        return state.user if user_id == 9 else None

    async def _mark(session, *, spec, user_id):
        state.flagged_tables.append(spec.table_name)
        return 1 if spec.table_name in {"zomato_contributions", "strava_contributions"} else 0

    async def _delete(session, *, user_id):
        removed = len(state.ledger)
        state.ledger = []
        return removed

    async def _create(session, *, entry):
        state.ledger.append(entry)
        return entry

    async def _reset(session, *, user_id, total_points, league):
        state.resets.append((total_points, league))
        return 1

    monkeypatch.setattr(UsersRepo, "get_by_id_for_update", _lock)
    monkeypatch.setattr(ContributionsRepo, "mark_opted_out_for_user", _mark)
    monkeypatch.setattr(PointsRepo, "delete_for_user", _delete)
    monkeypatch.setattr(PointsRepo, "create", _create)
    monkeypatch.setattr(UsersRepo, "reset_points", _reset)
    return state


async def test_opt_out_flags_every_provider_table_and_resets_points(
    fake_store, fast_settings, account
) -> None:
    result = await optout_service.opt_out_user(fake_store, user_id=9, settings=fast_settings)

    assert result.success is True
    assert result.contributions_updated == 2
    assert result.ledger_entries_removed == 3
    assert result.new_points_total == fast_settings.baseline_points
    assert len(account.flagged_tables) == 8
    assert account.resets == [(fast_settings.baseline_points, "Bronze")]
    assert len(account.ledger) == 1
    assert account.ledger[0].points == fast_settings.baseline_points
    assert account.ledger[0].reason == "first_access_bonus"
    assert fake_store.transactions == 1


async def test_opt_out_twice_leaves_the_same_state(fake_store, fast_settings, account) -> None:
    await optout_service.opt_out_user(fake_store, user_id=9, settings=fast_settings)
    second = await optout_service.opt_out_user(fake_store, user_id=9, settings=fast_settings)

    assert second.ledger_entries_removed == 1
    assert second.new_points_total == fast_settings.baseline_points
    assert len(account.ledger) == 1


async def test_opt_out_explicit_baseline_sets_matching_league(
    fake_store, fast_settings, account
) -> None:
    result = await optout_service.opt_out_user(
        fake_store,
        user_id=9,
        baseline_points=600,
        settings=fast_settings,
    )

    assert result.new_points_total == 600
    assert account.resets == [(600, "Silver")]
    assert account.ledger[0].points == 600


async def test_opt_out_unknown_user(fake_store, fast_settings, account) -> None:
    with pytest.raises(UserNotFoundError):
        await optout_service.opt_out_user(fake_store, user_id=1, settings=fast_settings)
    assert account.flagged_tables == []
