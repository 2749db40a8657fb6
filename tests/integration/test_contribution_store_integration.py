from __future__ import annotations

import asyncio
from decimal import Decimal

from sqlalchemy import func, select

from myrad.contributions.providers import ProviderType
from myrad.contributions.service import ContributionService
from myrad.contributions.types import (
    ContributionFilters,
    ContributionSubmission,
    SubmitAccepted,
    SubmitDuplicate,
)
from myrad.db.models import ZomatoContribution
from myrad.points.service import PointsService
from myrad.users.service import UserService


def _zomato(
    *,
    user_id: str,
    proof_id: str,
    orders: int,
    gmv: int,
    window: int | None = None,
) -> ContributionSubmission:
    summary: dict = {"total_orders": orders, "total_gmv": gmv}
    if window is not None:
        summary["data_window_days"] = window
    return ContributionSubmission(
        user_id=user_id,
        provider_type="zomato_order_history",
        proof_id=proof_id,
        payload={"transaction_data": {"summary": summary}},
    )


async def _zomato_rows(store) -> list[ZomatoContribution]:
    async with store.transaction() as session:
        result = await session.execute(select(ZomatoContribution))
        return list(result.scalars().all())


async def test_same_proof_twice_keeps_one_row_with_latest_data(store, store_settings) -> None:
    first = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="1", proof_id="proof-a", orders=5, gmv=100),
        settings=store_settings,
    )
    second = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="1", proof_id="proof-a", orders=8, gmv=160),
        settings=store_settings,
    )

    assert first == SubmitAccepted(id=first.id)
    assert second == SubmitAccepted(id=first.id, resubmitted=True)
    rows = await _zomato_rows(store)
    assert len(rows) == 1
    assert rows[0].total_orders == 8
    assert rows[0].total_gmv == Decimal("160.00")


async def test_fingerprint_match_from_other_user_is_rejected_then_original_updates(
    store, store_settings
) -> None:
    accepted = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="A", proof_id="proof-a", orders=5, gmv=100),
        settings=store_settings,
    )
    duplicate = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="B", proof_id="proof-b", orders=5, gmv=100),
        settings=store_settings,
    )
    updated = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="A", proof_id="proof-a", orders=8, gmv=160),
        settings=store_settings,
    )

    assert isinstance(duplicate, SubmitDuplicate)
    assert duplicate.existing_id == accepted.id
    assert duplicate.message == "This Zomato data has already been submitted."
    assert updated == SubmitAccepted(id=accepted.id, resubmitted=True)
    rows = await _zomato_rows(store)
    assert [(row.id, row.total_orders) for row in rows] == [(accepted.id, 8)]


async def test_longer_window_with_same_orders_is_a_duplicate(store, store_settings) -> None:
    original = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="A", proof_id="proof-30d", orders=10, gmv=500, window=30),
        settings=store_settings,
    )
    longer = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="B", proof_id="proof-90d", orders=10, gmv=500, window=90),
        settings=store_settings,
    )

    assert longer == SubmitDuplicate(
        existing_id=original.id,
        message="This Zomato data has already been submitted.",
    )
    rows = await _zomato_rows(store)
    assert [(row.user_id, row.reclaim_proof_id, row.data_window_days) for row in rows] == [
        ("A", "proof-30d", 30)
    ]


async def test_proof_of_another_user_is_rejected_and_left_untouched(store, store_settings) -> None:
    original = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="A", proof_id="proof-a", orders=5, gmv=100),
        settings=store_settings,
    )
    taken = await ContributionService.submit_contribution(
        store,
        _zomato(user_id="B", proof_id="proof-a", orders=6, gmv=120),
        settings=store_settings,
    )

    assert taken == SubmitDuplicate(
        existing_id=original.id,
        message="This proof has already been submitted.",
    )
    rows = await _zomato_rows(store)
    assert [(row.user_id, row.total_orders) for row in rows] == [("A", 5)]


async def test_concurrent_same_fingerprint_accepts_exactly_one(store, store_settings) -> None:
    outcomes = await asyncio.gather(
        *(
            ContributionService.submit_contribution(
                store,
                _zomato(user_id=f"user-{index}", proof_id=f"proof-{index}", orders=7, gmv=700),
                settings=store_settings,
            )
            for index in range(6)
        )
    )

    accepted = [outcome for outcome in outcomes if isinstance(outcome, SubmitAccepted)]
    duplicates = [outcome for outcome in outcomes if isinstance(outcome, SubmitDuplicate)]
    assert len(accepted) == 1
    assert len(duplicates) == 5
    assert {outcome.existing_id for outcome in duplicates} == {accepted[0].id}
    assert len(await _zomato_rows(store)) == 1


async def test_concurrent_same_proof_leaves_one_row(store, store_settings) -> None:
    outcomes = await asyncio.gather(
        *(
            ContributionService.submit_contribution(
                store,
                _zomato(user_id="A", proof_id="proof-shared", orders=3 + index, gmv=300),
                settings=store_settings,
            )
            for index in range(5)
        )
    )

    assert all(isinstance(outcome, SubmitAccepted) for outcome in outcomes)
    assert len({outcome.id for outcome in outcomes}) == 1
    assert [outcome.resubmitted for outcome in outcomes].count(False) == 1
    async with store.transaction() as session:
        count = await session.scalar(select(func.count()).select_from(ZomatoContribution))
    assert count == 1


async def test_query_filters_and_fan_out(store, store_settings) -> None:
    await ContributionService.submit_contribution(
        store,
        _zomato(user_id="A", proof_id="proof-a", orders=2, gmv=100),
        settings=store_settings,
    )
    await ContributionService.submit_contribution(
        store,
        _zomato(user_id="B", proof_id="proof-b", orders=9, gmv=900),
        settings=store_settings,
    )
    await ContributionService.submit_contribution(
        store,
        ContributionSubmission(
            user_id="A",
            provider_type="github_profile",
            proof_id="proof-gh",
            payload={"data": {"username": "octocat"}},
        ),
        settings=store_settings,
    )

    busy = await ContributionService.query_contributions(
        store,
        ContributionFilters(provider_type=ProviderType.ZOMATO, min_orders=5),
    )
    everything_for_a = await ContributionService.query_contributions(
        store,
        ContributionFilters(user_id="A"),
    )
    by_proof = await ContributionService.find_contribution_by_proof_id(store, proof_id="proof-gh")

    assert [view.proof_id for view in busy] == ["proof-b"]
    assert {view.proof_id for view in everything_for_a} == {"proof-a", "proof-gh"}
    assert by_proof is not None
    assert by_proof.data_type.value == "github_profile"


async def test_recording_the_same_proof_twice_pays_once(store, store_settings) -> None:
    identity = await UserService.reconcile_identity(
        store,
        external_id="did:contrib:1",
        settings=store_settings,
    )
    user_id = identity.user.id
    submission = _zomato(user_id=str(user_id), proof_id="proof-paid", orders=10, gmv=500)

    first = await ContributionService.record_contribution(store, submission, settings=store_settings)
    replay = await ContributionService.record_contribution(store, submission, settings=store_settings)

    assert first.points_awarded > 0
    assert replay.points_awarded == 0
    total = await PointsService.get_total_points(store, user_id=user_id)
    assert total == store_settings.baseline_points + first.points_awarded
    history = await PointsService.get_points_history(store, user_id=user_id)
    assert [item.reason for item in history].count("data_contribution") == 1
