from __future__ import annotations

import re
from datetime import datetime, timezone
from uuid import uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from myrad.core.config import Settings, get_settings
from myrad.db.errors import extract_constraint_name
from myrad.db.models.points_history import PointsEntry
from myrad.db.models.users import User
from myrad.db.repo.points_repo import PointsRepo
from myrad.db.repo.users_repo import UsersRepo
from myrad.db.retry import RetryPolicy, run_with_retry
from myrad.db.session import Store
from myrad.points.errors import UserNotFoundError
from myrad.points.types import FIRST_ACCESS_BONUS_REASON
from myrad.users.errors import InvalidUsernameError, UsernameTakenError, UserPreconditionError
from myrad.users.types import IdentityResult, UserView

logger = structlog.get_logger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,32}$")
USERNAME_INDEX_NAME = "uq_users_username_lower"


def to_user_view(user: User) -> UserView:
    return UserView(
        id=int(user.id),
        external_id=user.external_id,
        email=user.email,
        wallet_address=user.wallet_address,
        username=user.username,
        total_points=int(user.total_points),
        league=user.league,
        streak=int(user.streak),
        referred_by=user.referred_by,
        created_at=user.created_at,
        last_active_at=user.last_active_at,
    )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


async def _reload(session: AsyncSession, user_id: int) -> User:
    user = await UsersRepo.get_by_id_for_update(session, user_id)
    if user is None:
        raise UserNotFoundError(f"user {user_id} not found")
    return user


async def _create_with_baseline(
    session: AsyncSession,
    *,
    external_id: str,
    email: str | None,
    wallet_address: str | None,
    baseline_points: int,
    now_utc: datetime,
) -> User:
    user = await UsersRepo.create(
        session,
        external_id=external_id,
        email=email,
        wallet_address=wallet_address,
        total_points=baseline_points,
        now_utc=now_utc,
    )
    await PointsRepo.create(
        session,
        entry=PointsEntry(
            id=str(uuid4()),
            user_id=user.id,
            points=baseline_points,
            reason=FIRST_ACCESS_BONUS_REASON,
            created_at=now_utc,
        ),
    )
    return user


async def reconcile_identity(
    store: Store,
    *,
    external_id: str,
    email: str | None = None,
    wallet_address: str | None = None,
    settings: Settings | None = None,
) -> IdentityResult:
    """Gets or creates the user behind an identity-provider id.

    A new user starts with the baseline first-access bonus. Known users get a
    missing email or wallet filled in; existing values are never overwritten.
    """
    normalized_external_id = _clean(external_id)
    if normalized_external_id is None:
        raise UserPreconditionError("external_id is required")
    resolved_settings = settings or get_settings()
    email = _clean(email)
    wallet_address = _clean(wallet_address)

    async def _attempt() -> IdentityResult:
        now_utc = datetime.now(timezone.utc)
        async with store.transaction() as session:
            user = await UsersRepo.get_by_external_id_for_update(session, normalized_external_id)
            if user is None:
                try:
                    async with session.begin_nested():
                        user = await _create_with_baseline(
                            session,
                            external_id=normalized_external_id,
                            email=email,
                            wallet_address=wallet_address,
                            baseline_points=resolved_settings.baseline_points,
                            now_utc=now_utc,
                        )
                    return IdentityResult(user=to_user_view(user), created=True)
                except IntegrityError:
                    user = await UsersRepo.get_by_external_id_for_update(
                        session,
                        normalized_external_id,
                    )
                    if user is None:
                        raise

            updates: dict[str, object] = {"last_active_at": now_utc}
            if email and not user.email:
                updates["email"] = email
            if wallet_address and not user.wallet_address:
                updates["wallet_address"] = wallet_address
            await UsersRepo.update_profile(session, user_id=user.id, **updates)
            refreshed = await _reload(session, user.id)
            return IdentityResult(user=to_user_view(refreshed), created=False)

    result = await run_with_retry(
        _attempt,
        operation_name="reconcile_identity",
        policy=RetryPolicy.from_settings(resolved_settings),
    )
    if result.created:
        logger.info("user_created", user_id=result.user.id, total_points=result.user.total_points)
    return result


async def get_user(store: Store, *, user_id: int) -> UserView | None:
    async with store.transaction() as session:
        user = await UsersRepo.get_by_id(session, user_id)
    return to_user_view(user) if user is not None else None


async def get_user_by_external_id(store: Store, *, external_id: str) -> UserView | None:
    async with store.transaction() as session:
        user = await UsersRepo.get_by_external_id(session, external_id)
    return to_user_view(user) if user is not None else None


async def set_username(store: Store, *, user_id: int, username: str) -> UserView:
    candidate = (username or "").strip()
    if not USERNAME_RE.fullmatch(candidate):
        raise InvalidUsernameError("username must be 3-32 letters, digits or underscores")

    try:
        async with store.transaction() as session:
            user = await UsersRepo.get_by_id_for_update(session, user_id)
            if user is None:
                raise UserNotFoundError(f"user {user_id} not found")
            holder = await UsersRepo.get_by_username_ci(session, candidate)
            if holder is not None and holder.id != user_id:
                raise UsernameTakenError(f"username {candidate} is taken")
            await UsersRepo.update_profile(session, user_id=user_id, username=candidate)
            view = to_user_view(await _reload(session, user_id))
    except IntegrityError as exc:
        if extract_constraint_name(exc) != USERNAME_INDEX_NAME:
            raise
        raise UsernameTakenError(f"username {candidate} is taken") from exc

    logger.info("username_set", user_id=user_id)
    return view


async def update_wallet(store: Store, *, user_id: int, wallet_address: str) -> UserView:
    cleaned = _clean(wallet_address)
    if cleaned is None:
        raise UserPreconditionError("wallet_address is required")

    async with store.transaction() as session:
        updated = await UsersRepo.update_profile(session, user_id=user_id, wallet_address=cleaned)
        if not updated:
            raise UserNotFoundError(f"user {user_id} not found")
        view = to_user_view(await _reload(session, user_id))

    logger.info("wallet_updated", user_id=user_id)
    return view


class UserService:
    reconcile_identity = staticmethod(reconcile_identity)
    get_user = staticmethod(get_user)
    get_user_by_external_id = staticmethod(get_user_by_external_id)
    set_username = staticmethod(set_username)
    update_wallet = staticmethod(update_wallet)
