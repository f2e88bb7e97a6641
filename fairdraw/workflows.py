from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

import requests
from sqlalchemy import insert, literal, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import DrawSettings
from .db.utils import dt_iso
from .draw import (
    DrawCoordinator,
    DrawExtended,
    DrawErrorKind,
    DrawOutcome,
    DrawRejected,
    DrawSucceeded,
    InvalidStateError,
    RaffleNotFoundError,
    RaffleLifecycle,
    commit,
    generate_secret,
)
from .models import Entry, EntrySource, EventLog, Raffle, RaffleStatus, User

if TYPE_CHECKING:
    from .notifications import NotificationClient

logger = logging.getLogger(__name__)


def create_raffle(
    session: Session,
    *,
    title: str,
    end_at: datetime,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    min_entries: Optional[int] = None,
    settings: Optional[DrawSettings] = None,
) -> Raffle:
    """Create a DRAFT raffle with a fresh secret and its public commitment.

    The commitment is computed here, before the raffle can go LIVE, so it is
    published before any entry exists.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    title : str
        Raffle title, 3 to 100 characters.
    end_at : datetime
        Deadline after which the raffle may be drawn.
    description : Optional[str]
        Optional free-form description.
    image_url : Optional[str]
        Optional prize image URL.
    min_entries : Optional[int]
        Minimum number of entries required at draw time. ``None`` or ``0``
        disables the check.
    settings : Optional[DrawSettings]
        Settings providing the secret length. Defaults to :class:`DrawSettings`.

    Returns
    -------
    Raffle
        The persisted raffle with a populated ``id``.
    """

    settings = settings or DrawSettings()
    title = (title or "").strip()
    if not 3 <= len(title) <= 100:
        raise ValueError("title must be between 3 and 100 characters")
    if min_entries is not None and min_entries < 0:
        raise ValueError("min_entries must be non-negative")

    secret = generate_secret(settings.secret_bytes)
    raffle = Raffle(
        title=title,
        description=description,
        image_url=image_url,
        end_at=end_at,
        min_entries=min_entries,
        secret=secret,
        secret_commitment=commit(secret),
    )
    session.add(raffle)
    session.flush()
    logger.info(f"Created raffle {raffle.id} with commitment {raffle.secret_commitment}")
    return raffle


def publish_raffle(
    session: Session,
    raffle: Raffle,
    *,
    lifecycle: Optional[RaffleLifecycle] = None,
) -> Raffle:
    """Move ``raffle`` from DRAFT to LIVE so that entries are accepted."""

    if raffle.id is None:
        raise ValueError("Raffle must be persisted before it can go LIVE")
    (lifecycle or RaffleLifecycle()).publish(raffle)
    session.flush()
    return raffle


def _load_for_update(session: Session, model, ident: int):
    """Re-read ``model`` ``ident`` from the database, locking the row where supported."""
    return session.scalar(
        select(model)
        .where(model.id == ident)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def record_entry(
    session: Session,
    raffle: Raffle,
    user: User,
    *,
    source: EntrySource = EntrySource.SUBSCRIPTION,
) -> Entry:
    """Record one entry for ``user`` in a LIVE raffle.

    ``SUBSCRIPTION`` entries consume one of the user's ``entries_remaining``.
    ``NPN`` (no purchase necessary) entries are free but limited to one per
    user per raffle.

    The raffle status is checked against the database, not the in-memory
    ``raffle``, and the insert itself is guarded by ``status = 'LIVE'``, so no
    entry can reach a raffle that another session already closed.
    ``recorded_at`` is always the current time.

    Raises
    ------
    InvalidStateError
        If the raffle is not LIVE, the user has no entries left, or the free
        entry was already used.
    """

    if raffle.id is None or user.id is None:
        raise ValueError("Raffle and user must be persisted before recording an entry")
    current = _load_for_update(session, Raffle, raffle.id)
    if current is None or not RaffleLifecycle.accepts_entries(current):
        status = current.status if current is not None else "missing"
        raise InvalidStateError(f"Raffle {raffle.id} is not accepting entries ({status})")

    source = EntrySource(source)
    if source is EntrySource.NPN:
        if Entry.count_for_user(session, raffle.id, user.id, EntrySource.NPN):
            raise InvalidStateError("The free NPN entry was already used for this raffle")
    else:
        # Conditional decrement so concurrent redemptions cannot overdraw.
        result = session.execute(
            update(User)
            .where(User.id == user.id, User.entries_remaining > 0)
            .values(entries_remaining=User.entries_remaining - 1)
            .execution_options(synchronize_session=False)
        )
        session.refresh(user)
        if result.rowcount != 1:
            raise InvalidStateError("No entries remaining")

    entries = Entry.__table__
    guarded = insert(entries).from_select(
        ["raffle_id", "user_id", "source", "recorded_at"],
        select(
            literal(raffle.id, entries.c.raffle_id.type),
            literal(user.id, entries.c.user_id.type),
            literal(source.value, entries.c.source.type),
            literal(datetime.now(timezone.utc), entries.c.recorded_at.type),
        ).where(Raffle.id == raffle.id, Raffle.status == RaffleStatus.LIVE.value),
    )
    if session.execute(guarded).rowcount != 1:
        if source is EntrySource.SUBSCRIPTION:
            session.execute(
                update(User)
                .where(User.id == user.id)
                .values(entries_remaining=User.entries_remaining + 1)
                .execution_options(synchronize_session=False)
            )
            session.refresh(user)
        raise InvalidStateError(f"Raffle {raffle.id} closed before the entry was recorded")

    return session.scalar(
        select(Entry)
        .where(Entry.raffle_id == raffle.id, Entry.user_id == user.id)
        .order_by(Entry.id.desc())
        .limit(1)
    )


def _log_outcome(session: Session, outcome: DrawOutcome, actor_id: Optional[int]) -> None:
    if isinstance(outcome, DrawSucceeded):
        session.add(
            EventLog(
                type=EventLog.WINNER_DRAW,
                payload={
                    "raffle_id": outcome.raffle_id,
                    "winner_id": outcome.winner_id,
                    "draw_hash": outcome.proof,
                    "entry_count": outcome.entry_count,
                    "winner_index": outcome.winner_index,
                    "admin_id": actor_id,
                    "timestamp": str(outcome.timestamp),
                },
            )
        )
    elif isinstance(outcome, DrawExtended) and outcome.applied:
        session.add(
            EventLog(
                type=EventLog.DRAW_EXTENDED,
                payload={
                    "raffle_id": outcome.raffle_id,
                    "previous_end_at": dt_iso(outcome.previous_end_at),
                    "new_end_at": dt_iso(outcome.new_end_at),
                    "reason": outcome.reason,
                    "admin_id": actor_id,
                },
            )
        )
    else:
        return
    session.flush()


def run_draw(
    session: Session,
    raffle_id: int,
    *,
    actor_id: Optional[int] = None,
    settings: Optional[DrawSettings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> DrawOutcome:
    """Attempt a draw inside the caller's transaction and audit the outcome.

    This function essentially wraps :class:`DrawCoordinator` and appends an
    :class:`EventLog` row for draws and extensions. The caller commits.
    """

    settings = settings or DrawSettings()
    coordinator = DrawCoordinator(session, lifecycle=settings.lifecycle(), clock=clock)
    outcome = coordinator.attempt_draw(raffle_id)
    _log_outcome(session, outcome, actor_id)
    return outcome


def _entrant_ids(session: Session, raffle_id: int) -> list[int]:
    stmt = (
        select(Entry.user_id)
        .where(Entry.raffle_id == raffle_id)
        .group_by(Entry.user_id)
        .order_by(Entry.user_id)
    )
    return list(session.scalars(stmt).all())


def notify_draw(
    notifier: "NotificationClient", outcome: DrawSucceeded, entrant_ids: list[int]
) -> None:
    """Tell the winner and every other entrant about a committed draw.

    Delivery failures are logged; the draw itself is already final.
    """

    try:
        notifier.notify_winner(outcome.raffle_id, outcome.winner_id)
    except requests.RequestException as exc:
        logger.warning(f"Failed to send winner notification for raffle {outcome.raffle_id}: {exc}")

    for user_id in entrant_ids:
        if user_id == outcome.winner_id:
            continue
        try:
            notifier.notify_result(outcome.raffle_id, user_id)
        except requests.RequestException as exc:
            logger.warning(
                f"Failed to send result notification to user {user_id} "
                f"for raffle {outcome.raffle_id}: {exc}"
            )


def _settings_notifier(
    settings: DrawSettings, notifier: Optional["NotificationClient"]
) -> Optional["NotificationClient"]:
    if notifier is not None or not settings.notification_url:
        return notifier
    from .notifications import NotificationClient

    return NotificationClient(
        base_url=settings.notification_url,
        api_key=settings.notification_api_key,
        timeout=settings.notification_timeout,
    )


def draw_raffle(
    session_factory: sessionmaker,
    raffle_id: int,
    *,
    actor_id: Optional[int] = None,
    settings: Optional[DrawSettings] = None,
    notifier: Optional["NotificationClient"] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> DrawOutcome:
    """Run one draw attempt in its own transaction, then notify entrants.

    Notifications are only sent after the transaction committed, so a failed
    commit never announces a winner. A commit that fails is reported as a
    ``STORAGE_FAILURE`` rejection. When ``notifier`` is omitted and
    ``settings.notification_url`` is set, a :class:`NotificationClient` is
    created from the settings.
    """

    settings = settings or DrawSettings()
    try:
        with session_factory.begin() as session:
            outcome = run_draw(
                session, raffle_id, actor_id=actor_id, settings=settings, clock=clock
            )
            entrant_ids = (
                _entrant_ids(session, raffle_id) if isinstance(outcome, DrawSucceeded) else []
            )
    except SQLAlchemyError as exc:
        logger.error(f"Failed to commit draw for raffle {raffle_id}: {exc}")
        return DrawRejected(
            raffle_id=raffle_id,
            kind=DrawErrorKind.STORAGE_FAILURE,
            message=f"Failed to commit draw for raffle {raffle_id}",
        )

    if not isinstance(outcome, DrawSucceeded):
        return outcome

    notifier = _settings_notifier(settings, notifier)
    if notifier is not None:
        notify_draw(notifier, outcome, entrant_ids)
    return outcome


def enter_raffle(
    session_factory: sessionmaker,
    raffle_id: int,
    user_id: int,
    *,
    source: EntrySource = EntrySource.SUBSCRIPTION,
    settings: Optional[DrawSettings] = None,
    notifier: Optional["NotificationClient"] = None,
) -> Entry:
    """Record an entry in its own transaction, then send the entry confirmation.

    The confirmation carries the user's total entry count in the raffle, the
    email and the display name. It is only sent once the entry is committed;
    delivery failures are logged.

    Raises
    ------
    RaffleNotFoundError
        If ``raffle_id`` does not exist.
    ValueError
        If ``user_id`` does not exist.
    InvalidStateError
        Propagated from :func:`record_entry`.
    """

    settings = settings or DrawSettings()
    with session_factory.begin() as session:
        raffle = session.get(Raffle, raffle_id)
        if raffle is None:
            raise RaffleNotFoundError(f"Raffle {raffle_id} not found")
        user = session.get(User, user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        entry = record_entry(session, raffle, user, source=source)
        entry_count = Entry.count_for_user(session, raffle_id, user_id)
        email, user_name = user.email, user.display_name

    notifier = _settings_notifier(settings, notifier)
    if notifier is not None:
        try:
            notifier.notify_entry_confirmation(
                raffle_id,
                user_id,
                entry_count=entry_count,
                email=email,
                user_name=user_name,
            )
        except requests.RequestException as exc:
            logger.warning(
                f"Failed to send entry confirmation to user {user_id} "
                f"for raffle {raffle_id}: {exc}"
            )
    return entry


def draw_due_raffles(
    session_factory: sessionmaker,
    *,
    now: Optional[datetime] = None,
    actor_id: Optional[int] = None,
    settings: Optional[DrawSettings] = None,
    notifier: Optional["NotificationClient"] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> list[DrawOutcome]:
    """Attempt a draw for every LIVE raffle whose deadline has passed.

    Each raffle is drawn in its own transaction so one failure does not roll
    back the others.
    """

    with session_factory() as session:
        due_ids = [raffle.id for raffle in Raffle.get_live_past_deadline(session, now)]

    return [
        draw_raffle(
            session_factory,
            raffle_id,
            actor_id=actor_id,
            settings=settings,
            notifier=notifier,
            clock=clock,
        )
        for raffle_id in due_ids
    ]


__all__ = [
    "create_raffle",
    "draw_due_raffles",
    "draw_raffle",
    "enter_raffle",
    "notify_draw",
    "publish_raffle",
    "record_entry",
    "run_draw",
]
