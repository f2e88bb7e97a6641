from __future__ import annotations

import os
import tempfile
import unittest
from unittest.mock import patch
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from sqlalchemy import Update, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.db.utils import ensure_aware
from fairdraw.draw import (
    DrawCoordinator,
    DrawErrorKind,
    DrawExtended,
    DrawRejected,
    DrawSucceeded,
    EntryRepository,
    RaffleRepository,
    StorageFailure,
    commit,
    verify_draw,
)
from fairdraw.models import Base, Entry, EntrySource, Raffle, RaffleStatus, User

GOLDEN_PROOF = "5297fae31de8a952e45d30fc3b39cec23bf694c2cc3cb0bc24186697839aa5c1"
GOLDEN_MOMENT = datetime.fromtimestamp(1700000000, tz=timezone.utc)
END_AT = datetime(2023, 11, 14, 12, 0, tzinfo=timezone.utc)


def _seed(
    session,
    *,
    names=("alice", "bob", "carol"),
    secret="SECRET",
    status=RaffleStatus.LIVE,
    min_entries=None,
    same_instant=False,
):
    """Create users and a raffle holding one entry per user, in ``names`` order."""

    users = [User(email=f"{name}@example.com", full_name=name.title()) for name in names]
    session.add_all(users)
    raffle = Raffle(
        title="Golden raffle",
        end_at=END_AT,
        secret=secret,
        secret_commitment=commit(secret),
        min_entries=min_entries,
        status=status,
    )
    session.add(raffle)
    session.flush()

    base = datetime(2023, 11, 1, tzinfo=timezone.utc)
    for offset, user in enumerate(users):
        recorded_at = base if same_instant else base + timedelta(seconds=offset)
        session.add(
            Entry(raffle_id=raffle.id, user_id=user.id, recorded_at=recorded_at)
        )
    session.flush()
    return raffle, users


class InMemoryDrawCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _coordinator(self, session, moment=GOLDEN_MOMENT, **kwargs):
        return DrawCoordinator(session, clock=lambda: moment, **kwargs)


class DrawCoordinatorTests(InMemoryDrawCase):
    def test_golden_draw_selects_second_entrant(self):
        with self.Session.begin() as session:
            raffle, users = _seed(session)
            outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertIsInstance(outcome, DrawSucceeded)
            self.assertEqual(outcome.proof, GOLDEN_PROOF)
            self.assertEqual(outcome.entry_count, 3)
            self.assertEqual(outcome.winner_index, 1)
            self.assertEqual(outcome.timestamp, 1700000000000)
            self.assertEqual(outcome.winner_id, users[1].id)
            self.assertFalse(outcome.is_failure)
            raffle_id, bob_id = raffle.id, users[1].id

        with self.Session() as session:
            stored = session.get(Raffle, raffle_id)
            self.assertEqual(stored.status, RaffleStatus.CLOSED.value)
            self.assertEqual(stored.draw_proof, GOLDEN_PROOF)
            self.assertEqual(stored.winner_id, bob_id)
            self.assertEqual(stored.draw_entry_count, 3)
            self.assertEqual(stored.draw_timestamp, 1700000000000)
            self.assertEqual(stored.revealed_secret, "SECRET")

    def test_result_is_independently_verifiable(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session, secret="a" * 64, names=[f"u{i}" for i in range(7)])
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertIsInstance(outcome, DrawSucceeded)
            verification = verify_draw(
                secret=raffle.secret,
                commitment=raffle.secret_commitment,
                entry_count=raffle.draw_entry_count,
                timestamp=raffle.draw_timestamp,
                proof=raffle.draw_proof,
                index=outcome.winner_index,
            )
            self.assertTrue(verification.valid)

    def test_unknown_raffle_is_not_found(self):
        with self.Session.begin() as session:
            outcome = self._coordinator(session).attempt_draw(999)
        self.assertIsInstance(outcome, DrawRejected)
        self.assertEqual(outcome.kind, DrawErrorKind.NOT_FOUND)
        self.assertIsNone(outcome.existing)
        self.assertTrue(outcome.is_failure)

    def test_draft_raffle_is_invalid_state(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session, status=RaffleStatus.DRAFT)
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertIsInstance(outcome, DrawRejected)
            self.assertEqual(outcome.kind, DrawErrorKind.INVALID_STATE)
            self.assertIsNone(outcome.existing)
            self.assertEqual(raffle.status, RaffleStatus.DRAFT.value)
            self.assertIsNone(raffle.draw_proof)

    def test_raffle_without_entries(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session, names=())
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertIsInstance(outcome, DrawRejected)
            self.assertEqual(outcome.kind, DrawErrorKind.NO_ENTRIES)
            self.assertEqual(raffle.status, RaffleStatus.LIVE.value)

    def test_below_minimum_extends_deadline(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session, min_entries=10)
            outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertIsInstance(outcome, DrawExtended)
            self.assertEqual(ensure_aware(outcome.previous_end_at), END_AT)
            self.assertEqual(ensure_aware(outcome.new_end_at), END_AT + timedelta(days=1))
            self.assertEqual(
                outcome.reason,
                "Minimum 10 entries not met (3 current). Extended by 1 day.",
            )
            self.assertFalse(outcome.is_failure)
            raffle_id = raffle.id

        with self.Session() as session:
            stored = session.get(Raffle, raffle_id)
            self.assertEqual(stored.status, RaffleStatus.LIVE.value)
            self.assertEqual(ensure_aware(stored.end_at), END_AT + timedelta(days=1))
            self.assertIsNone(stored.draw_proof)
            self.assertIsNone(stored.winner_id)
            self.assertIsNone(stored.revealed_secret)

    def test_exact_minimum_draws(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session, min_entries=3)
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertIsInstance(outcome, DrawSucceeded)

    def test_repeated_draw_returns_existing_result(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session)
            first = self._coordinator(session).attempt_draw(raffle.id)
            later = GOLDEN_MOMENT + timedelta(minutes=5)
            second = self._coordinator(session, moment=later).attempt_draw(raffle.id)

            self.assertIsInstance(first, DrawSucceeded)
            self.assertIsInstance(second, DrawRejected)
            self.assertEqual(second.kind, DrawErrorKind.ALREADY_CLOSED)
            self.assertFalse(second.is_failure)
            self.assertIsNotNone(second.existing)
            self.assertEqual(second.existing.proof, first.proof)
            self.assertEqual(second.existing.winner_id, first.winner_id)
            self.assertEqual(second.existing.timestamp, first.timestamp)
            self.assertEqual(raffle.draw_proof, GOLDEN_PROOF)

    def test_entries_recorded_at_same_instant_are_ordered_by_id(self):
        with self.Session.begin() as session:
            raffle, users = _seed(session, same_instant=True)
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertEqual(outcome.winner_index, 1)
            self.assertEqual(outcome.winner_id, users[1].id)

    def test_snapshot_orders_by_recorded_at_before_id(self):
        with self.Session.begin() as session:
            raffle, users = _seed(session, names=())
            late, early, middle = (
                User(email=f"{name}@example.com") for name in ("late", "early", "middle")
            )
            session.add_all([late, early, middle])
            session.flush()
            base = datetime(2023, 11, 1, tzinfo=timezone.utc)
            # Inserted out of order: ``late`` gets the lowest id.
            session.add_all(
                [
                    Entry(raffle_id=raffle.id, user_id=late.id, recorded_at=base + timedelta(hours=2)),
                    Entry(raffle_id=raffle.id, user_id=early.id, recorded_at=base),
                    Entry(raffle_id=raffle.id, user_id=middle.id, recorded_at=base + timedelta(hours=1)),
                ]
            )
            session.flush()
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertEqual(outcome.winner_index, 1)
            self.assertEqual(outcome.winner_id, middle.id)

    def test_multiple_entries_per_user_weight_the_draw(self):
        with self.Session.begin() as session:
            raffle, users = _seed(session, names=("alice",))
            bob = User(email="bob@example.com")
            session.add(bob)
            session.flush()
            base = datetime(2023, 11, 2, tzinfo=timezone.utc)
            session.add_all(
                [
                    Entry(raffle_id=raffle.id, user_id=bob.id, recorded_at=base),
                    Entry(
                        raffle_id=raffle.id,
                        user_id=bob.id,
                        source=EntrySource.NPN,
                        recorded_at=base + timedelta(seconds=1),
                    ),
                ]
            )
            session.flush()
            outcome = self._coordinator(session).attempt_draw(raffle.id)
            # Snapshot is alice, bob, bob; index 1 is bob's first entry.
            self.assertEqual(outcome.entry_count, 3)
            self.assertEqual(outcome.winner_id, bob.id)


def _disk_error() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("disk I/O error"))


class StorageFailureTests(InMemoryDrawCase):
    def test_load_failure_is_reported_not_raised(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session)
            with patch.object(session, "scalar", side_effect=_disk_error()):
                with self.assertLogs("fairdraw.draw", level="ERROR"):
                    outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertIsInstance(outcome, DrawRejected)
            self.assertEqual(outcome.kind, DrawErrorKind.STORAGE_FAILURE)
            self.assertTrue(outcome.is_failure)
            self.assertIsNone(outcome.existing)

    def test_repository_errors_chain_the_driver_error(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session)
            with patch.object(session, "scalar", side_effect=_disk_error()):
                with self.assertRaises(StorageFailure) as ctx:
                    RaffleRepository(session).get(raffle.id)
            self.assertEqual(ctx.exception.kind, DrawErrorKind.STORAGE_FAILURE)
            self.assertIsInstance(ctx.exception.__cause__, OperationalError)

            with patch.object(session, "execute", side_effect=_disk_error()):
                with self.assertRaises(StorageFailure) as ctx:
                    EntryRepository(session).snapshot(raffle.id)
            self.assertIsInstance(ctx.exception.__cause__, OperationalError)

    def test_snapshot_failure(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session)
            with patch.object(session, "execute", side_effect=_disk_error()):
                outcome = self._coordinator(session).attempt_draw(raffle.id)
            self.assertEqual(outcome.kind, DrawErrorKind.STORAGE_FAILURE)

    def test_finalize_failure_leaves_raffle_live(self):
        with self.Session.begin() as session:
            raffle, _ = _seed(session)
            real_execute = session.execute

            def failing_update(stmt, *args, **kwargs):
                if isinstance(stmt, Update):
                    raise _disk_error()
                return real_execute(stmt, *args, **kwargs)

            with patch.object(session, "execute", side_effect=failing_update):
                outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertEqual(outcome.kind, DrawErrorKind.STORAGE_FAILURE)
            stored = RaffleRepository(session).get(raffle.id)
            self.assertEqual(stored.status, RaffleStatus.LIVE.value)
            self.assertIsNone(stored.draw_proof)


class ExtensionRaceTests(InMemoryDrawCase):
    def test_losing_extension_reports_the_stored_deadline(self):
        real_extend = RaffleRepository.extend_deadline

        def extended_elsewhere(repo, raffle_id, *, previous_end_at, new_end_at):
            # A concurrent attempt moves the deadline first, one hour further.
            real_extend(
                repo,
                raffle_id,
                previous_end_at=previous_end_at,
                new_end_at=new_end_at + timedelta(hours=1),
            )
            return False

        with self.Session.begin() as session:
            raffle, _ = _seed(session, min_entries=10)
            with patch.object(
                RaffleRepository, "extend_deadline", autospec=True, side_effect=extended_elsewhere
            ):
                outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertIsInstance(outcome, DrawExtended)
            self.assertFalse(outcome.applied)
            self.assertFalse(outcome.is_failure)
            self.assertEqual(ensure_aware(outcome.previous_end_at), END_AT)
            self.assertEqual(
                ensure_aware(outcome.new_end_at), END_AT + timedelta(days=1, hours=1)
            )
            self.assertEqual(raffle.status, RaffleStatus.LIVE.value)
            self.assertEqual(
                ensure_aware(raffle.end_at), END_AT + timedelta(days=1, hours=1)
            )

    def test_extension_lost_to_a_draw_reports_already_closed(self):
        with self.Session.begin() as session:
            raffle, users = _seed(session, min_entries=10)

            def drawn_elsewhere(repo, raffle_id, *, previous_end_at, new_end_at):
                repo.finalize(
                    raffle_id,
                    draw_proof="e" * 64,
                    winner_id=users[0].id,
                    entry_count=3,
                    timestamp=5,
                )
                return False

            with patch.object(
                RaffleRepository, "extend_deadline", autospec=True, side_effect=drawn_elsewhere
            ):
                outcome = self._coordinator(session).attempt_draw(raffle.id)

            self.assertIsInstance(outcome, DrawRejected)
            self.assertEqual(outcome.kind, DrawErrorKind.ALREADY_CLOSED)
            self.assertEqual(outcome.existing.proof, "e" * 64)
            self.assertEqual(ensure_aware(raffle.end_at), END_AT)


class DrawConcurrencyTests(unittest.TestCase):
    """Draws racing on a file-backed database shared by several connections."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite:///{os.path.join(self.tmpdir.name, 'draws.db')}"
        self.engine = make_engine(
            url, connect_args={"check_same_thread": False, "timeout": 30}
        )
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            raffle, users = _seed(session)
            self.raffle_id = raffle.id
            self.user_ids = [user.id for user in users]

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_lost_race_reports_already_closed_with_winner(self):
        def close_elsewhere() -> datetime:
            # Another worker finalizes between our snapshot and our commit.
            with self.Session.begin() as other:
                RaffleRepository(other).finalize(
                    self.raffle_id,
                    draw_proof="f" * 64,
                    winner_id=self.user_ids[2],
                    entry_count=3,
                    timestamp=1,
                )
            return GOLDEN_MOMENT

        with self.Session.begin() as session:
            outcome = DrawCoordinator(session, clock=close_elsewhere).attempt_draw(
                self.raffle_id
            )

        self.assertIsInstance(outcome, DrawRejected)
        self.assertEqual(outcome.kind, DrawErrorKind.ALREADY_CLOSED)
        self.assertFalse(outcome.is_failure)
        self.assertIsNotNone(outcome.existing)
        self.assertEqual(outcome.existing.proof, "f" * 64)
        self.assertEqual(outcome.existing.winner_id, self.user_ids[2])

        with self.Session() as session:
            stored = session.get(Raffle, self.raffle_id)
            self.assertEqual(stored.draw_proof, "f" * 64)
            self.assertEqual(stored.draw_timestamp, 1)

    def test_concurrent_draws_close_exactly_once(self):
        moments = [GOLDEN_MOMENT + timedelta(milliseconds=i) for i in range(8)]

        def attempt(moment: datetime):
            with self.Session.begin() as session:
                return DrawCoordinator(session, clock=lambda: moment).attempt_draw(
                    self.raffle_id
                )

        with ThreadPoolExecutor(max_workers=len(moments)) as pool:
            outcomes = list(pool.map(attempt, moments))

        succeeded = [o for o in outcomes if isinstance(o, DrawSucceeded)]
        rejected = [o for o in outcomes if isinstance(o, DrawRejected)]
        self.assertEqual(len(succeeded), 1)
        self.assertEqual(len(rejected), len(moments) - 1)

        winner = succeeded[0]
        for outcome in rejected:
            self.assertEqual(outcome.kind, DrawErrorKind.ALREADY_CLOSED)
            self.assertFalse(outcome.is_failure)
            self.assertIsNotNone(outcome.existing)
            self.assertEqual(outcome.existing.proof, winner.proof)
            self.assertEqual(outcome.existing.winner_id, winner.winner_id)

        with self.Session() as session:
            stored = session.get(Raffle, self.raffle_id)
            self.assertEqual(stored.status, RaffleStatus.CLOSED.value)
            self.assertEqual(stored.draw_proof, winner.proof)
            self.assertEqual(stored.draw_timestamp, winner.timestamp)


if __name__ == "__main__":
    unittest.main()
