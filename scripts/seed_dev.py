from datetime import datetime, timedelta, timezone

from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.models import Base, EntrySource, User
from fairdraw.public import public_raffle_view
from fairdraw.workflows import create_raffle, draw_raffle, publish_raffle, record_entry


def main() -> None:
    """Seed the development database with a drawn raffle and a live one."""
    engine = make_engine()

    # SQLite refuses to drop referenced tables while foreign keys are enforced.
    with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if engine.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        users = [
            User(email=f"{name}@example.com", full_name=name.title(), entries_remaining=3)
            for name in ("alice", "bob", "carol", "dave")
        ]
        session.add_all(users)
        session.flush()

        finished = create_raffle(
            session,
            title="Monthly Gadget Raffle",
            description="Drawn during seeding.",
            end_at=now - timedelta(hours=1),
        )
        publish_raffle(session, finished)
        for user in users:
            record_entry(session, finished, user)
        record_entry(session, finished, users[0], source=EntrySource.NPN)

        upcoming = create_raffle(
            session,
            title="Weekend Getaway",
            end_at=now + timedelta(days=7),
            min_entries=10,
        )
        publish_raffle(session, upcoming)
        record_entry(session, upcoming, users[1])
        finished_id, upcoming_id = finished.id, upcoming.id

    outcome = draw_raffle(Session, finished_id)
    print("Draw outcome:", outcome)

    with Session() as session:
        for raffle_id in (finished_id, upcoming_id):
            print(public_raffle_view(session, raffle_id).to_dict())


if __name__ == "__main__":
    main()
