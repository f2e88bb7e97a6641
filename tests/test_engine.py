import os
import tempfile
import unittest

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.models import Base, Entry, User


class TestMakeEngine(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.url = "sqlite:///" + os.path.join(self.tmpdir.name, "raffles.db")
        self.engine = make_engine(self.url)
        Base.metadata.create_all(self.engine)

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_sqlite_connections_enforce_foreign_keys(self):
        with self.engine.connect() as conn:
            self.assertEqual(conn.execute(text("PRAGMA foreign_keys")).scalar(), 1)

        Session = get_sessionmaker(self.engine)
        with self.assertRaises(IntegrityError):
            with Session.begin() as session:
                session.add(Entry(raffle_id=999, user_id=999))

    def test_sessionmaker_keeps_objects_readable_after_commit(self):
        Session = get_sessionmaker(self.engine)
        with Session.begin() as session:
            user = User(email="kept@example.com", entries_remaining=2)
            session.add(user)
        self.assertEqual(user.entries_remaining, 2)
        self.assertIsNotNone(user.id)


if __name__ == "__main__":
    unittest.main()
