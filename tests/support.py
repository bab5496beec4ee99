import os
import sys
import shutil
import tempfile
import importlib
import unittest

PASSWORD = "ValidPass1"


class DatabaseTestCase(unittest.TestCase):
    """Points the db module at a fresh SQLite file for every test."""

    @classmethod
    def setUpClass(cls):
        cls._temp_dir = tempfile.mkdtemp(prefix="bookbazaar_test_")
        cls.db_path = os.path.join(cls._temp_dir, "bookbazaar.db")
        os.environ["DB_FILE"] = cls.db_path
        os.environ.pop("DATABASE_URL", None)
        if "db" in sys.modules:
            sys.modules["db"].close_database()
            cls.db = importlib.reload(sys.modules["db"])
        else:
            cls.db = importlib.import_module("db")

    @classmethod
    def tearDownClass(cls):
        try:
            cls.db.close_database()
        finally:
            shutil.rmtree(cls._temp_dir, ignore_errors=True)

    def setUp(self):
        self.db.close_database()
        self._remove_db_files()
        self.db.init_db()

    def tearDown(self):
        self.db.close_database()
        self._remove_db_files()

    def _remove_db_files(self):
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path + suffix
            if os.path.exists(path):
                os.remove(path)

    def create_user(self, username, password_hash="hash"):
        return self.db.create_user(username, f"{username}@example.com", password_hash)

    def create_book(self, owner_id, title="Dune", price=10.0, **fields):
        import catalog
        data = {"title": title, "author": "Frank Herbert", "price": price}
        data.update(fields)
        return catalog.create_book(owner_id, data)


class ApiTestCase(DatabaseTestCase):
    """DatabaseTestCase plus the Flask app and bearer-token helpers."""

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        from app import app
        cls.app = app
        cls.app.config["TESTING"] = True
        cls.app.config["RATE_LIMIT_ENABLED"] = False
        cls.app.config["EXPOSE_RESET_TOKENS"] = True

    def setUp(self):
        super().setUp()
        self.client = self.app.test_client()

    def register(self, username, password=PASSWORD, **extra):
        payload = {"username": username, "email": f"{username}@example.com", "password": password}
        payload.update(extra)
        response = self.client.post("/api/auth/register", json=payload)
        self.assertEqual(response.status_code, 201, response.get_json())
        body = response.get_json()
        return body["user"], body["token"]

    @staticmethod
    def auth(token):
        return {"Authorization": f"Bearer {token}"}
