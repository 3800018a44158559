import pytest
from fastapi.testclient import TestClient
from database import Database
from main import create_app
from models import User
from routes import resolve_account


class FakeAccount:
    """Stands in for the auth service; switch users by setting user_id."""

    def __init__(self, user_id: int = 1):
        self.user_id = user_id

    def __call__(self):
        return {"id": self.user_id, "name": f"User {self.user_id}", "is_banned": False}


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.init()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def users(db):
    rows = [
        User(id=1, first_name="Amine", last_name="Trabelsi", profile_image="https://cdn.example.com/u/1.png"),
        User(id=2, first_name="Sarra", last_name="Ben Ali"),
        User(id=3, first_name="Youssef", last_name="Gharbi"),
        User(id=4, first_name="Ines", last_name=None),
    ]
    db.add_all(rows)
    db.commit()
    return [row.id for row in rows]


@pytest.fixture
def account():
    return FakeAccount()


@pytest.fixture
def app(database):
    return create_app(database)


@pytest.fixture
def client(app, account, users):
    app.dependency_overrides[resolve_account] = account
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
