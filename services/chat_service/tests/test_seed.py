from database import Database
from crud import get_rooms
import seed_chat


def test_seed_creates_demo_rooms(monkeypatch):
    database = Database("sqlite://")
    database.init()
    monkeypatch.setattr(seed_chat, "Database", lambda url: database)
    monkeypatch.setattr(database, "dispose", lambda: None)

    seed_chat.seed_chat_db("sqlite://")

    db = database.session()
    try:
        previews = get_rooms(db, 1)
        assert sorted(preview["room"].name for preview in previews) == ["Room_1_2", "Trip Planning"]
        group = next(p for p in previews if p["room"].name == "Trip Planning")
        assert group["last_message"].media_urls == ["https://cdn.example.com/camps/ain-draham-1.jpg"]
    finally:
        db.close()
        Database.dispose(database)
