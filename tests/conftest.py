import os

os.environ["NODE_ENV"] = "test"
os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "bagpackstories_test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["NEWSLETTER_BATCH_DELAY"] = "0"
os.environ["ADMIN_EMAIL"] = "admin@bagpack.io"
os.environ.pop("MONGODB_URI", None)

import mongomock
import pymongo
import pytest

# database.py opens its client at import time
pymongo.MongoClient = mongomock.MongoClient

from fastapi.testclient import TestClient

import database
from emailer import EmailService
from main import app
from middleware import limiter
from schemas import User
from security import hash_password, token_for


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    limiter.reset()


@pytest.fixture
def db(client):
    return database.db


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def fake_send(self, to, subject, html, text="", to_name=None):
        sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return True

    monkeypatch.setattr(EmailService, "send_email", fake_send)
    return sent


def make_user(db, name="Jo Smith", email="jo@x.com", role="reader", password="Secret123"):
    user = User(name=name, email=email, role=role, password_hash=hash_password(password))
    user_id = database.create_document("user", user)
    return db["user"].find_one({"_id": database.to_object_id(user_id)})


def auth_header(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def admin(db):
    return make_user(db, name="Site Admin", email="admin@bagpack.io", role="admin")


@pytest.fixture
def reader(db):
    return make_user(db)


@pytest.fixture
def admin_headers(admin):
    return auth_header(admin)


@pytest.fixture
def reader_headers(reader):
    return auth_header(reader)
