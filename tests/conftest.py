"""Pytest configuration and fixtures.

config and crypto read secrets at import time, so the environment is set
before anything from the app is imported.
"""

import os

from cryptography.fernet import Fernet

os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["TOKEN_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_REDIRECT_URI"] = "http://testserver/api/google/oauth/callback"
os.environ["ADMIN_SECRET_TOKEN"] = "admin-test-token"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SKIP_DB_INIT"] = "true"

import pytest  # noqa: E402
import requests  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from crypto import encrypt  # noqa: E402
from database import Base, SessionLocal, engine, init_db  # noqa: E402
from fakes import APP_FOLDER_ID, USER_ID, FakeDrive  # noqa: E402
from main import app  # noqa: E402
from models import GoogleAccount, Profile  # noqa: E402


@pytest.fixture
def db_session():
    """Fresh schema per test on the shared in-memory SQLite connection."""
    init_db()
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_drive(monkeypatch) -> FakeDrive:
    """Route all outbound HTTP to an in-memory Drive."""
    drive = FakeDrive()
    monkeypatch.setattr(requests, "request", drive.request)
    monkeypatch.setattr(requests, "post", drive.post)
    monkeypatch.setattr(requests, "get", drive.get)
    return drive


@pytest.fixture
def drive_tree(fake_drive: FakeDrive) -> FakeDrive:
    """
    My Drive layout:
        root/
          GEOINFORMATIC (F1)/
            Reports (sub)/
              2025 (deep)/
                report.pdf (doc-deep)
            notes.txt (doc-top)
          Private (outside)/
            secret.pdf (doc-outside)
    """
    fake_drive.add_folder("root", "My Drive")
    fake_drive.add_folder(APP_FOLDER_ID, "GEOINFORMATIC", ["root"])
    fake_drive.add_folder("sub", "Reports", [APP_FOLDER_ID])
    fake_drive.add_folder("deep", "2025", ["sub"])
    fake_drive.add("doc-deep", "report.pdf", ["deep"], content=b"%PDF-1.4 deep")
    fake_drive.add("doc-top", "notes.txt", [APP_FOLDER_ID], "text/plain", content=b"hello")
    fake_drive.add_folder("outside", "Private", ["root"])
    fake_drive.add("doc-outside", "secret.pdf", ["outside"], content=b"%PDF-1.4 secret")
    return fake_drive


@pytest.fixture
def profile(db_session) -> Profile:
    """Connected user whose app folder is already recorded."""
    row = Profile(id=USER_ID, email="user@example.com", google_app_folder_id=APP_FOLDER_ID)
    db_session.add(row)
    db_session.add(
        GoogleAccount(
            id="account-1",
            profile_id=USER_ID,
            encrypted_refresh_token=encrypt("refresh-token-1"),
        )
    )
    db_session.commit()
    return row


@pytest.fixture
def client(db_session, fake_drive):
    with TestClient(app) as c:
        yield c
