import datetime
import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["EV_AUTH_DISABLED"] = "true"
os.environ["EV_ENV"] = "dev"
os.environ["EMAIL_PROVIDER"] = "log"
os.environ["AUTO_CREATE_DB"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from echovault.models import Base
from echovault.models.message import Message
from echovault.models.profile import UserProfile
from echovault.services.channels import ChannelResult, ChannelSet, EmailChannel, MessagingChannel
from echovault.services.panic import selection_store


T0 = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)


class RecordingEmail(EmailChannel):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html: str) -> ChannelResult:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((to, subject, html))
        return ChannelResult(ok=True, id=f"email-{len(self.sent)}")


class RecordingMessaging(MessagingChannel):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    def send(self, to: str, text: str) -> ChannelResult:
        if self.fail:
            return ChannelResult(ok=False, error="twilio rejected")
        self.sent.append((to, text))
        return ChannelResult(ok=True, id=f"wa-{len(self.sent)}")


@pytest.fixture(autouse=True)
def _clear_selection_store():
    selection_store.clear()
    yield
    selection_store.clear()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'echovault.db'}", future=True)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def email():
    return RecordingEmail()


@pytest.fixture
def messaging():
    return RecordingMessaging()


@pytest.fixture
def channels(email, messaging):
    channel_set = ChannelSet(email=email, messaging=messaging, timeout_seconds=2.0, max_workers=2)
    yield channel_set
    channel_set.close()


@pytest.fixture
def owner(db):
    profile = UserProfile(
        id="user-1",
        email="owner@example.com",
        first_name="Olga",
        last_name="Owner",
        whatsapp_number="+15550001",
    )
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def make_message(db):
    def _make(message_id: str = "msg-1", user_id: str = "user-1", title: str = "For my family", **kwargs) -> Message:
        message = Message(id=message_id, user_id=user_id, title=title, content="hello", **kwargs)
        db.add(message)
        db.commit()
        return message

    return _make


RECIPIENTS = [{"id": "r-1", "name": "Ana", "email": "ana@example.com", "phone": "+15550002"}]
