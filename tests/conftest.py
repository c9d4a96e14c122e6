import datetime as dt
import json
import pathlib
import sys
from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from supportsync.config import SlaSettings, SupportSettings, reset_support_settings_cache
from supportsync.models import Base, User
from supportsync.support.cache import InMemoryCache
from supportsync.support.service import SupportSyncService

NOW = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)

CONTACT_ID = 7
AGENT_ID = 3
AGENT_EMAIL = "agent@example.com"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: dt.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    def notify(self, notification: dict[str, Any]) -> None:
        self.sent.append(notification)


def epoch(value: dt.datetime) -> int:
    return int(value.timestamp())


@dataclass
class ChatwootPayloads:
    """Builders for Chatwoot webhook bodies as Chatwoot sends them."""

    conversation_id: int = 42
    contact_user_id: Any = CONTACT_ID
    inbox_id: int = 5
    account_id: int = 1

    def conversation(self, *, status: str | None = "open", priority: str | None = None, **extra: Any) -> dict[str, Any]:
        sender: dict[str, Any] = {
            "id": 900,
            "name": "Casey Customer",
            "email": "casey@example.com",
            "type": "contact",
        }
        if self.contact_user_id is not None:
            sender["custom_attributes"] = {"gigvora_user_id": self.contact_user_id}
        body: dict[str, Any] = {
            "id": self.conversation_id,
            "inbox_id": self.inbox_id,
            "account_id": self.account_id,
            "status": status,
            "priority": priority,
            "meta": {"sender": sender},
            "additional_attributes": {"issue_type": "billing"},
        }
        body.update(extra)
        return body

    def conversation_event(self, event: str = "conversation_created", **kwargs: Any) -> dict[str, Any]:
        return {"event": event, **self.conversation(**kwargs)}

    def message_event(
        self,
        message_id: str,
        content: Any,
        *,
        message_type: str = "incoming",
        created_at: dt.datetime = NOW,
        sender: dict[str, Any] | None = None,
        status: str | None = "open",
        attachments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if sender is None and message_type == "incoming":
            sender = {"id": 900, "type": "contact", "email": "casey@example.com"}
        return {
            "event": "message_created",
            "id": message_id,
            "content": content,
            "message_type": message_type,
            "created_at": epoch(created_at),
            "conversation_id": self.conversation_id,
            "sender": sender or {},
            "attachments": attachments or [],
            "conversation": self.conversation(status=status),
        }

    def agent(self) -> dict[str, Any]:
        return {"id": 11, "type": "user", "name": "Avery Agent", "email": AGENT_EMAIL}


def encode(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


@dataclass
class SyncHarness:
    service: SupportSyncService
    session_factory: sessionmaker[Session]
    cache: InMemoryCache
    notifier: RecordingNotifier
    clock: FrozenClock
    payloads: ChatwootPayloads = field(default_factory=ChatwootPayloads)

    def send(self, payload: Any, *, event_name: str | None = None, signature: str | None = None):
        return self.service.process_webhook(
            encode(payload), signature=signature, event_name=event_name
        )


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    reset_support_settings_cache()
    yield
    reset_support_settings_cache()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with factory.begin() as session:
        session.add_all(
            [
                User(
                    id=AGENT_ID,
                    email=AGENT_EMAIL,
                    first_name="Avery",
                    last_name="Agent",
                    user_type="admin",
                ),
                User(
                    id=CONTACT_ID,
                    email="casey@example.com",
                    first_name="Casey",
                    last_name="Customer",
                    user_type="freelancer",
                    memberships=["freelancer", "client"],
                    primary_dashboard="freelancer",
                    location="Lisbon",
                    last_seen_at=NOW - dt.timedelta(hours=1),
                ),
            ]
        )
    return factory


@pytest.fixture
def settings() -> SupportSettings:
    return SupportSettings(
        enabled=True,
        base_url="https://support.example.com/",
        website_token="website-token",
        hmac_token="identity-secret",
        webhook_token=None,
        inbox_id="5",
        default_locale="en",
        sla=SlaSettings(first_response_minutes=30, resolution_minutes=720),
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def harness(settings, session_factory, cache, notifier, clock) -> SyncHarness:
    service = SupportSyncService(
        settings,
        session_factory,
        cache=cache,
        notifier=notifier,
        clock=clock,
    )
    return SyncHarness(
        service=service,
        session_factory=session_factory,
        cache=cache,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def payloads() -> ChatwootPayloads:
    return ChatwootPayloads()


@pytest.fixture
def app_factory(monkeypatch, tmp_path):
    def _create_app(harness: SyncHarness | None = None):
        """Import the service app with logging pointed at ``tmp_path``."""
        monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
        from supportsync.main import app
        from supportsync.support.service import get_support_service

        app.dependency_overrides.clear()
        if harness is not None:
            app.dependency_overrides[get_support_service] = lambda: harness.service
        return app

    yield _create_app

    from supportsync.main import app

    app.dependency_overrides.clear()
