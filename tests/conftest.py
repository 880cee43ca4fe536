import os

# Settings are read once at import time; pin the test configuration first.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("INTERNAL_JOB_SECRET", "test-job-secret")
os.environ.setdefault("BREVO_API_KEY", "")

import uuid
from decimal import Decimal
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from eapproval.database import Base, build_session_factory
from eapproval.exceptions import NotFound
from eapproval.main import create_app
from eapproval.models.vacation_balance import VacationBalance
from eapproval.services.approval_service import ApprovalService
from eapproval.services.auth_service import create_access_token
from eapproval.services.directory_service import Contact
from eapproval.services.email_service import EmailSender
from eapproval.services.notification_service import NotificationDispatcher
from eapproval.services.workflow import ApproverChain


class FakeDirectory:
    """In-memory directory: contacts by id, default chains by (user, document type)."""

    def __init__(self):
        self.contacts: dict[str, Contact] = {}
        self.chains: dict[tuple[str, str], ApproverChain] = {}

    def add_contact(self, user_id: str, name: str, email: Optional[str] = None) -> None:
        self.contacts[user_id] = Contact(
            user_id=user_id, name=name, email=email or f"{name.lower()}@example.com"
        )

    def set_chain(self, user_id: str, chain: ApproverChain, document_type: str = "default") -> None:
        self.chains[(user_id, document_type)] = chain

    async def find_approver_chain(self, user_id: str, document_type: str) -> ApproverChain:
        chain = self.chains.get((user_id, document_type)) or self.chains.get((user_id, "default"))
        if chain is None:
            raise NotFound("No default approver chain configured", entity="approver_chain")
        return chain

    async def find_contact(self, user_id: str) -> Contact:
        if user_id not in self.contacts:
            raise NotFound("Contact not found", entity="contact", user_id=user_id)
        return self.contacts[user_id]


@pytest.fixture
def people() -> dict:
    return {role: str(uuid.uuid4()) for role in ("requester", "first", "second", "third", "cc", "outsider")}


@pytest.fixture
def directory(people) -> FakeDirectory:
    d = FakeDirectory()
    for role, uid in people.items():
        d.add_contact(uid, role.capitalize())
    return d


@pytest.fixture
async def engine(tmp_path):
    # file database so concurrent sessions use separate connections
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'eapproval-test.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def service(session_factory, directory) -> ApprovalService:
    return ApprovalService(session_factory, directory)


@pytest.fixture
def dispatcher(session_factory, directory) -> NotificationDispatcher:
    # api_key="" disables email; in-app notices are still written
    return NotificationDispatcher(session_factory, directory, email_sender=EmailSender(api_key=""))


@pytest.fixture
def seed_balance(session_factory):
    async def _seed(employee_id: str, remaining: str = "15", used: str = "0") -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(
                    VacationBalance(
                        employee_id=uuid.UUID(employee_id),
                        remaining_days=Decimal(remaining),
                        used_days=Decimal(used),
                    )
                )

    return _seed


@pytest.fixture
async def client(session_factory, directory, dispatcher):
    app = create_app(session_factory=session_factory, directory=directory, dispatcher=dispatcher)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id=user_id)}"}

    return _headers
