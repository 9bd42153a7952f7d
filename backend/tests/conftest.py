import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["QUICKBOOKS_CLIENT_ID"] = "test-client-id"
os.environ["QUICKBOOKS_CLIENT_SECRET"] = "test-client-secret"
os.environ["QUICKBOOKS_REDIRECT_URI"] = "http://testserver/api/auth/quickbooks/callback"
os.environ["QUICKBOOKS_ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["OPENAI_API_KEY"] = "test-openai-key"

import json
import logging
from datetime import timedelta
from types import SimpleNamespace
from urllib.parse import urlencode

import httpx
import pytest
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.services import AppServices
from app.main import create_app
from app.api.quickbooks.client import TOKEN_URL, QuickBooksConfig
from app.api.quickbooks.token_store import QuickBooksTokenStore
from app.api.teams import crud as teams_crud
from app.api.teams.models import TeamMember
from app.utils.dates import utcnow

TEST_KEY = "test-encryption-key"
JWT_SECRET = "test-jwt-secret"
REALM_ID = "9130350000000001"


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    caplog.set_level(logging.DEBUG)
    return caplog


# --- database ------------------------------------------------------------


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def token_store(db):
    return QuickBooksTokenStore(db, TEST_KEY)


# --- vendor fakes --------------------------------------------------------


class FakeQuickBooks:
    """
    Stands in for the Intuit token endpoint and the accounting API.

    Routes are keyed by ``(method, resource)`` where resource is the path
    after ``/v3/company/<realm>/``; a value is either a JSON body or a
    callable taking the request and returning an ``httpx.Response``.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict = {}
        self.token_status = 200
        self.token_body = {
            "access_token": "new-access-token",
            "refresh_token": "new-refresh-token",
            "expires_in": 3600,
            "token_type": "bearer",
        }

    def add(self, method: str, resource: str, body=None, status: int = 200):
        if callable(body):
            self.routes[(method, resource)] = body
        else:
            self.routes[(method, resource)] = lambda request: httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url).startswith(TOKEN_URL):
            return httpx.Response(self.token_status, json=self.token_body)

        path = request.url.path
        marker = "/v3/company/"
        if marker not in path:
            return httpx.Response(404, json={"error": "unknown url"})
        resource = path.split(marker, 1)[1].split("/", 1)[1]
        route = self.routes.get((request.method, resource))
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {resource}"})
        return route(request)

    def queries(self) -> list[str]:
        return [r.url.params.get("query") for r in self.requests if r.url.path.endswith("/query")]


class FakeAuthClient:
    def __init__(self):
        self.refresh_calls = []
        self.fail_refresh = False
        self.access_token = None
        self.refresh_token = None
        self.expires_in = None

    def get_authorization_url(self, scopes, state_token=None):
        query = urlencode(
            {
                "client_id": "test-client-id",
                "scope": " ".join(s.value for s in scopes),
                "state": state_token,
                "response_type": "code",
            }
        )
        return f"https://appcenter.intuit.com/connect/oauth2?{query}"

    def refresh(self, refresh_token=None):
        self.refresh_calls.append(refresh_token)
        if self.fail_refresh:
            raise RuntimeError("invalid_grant")
        self.access_token = "refreshed-access-token"
        self.refresh_token = "refreshed-refresh-token"
        self.expires_in = 3600


class FakeOpenAI:
    """Queue of canned chat completions; records every request."""

    def __init__(self):
        self.calls = []
        self.replies = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def reply_text(self, text: str):
        self.replies.append(SimpleNamespace(content=text, tool_calls=None))

    def reply_tool_call(self, name: str, arguments: dict, call_id: str = "call_1"):
        call = SimpleNamespace(
            id=call_id,
            type="function",
            function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
        )
        self.replies.append(SimpleNamespace(content=None, tool_calls=[call]))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        message = self.replies.pop(0) if self.replies else SimpleNamespace(content="done", tool_calls=None)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def fake_qbo():
    return FakeQuickBooks()


@pytest.fixture
def fake_auth_client():
    return FakeAuthClient()


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def qb_config():
    return QuickBooksConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://testserver/api/auth/quickbooks/callback",
        environment="sandbox",
    )


@pytest.fixture
def services(qb_config, fake_qbo, fake_auth_client, fake_openai):
    return AppServices(
        qb_config=qb_config,
        qb_transport=httpx.MockTransport(fake_qbo.handler),
        qb_auth_client_factory=lambda: fake_auth_client,
        openai_client=fake_openai,
        encryption_key=TEST_KEY,
    )


# --- app -----------------------------------------------------------------


@pytest.fixture
def app(services, session_factory):
    application = create_app(services)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


def make_token(user_id: str, email: str = None, expires_in: int = 3600) -> str:
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": utcnow() + timedelta(seconds=expires_in),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str, email: str = None) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


@pytest.fixture
def make_team(db):
    async def _make(owner_id="owner-1", name="Acme Books", members=None):
        team = await teams_crud.create_team_with_admin(
            db, owner_id=owner_id, team_name=name, owner_email=f"{owner_id}@example.com"
        )
        for user_id, role in (members or {}).items():
            db.add(TeamMember(team_id=team.id, user_id=user_id, role=role))
        await db.commit()
        return team

    return _make


@pytest.fixture
def connect_quickbooks(token_store):
    async def _connect(user_id="owner-1", expires_in=timedelta(hours=1)):
        await token_store.store_tokens(
            user_id, "stored-access-token", "stored-refresh-token", REALM_ID, utcnow() + expires_in
        )

    return _connect


def qbo_invoice(invoice_id="130", doc_number="1037", balance=100.0, total=100.0, due="2030-01-01", customer="Amy's Bird Sanctuary"):
    return {
        "Id": invoice_id,
        "DocNumber": doc_number,
        "SyncToken": "0",
        "TxnDate": "2026-10-01",
        "DueDate": due,
        "TotalAmt": total,
        "Balance": balance,
        "CustomerRef": {"value": "1", "name": customer},
        "Line": [
            {
                "Id": "1",
                "Amount": total,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {"ItemRef": {"value": "1", "name": "Services"}, "Qty": 1, "UnitPrice": total},
            },
            {"Amount": total, "DetailType": "SubTotalLineDetail", "SubTotalLineDetail": {}},
        ],
    }
