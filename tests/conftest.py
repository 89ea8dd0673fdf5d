"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- A fake Evolution API behind a patched httpx.AsyncClient
- Test data factories (instances, settings, rules, flows, admin nodes)
"""
# variáveis de ambiente antes de importar a app
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import uuid
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from resale_bot.db.database import Base, get_db
from resale_bot.db.models import (
    AdminChatbotKeyword,
    AdminChatbotNode,
    AppSetting,
    ChatbotFlow,
    ChatbotFlowNode,
    ChatbotKeyword,
    ChatbotRule,
    ChatbotSettings,
    Client,
    GlobalConfig,
    SellerInstance,
    UserRoleAssignment,
)
from resale_bot.domain.services.whatsapp import reset_providers
from resale_bot.main import app

# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

API_URL = "http://evolution.test/manager/"
API_TOKEN = "evo-token-0123456789"
ADMIN_INSTANCE = "admin_main"
ADMIN_API_KEY = "test-admin-key"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_provider_cache():
    """Cada teste começa sem provedores em cache"""
    reset_providers()
    yield
    reset_providers()


@pytest.fixture(autouse=True)
def mock_sleep():
    """Ritmo (digitando/atraso) e backoff não esperam de verdade"""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mocked:
        yield mocked


# ============================================================================
# Mock External Services
# ============================================================================


def make_response(method: str, url: str, status_code: int = 200, body: Any = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=body if body is not None else {},
        request=httpx.Request(method, url),
    )


class FakeEvolutionAPI:
    """
    Evolution API em memória.

    Cada chamada é registrada em `calls`; `fail(fragment, status)` faz os
    endpoints cujo path contém `fragment` responderem com erro.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.state = "open"
        self._overrides: dict[str, tuple[int, Any] | Exception] = {}

    def fail(self, fragment: str, status_code: int = 500, body: Any = None) -> None:
        self._overrides[fragment] = (status_code, body or {"error": "failure"})

    def raise_on(self, fragment: str, exc: Exception) -> None:
        self._overrides[fragment] = exc

    def calls_to(self, fragment: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if fragment in call["url"]]

    @property
    def sends(self) -> list[dict[str, Any]]:
        """Chamadas de envio (sem presença/estado)"""
        return [call for call in self.calls if "/message/send" in call["url"]]

    async def handle(self, method: str, url: str, json: Any = None, headers: Any = None) -> httpx.Response:
        self.calls.append({"method": method, "url": url, "json": json, "headers": headers})
        for fragment, override in self._overrides.items():
            if fragment in url:
                if isinstance(override, Exception):
                    raise override
                status_code, body = override
                return make_response(method, url, status_code, body)
        if "instance/connectionState" in url:
            return make_response(method, url, 200, {"instance": {"state": self.state}})
        if "instance/fetchInstances" in url:
            return make_response(method, url, 200, [{"name": ADMIN_INSTANCE}])
        return make_response(method, url, 201, {"key": {"id": f"out-{len(self.calls)}"}})


@pytest.fixture
def evolution_api():
    """Patch httpx.AsyncClient so every provider call lands in FakeEvolutionAPI"""
    fake = FakeEvolutionAPI()

    async def _get(url, headers=None, **kwargs):
        return await fake.handle("GET", url, headers=headers)

    async def _post(url, json=None, headers=None, **kwargs):
        return await fake.handle("POST", url, json=json, headers=headers)

    with patch("httpx.AsyncClient") as mock_client:
        mock_instance = AsyncMock()
        mock_instance.get = AsyncMock(side_effect=_get)
        mock_instance.post = AsyncMock(side_effect=_post)
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)
        mock_client.return_value = mock_instance

        yield fake


# ============================================================================
# Test Data Factories
# ============================================================================


def new_seller_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def global_config_factory(db_session: AsyncSession):
    async def _create(
        api_url: str = API_URL,
        api_token: str = API_TOKEN,
        instance_name: str | None = ADMIN_INSTANCE,
        is_active: bool = True,
    ) -> GlobalConfig:
        config = GlobalConfig(
            api_url=api_url,
            api_token=api_token,
            instance_name=instance_name,
            is_active=is_active,
        )
        db_session.add(config)
        await db_session.commit()
        return config

    return _create


@pytest.fixture
def seller_factory(db_session: AsyncSession):
    """Instância de revendedor (+ chatbot_settings opcional)"""

    async def _create(
        instance_name: str | None = None,
        seller_id: str | None = None,
        original_instance_name: str | None = None,
        is_connected: bool = True,
        instance_blocked: bool = False,
        plan_status: str = "active",
        settings: dict[str, Any] | None = None,
    ) -> SellerInstance:
        seller_id = seller_id or new_seller_id()
        instance = SellerInstance(
            seller_id=seller_id,
            instance_name=instance_name or f"seller_{seller_id.replace('-', '')[:8]}",
            original_instance_name=original_instance_name,
            is_connected=is_connected,
            instance_blocked=instance_blocked,
            plan_status=plan_status,
        )
        db_session.add(instance)
        if settings is not None:
            chatbot_settings = ChatbotSettings.defaults_for(seller_id)
            for key, value in settings.items():
                setattr(chatbot_settings, key, value)
            db_session.add(chatbot_settings)
        await db_session.commit()
        return instance

    return _create


@pytest.fixture
def rule_factory(db_session: AsyncSession):
    async def _create(
        seller_id: str,
        trigger_text: str,
        text: str = "Resposta automática",
        *,
        name: str | None = None,
        is_global_trigger: bool = False,
        contact_filter: str = "ALL",
        cooldown_mode: str = "free",
        cooldown_hours: int | None = None,
        response_type: str = "text",
        response_content: dict[str, Any] | None = None,
        priority: int = 0,
        is_active: bool = True,
    ) -> ChatbotRule:
        rule = ChatbotRule(
            seller_id=seller_id,
            name=name or f"regra {trigger_text}",
            trigger_text=trigger_text,
            is_global_trigger=is_global_trigger,
            contact_filter=contact_filter,
            cooldown_mode=cooldown_mode,
            cooldown_hours=cooldown_hours,
            response_type=response_type,
            response_content=response_content or {"text": text},
            priority=priority,
            is_active=is_active,
        )
        db_session.add(rule)
        await db_session.commit()
        return rule

    return _create


@pytest.fixture
def keyword_factory(db_session: AsyncSession):
    async def _create(
        seller_id: str,
        keyword: str,
        response_text: str,
        image_url: str | None = None,
    ) -> ChatbotKeyword:
        row = ChatbotKeyword(
            seller_id=seller_id,
            keyword=keyword,
            response_text=response_text,
            image_url=image_url,
        )
        db_session.add(row)
        await db_session.commit()
        return row

    return _create


@pytest.fixture
def client_factory(db_session: AsyncSession):
    async def _create(seller_id: str, phone: str, name: str = "Cliente") -> Client:
        client = Client(seller_id=seller_id, phone=phone, name=name)
        db_session.add(client)
        await db_session.commit()
        return client

    return _create


@pytest.fixture
def flow_factory(db_session: AsyncSession):
    """
    Fluxo principal de exemplo:

        1 Planos (submenu) -> 1 Mensal (text), 2 Anual (text)
        2 Suporte (human_transfer)
        3 Encerrar (end_chat)
    """

    async def _create(seller_id: str, description: str | None = "Bem-vindo à loja!") -> dict[str, Any]:
        flow = ChatbotFlow(
            seller_id=seller_id,
            name="Menu principal",
            description=description,
            is_main_menu=True,
            is_active=True,
        )
        db_session.add(flow)
        await db_session.flush()

        def node(parent, option, title, response_type, text, order):
            return ChatbotFlowNode(
                flow_id=flow.id,
                parent_node_id=parent.id if parent else None,
                option_number=option,
                title=title,
                response_type=response_type,
                response_content={"text": text},
                sort_order=order,
                is_active=True,
            )

        planos = node(None, "1", "Planos", "submenu", "Nossos planos:", 1)
        suporte = node(None, "2", "Suporte", "human_transfer", "", 2)
        encerrar = node(None, "3", "Encerrar", "end_chat", "Até logo!", 3)
        db_session.add_all([planos, suporte, encerrar])
        await db_session.flush()

        mensal = node(planos, "1", "Mensal", "text", "Plano mensal: R$ 30", 1)
        anual = node(planos, "2", "Anual", "text", "Plano anual: R$ 300", 2)
        db_session.add_all([mensal, anual])
        await db_session.commit()

        return {
            "flow": flow,
            "planos": planos,
            "suporte": suporte,
            "encerrar": encerrar,
            "mensal": mensal,
            "anual": anual,
        }

    return _create


@pytest.fixture
def admin_chatbot_factory(db_session: AsyncSession):
    """
    Árvore admin de exemplo e configurações em app_settings:

        inicial -> 1 planos, 2 suporte
        planos  -> 1 mensal
    """

    async def _create(
        enabled: bool = True,
        response_mode: str = "24h",
        typing_enabled: bool = False,
    ) -> dict[str, AdminChatbotNode]:
        values = {
            "admin_chatbot_enabled": "true" if enabled else "false",
            "admin_chatbot_response_mode": response_mode,
            "admin_chatbot_delay_min": "1",
            "admin_chatbot_delay_max": "2",
            "admin_chatbot_typing_enabled": "true" if typing_enabled else "false",
        }
        db_session.add_all(AppSetting(key=key, value=value) for key, value in values.items())

        nodes = {
            "inicial": AdminChatbotNode(
                node_key="inicial",
                title="Início",
                parent_key=None,
                content="Olá! 1️⃣ Planos 2️⃣ Suporte",
                options=[
                    {"key": "1", "label": "Planos", "target": "planos"},
                    {"key": "2", "label": "Suporte", "target": "suporte"},
                ],
                sort_order=0,
            ),
            "planos": AdminChatbotNode(
                node_key="planos",
                title="Planos",
                parent_key="inicial",
                content="Planos de revenda: 1️⃣ Mensal",
                options=[{"key": "1", "label": "Mensal", "target": "mensal"}],
                sort_order=1,
            ),
            "suporte": AdminChatbotNode(
                node_key="suporte",
                title="Suporte",
                parent_key="inicial",
                response_type="text",
                content="Fale com o suporte pelo e-mail.",
                options=[],
                sort_order=2,
            ),
            "mensal": AdminChatbotNode(
                node_key="mensal",
                title="Mensal",
                parent_key="planos",
                response_type="text",
                content="Plano mensal de revenda: R$ 50",
                image_url="https://cdn.test/mensal.png",
                options=[],
                sort_order=3,
            ),
        }
        db_session.add_all(nodes.values())
        await db_session.commit()
        return nodes

    return _create


@pytest.fixture
def admin_keyword_factory(db_session: AsyncSession):
    async def _create(keyword: str, response_text: str) -> AdminChatbotKeyword:
        row = AdminChatbotKeyword(keyword=keyword, response_text=response_text)
        db_session.add(row)
        await db_session.commit()
        return row

    return _create


@pytest.fixture
def admin_role_factory(db_session: AsyncSession):
    async def _create(user_id: str) -> UserRoleAssignment:
        row = UserRoleAssignment(user_id=user_id, role="admin")
        db_session.add(row)
        await db_session.commit()
        return row

    return _create
