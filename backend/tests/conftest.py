# backend/tests/conftest.py

import pytest
import pytest_asyncio

from chatflow.config.settings import MatchingConfig, Settings
from chatflow.models.flow import BotConfig
from chatflow.services.db_service import SQLiteGateway
from chatflow.services.matching_service import ResponseMatcher
from chatflow.services.trainer_service import TrainerService
from chatflow.workflows.engine import FlowEngine

# Small flows covering every step type. Kept independent from the bundled
# default configuration so engine tests don't break when the product flows change.
TEST_BOT_CONFIG = {
    "botName": "Bot de Teste",
    "mode": "atendimento",
    "modes": {
        "atendimento": {"flowId": "main"},
        "triagem": {"flowId": "assistant"},
    },
    "departments": [
        {"id": "1", "name": "Vendas", "transfer_message": "Transferindo para Vendas..."},
        {"id": "2", "name": "Suporte", "transfer_message": "Transferindo para Suporte..."},
    ],
    "fallback": {"transfer_message": "Vou te transferir para um atendente."},
    "flows": {
        "main": {
            "steps": [
                {"id": "welcome", "type": "message", "message": "Olá, {name}!", "next": "menu"},
                {
                    "id": "menu",
                    "type": "menu",
                    "message": "Escolha uma opção:",
                    "retry_message": "Opção inválida.",
                    "max_retries": 3,
                    "options": [
                        {"id": "1", "label": "Cadastro", "action": "goto", "target": "signup"},
                        {"id": "2", "label": "Atendente", "action": "transfer_human"},
                        {"id": "3", "label": "Vendas", "action": "transfer_department", "target": "1"},
                    ],
                },
            ]
        },
        "signup": {
            "steps": [
                {
                    "id": "ask_email",
                    "type": "capture_data",
                    "message": "Qual seu e-mail?",
                    "field": "email",
                    "validation": "email",
                    "save_to": "user_context.email",
                    "next": "ask_plan",
                },
                {
                    "id": "ask_plan",
                    "type": "quick_reply",
                    "message": "Qual plano?",
                    "options": [
                        {"id": "basic", "label": "Plano Básico", "next": "check"},
                        {"id": "premium", "label": "Plano Premium", "next": "check"},
                        {"id": "back", "label": "Voltar", "next": "main_flow"},
                    ],
                },
                {
                    "id": "check",
                    "type": "condition",
                    "condition": "data.quickReply equals premium",
                    "if_true": "premium_transfer",
                    "if_false": "boleto",
                },
                {
                    "id": "boleto",
                    "type": "action",
                    "action": "generate_boleto",
                    "success_message": "Boleto enviado para {email}.",
                },
                {
                    "id": "premium_transfer",
                    "type": "action",
                    "action": "transfer_department",
                    "department_id": "1",
                    "context_message": "Cliente {email} quer o premium.",
                    "priority": "high",
                },
            ]
        },
        "assistant": {
            "steps": [
                {
                    "id": "ask",
                    "type": "ai_response",
                    "message": "Pode perguntar!",
                    "confidence_threshold": 0.75,
                    "fallback": "escalate",
                },
                {"id": "escalate", "type": "action", "action": "transfer_department", "department_id": "2"},
            ]
        },
    },
}


@pytest.fixture
def bot_config() -> BotConfig:
    return BotConfig.model_validate(TEST_BOT_CONFIG)


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_path=":memory:", environment="test", flow_max_chained_steps=10)


@pytest.fixture
def gateway():
    """Fresh in-memory SQLite gateway per test."""
    db = SQLiteGateway(":memory:")
    yield db
    db.close()


@pytest_asyncio.fixture
async def matcher(matching_config, gateway) -> ResponseMatcher:
    """Matcher over an empty corpus."""
    engine = ResponseMatcher(matching_config, gateway)
    await engine.load_training_data()
    return engine


@pytest_asyncio.fixture
async def seeded_matcher(matcher, gateway) -> ResponseMatcher:
    """Matcher trained with the built-in seed corpus."""
    await TrainerService(matcher, gateway).seed_initial_training()
    return matcher


@pytest_asyncio.fixture
async def flow_engine(bot_config, seeded_matcher, gateway) -> FlowEngine:
    return FlowEngine(bot_config, matcher=seeded_matcher, gateway=gateway)
