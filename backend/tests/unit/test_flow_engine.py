# backend/tests/unit/test_flow_engine.py
import copy

import pytest
from unittest.mock import AsyncMock

from chatflow.config import strings
from chatflow.models.conversation import FlowAction
from chatflow.models.domain import MatchResult
from chatflow.models.flow import ActionStep, AIConfig, BotConfig, FlowDefinition, MessageStep
from chatflow.workflows.engine import FlowEngine

from conftest import TEST_BOT_CONFIG

USER = "5511988887777"


async def open_menu(engine, identity=USER, context=None):
    """Run the welcome message and render the main menu."""
    context = context if context is not None else {"name": "Ana"}
    welcome = await engine.process_message(identity, "oi", context)
    menu = await engine.process_message(identity, "", context)
    return welcome, menu


async def open_signup(engine, context):
    await open_menu(engine, context=context)
    await engine.process_message(USER, "1", context)
    return await engine.process_message(USER, "", context)


@pytest.mark.asyncio
async def test_first_message_starts_entry_flow(flow_engine):
    welcome, menu = await open_menu(flow_engine)

    assert welcome.message == "Olá, Ana!"
    assert welcome.continue_ is True
    assert menu.waiting_input is True
    assert "1 - Cadastro" in menu.message
    assert "3 - Vendas" in menu.message

    state = flow_engine.get_user_state(USER)
    assert state.flow_id == "main"
    assert state.step_id == "menu"
    assert state.waiting_input is True
    assert [h.step_id for h in state.history] == ["welcome", "menu"]
    assert state.started_at.tzinfo is not None
    assert all(h.timestamp.tzinfo is not None for h in state.history)


@pytest.mark.asyncio
async def test_unresolved_variables_are_kept(flow_engine):
    welcome = await flow_engine.process_message(USER, "oi", {})

    assert welcome.message == "Olá, {name}!"


@pytest.mark.asyncio
async def test_menu_invalid_option_transfers_on_third_attempt(flow_engine):
    await open_menu(flow_engine)

    first = await flow_engine.process_message(USER, "9", {})
    second = await flow_engine.process_message(USER, "9", {})
    assert first.message == "Opção inválida."
    assert first.waiting_input is True and second.waiting_input is True
    assert flow_engine.get_user_state(USER).retry_count == 2

    third = await flow_engine.process_message(USER, "9", {})

    assert third.action == FlowAction.TRANSFER_HUMAN
    assert third.message == "Vou te transferir para um atendente."
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_menu_valid_option_resets_retries_and_persists_choice(flow_engine, gateway):
    await open_menu(flow_engine)
    await flow_engine.process_message(USER, "9", {})

    result = await flow_engine.process_message(USER, "1", {})

    assert result.message == strings.REDIRECTING
    assert result.continue_ is True
    assert result.flow_changed is True
    state = flow_engine.get_user_state(USER)
    assert state.flow_id == "signup"
    assert state.previous_flow == "main"
    assert state.retry_count == 0
    assert state.waiting_input is False
    stored = await gateway.get_user_context(USER)
    assert stored["lastMenuChoice"] == "1"


@pytest.mark.asyncio
async def test_menu_transfer_options(flow_engine, gateway):
    await open_menu(flow_engine)
    human = await flow_engine.process_message(USER, "2", {})
    assert human.action == FlowAction.TRANSFER_HUMAN
    assert human.message == strings.TRANSFER_HUMAN
    assert flow_engine.get_user_state(USER) is None

    await open_menu(flow_engine)
    department = await flow_engine.process_message(USER, "3", {})
    assert department.action == FlowAction.TRANSFER_DEPARTMENT
    assert department.department_id == "1"
    assert department.message == "Transferindo para Vendas..."
    assert department.transfer_requested is True
    assert department.meta == {}
    assert (await gateway.get_user_context(USER))["last_department"] == "1"


@pytest.mark.asyncio
async def test_waiting_input_tracks_capture_validation(flow_engine, gateway):
    context = {"name": "Ana"}
    question = await open_signup(flow_engine, context)
    assert question.message == "Qual seu e-mail?"
    assert flow_engine.get_user_state(USER).waiting_input is True

    rejected = await flow_engine.process_message(USER, "email-invalido", context)
    assert rejected.waiting_input is True
    assert rejected.message == f"❌ {strings.VALIDATION_EMAIL}\n\nQual seu e-mail?"
    assert flow_engine.get_user_state(USER).waiting_input is True

    accepted = await flow_engine.process_message(USER, "Ana@Example.com", context)
    assert accepted.message == strings.CAPTURE_SUCCESS
    assert accepted.delay == 500
    assert accepted.continue_ is True

    state = flow_engine.get_user_state(USER)
    assert state.waiting_input is False
    assert state.retry_count == 0
    assert state.step_id == "ask_plan"
    assert state.data["email"] == "ana@example.com"
    assert context["email"] == "ana@example.com"
    assert (await gateway.get_user_context(USER))["email"] == "ana@example.com"


@pytest.mark.asyncio
async def test_capture_max_retries_transfers_and_clears_state(flow_engine):
    await open_signup(flow_engine, {})

    for _ in range(2):
        result = await flow_engine.process_message(USER, "nope", {})
        assert result.action == FlowAction.NONE
    result = await flow_engine.process_message(USER, "nope", {})

    assert result.action == FlowAction.TRANSFER_HUMAN
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_quick_reply_invalid_does_not_consume_retry(flow_engine):
    context = {}
    await open_signup(flow_engine, context)
    await flow_engine.process_message(USER, "ana@example.com", context)
    options = await flow_engine.process_message(USER, "", context)
    assert "• Plano Premium" in options.message

    for _ in range(5):
        invalid = await flow_engine.process_message(USER, "xyz", context)
        assert invalid.message == strings.QUICK_REPLY_INVALID
        assert invalid.waiting_input is True

    state = flow_engine.get_user_state(USER)
    assert state.retry_count == 0
    assert state.step_id == "ask_plan"


@pytest.mark.asyncio
async def test_quick_reply_label_match_and_condition_branch(flow_engine):
    context = {}
    await open_signup(flow_engine, context)
    await flow_engine.process_message(USER, "ana@example.com", context)
    await flow_engine.process_message(USER, "", context)

    chosen = await flow_engine.process_message(USER, "PREMIUM", context)
    assert chosen.message == strings.QUICK_REPLY_SUCCESS
    assert chosen.continue_ is True

    branch = await flow_engine.process_message(USER, "", context)
    assert branch.message is None
    assert branch.meta["condition"] is True

    transfer = await flow_engine.process_message(USER, "", context)
    assert transfer.action == FlowAction.TRANSFER_DEPARTMENT
    assert transfer.priority == "high"
    assert transfer.message == "Cliente ana@example.com quer o premium."
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_generate_document_alias_completes_flow(flow_engine):
    context = {}
    await open_signup(flow_engine, context)
    await flow_engine.process_message(USER, "ana@example.com", context)
    await flow_engine.process_message(USER, "", context)
    await flow_engine.process_message(USER, "básico", context)
    branch = await flow_engine.process_message(USER, "", context)
    assert branch.meta["condition"] is False

    document = await flow_engine.process_message(USER, "", context)

    assert document.action == FlowAction.GENERATE_DOCUMENT
    assert document.message == "Boleto enviado para ana@example.com."
    assert document.continue_ is False
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_quick_reply_main_flow_restarts(flow_engine):
    context = {}
    await open_signup(flow_engine, context)
    await flow_engine.process_message(USER, "ana@example.com", context)
    await flow_engine.process_message(USER, "", context)

    result = await flow_engine.process_message(USER, "back", context)

    assert result.message == strings.BACK_TO_MAIN_MENU
    assert result.restart is True
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_ai_response_answers_confident_matches(flow_engine):
    flow_engine.initialize_user_flow(USER, "assistant")

    prompt = await flow_engine.process_message(USER, "", {})
    assert prompt.message == "Pode perguntar!"
    assert prompt.waiting_input is True

    answer = await flow_engine.process_message(USER, "oi", {})
    assert answer.message == "Olá! Como posso ajudar você hoje?"
    assert answer.from_ai is True
    assert answer.confidence >= 0.75
    state = flow_engine.get_user_state(USER)
    assert state.step_id == "ask"
    assert state.data["aiResponse"] == answer.message


@pytest.mark.asyncio
async def test_ai_response_low_confidence_goes_to_fallback(flow_engine):
    flow_engine.initialize_user_flow(USER, "assistant")
    await flow_engine.process_message(USER, "", {})

    unsure = await flow_engine.process_message(USER, "xyzzy plugh", {})
    assert unsure.message == strings.AI_LOW_CONFIDENCE_FALLBACK
    assert unsure.continue_ is True

    escalation = await flow_engine.process_message(USER, "", {})
    assert escalation.action == FlowAction.TRANSFER_DEPARTMENT
    assert escalation.department_id == "2"
    assert escalation.message == "Transferindo para Suporte..."


@pytest.mark.asyncio
async def test_ai_response_low_confidence_without_fallback_transfers(bot_config, gateway):
    matcher = AsyncMock()
    matcher.enabled = True
    matcher.process_message.return_value = MatchResult(text="talvez", confidence=0.4, algorithm="lexical")
    flows = dict(bot_config.flows)
    flows["solo"] = FlowDefinition.model_validate(
        {"id": "solo", "steps": [{"id": "ask", "type": "ai_response", "confidence_threshold": 0.9}]}
    )
    engine = FlowEngine(bot_config.model_copy(update={"flows": flows}), matcher=matcher, gateway=gateway)
    engine.initialize_user_flow(USER, "solo")

    result = await engine.process_message(USER, "alguma coisa", {})

    assert result.action == FlowAction.TRANSFER_HUMAN
    assert result.message == strings.AI_LOW_CONFIDENCE_TRANSFER
    matcher.process_message.assert_awaited_once_with("alguma coisa", identity=USER)
    assert engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_ai_disabled_skips_to_fallback(bot_config, seeded_matcher, gateway, mocker):
    config = bot_config.model_copy(update={"ai": AIConfig(enabled=False)})
    engine = FlowEngine(config, matcher=seeded_matcher, gateway=gateway)
    spy = mocker.spy(seeded_matcher, "process_message")
    engine.initialize_user_flow(USER, "assistant")

    result = await engine.process_message(USER, "oi", {})

    assert result.continue_ is True
    assert result.message is None
    assert engine.get_user_state(USER).step_id == "escalate"
    assert spy.call_count == 0


@pytest.mark.asyncio
async def test_unknown_action_is_fatal_for_the_message(bot_config, gateway):
    broken = FlowDefinition.model_construct(
        id="broken", name="", steps=[ActionStep.model_construct(id="act", action="launch_rocket")]
    )
    config = bot_config.model_copy(update={"flows": {**bot_config.flows, "broken": broken}})
    engine = FlowEngine(config, gateway=gateway)
    engine.initialize_user_flow(USER, "broken")

    result = await engine.process_message(USER, "oi", {})

    assert result.message == strings.GENERIC_APOLOGY
    assert result.action == FlowAction.TRANSFER_HUMAN
    assert result.error is True
    assert engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_unknown_step_type_is_fatal_for_the_message(bot_config, gateway):
    broken = FlowDefinition.model_construct(
        id="broken", name="", steps=[MessageStep.model_construct(id="odd", type="carousel")]
    )
    config = bot_config.model_copy(update={"flows": {**bot_config.flows, "broken": broken}})
    engine = FlowEngine(config, gateway=gateway)
    engine.initialize_user_flow(USER, "broken")

    result = await engine.process_message(USER, "oi", {})

    assert result.error is True
    assert result.action == FlowAction.TRANSFER_HUMAN


@pytest.mark.asyncio
async def test_unexpected_exception_degrades_to_transfer(flow_engine, mocker):
    mocker.patch.object(flow_engine.gateway, "save_user_context", side_effect=RuntimeError("db down"))
    await open_menu(flow_engine)

    result = await flow_engine.process_message(USER, "1", {})

    assert result.error is True
    assert result.message == strings.GENERIC_APOLOGY
    assert flow_engine.get_user_state(USER) is None


@pytest.mark.asyncio
async def test_reload_config_keeps_only_consistent_states(flow_engine):
    await open_menu(flow_engine, identity="menu-user")
    await open_signup(flow_engine, {})

    raw = copy.deepcopy(TEST_BOT_CONFIG)
    raw["flows"]["signup"]["steps"].insert(0, {"id": "intro", "type": "message", "message": "Oi", "next": "ask_email"})
    dropped = flow_engine.reload_config(BotConfig.model_validate(raw))

    assert dropped == 1
    assert flow_engine.get_user_state("menu-user") is not None
    assert flow_engine.get_user_state(USER) is None
    assert flow_engine.get_stats() == {"active_users": 1, "total_flows": 3, "mode": "atendimento"}


@pytest.mark.asyncio
async def test_events_are_emitted_for_steps(flow_engine):
    received = []
    flow_engine.events.subscribe(lambda event, fields: received.append(event))

    await open_menu(flow_engine)

    assert "flow.initialized" in received
    assert received.count("flow.step") == 2
    assert "flow.transition" in received
