# /chatflow/workflows/engine.py

"""
Flow state machine.

Interprets the declarative flows of a BotConfig as one state machine per
identity. Each inbound message runs exactly one step of the identity's current
flow; a result with ``continue`` set asks the caller to run the next step with
an empty message.

Per identity the engine is either awaiting a trigger (no UserFlowState) or
inside a step. ``waiting_input`` marks that the next message is the answer to
the current step rather than a new trigger.

Failure policy:
- Rejected input is recoverable and produces a retry prompt.
- Anything else raised while handling a step is fatal for that message: the
  user gets an apology, a transfer to a human is requested and the state is
  discarded.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from chatflow.config import strings
from chatflow.exceptions import StepNotFoundError, UnknownActionError, UnknownFlowError, UnknownStepError
from chatflow.models.conversation import FlowAction, FlowResult
from chatflow.models.flow import (
    MAIN_FLOW_TARGET,
    ActionStep,
    AIResponseStep,
    BotConfig,
    CaptureDataStep,
    ConditionStep,
    FlowDefinition,
    HistoryEntry,
    MenuStep,
    MessageStep,
    QuickReplyStep,
    StepType,
    UserFlowState,
)
from chatflow.services.db_service import PersistenceGateway
from chatflow.services.matching_service import ResponseMatcher
from chatflow.utils.events import EventEmitter
from chatflow.utils.metrics import active_flows_gauge
from chatflow.workflows.conditions import evaluate_condition, parse_condition, replace_variables
from chatflow.workflows.validator import validate_input

logger = logging.getLogger(__name__)

CAPTURE_SUCCESS_DELAY_MS = 500

StepHandler = Callable[[str, str, Any, UserFlowState, Dict[str, Any]], Awaitable[FlowResult]]


class FlowEngine:
    def __init__(
        self,
        config: BotConfig,
        matcher: Optional[ResponseMatcher] = None,
        gateway: Optional[PersistenceGateway] = None,
        events: Optional[EventEmitter] = None,
    ):
        self.config = config
        self.matcher = matcher
        self.gateway = gateway
        self.events = events or EventEmitter()
        self.user_states: Dict[str, UserFlowState] = {}
        self._handlers: Dict[str, StepHandler] = {
            StepType.MESSAGE.value: self._handle_message_step,
            StepType.MENU.value: self._handle_menu_step,
            StepType.CAPTURE_DATA.value: self._handle_capture_data_step,
            StepType.QUICK_REPLY.value: self._handle_quick_reply_step,
            StepType.AI_RESPONSE.value: self._handle_ai_response_step,
            StepType.ACTION.value: self._handle_action_step,
            StepType.CONDITION.value: self._handle_condition_step,
        }

    # ==================== Entry Point ====================

    async def process_message(self, identity: str, text: str, context: Optional[Dict[str, Any]] = None) -> FlowResult:
        """Run the identity's current step against one inbound message. Never raises."""
        context = context if context is not None else {}
        text = (text or "").strip()
        try:
            state = self.get_user_state(identity)
            if state is None:
                state = self.initialize_user_flow(identity, self.config.entry_flow_id)
            return await self._process_step(identity, text, state, context)
        except Exception as e:
            logger.error(f"Error in flow processing for {identity}: {e}", exc_info=True)
            self.events.emit("flow.error", identity=identity, kind=type(e).__name__, error=str(e))
            self.reset_user_flow(identity, reason="error")
            return FlowResult(message=strings.GENERIC_APOLOGY, action=FlowAction.TRANSFER_HUMAN, error=True)

    async def _process_step(self, identity: str, text: str, state: UserFlowState, context: Dict[str, Any]) -> FlowResult:
        flow = self._get_flow(state.flow_id)
        if not 0 <= state.step_index < len(flow.steps):
            raise StepNotFoundError(flow.id, state.step_id)
        step = flow.steps[state.step_index]

        state.history.append(HistoryEntry(step_id=step.id, step_type=step.type, input=text))
        self.events.emit(
            "flow.step", identity=identity, flow_id=flow.id, step_id=step.id,
            step_type=step.type, waiting_input=state.waiting_input,
        )

        handler = self._handlers.get(step.type)
        if handler is None:
            raise UnknownStepError(step.type)
        return await handler(identity, text, step, state, context)

    # ==================== State Management ====================

    def get_user_state(self, identity: str) -> Optional[UserFlowState]:
        return self.user_states.get(identity)

    def initialize_user_flow(self, identity: str, flow_id: str, previous_flow: Optional[str] = None) -> UserFlowState:
        flow = self._get_flow(flow_id)
        state = UserFlowState(
            identity=identity,
            flow_id=flow_id,
            step_index=0,
            step_id=flow.steps[0].id,
            previous_flow=previous_flow,
        )
        self.user_states[identity] = state
        active_flows_gauge.set(len(self.user_states))
        logger.info(f"Flow initialized for {identity}: {flow_id}")
        self.events.emit("flow.initialized", identity=identity, flow_id=flow_id)
        return state

    def reset_user_flow(self, identity: str, reason: str = "reset") -> bool:
        state = self.user_states.pop(identity, None)
        active_flows_gauge.set(len(self.user_states))
        if state is None:
            return False
        logger.info(f"Flow reset for {identity} ({reason})")
        self.events.emit("flow.reset", identity=identity, flow_id=state.flow_id, reason=reason)
        return True

    def move_to_next_step(self, state: UserFlowState, next_step_id: str) -> None:
        flow = self._get_flow(state.flow_id)
        index = flow.index_of(next_step_id)
        if index == -1:
            raise StepNotFoundError(flow.id, next_step_id)

        previous = state.step_id
        state.step_index = index
        state.step_id = next_step_id
        state.waiting_input = False
        state.retry_count = 0
        logger.debug(f"User {state.identity} moved to step {next_step_id}")
        self.events.emit("flow.transition", identity=state.identity, flow_id=flow.id, from_step=previous, to_step=next_step_id)

    def goto_flow(self, identity: str, flow_id: str) -> FlowResult:
        self._get_flow(flow_id)
        state = self.get_user_state(identity)
        previous_flow = state.flow_id if state else None
        self.reset_user_flow(identity, reason="goto")
        self.initialize_user_flow(identity, flow_id, previous_flow=previous_flow)
        logger.info(f"User {identity} switched to flow {flow_id}")
        return FlowResult(message=strings.REDIRECTING, continue_=True, flow_changed=True)

    def _get_flow(self, flow_id: str) -> FlowDefinition:
        flow = self.config.flows.get(flow_id)
        if flow is None:
            raise UnknownFlowError(flow_id)
        return flow

    def _advance_or_complete(self, identity: str, state: UserFlowState, next_step_id: Optional[str]) -> bool:
        """Move to the next step when there is one; otherwise the flow is over. Returns True when it moved."""
        if next_step_id:
            self.move_to_next_step(state, next_step_id)
            return True
        self.reset_user_flow(identity, reason="completed")
        return False

    # ==================== Step Handlers ====================

    async def _handle_message_step(self, identity, text, step: MessageStep, state, context) -> FlowResult:
        message = replace_variables(step.message, context, state.data)
        moved = self._advance_or_complete(identity, state, step.next)
        return FlowResult(message=message, delay=step.delay, continue_=moved)

    async def _handle_menu_step(self, identity, text, step: MenuStep, state, context) -> FlowResult:
        if not state.waiting_input:
            state.waiting_input = True
            return FlowResult(message=self._build_menu_message(step, state, context), delay=step.delay, waiting_input=True)

        option = next((o for o in step.options if o.id == text), None)
        if option is None:
            return self._reject_input(identity, state, step, step.retry_message or strings.MENU_RETRY_MESSAGE)

        state.retry_count = 0
        state.waiting_input = False
        state.data["lastMenuChoice"] = option.id
        await self._save_context(identity, {"lastMenuChoice": option.id})

        if option.action == "goto":
            return self.goto_flow(identity, option.target)
        if option.action == "transfer_human":
            self.reset_user_flow(identity, reason="transfer")
            return self._action_result(identity, FlowAction.TRANSFER_HUMAN, strings.TRANSFER_HUMAN)
        # transfer_department
        await self._save_context(identity, {"last_department": option.target})
        self.reset_user_flow(identity, reason="transfer")
        return self._action_result(
            identity, FlowAction.TRANSFER_DEPARTMENT, self._department_message(option.target),
            department_id=option.target, meta=self._department_meta(option.target),
        )

    def _build_menu_message(self, step: MenuStep, state: UserFlowState, context: Dict[str, Any]) -> str:
        message = replace_variables(step.message, context, state.data)
        if not step.show_options:
            return message
        lines = "\n".join(f"{o.id} - {o.label}" for o in step.options)
        return f"{message}\n\n{lines}" if message else lines

    async def _handle_capture_data_step(self, identity, text, step: CaptureDataStep, state, context) -> FlowResult:
        question = replace_variables(step.message, context, state.data)
        if not state.waiting_input:
            state.waiting_input = True
            return FlowResult(message=question, delay=step.delay, waiting_input=True)

        validation = validate_input(text, step.validation)
        if not validation["is_valid"]:
            return self._reject_input(identity, state, step, f"❌ {validation['message']}\n\n{question}")

        value = validation["value"]
        state.data[step.field] = value
        if step.save_to:
            key = step.save_to.split(".", 1)[1]
            context[key] = value
            await self._save_context(identity, {key: value})

        state.waiting_input = False
        state.retry_count = 0
        moved = self._advance_or_complete(identity, state, step.next)
        return FlowResult(message=strings.CAPTURE_SUCCESS, delay=CAPTURE_SUCCESS_DELAY_MS, continue_=moved)

    async def _handle_quick_reply_step(self, identity, text, step: QuickReplyStep, state, context) -> FlowResult:
        if not state.waiting_input:
            message = replace_variables(step.message, context, state.data)
            options = "\n".join(f"• {o.label}" for o in step.options)
            state.waiting_input = True
            return FlowResult(message=f"{message}\n\n{options}", delay=step.delay, waiting_input=True)

        answer = text.lower()
        option = None
        if answer:
            option = next(
                (o for o in step.options if o.id.lower() == answer or answer in o.label.lower()),
                None,
            )
        if option is None:
            # Unlike menus, an unrecognized quick reply does not consume a retry.
            return FlowResult(message=strings.QUICK_REPLY_INVALID, waiting_input=True)

        state.waiting_input = False
        state.retry_count = 0
        state.data["quickReply"] = option.id

        target = option.next or step.next
        if target == MAIN_FLOW_TARGET:
            self.reset_user_flow(identity, reason="main_flow")
            return FlowResult(message=strings.BACK_TO_MAIN_MENU, restart=True)

        moved = self._advance_or_complete(identity, state, target)
        return FlowResult(message=strings.QUICK_REPLY_SUCCESS, continue_=moved)

    async def _handle_ai_response_step(self, identity, text, step: AIResponseStep, state, context) -> FlowResult:
        if not (self.config.ai.enabled and self.matcher is not None and self.matcher.enabled):
            if step.fallback:
                self.move_to_next_step(state, step.fallback)
                return FlowResult(continue_=True)
            self.reset_user_flow(identity, reason="transfer")
            return self._action_result(identity, FlowAction.TRANSFER_HUMAN, strings.AI_UNAVAILABLE)

        if not text:
            # Reached through a continue: prompt and wait instead of scoring nothing.
            state.waiting_input = True
            prompt = replace_variables(step.message, context, state.data) or None
            return FlowResult(message=prompt, delay=step.delay, waiting_input=True)

        result = await self.matcher.process_message(text, identity=identity)

        if result.confidence >= step.confidence_threshold:
            state.data["aiResponse"] = result.text
            if step.next:
                self.move_to_next_step(state, step.next)
                return FlowResult(message=result.text, confidence=result.confidence, from_ai=True, continue_=True)
            state.waiting_input = True
            return FlowResult(message=result.text, confidence=result.confidence, from_ai=True, waiting_input=True)

        if step.fallback:
            self.move_to_next_step(state, step.fallback)
            return FlowResult(message=strings.AI_LOW_CONFIDENCE_FALLBACK, confidence=result.confidence, continue_=True)

        self.reset_user_flow(identity, reason="transfer")
        return self._action_result(
            identity, FlowAction.TRANSFER_HUMAN, strings.AI_LOW_CONFIDENCE_TRANSFER, confidence=result.confidence,
        )

    async def _handle_action_step(self, identity, text, step: ActionStep, state, context) -> FlowResult:
        logger.info(f"Executing action {step.action} for {identity}")

        if step.action == "transfer_department":
            department = self.config.get_department(step.department_id)
            template = step.context_message or (department.transfer_message if department else strings.TRANSFER_DEFAULT)
            message = replace_variables(template, context, state.data)
            if step.notify_human:
                logger.info(f"TRANSFER NOTIFICATION ({step.priority}) for {identity}: {message}")
            await self._save_context(identity, {"last_department": step.department_id})
            self.reset_user_flow(identity, reason="transfer")
            return self._action_result(
                identity, FlowAction.TRANSFER_DEPARTMENT, message,
                department_id=step.department_id, priority=step.priority,
                meta=self._department_meta(step.department_id),
            )

        if step.action == "transfer_human":
            message = replace_variables(step.message, context, state.data) or strings.TRANSFER_HUMAN
            self.reset_user_flow(identity, reason="transfer")
            return self._action_result(identity, FlowAction.TRANSFER_HUMAN, message, priority=step.priority)

        if step.action == "generate_document":
            message = replace_variables(step.success_message or strings.DOCUMENT_GENERATED, context, state.data)
            moved = self._advance_or_complete(identity, state, step.next)
            return self._action_result(identity, FlowAction.GENERATE_DOCUMENT, message, continue_=moved)

        if step.action == "send_notification":
            recipient = context.get("email") or state.data.get("email")
            logger.info(f"Notification would be sent to {recipient}")
            message = replace_variables(step.success_message or strings.NOTIFICATION_SENT, context, state.data)
            moved = self._advance_or_complete(identity, state, step.next)
            return self._action_result(
                identity, FlowAction.SEND_NOTIFICATION, message, continue_=moved, meta={"recipient": recipient},
            )

        raise UnknownActionError(step.action)

    async def _handle_condition_step(self, identity, text, step: ConditionStep, state, context) -> FlowResult:
        outcome = evaluate_condition(parse_condition(step.condition), context, state.data)
        self.move_to_next_step(state, step.if_true if outcome else step.if_false)
        return FlowResult(continue_=True, meta={"condition": outcome})

    # ==================== Helpers ====================

    def _reject_input(self, identity: str, state: UserFlowState, step: Any, message: str) -> FlowResult:
        state.retry_count += 1
        self.events.emit("flow.retry", identity=identity, step_id=step.id, step_type=step.type, retry_count=state.retry_count)
        if state.retry_count >= step.max_retries:
            return self._handle_max_retries(identity, state)
        state.waiting_input = True
        return FlowResult(message=message, waiting_input=True)

    def _handle_max_retries(self, identity: str, state: UserFlowState) -> FlowResult:
        logger.warning(f"Max retries reached for {identity} at {state.flow_id}.{state.step_id}")
        self.events.emit("flow.max_retries", identity=identity, flow_id=state.flow_id, step_id=state.step_id)
        self.reset_user_flow(identity, reason="max_retries")
        return self._action_result(identity, FlowAction.TRANSFER_HUMAN, self.config.fallback.transfer_message)

    def _department_message(self, department_id: str) -> str:
        department = self.config.get_department(department_id)
        return department.transfer_message if department else strings.TRANSFER_DEFAULT

    def _department_meta(self, department_id: str) -> Dict[str, Any]:
        """Routing details the transport needs to hand the conversation over."""
        department = self.config.get_department(department_id)
        if department is None or not department.transfer_number:
            return {}
        logger.info(f"Department {department.id} transfers to {department.transfer_number}")
        return {"transfer_number": department.transfer_number}

    def _action_result(self, identity: str, action: FlowAction, message: Optional[str], **kwargs) -> FlowResult:
        self.events.emit("flow.action", identity=identity, action=action.value, department_id=kwargs.get("department_id"))
        return FlowResult(message=message, action=action, **kwargs)

    async def _save_context(self, identity: str, fields: Dict[str, Any]) -> None:
        if self.gateway is not None:
            await self.gateway.save_user_context(identity, fields)

    # ==================== Configuration ====================

    def reload_config(self, config: BotConfig) -> int:
        """
        Swap in a new configuration. States whose flow and current step still
        exist at the same position are kept; the rest are dropped. Returns the
        number of dropped states.
        """
        kept: Dict[str, UserFlowState] = {}
        for identity, state in self.user_states.items():
            flow = config.flows.get(state.flow_id)
            if flow is not None and state.step_index < len(flow.steps) and flow.steps[state.step_index].id == state.step_id:
                kept[identity] = state
        dropped = len(self.user_states) - len(kept)

        self.config = config
        self.user_states = kept
        active_flows_gauge.set(len(kept))
        logger.info(f"Flow configuration reloaded: {len(kept)} states kept, {dropped} dropped.")
        return dropped

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_users": len(self.user_states),
            "total_flows": len(self.config.flows),
            "mode": self.config.mode,
        }
