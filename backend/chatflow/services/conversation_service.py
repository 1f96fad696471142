# /chatflow/services/conversation_service.py

import logging
from typing import Any, Dict, List, Optional

from chatflow.config import strings
from chatflow.config.settings import MatchingConfig, Settings, settings as default_settings
from chatflow.exceptions import ChatflowError, PersistenceError
from chatflow.models.conversation import FlowAction, FlowResult
from chatflow.models.flow import BotConfig
from chatflow.services.db_service import PersistenceGateway
from chatflow.services.matching_service import ResponseMatcher
from chatflow.utils.events import EventEmitter
from chatflow.utils.logging import conversation_log_context
from chatflow.workflows.engine import FlowEngine

# This service is the entry point used by the messaging transport. It composes
# the flow state machine with the matching engine, handles slash commands and
# follows continue/restart signals so one inbound message can produce several
# outbound replies.

logger = logging.getLogger(__name__)

# Actions worth an audit row, keyed to the metric type they are stored under.
ACTION_METRICS = {
    FlowAction.TRANSFER_HUMAN: "human_transfer",
    FlowAction.TRANSFER_DEPARTMENT: "department_transfer",
    FlowAction.GENERATE_DOCUMENT: "document_generated",
    FlowAction.SEND_NOTIFICATION: "notification_sent",
}
TRANSFER_METRICS = ("human_transfer", "department_transfer")


class DecisionEngine:
    def __init__(
        self,
        flow_engine: FlowEngine,
        matcher: ResponseMatcher,
        gateway: PersistenceGateway,
        settings: Settings = default_settings,
        events: Optional[EventEmitter] = None,
    ):
        self.flow_engine = flow_engine
        self.matcher = matcher
        self.gateway = gateway
        self.settings = settings
        self.events = events or flow_engine.events
        self._commands = {
            "/menu": self._command_menu,
            "/reset": self._command_reset,
            "/status": self._command_status,
            "/help": self._command_help,
            "/debug": self._command_debug,
        }

    async def handle_message(
        self, identity: str, text: str, external_context: Optional[Dict[str, Any]] = None
    ) -> List[FlowResult]:
        """
        Process one inbound message and return every reply it produced, in order.
        Storage failures end in the apology plus a transfer, like flow failures.
        """
        with conversation_log_context(identity):
            try:
                context = await self._load_user_context(identity, external_context or {})
                message = (text or "").strip()

                if message.startswith("/"):
                    command = message.split()[0].lower()
                    handler = self._commands.get(command)
                    if handler is None:
                        logger.info(f"Unknown command from {identity}: {command}")
                        return [FlowResult(message=strings.COMMAND_UNKNOWN)]
                    logger.info(f"Command {command} from {identity}")
                    return await handler(identity, context)

                results = await self._run_flow(identity, message, context)
            except ChatflowError as e:
                logger.error(f"Error handling message from {identity}: {e}", exc_info=True)
                self.events.emit("flow.error", identity=identity, kind=type(e).__name__, error=str(e))
                self.flow_engine.reset_user_flow(identity, reason="error")
                return [FlowResult(message=strings.GENERIC_APOLOGY, action=FlowAction.TRANSFER_HUMAN, error=True)]

            await self._record_actions(identity, results)
            return results

    async def _run_flow(self, identity: str, message: str, context: Dict[str, Any]) -> List[FlowResult]:
        results: List[FlowResult] = []
        limit = self.settings.flow_max_chained_steps
        result = await self.flow_engine.process_message(identity, message, context)
        results.append(result)

        # A continue runs the next step with no input; a restart starts the entry flow over.
        while (result.continue_ or result.restart) and not result.error and len(results) < limit:
            result = await self.flow_engine.process_message(identity, "", context)
            results.append(result)

        if len(results) >= limit and (result.continue_ or result.restart):
            logger.warning(f"Chained step limit ({limit}) reached for {identity}")
        return results

    async def _load_user_context(self, identity: str, external_context: Dict[str, Any]) -> Dict[str, Any]:
        stored = await self.gateway.get_user_context(identity)
        if stored is None:
            stored = await self.gateway.save_user_context(
                identity, {"name": external_context.get("name")} if external_context.get("name") else {}
            )
        context = dict(stored or {})
        context.update({k: v for k, v in external_context.items() if v is not None})
        context.setdefault("phone", identity)
        return context

    async def _record_actions(self, identity: str, results: List[FlowResult]) -> None:
        for result in results:
            metric_type = ACTION_METRICS.get(result.action)
            if metric_type is None:
                continue
            value = {"identity": identity, "department_id": result.department_id, "priority": result.priority,
                     "error": result.error}
            try:
                await self.gateway.save_metric(metric_type, value)
            except PersistenceError as e:
                # A lost audit row never changes the reply.
                logger.warning(f"Could not record {metric_type} for {identity}: {e}")

    # ==================== Commands ====================

    async def _command_menu(self, identity: str, context: Dict[str, Any]) -> List[FlowResult]:
        self.flow_engine.reset_user_flow(identity, reason="command")
        return await self._run_flow(identity, "", context)

    async def _command_reset(self, identity: str, context: Dict[str, Any]) -> List[FlowResult]:
        self.flow_engine.reset_user_flow(identity, reason="command")
        self.matcher.clear_context(identity)
        return [FlowResult(message=strings.COMMAND_RESET)]

    async def _command_status(self, identity: str, context: Dict[str, Any]) -> List[FlowResult]:
        db_stats = await self.gateway.get_stats()
        flow_stats = self.flow_engine.get_stats()
        transfers = 0
        for metric_type in TRANSFER_METRICS:
            transfers += len(await self.gateway.get_metrics(metric_type, limit=self.settings.status_recent_metrics))
        message = strings.COMMAND_STATUS.format(
            training_count=db_stats.get("total_training_data", 0),
            user_count=db_stats.get("total_users", 0),
            mode=flow_stats["mode"],
            active_users=flow_stats["active_users"],
            transfers=transfers,
        )
        return [FlowResult(message=message)]

    async def _command_help(self, identity: str, context: Dict[str, Any]) -> List[FlowResult]:
        return [FlowResult(message=strings.COMMAND_HELP)]

    async def _command_debug(self, identity: str, context: Dict[str, Any]) -> List[FlowResult]:
        state = self.flow_engine.get_user_state(identity)
        message = strings.COMMAND_DEBUG.format(
            flow=state.flow_id if state else "none",
            step=state.step_id if state else "none",
            waiting=state.waiting_input if state else False,
        )
        return [FlowResult(message=message)]

    # ==================== Configuration ====================

    def reload_config(self, bot_config: BotConfig, matching_config: Optional[MatchingConfig] = None) -> None:
        """
        Swap the flow configuration and, when given, the matching configuration.
        Cached replies are dropped whenever either one can change what the matcher returns.
        """
        ai_changed = bot_config.ai != self.flow_engine.config.ai
        dropped = self.flow_engine.reload_config(bot_config)
        if matching_config is not None:
            self.matcher.reload_config(matching_config)
        elif ai_changed:
            self.matcher.clear_cache()
        self.events.emit("config.reloaded", mode=bot_config.mode, flows=len(bot_config.flows), dropped_states=dropped)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "flows": self.flow_engine.get_stats(),
            "matching": self.matcher.get_stats(),
        }
