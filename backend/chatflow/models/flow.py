# /chatflow/models/flow.py

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from chatflow.workflows.conditions import parse_condition

# Declarative flow definitions. Every step is a closed, tagged variant: an
# unknown step type or action name fails here, when the configuration is
# loaded, rather than when a user reaches the step.

MAIN_FLOW_TARGET = "main_flow"

ValidatorName = Literal["text", "email", "phone", "cpf", "cnpj", "cpf_cnpj", "number", "option"]

ACTION_ALIASES = {
    "generate_boleto": "generate_document",
    "send_email": "send_notification",
}


class StepType(str, Enum):
    MESSAGE = "message"
    MENU = "menu"
    CAPTURE_DATA = "capture_data"
    QUICK_REPLY = "quick_reply"
    AI_RESPONSE = "ai_response"
    ACTION = "action"
    CONDITION = "condition"


class MenuOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str = ""
    action: Literal["goto", "transfer_human", "transfer_department"]
    target: Optional[str] = None

    @field_validator("id", "target", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        return str(v) if v is not None else v

    @model_validator(mode="after")
    def target_required(self):
        if self.action in ("goto", "transfer_department") and not self.target:
            raise ValueError(f"Menu option '{self.id}' with action '{self.action}' requires a target")
        return self


class QuickReplyOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    next: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        return str(v)


class BaseStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    message: str = ""
    next: Optional[str] = None
    delay: int = 0

    def branch_targets(self) -> List[str]:
        """Step ids this step can move to."""
        return [self.next] if self.next else []


class MessageStep(BaseStep):
    type: Literal["message"] = "message"


class MenuStep(BaseStep):
    type: Literal["menu"] = "menu"
    options: List[MenuOption]
    retry_message: Optional[str] = None
    max_retries: int = Field(default=3, ge=1)
    show_options: bool = True

    @field_validator("options")
    @classmethod
    def options_not_empty(cls, v):
        if not v:
            raise ValueError("A menu step needs at least one option")
        return v


class CaptureDataStep(BaseStep):
    type: Literal["capture_data"] = "capture_data"
    field: str
    validation: ValidatorName = "text"
    save_to: Optional[str] = None
    max_retries: int = Field(default=3, ge=1)

    @field_validator("save_to")
    @classmethod
    def save_to_user_context(cls, v):
        if v is not None and not v.startswith("user_context."):
            raise ValueError("save_to must have the form 'user_context.<field>'")
        return v


class QuickReplyStep(BaseStep):
    type: Literal["quick_reply"] = "quick_reply"
    options: List[QuickReplyOption]

    def branch_targets(self) -> List[str]:
        targets = super().branch_targets()
        targets.extend(o.next for o in self.options if o.next and o.next != MAIN_FLOW_TARGET)
        return targets


class AIResponseStep(BaseStep):
    type: Literal["ai_response"] = "ai_response"
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    fallback: Optional[str] = None

    def branch_targets(self) -> List[str]:
        return super().branch_targets() + ([self.fallback] if self.fallback else [])


class ActionStep(BaseStep):
    type: Literal["action"] = "action"
    action: Literal["transfer_human", "transfer_department", "generate_document", "send_notification"]
    department_id: Optional[str] = None
    context_message: Optional[str] = None
    success_message: Optional[str] = None
    notify_human: bool = False
    priority: Literal["normal", "high"] = "normal"

    @field_validator("action", mode="before")
    @classmethod
    def resolve_alias(cls, v):
        return ACTION_ALIASES.get(v, v)

    @field_validator("department_id", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        return str(v) if v is not None else v

    @model_validator(mode="after")
    def department_required(self):
        if self.action == "transfer_department" and not self.department_id:
            raise ValueError(f"Action step '{self.id}' needs a department_id")
        return self


class ConditionStep(BaseStep):
    type: Literal["condition"] = "condition"
    condition: str
    if_true: str
    if_false: str

    @field_validator("condition")
    @classmethod
    def condition_parses(cls, v):
        parse_condition(v)
        return v

    def branch_targets(self) -> List[str]:
        return super().branch_targets() + [self.if_true, self.if_false]


Step = Annotated[
    Union[MessageStep, MenuStep, CaptureDataStep, QuickReplyStep, AIResponseStep, ActionStep, ConditionStep],
    Field(discriminator="type"),
]


class FlowDefinition(BaseModel):
    """A named, immutable, ordered set of steps."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    steps: List[Step]

    @model_validator(mode="after")
    def steps_are_consistent(self):
        if not self.steps:
            raise ValueError(f"Flow '{self.id}' has no steps")
        ids = [s.id for s in self.steps]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Flow '{self.id}' has duplicate step ids: {sorted(duplicates)}")
        known = set(ids)
        for step in self.steps:
            for target in step.branch_targets():
                if target not in known:
                    raise ValueError(f"Step '{step.id}' in flow '{self.id}' points to unknown step '{target}'")
        return self

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1


class Department(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    transfer_message: str = "Transferindo..."
    transfer_number: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        return str(v)


class ModeConfig(BaseModel):
    flow_id: str = Field(alias="flowId")
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class FallbackConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    transfer_message: str = "Não consegui entender. Vou te transferir para um atendente."


class AIConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True


class BotConfig(BaseModel):
    """The full configuration handed over by the configuration collaborator."""
    bot_name: str = Field(default="Assistente", alias="botName")
    mode: str
    modes: Dict[str, ModeConfig]
    flows: Dict[str, FlowDefinition]
    departments: List[Department] = Field(default_factory=list)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    ai: AIConfig = Field(default_factory=AIConfig)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def flow_ids_from_keys(cls, data: Any):
        # Flows are keyed by id; the id inside each definition is optional.
        if isinstance(data, dict) and isinstance(data.get("flows"), dict):
            flows = {}
            for key, flow in data["flows"].items():
                if isinstance(flow, dict) and "id" not in flow:
                    flow = {**flow, "id": key}
                flows[key] = flow
            data = {**data, "flows": flows}
        return data

    @model_validator(mode="after")
    def references_resolve(self):
        if self.mode not in self.modes:
            raise ValueError(f"Active mode '{self.mode}' is not configured")
        for name, mode in self.modes.items():
            if mode.flow_id not in self.flows:
                raise ValueError(f"Mode '{name}' points to unknown flow '{mode.flow_id}'")

        department_ids = {d.id for d in self.departments}
        for flow in self.flows.values():
            for step in flow.steps:
                if isinstance(step, MenuStep):
                    for option in step.options:
                        if option.action == "goto" and option.target not in self.flows:
                            raise ValueError(f"Menu option '{option.id}' in '{flow.id}.{step.id}' targets unknown flow '{option.target}'")
                        if option.action == "transfer_department" and option.target not in department_ids:
                            raise ValueError(f"Menu option '{option.id}' in '{flow.id}.{step.id}' targets unknown department '{option.target}'")
                if isinstance(step, ActionStep) and step.action == "transfer_department":
                    if step.department_id not in department_ids:
                        raise ValueError(f"Action step '{flow.id}.{step.id}' targets unknown department '{step.department_id}'")
        return self

    @property
    def entry_flow_id(self) -> str:
        return self.modes[self.mode].flow_id

    def get_department(self, department_id: Optional[str]) -> Optional[Department]:
        for department in self.departments:
            if department.id == str(department_id):
                return department
        return None


class HistoryEntry(BaseModel):
    step_id: str
    step_type: str
    input: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UserFlowState(BaseModel):
    """
    Per-identity position inside a flow. Owned by the FlowEngine and only
    mutated while that identity's message is being processed.
    """
    identity: str
    flow_id: str
    step_index: int = 0
    step_id: str
    waiting_input: bool = False
    retry_count: int = 0
    data: Dict[str, Any] = Field(default_factory=dict)
    history: List[HistoryEntry] = Field(default_factory=list)
    previous_flow: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
