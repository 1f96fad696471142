# /chatflow/models/conversation.py

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class FlowAction(str, Enum):
    """Side effects the transport collaborator is asked to realize."""
    NONE = "none"
    TRANSFER_HUMAN = "transfer_human"
    TRANSFER_DEPARTMENT = "transfer_department"
    GENERATE_DOCUMENT = "generate_document"
    SEND_NOTIFICATION = "send_notification"


class FlowResult(BaseModel):
    """
    Outcome of processing one inbound message through the flow state machine.

    ``continue`` (``continue_`` in Python) asks the caller to feed an empty
    message back so the next step runs; ``restart`` signals that the flow
    state was discarded and the entry flow should be started again.
    """
    message: Optional[str] = Field(default=None, description="Reply text, if any")
    delay: int = Field(default=0, description="Milliseconds to wait before sending the reply")
    action: FlowAction = Field(default=FlowAction.NONE)
    department_id: Optional[str] = None
    priority: str = "normal"
    continue_: bool = Field(default=False, alias="continue")
    restart: bool = False
    error: bool = False
    waiting_input: bool = False
    confidence: Optional[float] = None
    from_ai: bool = False
    flow_changed: bool = False
    meta: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    @property
    def transfer_requested(self) -> bool:
        return self.action in (FlowAction.TRANSFER_HUMAN, FlowAction.TRANSFER_DEPARTMENT)

    def to_transport(self) -> Dict[str, Any]:
        """Shape expected by the messaging transport."""
        payload = {
            "text": self.message,
            "delay": self.delay,
            "action": self.action.value,
            "department_id": self.department_id,
            "priority": self.priority,
            "continue": self.continue_,
            "restart": self.restart,
            "confidence": self.confidence,
            "error": self.error,
        }
        if self.meta.get("transfer_number"):
            payload["transfer_number"] = self.meta["transfer_number"]
        return payload
