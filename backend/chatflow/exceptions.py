# /chatflow/exceptions.py

# Error taxonomy shared by the flow engine and the matching engine.
# Recoverable errors are absorbed into retry prompts; fatal ones always end
# in a transfer to a human attendant.


class ChatflowError(Exception):
    """Base class for every error raised by the decision engine."""


class InputValidationError(ChatflowError):
    """Captured input failed its validator. Drives a retry prompt."""

    def __init__(self, message: str, validator: str | None = None):
        self.validator = validator
        super().__init__(message)


class FlowExecutionError(ChatflowError):
    """Fatal for the current message: apology plus transfer to a human."""


class UnknownStepError(FlowExecutionError):
    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"Unknown step type: {step_type}")


class UnknownActionError(FlowExecutionError):
    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown action: {action}")


class UnknownFlowError(FlowExecutionError):
    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class StepNotFoundError(FlowExecutionError):
    def __init__(self, flow_id: str, step_id: str):
        self.flow_id = flow_id
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' not found in flow '{flow_id}'")


class MatchingEngineError(ChatflowError):
    """Internal scoring failure. Never propagates past the matcher."""


class LearningConflictError(ChatflowError):
    """A near-duplicate training example already exists."""

    def __init__(self, new_input: str, existing_input: str, similarity: float):
        self.new_input = new_input
        self.existing_input = existing_input
        self.similarity = similarity
        super().__init__(
            f"Training input '{new_input}' conflicts with '{existing_input}' (similarity {similarity:.2f})"
        )


class ConfigurationError(ChatflowError):
    """A bot configuration failed validation or could not be loaded."""


class PersistenceError(ChatflowError):
    """The persistence gateway could not complete an operation."""
