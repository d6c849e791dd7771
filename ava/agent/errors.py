"""Error taxonomy raised inside one assistant invocation.

Every error here carries a message that is safe to show to viewers; the
pipeline converts it into exactly one terminal error signal.
"""

from __future__ import annotations


class AssistantError(RuntimeError):
    """Base class for failures that end an invocation."""

    category = "assistant_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputValidationError(AssistantError):
    """The upload or the model's tool arguments did not have the expected shape."""

    category = "input_validation"


class ToolArgumentsError(InputValidationError):
    """Tool arguments could not be decoded into the branch argument model."""

    def __init__(self, tool_name: str, detail: str) -> None:
        super().__init__(f"invalid arguments for tool '{tool_name}': {detail}")
        self.tool_name = tool_name
        self.detail = detail


class UpstreamServiceError(AssistantError):
    """An external AI call failed or returned an unexpected shape."""

    category = "upstream_service_failure"

    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"{service} failed: {detail}")
        self.service = service
        self.detail = detail


class UnsupportedOutcomeError(AssistantError):
    """The chat service produced an outcome the pipeline cannot branch on."""

    category = "unsupported_outcome"


class UnsupportedFinishReasonError(UnsupportedOutcomeError):
    def __init__(self, finish_reason: str | None) -> None:
        super().__init__("stop reason not supported")
        self.finish_reason = finish_reason


class ToolNotFoundError(UnsupportedOutcomeError):
    def __init__(self, tool_name: str) -> None:
        super().__init__("no proper tool found")
        self.tool_name = tool_name


class StorageError(AssistantError):
    """A generated artifact could not be written."""

    category = "storage_failure"
