"""Map a model tool choice onto a typed branch invocation without side effects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from pydantic import ValidationError

from ava.agent.errors import ToolArgumentsError, ToolNotFoundError
from ava.agent.tools.schemas import (
    TOOL_ARG_MODELS,
    AnswerArgs,
    AssistantTool,
    DrawImageArgs,
    WriteCodeArgs,
)

ToolArgs = Union[DrawImageArgs, WriteCodeArgs, AnswerArgs]


@dataclass(frozen=True)
class ToolInvocation:
    """Validated branch choice plus its decoded arguments."""

    tool: AssistantTool
    args: ToolArgs

    @property
    def prompt(self) -> str:
        return self.args.prompt


def resolve_tool(name: Any) -> AssistantTool:
    """Match a tool name exactly against the closed tool enumeration."""
    if isinstance(name, str):
        for tool in AssistantTool:
            if tool.value == name:
                return tool
    raise ToolNotFoundError(str(name))


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for item in exc.errors():
        location = ".".join(str(piece) for piece in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts) or "invalid arguments"


def dispatch_tool(name: Any, raw_arguments: str | dict[str, Any] | None) -> ToolInvocation:
    """Decode (tool name, JSON arguments) into a ToolInvocation.

    Raises ToolNotFoundError for a name outside the enumeration and
    ToolArgumentsError when the arguments do not fit the branch model.
    """
    tool = resolve_tool(name)
    model = TOOL_ARG_MODELS[tool]
    try:
        if isinstance(raw_arguments, dict):
            args = model.model_validate(raw_arguments)
        elif isinstance(raw_arguments, str):
            args = model.model_validate_json(raw_arguments)
        else:
            raise ToolArgumentsError(tool.value, "arguments are missing")
    except ValidationError as exc:
        raise ToolArgumentsError(tool.value, _format_validation_error(exc)) from exc
    return ToolInvocation(tool=tool, args=args)
