"""Tool argument schemas and function definition builders."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AssistantTool(str, Enum):
    """Closed set of branches the tool-selecting model may choose."""

    DRAW_IMAGE = "draw_image"
    WRITE_CODE = "write_code"
    ANSWER = "answer"


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class DrawImageArgs(_StrictModel):
    prompt: str = Field(..., min_length=1, description="The revised prompt for creating the image.")


class WriteCodeArgs(_StrictModel):
    prompt: str = Field(..., min_length=1, description="The revised prompt for writing the code.")


class AnswerArgs(_StrictModel):
    prompt: str = Field(..., min_length=1, description="Question or prompt from the user.")


TOOL_ARG_MODELS: dict[AssistantTool, type[_StrictModel]] = {
    AssistantTool.DRAW_IMAGE: DrawImageArgs,
    AssistantTool.WRITE_CODE: WriteCodeArgs,
    AssistantTool.ANSWER: AnswerArgs,
}

TOOL_DESCRIPTIONS: dict[AssistantTool, str] = {
    AssistantTool.DRAW_IMAGE: "Draw an image based on the prompt.",
    AssistantTool.WRITE_CODE: "Write code based on the prompt.",
    AssistantTool.ANSWER: "Just reply based on the prompt.",
}


def build_tool_definitions(tools: list[AssistantTool] | None = None) -> list[dict[str, Any]]:
    """Build OpenAI-compatible function tool definitions."""
    definitions: list[dict[str, Any]] = []
    for tool in tools if tools is not None else list(AssistantTool):
        model = TOOL_ARG_MODELS[tool]
        definitions.append(
            {
                "type": "function",
                "function": {
                    "name": tool.value,
                    "description": TOOL_DESCRIPTIONS[tool],
                    "parameters": model.model_json_schema(),
                },
            }
        )
    return definitions
