"""Prompt builders for the tool-selection, answer and coding chat calls."""

from __future__ import annotations

from typing import Any

TOOL_SELECTION_PROMPT = (
    "I can help to identify which tool to use, if no proper tool could be used, "
    "I'll directly reply the message with pure text."
)

ANSWER_PROMPT = (
    "You are {assistant_name}, a friendly voice assistant. Answer the user's request "
    "directly in a few short, natural spoken sentences. Do not use markdown, lists or code."
)

WRITE_CODE_PROMPT = (
    "You are {assistant_name}, an expert programmer. Answer in markdown. Put every code "
    "sample in a fenced code block tagged with its language and keep explanations brief."
)


def _message(role: str, content: str, name: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": role, "content": content}
    if name:
        payload["name"] = name
    return payload


def tool_selection_messages(
    transcript: str, *, assistant_name: str, user_name: str
) -> list[dict[str, Any]]:
    return [
        _message("system", TOOL_SELECTION_PROMPT, assistant_name),
        _message("user", transcript, user_name),
    ]


def answer_messages(prompt: str, *, assistant_name: str, user_name: str) -> list[dict[str, Any]]:
    return [
        _message("system", ANSWER_PROMPT.format(assistant_name=assistant_name), assistant_name),
        _message("user", prompt, user_name),
    ]


def write_code_messages(
    prompt: str, *, assistant_name: str, user_name: str
) -> list[dict[str, Any]]:
    return [
        _message("system", WRITE_CODE_PROMPT.format(assistant_name=assistant_name), assistant_name),
        _message("user", prompt, user_name),
    ]
