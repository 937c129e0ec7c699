"""Tool schemas offered to the model."""

from __future__ import annotations

import copy
from typing import Any


def _function(name: str, description: str, properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    parameters: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


# OpenAI function-calling format
TOOL_SCHEMAS: list[dict[str, Any]] = [
    _function(
        "mouse_move",
        "Move the mouse cursor to specified coordinates",
        {
            "x": {"type": "integer", "description": "X coordinate"},
            "y": {"type": "integer", "description": "Y coordinate"},
        },
        ["x", "y"],
    ),
    _function(
        "mouse_click",
        "Click the mouse at current position or specified coordinates",
        {
            "button": {
                "type": "string",
                "enum": ["left", "right", "middle"],
                "description": "Mouse button to click (default: left)",
            },
            "x": {"type": "integer", "description": "Optional X coordinate"},
            "y": {"type": "integer", "description": "Optional Y coordinate"},
        },
    ),
    _function(
        "keyboard_type",
        "Type text using the keyboard",
        {"text": {"type": "string", "description": "Text to type"}},
        ["text"],
    ),
    _function(
        "keyboard_press",
        "Press a key or key combination",
        {
            "key": {"type": "string", "description": "Key to press (e.g., 'Enter', 'Tab', 'Escape')"},
            "modifiers": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Modifier keys (Ctrl, Alt, Shift)",
            },
        },
        ["key"],
    ),
    _function("screenshot", "Take a screenshot of the current screen", {}),
]

TOOL_NAMES = frozenset(schema["function"]["name"] for schema in TOOL_SCHEMAS)


def _gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            out[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            out[key] = {name: _gemini_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            out[key] = _gemini_schema(value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def to_gemini_declarations(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert OpenAI function schemas to Gemini function declarations.

    Gemini spells schema types in upper case and rejects an empty
    ``properties`` object, so parameterless tools get no parameters at all.
    """
    declarations = []
    for tool in tools:
        function = tool.get("function", tool)
        declaration: dict[str, Any] = {
            "name": function["name"],
            "description": function.get("description", ""),
        }
        parameters = function.get("parameters")
        if parameters and parameters.get("properties"):
            declaration["parameters"] = _gemini_schema(parameters)
        declarations.append(declaration)
    return declarations
