"""Request preprocessor - rewrites OpenAI messages for the upstream chat."""

import json
from typing import Any

from zai_adapter.models import ChatRequest, Message
from zai_adapter.utils import get_logger

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

TOOL_REPLY_INSTRUCTIONS = (
    "\n\nIf you need to call a tool, reply ONLY with the following JSON structure "
    "(no other text):\n"
    "```json\n"
    "{\n"
    '  "tool_calls": [\n'
    "    {\n"
    '      "id": "call_xxx",\n'
    '      "type": "function",\n'
    '      "function": {\n'
    '        "name": "function_name",\n'
    '        "arguments": "{\\"param1\\": \\"value1\\"}"\n'
    "      }\n"
    "    }\n"
    "  ]\n"
    "}\n"
    "```\n"
)

AUTO_CHOICE_HINT = "\n\nUse the provided tool functions as needed."
NAMED_CHOICE_HINT = "\n\nUse the {name} function to handle this request."


def format_tools_prompt(tools: list[dict[str, Any]] | None) -> str:
    """Render tool definitions as a textual catalog plus reply instructions.

    Args:
        tools: OpenAI tool definitions

    Returns:
        Prompt text, empty when no function tool is defined
    """
    lines: list[str] = []
    for tool in tools or []:
        if not isinstance(tool, dict) or tool.get("type") != "function":
            continue
        fdef = tool.get("function") or {}
        params = fdef.get("parameters") or {}
        required = set(params.get("required") or [])

        entry = [f"- {fdef.get('name') or 'unknown'}: {fdef.get('description') or ''}"]
        for pname, pinfo in (params.get("properties") or {}).items():
            pinfo = pinfo if isinstance(pinfo, dict) else {}
            flag = "required" if pname in required else "optional"
            entry.append(
                f"  - {pname} ({pinfo.get('type') or 'any'}) ({flag}): {pinfo.get('description') or ''}"
            )
        lines.append("\n".join(entry))

    if not lines:
        return ""
    return "\n\nAvailable tool functions:\n" + "\n".join(lines) + TOOL_REPLY_INSTRUCTIONS


def _choice_hint(tool_choice: str | dict[str, Any] | None) -> str:
    if tool_choice in ("auto", "required"):
        return AUTO_CHOICE_HINT
    if isinstance(tool_choice, dict) and tool_choice.get("type") == "function":
        name = (tool_choice.get("function") or {}).get("name")
        if name:
            return NAMED_CHOICE_HINT.format(name=name)
    return ""


class RequestPreprocessor:
    """Prepares the outgoing conversation.

    Responsible for:
    - Injecting the tool catalog into the system prompt
    - Appending tool_choice hints to the trailing user message
    - Rewriting tool results as assistant messages
    - Flattening multi-part content to plain text
    """

    def __init__(self, function_call_enabled: bool = True) -> None:
        """Initialize preprocessor.

        Args:
            function_call_enabled: Whether tool definitions are turned into prompts
        """
        self.function_call_enabled = function_call_enabled

    def process(self, request: ChatRequest) -> list[dict[str, Any]]:
        """Build the outgoing message list.

        Args:
            request: Incoming chat request (not modified)

        Returns:
            Messages in the upstream format
        """
        tool_names = self._tool_call_names(request.messages)
        messages = [self._convert(m, tool_names) for m in request.messages]

        tools_prompt = ""
        if request.tools and self.function_call_enabled and request.tool_choice != "none":
            tools_prompt = format_tools_prompt(request.tools)
        if not tools_prompt:
            return messages

        system = next((m for m in messages if m["role"] == "system"), None)
        if system is not None:
            system["content"] += tools_prompt
        else:
            messages.insert(0, {"role": "system", "content": DEFAULT_SYSTEM_PROMPT + tools_prompt})

        hint = _choice_hint(request.tool_choice)
        if hint and messages[-1]["role"] == "user":
            messages[-1]["content"] += hint

        logger.debug(
            "request.tools_injected",
            tools=len(request.tools or []),
            hint=bool(hint),
        )
        return messages

    @staticmethod
    def _convert(message: Message, tool_names: dict[str, str]) -> dict[str, Any]:
        text = message.text()
        if message.role in ("tool", "function"):
            name = message.name or tool_names.get(message.tool_call_id or "") or "unknown"
            return {
                "role": "assistant",
                "content": f"Tool {name} returned:\n```json\n{text}\n```",
            }
        if message.role == "assistant" and message.tool_calls and not text:
            text = "```json\n" + json.dumps({"tool_calls": message.tool_calls}, ensure_ascii=False) + "\n```"
        return {"role": message.role, "content": text}

    @staticmethod
    def _tool_call_names(messages: list[Message]) -> dict[str, str]:
        """Map tool call ids from assistant history to function names."""
        names: dict[str, str] = {}
        for message in messages:
            for call in message.tool_calls or []:
                function = call.get("function") if isinstance(call, dict) else None
                if isinstance(function, dict) and call.get("id") and function.get("name"):
                    names[call["id"]] = function["name"]
        return names


def create_preprocessor(function_call_enabled: bool = True) -> RequestPreprocessor:
    """Factory function for preprocessor.

    Args:
        function_call_enabled: Whether tool prompts are injected

    Returns:
        Configured preprocessor instance
    """
    return RequestPreprocessor(function_call_enabled)
