"""Upstream model capabilities and the model listing."""

import re
import time
from dataclasses import dataclass
from typing import Any

from zai_adapter.models import ModelCard
from zai_adapter.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelCapability:
    """What the proxy needs to know about an upstream model."""

    id: str
    name: str
    has_thinking: bool = False


# Static capability table, also the /v1/models fallback
MODEL_CAPABILITIES: dict[str, ModelCapability] = {
    cap.id: cap
    for cap in (
        ModelCapability("0727-360B-API", "GLM-4.5", has_thinking=True),
        ModelCapability("0727-106B-API", "GLM-4.5-Air", has_thinking=True),
        ModelCapability("glm-4.5v", "GLM-4.5V", has_thinking=True),
        ModelCapability("GLM-4.1V-Thinking-FlashX", "GLM-4.1V-9B-Thinking", has_thinking=True),
        ModelCapability("main_chat", "GLM-4-32B"),
        ModelCapability("deep-research", "Z1-Rumination"),
        ModelCapability("zero", "Z1-32B"),
        ModelCapability("glm-4-flash", "GLM-4-Flash"),
    )
}


def format_model_name(model_id: str) -> str:
    """Derive a display name from an upstream model id.

    The first dash-separated part is upper-cased, purely numeric parts are
    kept, alphabetic parts are capitalised.
    """
    if not model_id:
        return ""
    parts = model_id.split("-")
    formatted = [parts[0].upper()]
    for part in parts[1:]:
        if part.isdigit() or not re.search(r"[A-Za-z]", part):
            formatted.append(part)
        else:
            formatted.append(part[:1].upper() + part[1:].lower())
    return "-".join(formatted)


class ModelRegistry:
    """Resolves requested model names to upstream capabilities."""

    def __init__(self, capabilities: dict[str, ModelCapability] | None = None) -> None:
        """Initialize registry.

        Args:
            capabilities: Capability table keyed by upstream id
        """
        self._capabilities = dict(capabilities if capabilities is not None else MODEL_CAPABILITIES)
        self._aliases: dict[str, str] = {}
        for cap in self._capabilities.values():
            self._aliases[cap.id.lower()] = cap.id
            self._aliases.setdefault(cap.name.lower(), cap.id)

    def resolve(self, model: str) -> ModelCapability:
        """Find the capability for a model id or display name.

        Unknown models are forwarded verbatim and treated as non-thinking.

        Args:
            model: Model name from the request

        Returns:
            Matching capability
        """
        model_id = self._aliases.get((model or "").strip().lower())
        if model_id is None:
            logger.debug("model.unknown", model=model)
            return ModelCapability(id=model, name=model, has_thinking=False)
        return self._capabilities[model_id]

    def fallback_cards(self) -> list[ModelCard]:
        """Model cards built from the static table."""
        now = int(time.time())
        return [
            ModelCard(id=cap.id, name=cap.name, created=now)
            for cap in self._capabilities.values()
        ]

    def cards_from_upstream(self, payload: dict[str, Any]) -> list[ModelCard]:
        """Convert the upstream model listing into model cards.

        Inactive models are skipped. Names that do not start with a Latin
        letter are replaced by one derived from the id.

        Args:
            payload: JSON body of the upstream model listing

        Returns:
            Model cards in upstream order
        """
        if not isinstance(payload, dict):
            return []
        now = int(time.time())
        cards: list[ModelCard] = []
        for item in payload.get("data") or []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            info = item.get("info") if isinstance(item.get("info"), dict) else {}
            if info.get("is_active") is False:
                continue

            model_id = str(item["id"])
            name = item.get("name") or ""
            if model_id.startswith(("GLM", "Z")):
                name = model_id
            if not name or not name[0].isascii() or not name[0].isalpha():
                name = format_model_name(model_id)

            cards.append(
                ModelCard(
                    id=model_id,
                    name=name,
                    created=int(info.get("created_at") or now),
                )
            )
        return cards
