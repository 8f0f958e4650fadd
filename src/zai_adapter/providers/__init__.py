"""Upstream model registry."""

from zai_adapter.providers.registry import (
    MODEL_CAPABILITIES,
    ModelCapability,
    ModelRegistry,
    format_model_name,
)

__all__ = ["MODEL_CAPABILITIES", "ModelCapability", "ModelRegistry", "format_model_name"]
