from __future__ import annotations

import importlib
from typing import Any

from .base import ModelEndpoint

_ENDPOINTS: dict[str, tuple[str, str]] = {
    "veo-3.0-generate-preview": ("providers.veo3", "Veo3Endpoint"),
    "veo-3.0-generate-001": ("providers.veo3", "Veo3Endpoint"),
    "veo-3.1-generate-preview": ("providers.veo3", "Veo3Endpoint"),
}

_ALIASES: dict[str, str] = {
    "veo3": "veo-3.0-generate-preview",
    "veo-3": "veo-3.0-generate-preview",
    "veo3.1": "veo-3.1-generate-preview",
}


def canonical_model_id(model_id: str) -> str:
    key = model_id.strip().lower()
    return _ALIASES.get(key, key)


def get_endpoint(model_id: str, config: Any) -> ModelEndpoint:
    canonical = canonical_model_id(model_id)
    endpoint_ref = _ENDPOINTS.get(canonical)
    if endpoint_ref is None:
        available = ", ".join(sorted({*_ENDPOINTS.keys(), *_ALIASES.keys()}))
        raise ValueError(f"Unknown model endpoint '{model_id}'. Known ids: {available}")
    module_name, class_name = endpoint_ref
    module = importlib.import_module(module_name)
    endpoint_cls = getattr(module, class_name)
    return endpoint_cls(model_id=canonical, config=config)
