from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelSpec:
    vertex_model_id: str
    cost_per_video_usd: float
    supports_audio: bool = True


# Prices are per generated sample, as billed for the preview endpoints.
MODEL_REGISTRY: dict[str, dict[str, ModelSpec]] = {
    "veo-3.0-generate-preview": {
        "fast": ModelSpec(vertex_model_id="veo-3.0-generate-preview", cost_per_video_usd=1.20),
        "standard": ModelSpec(vertex_model_id="veo-3.0-generate-preview", cost_per_video_usd=3.20),
    },
    "veo-3.0-generate-001": {
        "fast": ModelSpec(vertex_model_id="veo-3.0-fast-generate-001", cost_per_video_usd=1.20),
        "standard": ModelSpec(vertex_model_id="veo-3.0-generate-001", cost_per_video_usd=3.20),
    },
    "veo-3.1-generate-preview": {
        "fast": ModelSpec(vertex_model_id="veo-3.1-fast-generate-preview", cost_per_video_usd=1.20),
        "standard": ModelSpec(vertex_model_id="veo-3.1-generate-preview", cost_per_video_usd=3.20),
    },
}


def spec_for_model(model_id: str, tier: str = "fast") -> ModelSpec:
    key = model_id.lower()
    if key not in MODEL_REGISTRY:
        valid = ", ".join(sorted(MODEL_REGISTRY.keys()))
        raise ValueError(f"Unknown model_id '{model_id}'. Known model IDs: {valid}")
    tiers = MODEL_REGISTRY[key]
    if tier not in tiers:
        valid = ", ".join(sorted(tiers.keys()))
        raise ValueError(f"Unknown tier '{tier}' for model '{model_id}'. Valid tiers: {valid}")
    return tiers[tier]
