from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import DEFAULT_MODEL_ID


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: str | dict[str, Any]
    duration_seconds: Literal[4, 6, 8] = 8
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "16:9"
    first_frame: Path | None = None
    last_frame: Path | None = None
    quality: Literal["standard", "high"] = "high"
    seed: int | None = Field(default=None, ge=0)
    video_count: int = Field(default=1, ge=1, le=4)
    model_tier: Literal["fast", "standard"] = "fast"
    generate_audio: bool = True
    resolution: Literal["720p", "1080p"] = "1080p"
    negative_prompt: str | None = None
    enhance_prompt: bool = False

    @model_validator(mode="after")
    def ensure_prompt(self) -> "GenerationRequest":
        if isinstance(self.prompt, str) and not self.prompt.strip():
            raise ValueError("GenerationRequest requires a non-empty prompt.")
        if isinstance(self.prompt, dict) and not self.prompt:
            raise ValueError("Structured prompt cannot be empty.")
        return self

    def resolve_paths(self, base_dir: Path) -> "GenerationRequest":
        updates: dict[str, Any] = {}
        for key in ("first_frame", "last_frame"):
            value = getattr(self, key)
            if value is not None and not value.is_absolute():
                updates[key] = (base_dir / value).resolve()
        return self.model_copy(update=updates) if updates else self


class ModelRef(BaseModel):
    id: str = DEFAULT_MODEL_ID


class BatchItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    prompt: str | dict[str, Any]


class BatchSpec(BaseModel):
    batch_name: str = "veo3-batch"
    run_id: str | None = None
    model: ModelRef = Field(default_factory=ModelRef)
    output_root: Path | None = None
    dry_run: bool = False
    max_concurrency: int = Field(default=1, ge=1)
    defaults: dict[str, Any] = Field(default_factory=dict)
    items: list[BatchItem]

    @model_validator(mode="after")
    def ensure_items(self) -> "BatchSpec":
        if not self.items:
            raise ValueError("BatchSpec requires at least one item.")
        return self

    @property
    def planned_item_count(self) -> int:
        return len(self.items)

    def item_name(self, index: int) -> str:
        name = self.items[index].name
        return name if name else f"item_{index:03d}"

    def build_request(self, index: int, base_dir: Path | None = None) -> GenerationRequest:
        item = self.items[index].model_dump(exclude={"name"}, exclude_none=True)
        payload = {**self.defaults, **item}
        request = GenerationRequest.model_validate(payload)
        if base_dir is not None:
            request = request.resolve_paths(base_dir)
        return request
