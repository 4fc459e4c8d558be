from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Any

from .base import ModelEndpoint, Operation, RemoteOutput
from .registry import spec_for_model

LOGGER = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/webp"}


def _guess_image_mime(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed in IMAGE_MIME_TYPES:
        return guessed
    return "image/png"


def encode_image(path: Path) -> dict[str, str]:
    data = Path(path).read_bytes()
    if not data:
        raise ValueError(f"Image file is empty: {path}")
    return {
        "bytesBase64Encoded": base64.b64encode(data).decode("ascii"),
        "mimeType": _guess_image_mime(Path(path)),
    }


class Veo3Endpoint(ModelEndpoint):
    """
    VEO3 on Vertex AI, addressed through predictLongRunning / fetchPredictOperation.
    """

    def _vertex_model_id(self, tier: str = "fast") -> str:
        return spec_for_model(self.model_id, tier).vertex_model_id

    def model_url(self, tier: str = "fast") -> str:
        return self.config.model_resource(self._vertex_model_id(tier))

    def submit_url(self, tier: str = "fast") -> str:
        return f"{self.model_url(tier)}:predictLongRunning"

    def fetch_url(self, tier: str = "fast") -> str:
        return f"{self.model_url(tier)}:fetchPredictOperation"

    def build_body(self, prompt_text: str, request: Any) -> tuple[dict[str, Any], list[str]]:
        warnings: list[str] = []
        instance: dict[str, Any] = {"prompt": prompt_text}

        # Unreadable frames are dropped from the request and surfaced as warnings.
        if request.first_frame is not None:
            try:
                instance["image"] = encode_image(request.first_frame)
            except (OSError, ValueError) as exc:
                message = f"Reference image '{request.first_frame}' could not be loaded; continuing without it ({exc})."
                LOGGER.warning(message)
                warnings.append(message)
        if request.last_frame is not None:
            try:
                instance["lastFrame"] = encode_image(request.last_frame)
            except (OSError, ValueError) as exc:
                message = f"Last frame '{request.last_frame}' could not be loaded; continuing without it ({exc})."
                LOGGER.warning(message)
                warnings.append(message)

        parameters: dict[str, Any] = {
            "durationSeconds": int(request.duration_seconds),
            "aspectRatio": request.aspect_ratio,
            "sampleCount": int(request.video_count),
            "generateAudio": bool(request.generate_audio),
            "resolution": request.resolution,
        }
        if request.seed is not None:
            parameters["seed"] = int(request.seed)
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt
        return {"instances": [instance], "parameters": parameters}, warnings

    def extract_outputs(self, operation: Operation) -> list[RemoteOutput]:
        response = operation.response or {}
        videos = response.get("videos")
        if not isinstance(videos, list):
            # Older responses nest samples under generatedSamples[].video.
            samples = response.get("generatedSamples") or []
            videos = [sample.get("video", {}) for sample in samples if isinstance(sample, dict)]
        outputs: list[RemoteOutput] = []
        for index, video in enumerate(videos):
            if not isinstance(video, dict):
                continue
            uri = video.get("gcsUri") or video.get("uri")
            data = video.get("bytesBase64Encoded")
            if not uri and not data:
                continue
            outputs.append(
                RemoteOutput(
                    index=index,
                    uri=str(uri) if uri else None,
                    data_base64=str(data) if data else None,
                    mime_type=video.get("mimeType") or "video/mp4",
                )
            )
        return outputs

    def filtered_reasons(self, operation: Operation) -> list[str]:
        response = operation.response or {}
        if int(response.get("raiMediaFilteredCount") or 0) <= 0:
            return []
        reasons = response.get("raiMediaFilteredReasons") or []
        return [str(reason) for reason in reasons] or ["content filtered by safety policy"]

    def cost_per_sample(self, request: Any) -> float:
        return spec_for_model(self.model_id, getattr(request, "model_tier", "fast")).cost_per_video_usd

    def quality_label(self, request: Any) -> str:
        return str(request.resolution)
