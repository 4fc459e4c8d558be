from __future__ import annotations

import base64
import hashlib
import json
import time
import uuid
from typing import Any, Callable
from urllib.parse import unquote

import httpx


def mock_video_bytes(prompt: str, index: int) -> bytes:
    digest = hashlib.sha256(f"{index}:{prompt}".encode("utf-8")).digest()
    # ftyp-like header so the payload is recognisably an mp4 container stub.
    return b"\x00\x00\x00\x18ftypmp42" + digest * 8


class MockVertexService:
    """
    In-process stand-in for the Vertex AI long-running prediction API.

    Serves predictLongRunning, fetchPredictOperation, the model resource and Cloud
    Storage media downloads through an ``httpx.MockTransport``. Used for dry runs
    and for tests; every request is recorded for inspection.
    """

    def __init__(
        self,
        *,
        polls_until_done: int = 2,
        done_after_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        submit_statuses: list[int] | None = None,
        poll_statuses: list[int] | None = None,
        operation_error: dict[str, Any] | None = None,
        filtered_reasons: list[str] | None = None,
        deliver_as: str = "base64",
        sample_count_override: int | None = None,
        missing_blobs: set[int] | None = None,
        bucket: str = "mock-veo-output",
    ) -> None:
        if deliver_as not in {"base64", "gcs"}:
            raise ValueError("deliver_as must be 'base64' or 'gcs'.")
        self.polls_until_done = polls_until_done
        self.done_after_seconds = done_after_seconds
        self._clock = clock
        self._submit_statuses = list(submit_statuses or [])
        self._poll_statuses = list(poll_statuses or [])
        self.operation_error = operation_error
        self.filtered_reasons = filtered_reasons
        self.deliver_as = deliver_as
        self.sample_count_override = sample_count_override
        self.missing_blobs = set(missing_blobs or ())
        self.bucket = bucket

        self.submissions: list[dict[str, Any]] = []
        self.submit_times: list[float] = []
        self.poll_times: list[float] = []
        self.downloads: list[str] = []
        self.auth_headers: list[str | None] = []
        self._operations: dict[str, dict[str, Any]] = {}
        self._blobs: dict[str, bytes] = {}

    @property
    def submit_attempts(self) -> int:
        return len(self.submit_times)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.auth_headers.append(request.headers.get("Authorization"))
        path = request.url.path
        if path.endswith(":predictLongRunning"):
            return self._submit(request)
        if path.endswith(":fetchPredictOperation"):
            return self._fetch(request)
        if "/storage/v1/b/" in path:
            return self._download(request)
        if request.method == "GET" and "/publishers/google/models/" in path:
            return httpx.Response(200, json={"name": path.rsplit("/", 1)[-1]})
        return httpx.Response(404, json={"error": {"code": 404, "message": f"No route for {path}"}})

    def _submit(self, request: httpx.Request) -> httpx.Response:
        self.submit_times.append(self._clock())
        if self._submit_statuses:
            status = self._submit_statuses.pop(0)
            return httpx.Response(status, json={"error": {"code": status, "message": f"mock submit failure {status}"}})

        body = json.loads(request.content or b"{}")
        self.submissions.append(body)
        instance = (body.get("instances") or [{}])[0]
        parameters = body.get("parameters") or {}
        model_path = request.url.path.split(":", 1)[0]
        model_path = model_path[model_path.find("projects/") :] if "projects/" in model_path else model_path.lstrip("/")
        name = f"{model_path}/operations/{uuid.uuid4()}"
        sample_count = self.sample_count_override or int(parameters.get("sampleCount", 1))
        self._operations[name] = {
            "submitted_at": self._clock(),
            "polls": 0,
            "prompt": str(instance.get("prompt", "")),
            "sample_count": sample_count,
        }
        return httpx.Response(200, json={"name": name})

    def _is_done(self, state: dict[str, Any]) -> bool:
        if self.done_after_seconds is not None:
            return self._clock() - state["submitted_at"] > self.done_after_seconds
        return state["polls"] >= self.polls_until_done

    def _fetch(self, request: httpx.Request) -> httpx.Response:
        self.poll_times.append(self._clock())
        if self._poll_statuses:
            status = self._poll_statuses.pop(0)
            return httpx.Response(status, json={"error": {"code": status, "message": f"mock poll failure {status}"}})

        body = json.loads(request.content or b"{}")
        name = body.get("operationName")
        state = self._operations.get(name)
        if state is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": f"Unknown operation {name}"}})
        state["polls"] += 1
        if not self._is_done(state):
            return httpx.Response(200, json={"name": name, "done": False})
        if self.operation_error is not None:
            return httpx.Response(200, json={"name": name, "done": True, "error": self.operation_error})
        if self.filtered_reasons is not None:
            response = {
                "videos": [],
                "raiMediaFilteredCount": max(1, len(self.filtered_reasons)),
                "raiMediaFilteredReasons": self.filtered_reasons,
            }
            return httpx.Response(200, json={"name": name, "done": True, "response": response})

        videos = []
        for index in range(state["sample_count"]):
            payload = mock_video_bytes(state["prompt"], index)
            if self.deliver_as == "gcs":
                object_name = f"{name.rsplit('/', 1)[-1]}/sample_{index}.mp4"
                if index not in self.missing_blobs:
                    self._blobs[object_name] = payload
                videos.append({"gcsUri": f"gs://{self.bucket}/{object_name}", "mimeType": "video/mp4"})
            else:
                videos.append(
                    {"bytesBase64Encoded": base64.b64encode(payload).decode("ascii"), "mimeType": "video/mp4"}
                )
        return httpx.Response(200, json={"name": name, "done": True, "response": {"videos": videos}})

    def _download(self, request: httpx.Request) -> httpx.Response:
        # /storage/v1/b/<bucket>/o/<object>
        _, _, remainder = request.url.path.partition("/storage/v1/b/")
        bucket, _, encoded_object = remainder.partition("/o/")
        object_name = unquote(encoded_object)
        self.downloads.append(f"gs://{bucket}/{object_name}")
        blob = self._blobs.get(object_name)
        if bucket != self.bucket or blob is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": "No such object"}})
        return httpx.Response(200, content=blob, headers={"Content-Type": "video/mp4"})
