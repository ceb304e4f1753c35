import asyncio
import dataclasses
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from backend.errors import BackendResponseError, JobTimeoutError
from backend.generators import ComfyUIGenerator
from backend.prompts import STYLE_PROMPTS
from backend.workflow_builder import OUTPUT_NODE_ID

from .conftest import PIN, PNG_BYTES, FakeSession, text

PROMPT_ID = "pid-1"


class FakeComfy:
    """Enough of the ComfyUI REST API for one job."""

    def __init__(self, outputs=None, history_misses=0):
        self.requests = []
        self.workflow = None
        self.client_id = None
        self.history_misses = history_misses
        self.history_reads = 0
        self.outputs = outputs if outputs is not None else {
            OUTPUT_NODE_ID: {"images": [{"filename": "family_toon_00001_.png", "subfolder": "", "type": "output"}]}
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if path == "/upload/image":
            return httpx.Response(200, json={"name": "upload_1.png", "subfolder": "", "type": "input"})
        if path == "/prompt":
            body = json.loads(request.content)
            self.workflow = body["prompt"]
            self.client_id = body["client_id"]
            return httpx.Response(200, json={"prompt_id": PROMPT_ID, "number": 1, "node_errors": {}})
        if path == f"/history/{PROMPT_ID}":
            self.history_reads += 1
            if self.history_misses > 0:
                self.history_misses -= 1
                return httpx.Response(200, json={})
            return httpx.Response(200, json={PROMPT_ID: {"outputs": self.outputs}})
        if path == "/view":
            assert request.url.params["filename"] == "family_toon_00001_.png"
            return httpx.Response(200, content=b"toon", headers={"content-type": "image/png"})
        if path == "/system_stats":
            return httpx.Response(200, json={"system": {}})
        return httpx.Response(404)


def done_session():
    return FakeSession([
        text(json.dumps({"type": "execution_start", "data": {"prompt_id": PROMPT_ID}})),
        text(json.dumps({"type": "executing", "data": {"node": None, "prompt_id": PROMPT_ID}})),
    ])


@pytest.fixture
def comfy_settings(settings):
    return dataclasses.replace(settings, backend="comfyui", comfyui_checkpoint="toon.safetensors")


def make(comfy_settings, comfy, session):
    return ComfyUIGenerator(comfy_settings, transport=httpx.MockTransport(comfy), ws_session=session)


def test_full_job(comfy_settings, image_path):
    comfy, session = FakeComfy(), done_session()

    result = asyncio.run(make(comfy_settings, comfy, session).generate(image_path, "cartoon"))

    assert result == b"toon"
    assert comfy.requests == ["/upload/image", "/prompt", f"/history/{PROMPT_ID}", "/view"]

    # websocket was opened before queueing, with the same client id
    (ws_url,) = session.urls
    assert parse_qs(urlsplit(ws_url).query)["clientId"] == [comfy.client_id]
    assert session.ws.closed

    texts = {n["_meta"]["title"]: n["inputs"].get("text") for n in comfy.workflow.values()}
    assert texts["Positive Prompt"] == STYLE_PROMPTS["cartoon"].positive
    assert texts["Negative Prompt"] == STYLE_PROMPTS["cartoon"].negative
    load = [n for n in comfy.workflow.values() if n["class_type"] == "LoadImage"][0]
    assert load["inputs"]["image"] == "upload_1.png"
    ckpt = [n for n in comfy.workflow.values() if n["class_type"] == "CheckpointLoaderSimple"][0]
    assert ckpt["inputs"]["ckpt_name"] == "toon.safetensors"


def test_timeout_never_fetches_history(comfy_settings, image_path):
    comfy, session = FakeComfy(), FakeSession([])

    with pytest.raises(JobTimeoutError):
        asyncio.run(make(comfy_settings, comfy, session).generate(image_path, "anime"))

    assert comfy.requests == ["/upload/image", "/prompt"]
    assert session.ws.closed


def test_missing_output_node(comfy_settings, image_path):
    comfy = FakeComfy(outputs={"42": {"images": [{"filename": "other.png"}]}})

    with pytest.raises(BackendResponseError):
        asyncio.run(make(comfy_settings, comfy, done_session()).generate(image_path, "anime"))


def test_prompt_rejected(comfy_settings, image_path):
    def handler(request):
        if request.url.path == "/upload/image":
            return httpx.Response(200, json={"name": "upload_1.png"})
        return httpx.Response(400, json={"error": {"message": "bad node"}, "node_errors": {"3": "x"}})

    session = FakeSession([])
    gen = ComfyUIGenerator(comfy_settings, transport=httpx.MockTransport(handler), ws_session=session)
    with pytest.raises(BackendResponseError, match="400"):
        asyncio.run(gen.generate(image_path, "anime"))
    assert session.ws.closed


def test_health(comfy_settings):
    assert asyncio.run(make(comfy_settings, FakeComfy(), FakeSession()).health())


def test_generate_endpoint_timeout_removes_temp_file(comfy_settings):
    comfy, session = FakeComfy(), FakeSession([])
    client = TestClient(create_app(comfy_settings, generator=make(comfy_settings, comfy, session)))

    resp = client.post(
        "/generate",
        headers={"X-Family-Pin": PIN},
        files={"image": ("kids.jpg", PNG_BYTES, "image/jpeg")},
        data={"style": "cartoon"},
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "Generation timed out. Please try again."}
    assert list(comfy_settings.temp_dir.iterdir()) == []
    assert session.ws.closed


def test_generate_endpoint_success(comfy_settings):
    comfy = FakeComfy()
    client = TestClient(create_app(comfy_settings, generator=make(comfy_settings, comfy, done_session())))

    resp = client.post(
        "/generate",
        headers={"X-Family-Pin": PIN},
        files={"image": ("kids.jpg", PNG_BYTES, "image/jpeg")},
    )

    assert resp.status_code == 200
    assert resp.content == b"toon"
    assert resp.headers["cache-control"] == "no-store, no-cache, must-revalidate"
    assert list(comfy_settings.temp_dir.iterdir()) == []


def success_only_session():
    return FakeSession([text(json.dumps({"type": "execution_success", "data": {"prompt_id": PROMPT_ID}}))])


def test_history_written_after_success_event(comfy_settings, image_path):
    comfy = FakeComfy(history_misses=2)

    result = asyncio.run(make(comfy_settings, comfy, success_only_session()).generate(image_path, "anime"))

    assert result == b"toon"
    assert comfy.history_reads == 3
    assert comfy.requests[-1] == "/view"


def test_history_never_recorded_is_timeout(comfy_settings, image_path):
    comfy = FakeComfy(history_misses=10_000)

    with pytest.raises(JobTimeoutError):
        asyncio.run(make(comfy_settings, comfy, success_only_session()).generate(image_path, "anime"))

    assert comfy.history_reads >= 1
    assert "/view" not in comfy.requests
