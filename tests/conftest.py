import asyncio
from pathlib import Path
from typing import List, Optional

import aiohttp
import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from backend.generators import ImageGenerator
from config.settings import Settings

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
PIN = "1234"


class FakeGenerator(ImageGenerator):
    """Records what the orchestrator hands to the backend."""

    name = "fake"
    failure_message = "Generation failed. Is the fake backend running?"

    def __init__(self, settings: Settings, result: bytes = PNG_BYTES, error: Optional[Exception] = None):
        super().__init__(settings)
        self.result = result
        self.error = error
        self.calls: List[dict] = []
        self.up = True

    @property
    def base_url(self) -> str:
        return "fake://backend"

    async def generate(self, image_path: Path, style: str) -> bytes:
        self.calls.append(
            {
                "path": image_path,
                "style": style,
                "existed": image_path.exists(),
                "bytes": image_path.read_bytes(),
                "siblings": sorted(p.name for p in image_path.parent.iterdir()),
            }
        )
        if self.error is not None:
            raise self.error
        return self.result

    async def health(self) -> bool:
        if isinstance(self.up, Exception):
            raise self.up
        return self.up


class FakeMessage:
    def __init__(self, type, data=None):
        self.type = type
        self.data = data


class FakeWebSocket:
    def __init__(self, messages):
        self.messages = list(messages)
        self.closed = False

    async def receive(self):
        if self.messages:
            return self.messages.pop(0)
        # nothing more from the server
        await asyncio.sleep(3600)

    async def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, messages=(), fail: Optional[Exception] = None, hang: bool = False):
        self.ws = FakeWebSocket(messages)
        self.fail = fail
        self.hang = hang
        self.urls: List[str] = []
        self.closed = False

    async def ws_connect(self, url, **kwargs):
        self.urls.append(url)
        if self.fail is not None:
            raise self.fail
        if self.hang:
            await asyncio.sleep(3600)
        return self.ws


def text(payload: str) -> FakeMessage:
    return FakeMessage(aiohttp.WSMsgType.TEXT, payload)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(family_pin=PIN, temp_dir=tmp_path / "uploads", job_timeout=0.2, poll_interval=0.01, request_timeout=5.0)


@pytest.fixture
def fake_generator(settings) -> FakeGenerator:
    return FakeGenerator(settings)


@pytest.fixture
def client(settings, fake_generator) -> TestClient:
    return TestClient(create_app(settings, generator=fake_generator))


@pytest.fixture
def image_path(tmp_path) -> Path:
    path = tmp_path / "input.png"
    path.write_bytes(PNG_BYTES)
    return path
