import asyncio
import json
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from xat_api.__main__ import create_app
from xat_api.db import Database
from xat_api.db.crud_helper import ConversationStore
from xat_api.settings import Config

TEST_MODEL = "test-model:1b"


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API.

    Each attribute controls one answer; every request received is recorded
    in ``requests`` so tests can assert on what was (or was not) sent.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.generate_status = 200
        self.generate_body: dict | str = {"response": "  Hello there!  ", "done": True}
        self.stream_status = 200
        self.stream_lines: list[str] = [
            json.dumps({"response": "Hel", "done": False}),
            json.dumps({"response": "lo", "done": False}),
            json.dumps({"response": "!", "done": False}),
            json.dumps({"response": "", "done": True}),
        ]
        self.tags_status = 200
        self.tags = {
            "models": [
                {
                    "name": TEST_MODEL,
                    "modified_at": "2024-05-01T10:00:00Z",
                    "size": 123456,
                    "digest": "sha256:abc",
                    "details": {"family": "test"},
                },
                {"name": "other:7b", "modified_at": "", "size": 1, "digest": "x"},
            ]
        }
        self.raise_error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error

        if request.url.path.endswith("/tags"):
            return httpx.Response(self.tags_status, json=self.tags)

        body = json.loads(request.content)
        if body.get("stream"):
            content = "".join(line + "\n" for line in self.stream_lines)
            return httpx.Response(self.stream_status, content=content.encode())

        if isinstance(self.generate_body, str):
            return httpx.Response(self.generate_status, content=self.generate_body.encode())
        return httpx.Response(self.generate_status, json=self.generate_body)

    def sent_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.content]


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    return Config(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        ollama_url="http://ollama.test/api",
        ollama_model=TEST_MODEL,
        ollama_model_text=TEST_MODEL,
        ollama_model_vision=TEST_MODEL,
        upstream_timeout=5.0,
    )


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def transport(fake_ollama: FakeOllama) -> httpx.MockTransport:
    return httpx.MockTransport(fake_ollama)


@pytest.fixture
def client(test_config: Config, transport: httpx.MockTransport):
    """TestClient over a fresh app; entering it runs the lifespan (table creation)."""
    app = create_app(test_config, transport=transport)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def store(test_config: Config):
    """A store on the test database, with tables created."""
    database = Database(test_config.db_url)
    asyncio.run(database.create_all())
    yield ConversationStore(database)
    asyncio.run(database.dispose())


def parse_sse(body: str) -> list[dict]:
    events = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events
