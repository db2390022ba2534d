"""Tests for the HTTP collaborators against mocked transports."""
import json

import httpx
import pytest
from agentflow_core.config import Settings
from agentflow_core.errors import ExternalUnavailable
from agentflow_core.external.llm import HttpTextGenerator
from agentflow_core.external.storage import HttpObjectStorage
from agentflow_core.external.task_list import RemoteResult


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestHttpTextGenerator:
    def test_posts_chat_completion(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("A strategy"))

        generator = HttpTextGenerator(
            "https://llm.test/v1/", "secret", "test-model", transport=httpx.MockTransport(handler)
        )

        text = generator.generate([{"role": "user", "content": "Plan it"}])

        assert text == "A strategy"
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["model"] == "test-model"
        assert "response_format" not in seen["body"]

    def test_response_schema_requests_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("{}"))

        generator = HttpTextGenerator("https://llm.test/v1", None, "m", transport=httpx.MockTransport(handler))

        generator.generate([], response_schema={"name": "breakdown", "schema": {"type": "object"}})

        response_format = seen["body"]["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "breakdown"
        assert response_format["json_schema"]["strict"] is True

    def test_http_error(self):
        generator = HttpTextGenerator(
            "https://llm.test/v1", None, "m",
            transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down")),
        )

        with pytest.raises(ExternalUnavailable) as exc_info:
            generator.generate([])

        assert exc_info.value.reason == "HTTP 429"
        assert exc_info.value.collaborator == "text-generation"

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        generator = HttpTextGenerator("https://llm.test/v1", None, "m", transport=httpx.MockTransport(handler))

        with pytest.raises(ExternalUnavailable):
            generator.generate([])

    def test_malformed_response(self):
        generator = HttpTextGenerator(
            "https://llm.test/v1", None, "m",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []})),
        )

        with pytest.raises(ExternalUnavailable) as exc_info:
            generator.generate([])

        assert "malformed" in exc_info.value.reason


class TestHttpObjectStorage:
    def test_put_returns_url_from_response(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["Content-Type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"url": "https://cdn.test/logo.png"})

        storage = HttpObjectStorage("https://store.test", "key", transport=httpx.MockTransport(handler))

        url = storage.put("projects/1/attachments/logo.png", b"\x89PNG", "image/png")

        assert url == "https://cdn.test/logo.png"
        assert seen["method"] == "PUT"
        assert seen["url"] == "https://store.test/objects/projects/1/attachments/logo.png"
        assert seen["content_type"] == "image/png"
        assert seen["body"] == b"\x89PNG"

    def test_put_falls_back_to_object_url(self):
        storage = HttpObjectStorage(
            "https://store.test", transport=httpx.MockTransport(lambda request: httpx.Response(201))
        )

        assert storage.put("a.txt", b"hi", "text/plain") == "https://store.test/objects/a.txt"

    def test_delete_ignores_missing_object(self):
        storage = HttpObjectStorage(
            "https://store.test", transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )

        storage.delete("gone.txt")

    def test_delete_failure(self):
        storage = HttpObjectStorage(
            "https://store.test", transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        with pytest.raises(ExternalUnavailable):
            storage.delete("a.txt")

    def test_unconfigured_storage(self):
        with pytest.raises(ExternalUnavailable):
            HttpObjectStorage.from_settings(Settings(storage_base_url=None))


class TestRemoteResult:
    def test_items(self):
        assert RemoteResult(True, {"items": [{"id": "a"}]}).items() == [{"id": "a"}]
        assert RemoteResult(True, [{"id": "b"}]).items() == [{"id": "b"}]
        assert RemoteResult(True, {"items": None}).items() == []
        assert RemoteResult(False, error="boom").items() == []
