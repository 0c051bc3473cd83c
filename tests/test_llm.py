"""Endpoint client tests with a fake requests session."""

import json

import pytest
import requests

from alto_agent.errors import TransportError
from alto_agent.llm import EndpointClient, ModelInfo


class FakeResponse:
    def __init__(self, status_code=200, chunks=(), body=None, text=""):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._body = body
        self.text = text
        self.closed = False

    def iter_content(self, chunk_size=None):
        for chunk in self._chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if self.error:
            raise self.error
        return self.response


def _sse(*records):
    return "".join(f"data: {json.dumps(r)}\n\n" for r in records).encode() + b"data: [DONE]\n\n"


def _client(session, **kwargs):
    params = {"api_key": None, "timeout": 60}
    params.update(kwargs)
    return EndpointClient("http://localhost:8080/v1/", "local", session=session, **params)


class TestStreamChat:
    def test_request_and_records(self):
        body = _sse({"choices": [{"index": 0, "delta": {"content": "hi"}}]})
        response = FakeResponse(chunks=[body[:10], body[10:]])
        session = FakeSession(response)
        client = _client(session, api_key="secret", temperature=0.2)

        records = list(client.stream_chat([{"role": "user", "content": "x"}], tools=[{"t": 1}]))

        assert records == [{"choices": [{"index": 0, "delta": {"content": "hi"}}]}]
        method, url, kwargs = session.calls[0]
        assert (method, url) == ("POST", "http://localhost:8080/v1/chat/completions")
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == (30, 60)
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["json"] == {
            "model": "local",
            "messages": [{"role": "user", "content": "x"}],
            "stream": True,
            "tools": [{"t": 1}],
            "tool_choice": "auto",
            "temperature": 0.2,
        }
        assert response.closed

    def test_payload_without_optional_fields(self):
        client = _client(FakeSession())
        payload = client.build_payload([], None)
        assert payload == {"model": "local", "messages": [], "stream": True}
        assert "Authorization" not in client._headers()

    def test_http_error(self):
        response = FakeResponse(status_code=500, text="model not loaded")
        client = _client(FakeSession(response))

        with pytest.raises(TransportError) as exc:
            list(client.stream_chat([]))

        assert exc.value.status == 500
        assert "model not loaded" in str(exc.value)
        assert response.closed

    def test_connection_error(self):
        client = _client(FakeSession(error=requests.ConnectionError("refused")))
        with pytest.raises(TransportError, match="Cannot connect"):
            list(client.stream_chat([]))

    def test_timeout(self):
        client = _client(FakeSession(error=requests.ReadTimeout("slow")))
        with pytest.raises(TransportError, match="timed out after 60s"):
            list(client.stream_chat([]))

    def test_stream_interrupted(self):
        chunks = [b'data: {"a": 1}\n', requests.ConnectionError("reset")]
        response = FakeResponse(chunks=chunks)
        gen = _client(FakeSession(response)).stream_chat([])

        assert next(gen) == {"a": 1}
        with pytest.raises(TransportError, match="Stream interrupted"):
            next(gen)
        assert response.closed

    def test_closing_early_releases_connection(self):
        body = _sse({"a": 1}, {"b": 2})
        response = FakeResponse(chunks=[body])
        gen = _client(FakeSession(response)).stream_chat([])
        next(gen)
        gen.close()
        assert response.closed


class TestModels:
    def test_list_models(self):
        body = {"data": [
            {"id": "local", "meta": {"n_ctx_train": 32768}},
            {"id": "other"},
            {"no_id": True},
        ]}
        client = _client(FakeSession(FakeResponse(body=body)))
        assert client.list_models() == [ModelInfo("local", 32768), ModelInfo("other", None)]

    def test_context_window_matches_model(self):
        body = {"data": [{"id": "a", "meta": {"n_ctx_train": 1}},
                         {"id": "local", "meta": {"n_ctx_train": 4096}}]}
        assert _client(FakeSession(FakeResponse(body=body))).context_window() == 4096

    def test_context_window_falls_back_to_first(self):
        body = {"data": [{"id": "served", "meta": {"n_ctx_train": 8192}}]}
        assert _client(FakeSession(FakeResponse(body=body))).context_window() == 8192

    def test_context_window_unavailable(self):
        client = _client(FakeSession(error=requests.ConnectionError("down")))
        assert client.context_window() is None

    def test_invalid_json(self):
        client = _client(FakeSession(FakeResponse(body=None)))
        with pytest.raises(TransportError, match="not valid JSON"):
            client.list_models()
