"""
Tests for lorectl.llm — OpenAI-compatible transport with a fake HTTP session.
"""

import json

import pytest

from lorectl.config import LLMProviderConfig
from lorectl.llm import LLMClient, LLMError


class FakeResponse:
    """Just enough of requests.Response for LLMClient."""

    def __init__(self, status=200, body=None, lines=None, raise_after=None):
        self.status_code = status
        self._body = body
        self._lines = lines or []
        self._raise_after = raise_after
        self.encoding = None
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    @property
    def text(self):
        if isinstance(self._body, str):
            return self._body
        return json.dumps(self._body)

    def json(self):
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body

    def iter_lines(self, decode_unicode=False):
        for i, line in enumerate(self._lines):
            if self._raise_after is not None and i == self._raise_after:
                raise ConnectionError("stream dropped")
            yield line

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        return self.response


def sse(*deltas, done=True):
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": d}}]})
        for d in deltas
    ]
    if done:
        lines.append("data: [DONE]")
    return lines


@pytest.fixture
def config():
    return LLMProviderConfig(
        base_url="http://localhost:1234/v1/", api_key="sk-test",
        model_name="test-model", timeout=30.0,
    )


MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]


# ---------------------------------------------------------------------------
# Non-streaming
# ---------------------------------------------------------------------------


class TestComplete:
    def test_request_shape(self, config):
        session = FakeSession(FakeResponse(body={
            "choices": [{"message": {"content": "Hello!"}}],
        }))
        client = LLMClient(config, session=session)
        assert client.complete(MESSAGES, temperature=0.7, top_p=0.8) == "Hello!"

        (call,) = session.calls
        assert call["url"] == "http://localhost:1234/v1/chat/completions"
        assert call["headers"]["Authorization"] == "Bearer sk-test"
        assert call["timeout"] == 30.0
        assert call["json"] == {
            "model": "test-model",
            "messages": MESSAGES,
            "stream": False,
            "temperature": 0.7,
            "top_p": 0.8,
        }

    def test_no_auth_header_without_key(self, config):
        config.api_key = ""
        session = FakeSession(FakeResponse(body={"choices": [{"message": {"content": ""}}]}))
        LLMClient(config, session=session).complete(MESSAGES)
        assert "Authorization" not in session.calls[0]["headers"]

    def test_sampling_omitted_when_none(self, config):
        session = FakeSession(FakeResponse(body={"choices": [{"message": {"content": "x"}}]}))
        LLMClient(config, session=session).complete(MESSAGES)
        payload = session.calls[0]["json"]
        assert "temperature" not in payload
        assert "top_p" not in payload
        assert "max_tokens" not in payload

    def test_http_error(self, config):
        session = FakeSession(FakeResponse(status=401, body="invalid key"))
        with pytest.raises(LLMError) as exc:
            LLMClient(config, session=session).complete(MESSAGES)
        assert exc.value.status == 401
        assert str(exc.value) == "LLM API error: 401 - invalid key"

    def test_missing_choices(self, config):
        session = FakeSession(FakeResponse(body={"error": "nope"}))
        with pytest.raises(LLMError):
            LLMClient(config, session=session).complete(MESSAGES)

    def test_invalid_json_body(self, config):
        session = FakeSession(FakeResponse(body="<html>gateway</html>"))
        with pytest.raises(LLMError):
            LLMClient(config, session=session).complete(MESSAGES)

    def test_null_content(self, config):
        session = FakeSession(FakeResponse(body={"choices": [{"message": {"content": None}}]}))
        assert LLMClient(config, session=session).complete(MESSAGES) == ""

    @pytest.mark.parametrize("body", [
        {"choices": [None]},
        {"choices": ["text"]},
        {"choices": [{"message": None}]},
        {"choices": [{"message": "hello"}]},
        {"choices": [{"message": {"content": ["a", "b"]}}]},
        {"choices": [{"message": {"content": 42}}]},
        {"choices": {"message": {"content": "x"}}},
        ["not", "an", "object"],
    ])
    def test_malformed_completion(self, config, body):
        session = FakeSession(FakeResponse(body=body))
        with pytest.raises(LLMError):
            LLMClient(config, session=session).complete(MESSAGES)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStream:
    def test_yields_deltas_until_done(self, config):
        response = FakeResponse(lines=sse("Hel", "lo", "!") + ["data: ignored-after-done"])
        session = FakeSession(response)
        chunks = list(LLMClient(config, session=session).stream(MESSAGES))
        assert chunks == ["Hel", "lo", "!"]
        assert session.calls[0]["stream"] is True
        assert session.calls[0]["json"]["stream"] is True
        assert response.closed

    def test_ends_on_transport_close(self, config):
        response = FakeResponse(lines=sse("a1", "b2", done=False))
        assert list(LLMClient(config, session=FakeSession(response)).stream(MESSAGES)) == [
            "a1", "b2",
        ]
        assert response.closed

    def test_skips_noise(self, config):
        lines = [
            "",
            ": keep-alive",
            "data: {not json",
            'data: {"choices": [{"delta": {}}]}',
            'data: {"choices": []}',
            'data: {"choices": [null]}',
            'data: {"choices": [{"delta": null}]}',
            'data: {"choices": [{"delta": {"content": 7}}]}',
        ] + sse("ok")
        chunks = list(LLMClient(config, session=FakeSession(FakeResponse(lines=lines))).stream(MESSAGES))
        assert chunks == ["ok"]

    def test_http_error_releases_response(self, config):
        response = FakeResponse(status=500, body="boom")
        with pytest.raises(LLMError):
            list(LLMClient(config, session=FakeSession(response)).stream(MESSAGES))
        assert response.closed

    def test_early_close_releases_response(self, config):
        response = FakeResponse(lines=sse("a1", "b2", "c3"))
        gen = LLMClient(config, session=FakeSession(response)).stream(MESSAGES)
        assert next(gen) == "a1"
        gen.close()
        assert response.closed

    def test_transport_error_releases_response(self, config):
        response = FakeResponse(lines=sse("a1", "b2"), raise_after=1)
        gen = LLMClient(config, session=FakeSession(response)).stream(MESSAGES)
        assert next(gen) == "a1"
        with pytest.raises(ConnectionError):
            next(gen)
        assert response.closed
