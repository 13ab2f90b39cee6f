import json
import pytest
import requests
from services.llm import (
	LLMAuthenticationError,
	LLMClient,
	LLMConfigurationError,
	LLMHTTPError,
	LLMInvalidRequestError,
	LLMMalformedResponseError,
	LLMRetryExhaustedError,
	backoff_delay,
)

SUMMARY_JSON = json.dumps({"title": "Osmosis", "summary": "Water moves.", "keyPoints": ["a", "b"]})


class FakeResponse:
	def __init__(self, status_code, payload=None):
		self.status_code = status_code
		self._payload = payload if payload is not None else {}
		self.text = json.dumps(self._payload)

	def json(self):
		return self._payload


def completion(content):
	return FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": content}}]})


class FakeSession:
	"""Plays back a script of responses or exceptions, one per POST."""

	def __init__(self, script):
		self.script = list(script)
		self.calls = []

	def post(self, url, headers=None, json=None, timeout=None):
		self.calls.append({"url": url, "json": json})
		step = self.script.pop(0)
		if isinstance(step, Exception):
			raise step
		return step


def make_client(script, api_key="sk-test"):
	sleeps = []
	session = FakeSession(script)
	client = LLMClient(api_key=api_key, base_url="https://llm.test/v1/", session=session, sleep=sleeps.append)
	return client, session, sleeps


def test_generic_failure_attempted_three_times_then_wrapped():
	client, session, sleeps = make_client([requests.ConnectionError("connection reset")] * 3)
	with pytest.raises(LLMRetryExhaustedError) as info:
		client.generate_document_summary("some text", "a.txt")
	assert len(session.calls) == 3
	assert sleeps == [1.0, 2.0]
	assert str(info.value).startswith("summary generation failed after 3 attempts.")
	assert isinstance(info.value.last_error, requests.ConnectionError)


def test_rate_limit_backs_off_with_increasing_delays():
	client, session, sleeps = make_client([FakeResponse(429), FakeResponse(429), completion(SUMMARY_JSON)])
	result = client.generate_document_summary("some text", "a.txt")
	assert result == {"title": "Osmosis", "summary": "Water moves.", "keyPoints": ["a", "b"]}
	assert len(session.calls) == 3
	assert sleeps == [2.0, 4.0]
	assert sleeps[0] < sleeps[1]


def test_server_errors_exhaust_budget():
	client, session, sleeps = make_client([FakeResponse(500)] * 3)
	with pytest.raises(LLMRetryExhaustedError) as info:
		client.generate_chatbot_response("hi", "Doc", "text")
	assert info.value.last_error.status_code == 500
	assert isinstance(info.value.last_error, LLMHTTPError)
	assert len(sleeps) == 2


def test_authentication_failure_is_not_retried():
	client, session, sleeps = make_client([FakeResponse(401)])
	with pytest.raises(LLMAuthenticationError):
		client.generate_document_summary("some text", "a.txt")
	assert len(session.calls) == 1
	assert sleeps == []


def test_invalid_request_is_not_retried():
	client, session, sleeps = make_client([FakeResponse(400)])
	with pytest.raises(LLMInvalidRequestError):
		client.generate_document_summary("some text", "a.txt")
	assert len(session.calls) == 1


def test_malformed_summary_is_not_retried():
	client, session, sleeps = make_client([completion("Here is your summary!")])
	with pytest.raises(LLMMalformedResponseError):
		client.generate_document_summary("some text", "a.txt")
	assert len(session.calls) == 1
	assert sleeps == []


def test_summary_missing_key_points_is_malformed():
	client, _, _ = make_client([completion(json.dumps({"title": "t", "summary": "s"}))])
	with pytest.raises(LLMMalformedResponseError):
		client.generate_document_summary("some text", "a.txt")


def test_empty_completion_is_malformed():
	client, _, _ = make_client([completion("")])
	with pytest.raises(LLMMalformedResponseError):
		client.generate_chatbot_response("hi", "Doc", "text")


def test_missing_api_key_fails_before_any_call():
	client, session, _ = make_client([], api_key=None)
	with pytest.raises(LLMConfigurationError):
		client.generate_document_summary("some text", "a.txt")
	assert session.calls == []


def test_chat_request_shape():
	client, session, _ = make_client([completion("ATP is energy.")])
	assert client.generate_chatbot_response("What is ATP?", "Biology", "ATP text") == "ATP is energy."
	call = session.calls[0]
	assert call["url"] == "https://llm.test/v1/chat/completions"
	assert call["json"]["max_tokens"] == 500
	assert call["json"]["temperature"] == 0.7
	assert call["json"]["messages"][-1] == {"role": "user", "content": "What is ATP?"}
	assert '"Biology"' in call["json"]["messages"][0]["content"]


def test_backoff_delay_is_capped():
	assert backoff_delay(1) == 1.0
	assert backoff_delay(3) == 4.0
	assert backoff_delay(5) == 8.0
	assert backoff_delay(4, rate_limited=True) == 8.0
