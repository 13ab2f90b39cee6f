"""
Chat-completion client with a shared retry policy.

Only the HTTP call is retried. Parsing the model's answer happens after a
successful call, so a malformed summary is reported once and never retried.

Retry policy:
  * at most MAX_ATTEMPTS calls;
  * backoff min(BASE_DELAY * 2**(attempt - 1), MAX_DELAY) between calls;
  * HTTP 429 doubles that delay and still consumes an attempt;
  * 401/403 and 400 fail immediately.
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from utils.config import get_env
from utils.errors import UpstreamError

logger = logging.getLogger("services.llm")

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 8.0
REQUEST_TIMEOUT_SECONDS = 60

DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert academic tutor helping students understand their study materials. "
    "Generate clear, concise, and accurate summaries that help students grasp key concepts quickly."
)

SUMMARY_PROMPT_TEMPLATE = """Analyze the following document and provide:
1. A concise, descriptive title that captures the main topic
2. A comprehensive summary in 2-3 paragraphs that covers the key concepts and main ideas
3. 5-10 key points that highlight the most important information for studying

Document filename: {filename}
Document content:
{text}

Please format your response as JSON with the following structure:
{{
  "title": "Document Title Here",
  "summary": "Comprehensive summary in 2-3 paragraphs...",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3"]
}}"""

CHAT_SYSTEM_PROMPT_TEMPLATE = """You are an AI tutor helping a student with their studies. You have access to their document: "{title}".

Your responses should:
- Use the document content when the question is related to the document
- Be clear, educational, and helpful for studying
- Answer general questions even if they're not about the document
- When relevant, reference the document content to enhance your answers

Document content available:
{text}

Guidelines:
- If the question is about the document or relates to its content, use the document information in your response
- If the question is general, answer normally using your general knowledge
- You can combine document content with general knowledge when appropriate"""


class LLMError(UpstreamError):
    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


class LLMConfigurationError(LLMError):
    pass


class LLMAuthenticationError(LLMError):
    pass


class LLMInvalidRequestError(LLMError):
    pass


class LLMMalformedResponseError(LLMError):
    pass


class LLMRetryExhaustedError(LLMError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message, original_error=last_error)
        self.last_error = last_error


class LLMHTTPError(Exception):
    """Non-2xx answer from the completion endpoint."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body


def backoff_delay(attempt: int, rate_limited: bool = False) -> float:
    delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
    if rate_limited:
        delay *= 2
    return min(delay, MAX_DELAY_SECONDS)


class LLMClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep = sleep

    def _complete(self, messages: List[Dict[str, str]], max_tokens: int, temperature: float) -> Dict[str, Any]:
        response = self.session.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if response.status_code >= 400:
            raise LLMHTTPError(response.status_code, response.text or "")
        return response.json()

    def _with_retry(self, fn: Callable[[], Any], operation: str) -> Any:
        last_error: Optional[BaseException] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return fn()
            except LLMHTTPError as err:
                last_error = err
                logger.warning("llm_attempt_failed", extra={"operation": operation, "attempt": attempt, "status_code": err.status_code})
                if err.status_code in (401, 403):
                    raise LLMAuthenticationError("Authentication failed. Please check your OpenAI API key.", err)
                if err.status_code == 400:
                    raise LLMInvalidRequestError("Invalid request. Please check the document content.", err)
                rate_limited = err.status_code == 429
            except (requests.RequestException, ValueError) as err:
                # transport failures and undecodable bodies
                last_error = err
                logger.warning("llm_attempt_failed", extra={"operation": operation, "attempt": attempt, "error": str(err)})
                rate_limited = False

            if attempt == MAX_ATTEMPTS:
                break
            delay = backoff_delay(attempt, rate_limited=rate_limited)
            logger.info("llm_retry_scheduled", extra={"operation": operation, "attempt": attempt, "delay_seconds": delay, "rate_limited": rate_limited})
            self._sleep(delay)

        raise LLMRetryExhaustedError(
            f"{operation} failed after {MAX_ATTEMPTS} attempts. {last_error or 'Unknown error'}",
            last_error,
        )

    def _require_key(self) -> None:
        if not self.api_key:
            raise LLMConfigurationError("OpenAI API key not configured")

    @staticmethod
    def _message_content(payload: Dict[str, Any]) -> str:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise LLMMalformedResponseError("No response content received from OpenAI")
        return content

    def generate_document_summary(self, parsed_text: str, filename: str) -> Dict[str, Any]:
        """Return `{"title", "summary", "keyPoints"}` for the given document text."""
        if not parsed_text or not parsed_text.strip():
            raise LLMError("No text content available for summary generation")
        self._require_key()

        prompt = SUMMARY_PROMPT_TEMPLATE.format(filename=filename, text=parsed_text)
        payload = self._with_retry(
            lambda: self._complete(
                [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=1000,
                temperature=0.3,
            ),
            "summary generation",
        )
        return parse_summary(self._message_content(payload))

    def generate_chatbot_response(self, message: str, document_title: str, parsed_text: str) -> str:
        if not message or not message.strip():
            raise LLMError("No message provided for chatbot response")
        if not parsed_text or not parsed_text.strip():
            raise LLMError("No document content available for chatbot response")
        self._require_key()

        system_prompt = CHAT_SYSTEM_PROMPT_TEMPLATE.format(title=document_title, text=parsed_text)
        payload = self._with_retry(
            lambda: self._complete(
                [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": message},
                ],
                max_tokens=500,
                temperature=0.7,
            ),
            "chatbot response",
        )
        return self._message_content(payload)


def parse_summary(content: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(content)
    except ValueError as err:
        raise LLMMalformedResponseError("Failed to parse OpenAI response as JSON", err)
    if (
        not isinstance(parsed, dict)
        or not parsed.get("title")
        or not parsed.get("summary")
        or not isinstance(parsed.get("keyPoints"), list)
    ):
        raise LLMMalformedResponseError("Invalid response format from OpenAI")
    return {
        "title": str(parsed["title"]),
        "summary": str(parsed["summary"]),
        "keyPoints": [str(point) for point in parsed["keyPoints"]],
    }


_client: Optional[LLMClient] = None
_client_lock = threading.Lock()


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = LLMClient(
                    api_key=get_env("OPENAI_API_KEY"),
                    model=get_env("OPENAI_MODEL", DEFAULT_MODEL),
                    base_url=get_env("OPENAI_BASE_URL", DEFAULT_BASE_URL),
                )
    return _client


def set_llm_client(client: Optional[LLMClient]) -> None:
    global _client
    with _client_lock:
        _client = client
