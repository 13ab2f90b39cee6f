import json
import logging
from fastapi.testclient import TestClient
from utils.logging_config import ContextFilter, JsonFormatter, correlation_id_ctx


def test_root(app_client: TestClient):
	resp = app_client.get("/")
	assert resp.status_code == 200
	assert resp.json() == {"message": "Welcome to the Study Assistant API"}


def test_request_id_is_echoed(app_client: TestClient):
	resp = app_client.get("/", headers={"X-Request-ID": "req-123"})
	assert resp.headers["X-Request-ID"] == "req-123"
	assert len(app_client.get("/").headers["X-Request-ID"]) == 16


def test_unknown_route_uses_error_shape(app_client: TestClient):
	resp = app_client.get("/does-not-exist")
	assert resp.status_code == 404
	assert resp.json() == {"error": "Not Found"}


def test_validation_error_details(app_client: TestClient, backend):
	resp = app_client.post("/documents/process", json={"jobType": "ocr"})
	assert resp.status_code == 400
	body = resp.json()
	assert body["error"] == "Invalid request: documentId: Field required"
	assert body["details"][0]["loc"] == ["body", "documentId"]


def test_json_formatter_includes_extra_fields():
	record = logging.LogRecord("services.test", logging.INFO, __file__, 1, "job_enqueued", None, None)
	record.doc_id = "doc-1"
	token = correlation_id_ctx.set("corr-1")
	try:
		ContextFilter().filter(record)
	finally:
		correlation_id_ctx.reset(token)
	payload = json.loads(JsonFormatter().format(record))
	assert payload["message"] == "job_enqueued"
	assert payload["doc_id"] == "doc-1"
	assert payload["correlation_id"] == "corr-1"
	assert payload["logger"] == "services.test"
