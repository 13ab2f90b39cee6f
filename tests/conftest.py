import copy
import hashlib
import hmac
import importlib
import itertools
import json
import os
import shutil
import sys
import tempfile
import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
	sys.path.insert(0, PROJECT_ROOT)

# Celery reads this when tasks.celery_app is first imported
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["PROCESSING_START_DELAY_SECONDS"] = "0"
os.environ["PROCESSING_STEP_DELAY_SECONDS"] = "0"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SUPABASE_JWT_SECRET"] = "test_jwt_secret"

from services.backend import BackendError, set_backend  # noqa: E402
from services.billing import set_stripe  # noqa: E402
from services.llm import set_llm_client  # noqa: E402

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


class FakeBackend:
	"""In-memory stand-in for SupabaseBackend with the same method surface."""

	def __init__(self):
		self.documents = {}
		self.jobs = {}
		self.tags = {}
		self.document_tags = []
		self.notes = {}
		self.users = {}
		self.files = {}
		self.deleted_auth_users = []
		self.auth_codes = {}
		self.fail_on = set()
		self._ids = itertools.count(1)
		self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

	def _maybe_fail(self, name):
		if name in self.fail_on:
			raise BackendError(f"{name} failed: simulated outage")

	def _now(self):
		# strictly increasing, so compare-and-swap always sees a new value
		self._clock += timedelta(milliseconds=1)
		return self._clock.isoformat()

	def _new_id(self, prefix):
		return f"{prefix}-{next(self._ids)}"

	# Documents

	def add_document(self, **fields):
		now = self._now()
		row = {
			"id": self._new_id("doc"),
			"user_id": "user-1",
			"filename": "notes.txt",
			"original_filename": "notes.txt",
			"file_type": "text/plain",
			"file_size": 10,
			"storage_path": "user-1/notes.txt",
			"status": "ready",
			"upload_progress": 100,
			"parsed_text": None,
			"title": None,
			"summary": None,
			"key_points": None,
			"metadata": {},
			"created_at": now,
			"updated_at": now,
		}
		row.update(fields)
		self.documents[row["id"]] = row
		return copy.deepcopy(row)

	def get_document(self, document_id):
		self._maybe_fail("get_document")
		row = self.documents.get(document_id)
		return copy.deepcopy(row) if row else None

	def insert_document(self, row):
		self._maybe_fail("insert_document")
		return self.add_document(**row)

	def update_document(self, document_id, fields, expected_updated_at=None):
		self._maybe_fail("update_document")
		row = self.documents.get(document_id)
		if row is None:
			return None
		if expected_updated_at is not None:
			if datetime.fromisoformat(row["updated_at"]) != datetime.fromisoformat(expected_updated_at):
				return None
		row.update(copy.deepcopy(fields))
		row["updated_at"] = self._now()
		return copy.deepcopy(row)

	def delete_document(self, document_id):
		self._maybe_fail("delete_document")
		self.documents.pop(document_id, None)
		self.document_tags = [link for link in self.document_tags if link["document_id"] != document_id]

	def list_documents(self, user_id):
		rows = [row for row in self.documents.values() if row["user_id"] == user_id]
		return copy.deepcopy(sorted(rows, key=lambda row: row["created_at"], reverse=True))

	def list_ready_documents_without_text(self, document_id=None):
		self._maybe_fail("list_ready_documents_without_text")
		rows = [
			row for row in self.documents.values()
			if row["status"] == "ready" and not row.get("parsed_text")
			and (document_id is None or row["id"] == document_id)
		]
		return copy.deepcopy(rows)

	# Processing jobs

	def insert_job(self, row):
		self._maybe_fail("insert_job")
		now = self._now()
		job = dict(row, id=self._new_id("job"), created_at=now, updated_at=now)
		self.jobs[job["id"]] = job
		return copy.deepcopy(job)

	def get_job(self, job_id):
		row = self.jobs.get(job_id)
		return copy.deepcopy(row) if row else None

	def update_job(self, job_id, fields):
		row = self.jobs.get(job_id)
		if row is None:
			return None
		row.update(copy.deepcopy(fields))
		row["updated_at"] = self._now()
		return copy.deepcopy(row)

	def list_jobs(self, document_id):
		rows = [row for row in self.jobs.values() if row["document_id"] == document_id]
		return copy.deepcopy(sorted(rows, key=lambda row: row["created_at"], reverse=True))

	# Tags

	def list_tags(self, user_id):
		rows = [row for row in self.tags.values() if row["user_id"] == user_id]
		return copy.deepcopy(sorted(rows, key=lambda row: row["name"]))

	def get_tags(self, tag_ids):
		ids = set(tag_ids)
		return [copy.deepcopy(row) for tag_id, row in self.tags.items() if tag_id in ids]

	def insert_tag(self, row):
		self._maybe_fail("insert_tag")
		now = self._now()
		tag = dict(row, id=self._new_id("tag"), created_at=now, updated_at=now)
		self.tags[tag["id"]] = tag
		return copy.deepcopy(tag)

	def delete_tag(self, tag_id):
		self.tags.pop(tag_id, None)
		self.document_tags = [link for link in self.document_tags if link["tag_id"] != tag_id]

	def list_document_tag_links(self, document_ids):
		ids = set(document_ids)
		return [dict(link) for link in self.document_tags if link["document_id"] in ids]

	def replace_document_tags(self, document_id, tag_ids):
		self._maybe_fail("replace_document_tags")
		self.document_tags = [link for link in self.document_tags if link["document_id"] != document_id]
		self.document_tags.extend({"document_id": document_id, "tag_id": tag_id} for tag_id in tag_ids)

	# Notes

	def _with_document(self, note):
		row = copy.deepcopy(note)
		row["document"] = copy.deepcopy(self.documents.get(note["document_id"]))
		return row

	def list_notes(self, user_id):
		self._maybe_fail("list_notes")
		rows = [row for row in self.notes.values() if row["user_id"] == user_id]
		return [self._with_document(row) for row in sorted(rows, key=lambda row: row["created_at"], reverse=True)]

	def insert_note(self, row):
		self._maybe_fail("insert_note")
		now = self._now()
		note = dict(row, id=self._new_id("note"), created_at=now, updated_at=now)
		self.notes[note["id"]] = note
		return self._with_document(note)

	def update_note(self, note_id, user_id, content):
		note = self.notes.get(note_id)
		if note is None or note["user_id"] != user_id:
			return None
		note.update(content=content, updated_at=self._now())
		return self._with_document(note)

	def delete_note(self, note_id, user_id):
		note = self.notes.get(note_id)
		if note is not None and note["user_id"] == user_id:
			del self.notes[note_id]

	# Users

	def get_user_profile(self, user_id):
		row = self.users.get(user_id)
		return copy.deepcopy(row) if row else None

	def update_user_role(self, user_id, role):
		self._maybe_fail("update_user_role")
		row = self.users.get(user_id)
		if row is None:
			return None
		row["role"] = role
		return copy.deepcopy(row)

	def delete_auth_user(self, user_id):
		self._maybe_fail("delete_auth_user")
		self.deleted_auth_users.append(user_id)

	def exchange_code_for_session(self, code):
		if code not in self.auth_codes:
			raise BackendError("exchange_code_for_session failed: invalid code")
		return self.auth_codes[code]

	# Object storage

	def upload_file(self, path, data, content_type):
		self._maybe_fail("upload_file")
		self.files[path] = data

	def download_file(self, path):
		self._maybe_fail("download_file")
		if path not in self.files:
			raise BackendError(f"download_file failed: {path} not found")
		return self.files[path]

	def remove_file(self, path):
		self._maybe_fail("remove_file")
		self.files.pop(path, None)

	def create_signed_url(self, path, expires_in=3600):
		return f"https://storage.test/{path}?token=signed&expires={expires_in}"


class ScriptedLLM:
	"""Records calls and answers with canned content, or raises `error` when set."""

	def __init__(self):
		self.summary = {
			"title": "Cell Biology Basics",
			"summary": "An overview of cells and their organelles.",
			"keyPoints": ["Cells are the unit of life", "Mitochondria produce ATP"],
		}
		self.chat_reply = "Mitochondria are the powerhouse of the cell."
		self.error = None
		self.summary_calls = []
		self.chat_calls = []

	def generate_document_summary(self, parsed_text, filename):
		self.summary_calls.append((parsed_text, filename))
		if self.error is not None:
			raise self.error
		return dict(self.summary)

	def generate_chatbot_response(self, message, document_title, parsed_text):
		self.chat_calls.append((message, document_title, parsed_text))
		if self.error is not None:
			raise self.error
		return self.chat_reply


class _FakeSubscriptions:
	def __init__(self, store):
		self.store = store
		self.updates = []
		self.error = None

	def retrieve(self, subscription_id, params=None, options=None):
		if self.error is not None:
			raise self.error
		return copy.deepcopy(self.store[subscription_id])

	def update(self, subscription_id, params=None, options=None):
		if self.error is not None:
			raise self.error
		self.updates.append((subscription_id, params))
		self.store[subscription_id].update(params or {})
		return copy.deepcopy(self.store[subscription_id])


class _FakeBalance:
	def __init__(self):
		self.error = None

	def retrieve(self, params=None, options=None):
		if self.error is not None:
			raise self.error
		return {"object": "balance", "available": []}


class FakeStripe:
	def __init__(self):
		self.subscription_store = {}
		self.subscriptions = _FakeSubscriptions(self.subscription_store)
		self.balance = _FakeBalance()

	def add_subscription(self, subscription_id, **fields):
		sub = {
			"id": subscription_id,
			"object": "subscription",
			"customer": "cus_123",
			"status": "active",
			"cancel_at_period_end": False,
			"items": {"data": [{"price": {"id": "price_pro"}, "current_period_end": 1735689600}]},
		}
		sub.update(fields)
		self.subscription_store[subscription_id] = sub
		return sub


@pytest.fixture(scope="session")
def temp_dirs():
	base = tempfile.mkdtemp(prefix="study_tests_")
	logs_dir = os.path.join(base, "logs")
	os.makedirs(logs_dir, exist_ok=True)
	yield {"base": base, "logs": logs_dir}
	shutil.rmtree(base, ignore_errors=True)


@pytest.fixture(scope="session")
def app_client(temp_dirs):
	# Set env before importing app
	os.environ["LOG_DIR"] = temp_dirs["logs"]
	os.environ["APP_URL"] = "https://app.example.com"
	# Import app fresh
	import main as main_module
	importlib.reload(main_module)
	app = main_module.app
	client = TestClient(app)
	return client


@pytest.fixture
def backend():
	fake = FakeBackend()
	set_backend(fake)
	yield fake
	set_backend(None)


@pytest.fixture
def llm():
	fake = ScriptedLLM()
	set_llm_client(fake)
	yield fake
	set_llm_client(None)


@pytest.fixture
def stripe_client():
	fake = FakeStripe()
	set_stripe(fake)
	yield fake
	set_stripe(None)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
	# Tests that tweak limits do so through monkeypatch so nothing leaks
	monkeypatch.delenv("MAX_UPLOAD_MB", raising=False)
	yield


class RecordingTask:
	"""Replaces the Celery task so enqueued jobs can be inspected instead of run."""

	def __init__(self):
		self.calls = []

	def apply_async(self, args=None, kwargs=None, countdown=None, **options):
		self.calls.append({"args": args, "countdown": countdown})


@pytest.fixture
def recorded_jobs(monkeypatch):
	import services.documents as documents_service
	task = RecordingTask()
	monkeypatch.setattr(documents_service, "process_document_job", task)
	return task


def long_text(topic: str = "photosynthesis") -> str:
	sentence = f"Plants convert light energy into chemical energy through {topic}. "
	return sentence * 10


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
	timestamp = timestamp or int(time.time())
	signature = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
	return f"t={timestamp},v1={signature}"


def webhook_body(event_type: str, obj: dict, event_id: str = "evt_1") -> str:
	return json.dumps({"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}})
