"""
Thin wrapper over the Supabase SDK.

All persistence, storage and auth administration goes through `SupabaseBackend`.
Rows are returned as plain dicts; "not found" is `None`, any SDK failure is
re-raised as `BackendError` so callers can decide whether it is fatal.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from supabase import Client, ClientOptions, create_client

from utils.config import get_env, require_env, storage_bucket
from utils.errors import UpstreamError

logger = logging.getLogger("services.backend")

T = TypeVar("T")

DOCUMENTS = "documents"
JOBS = "document_processing_jobs"
TAGS = "tags"
DOCUMENT_TAGS = "document_tags"
NOTES = "notes"
USERS = "users"


class BackendError(UpstreamError):
    pass


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(rows: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    return rows[0] if rows else None


class SupabaseBackend:
    def __init__(self, url: str, service_role_key: str, anon_key: Optional[str] = None):
        self._url = url
        self._anon_key = anon_key
        self._client: Client = create_client(
            url,
            service_role_key,
            options=ClientOptions(auto_refresh_token=False, persist_session=False),
        )

    def _call(self, label: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as exc:  # SDK raises several unrelated exception types
            logger.error("backend_call_failed", extra={"operation": label, "error": str(exc)})
            raise BackendError(f"{label} failed: {exc}") from exc

    def _select(self, label: str, build) -> List[Dict[str, Any]]:
        return self._call(label, lambda: build().execute().data or [])

    # Documents

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        return _first(self._select(
            "get_document",
            lambda: self._client.table(DOCUMENTS).select("*").eq("id", document_id).limit(1),
        ))

    def insert_document(self, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._select("insert_document", lambda: self._client.table(DOCUMENTS).insert(row))
        if not rows:
            raise BackendError("insert_document returned no row")
        return rows[0]

    def update_document(
        self,
        document_id: str,
        fields: Dict[str, Any],
        expected_updated_at: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Update a document row; returns None when no row matched (missing or stale)."""
        payload = dict(fields, updated_at=utc_now_iso())

        def build():
            query = self._client.table(DOCUMENTS).update(payload).eq("id", document_id)
            if expected_updated_at is not None:
                query = query.eq("updated_at", expected_updated_at)
            return query

        return _first(self._select("update_document", build))

    def delete_document(self, document_id: str) -> None:
        self._select("delete_document", lambda: self._client.table(DOCUMENTS).delete().eq("id", document_id))

    def list_documents(self, user_id: str) -> List[Dict[str, Any]]:
        return self._select(
            "list_documents",
            lambda: self._client.table(DOCUMENTS).select("*").eq("user_id", user_id).order("created_at", desc=True),
        )

    def list_ready_documents_without_text(self, document_id: Optional[str] = None) -> List[Dict[str, Any]]:
        def build():
            query = (
                self._client.table(DOCUMENTS)
                .select("*")
                .eq("status", "ready")
                .or_('parsed_text.is.null,parsed_text.eq.""')
            )
            if document_id:
                query = query.eq("id", document_id)
            return query

        return self._select("list_ready_documents_without_text", build)

    # Processing jobs

    def insert_job(self, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._select("insert_job", lambda: self._client.table(JOBS).insert(row))
        if not rows:
            raise BackendError("insert_job returned no row")
        return rows[0]

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        return _first(self._select(
            "get_job", lambda: self._client.table(JOBS).select("*").eq("id", job_id).limit(1)
        ))

    def update_job(self, job_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = dict(fields, updated_at=utc_now_iso())
        return _first(self._select("update_job", lambda: self._client.table(JOBS).update(payload).eq("id", job_id)))

    def list_jobs(self, document_id: str) -> List[Dict[str, Any]]:
        return self._select(
            "list_jobs",
            lambda: self._client.table(JOBS).select("*").eq("document_id", document_id).order("created_at", desc=True),
        )

    # Tags

    def list_tags(self, user_id: str) -> List[Dict[str, Any]]:
        return self._select(
            "list_tags", lambda: self._client.table(TAGS).select("*").eq("user_id", user_id).order("name")
        )

    def get_tags(self, tag_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(tag_ids)
        if not ids:
            return []
        return self._select("get_tags", lambda: self._client.table(TAGS).select("*").in_("id", ids))

    def insert_tag(self, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._select("insert_tag", lambda: self._client.table(TAGS).insert(row))
        if not rows:
            raise BackendError("insert_tag returned no row")
        return rows[0]

    def delete_tag(self, tag_id: str) -> None:
        self._select("delete_tag", lambda: self._client.table(TAGS).delete().eq("id", tag_id))

    def list_document_tag_links(self, document_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(document_ids)
        if not ids:
            return []
        return self._select(
            "list_document_tag_links",
            lambda: self._client.table(DOCUMENT_TAGS).select("document_id, tag_id").in_("document_id", ids),
        )

    def replace_document_tags(self, document_id: str, tag_ids: List[str]) -> None:
        self._select(
            "remove_document_tags",
            lambda: self._client.table(DOCUMENT_TAGS).delete().eq("document_id", document_id),
        )
        if not tag_ids:
            return
        links = [{"document_id": document_id, "tag_id": tag_id} for tag_id in tag_ids]
        self._select("insert_document_tags", lambda: self._client.table(DOCUMENT_TAGS).insert(links))

    # Notes

    def list_notes(self, user_id: str) -> List[Dict[str, Any]]:
        return self._select(
            "list_notes",
            lambda: self._client.table(NOTES)
            .select("*, document:documents(*)")
            .eq("user_id", user_id)
            .order("created_at", desc=True),
        )

    def insert_note(self, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._select("insert_note", lambda: self._client.table(NOTES).insert(row))
        if not rows:
            raise BackendError("insert_note returned no row")
        return self._note_with_document(rows[0]["id"]) or rows[0]

    def update_note(self, note_id: str, user_id: str, content: str) -> Optional[Dict[str, Any]]:
        rows = self._select(
            "update_note",
            lambda: self._client.table(NOTES)
            .update({"content": content, "updated_at": utc_now_iso()})
            .eq("id", note_id)
            .eq("user_id", user_id),
        )
        if not rows:
            return None
        return self._note_with_document(note_id) or rows[0]

    def delete_note(self, note_id: str, user_id: str) -> None:
        self._select(
            "delete_note",
            lambda: self._client.table(NOTES).delete().eq("id", note_id).eq("user_id", user_id),
        )

    def _note_with_document(self, note_id: str) -> Optional[Dict[str, Any]]:
        return _first(self._select(
            "get_note",
            lambda: self._client.table(NOTES).select("*, document:documents(*)").eq("id", note_id).limit(1),
        ))

    # Users

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return _first(self._select(
            "get_user_profile", lambda: self._client.table(USERS).select("*").eq("id", user_id).limit(1)
        ))

    def update_user_role(self, user_id: str, role: str) -> Optional[Dict[str, Any]]:
        return _first(self._select(
            "update_user_role", lambda: self._client.table(USERS).update({"role": role}).eq("id", user_id)
        ))

    def delete_auth_user(self, user_id: str) -> None:
        self._call("delete_auth_user", lambda: self._client.auth.admin.delete_user(user_id))

    def exchange_code_for_session(self, code: str) -> Optional[str]:
        """Exchange an OAuth/magic-link code and return the signed-in user's id."""
        anon_key = self._anon_key or require_env("SUPABASE_ANON_KEY")
        client = create_client(self._url, anon_key, options=ClientOptions(persist_session=False))
        session = self._call("exchange_code_for_session", lambda: client.auth.exchange_code_for_session({"auth_code": code}))
        user = getattr(session, "user", None)
        return str(user.id) if user is not None else None

    # Object storage

    def _bucket(self):
        return self._client.storage.from_(storage_bucket())

    def upload_file(self, path: str, data: bytes, content_type: str) -> None:
        self._call(
            "upload_file",
            lambda: self._bucket().upload(path, data, {"content-type": content_type, "cache-control": "3600", "upsert": "false"}),
        )

    def download_file(self, path: str) -> bytes:
        return self._call("download_file", lambda: self._bucket().download(path))

    def remove_file(self, path: str) -> None:
        self._call("remove_file", lambda: self._bucket().remove([path]))

    def create_signed_url(self, path: str, expires_in: int = 3600) -> Optional[str]:
        data = self._call("create_signed_url", lambda: self._bucket().create_signed_url(path, expires_in))
        if not data:
            return None
        return data.get("signedURL") or data.get("signedUrl")


_backend: Optional[Any] = None
_backend_lock = threading.Lock()


def get_backend():
    """Return the process-wide backend client, creating it on first use."""
    global _backend
    if _backend is None:
        with _backend_lock:
            if _backend is None:
                _backend = SupabaseBackend(
                    url=require_env("SUPABASE_URL"),
                    service_role_key=require_env("SUPABASE_SERVICE_ROLE_KEY"),
                    anon_key=get_env("SUPABASE_ANON_KEY"),
                )
    return _backend


def set_backend(backend) -> None:
    """Install a specific backend implementation (used by tests and scripts)."""
    global _backend
    with _backend_lock:
        _backend = backend
