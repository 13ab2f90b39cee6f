"""
Document lifecycle: creation, upload progress, processing fan-out, reprocessing,
deletion and tagging.

Status transitions driven from here:
    uploading -> uploaded            (binary upload reached 100 %)
    uploaded  -> processing          (at least one job enqueued)
    any       -> failed              (enqueue or storage failure)
    ready     -> processing          (reprocess; clears text and AI fields)
processing -> ready is applied by the processing task.
"""
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from models.document import (
    Document,
    DocumentStatus,
    DocumentWithTags,
    JobStatus,
    JobType,
    ProcessingJob,
    Tag,
    TEXT_JOB_TYPES,
)
from services.backend import BackendError
from tasks.processing import process_document_job, start_delay_seconds
from utils.config import get_int
from utils.errors import Conflict, NotFound, UpstreamError, ValidationFailed

logger = logging.getLogger("services.documents")

SUPPORTED_FILE_TYPES = {
    "application/pdf": "PDF",
    "application/vnd.ms-powerpoint": "PowerPoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "PowerPoint",
    "application/msword": "Word",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "Word",
    "text/plain": "Text",
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/tiff": "TIFF",
    "video/mp4": "MP4",
    "video/quicktime": "MOV",
    "video/x-msvideo": "AVI",
    "audio/mpeg": "MP3",
    "audio/wav": "WAV",
    "application/zip": "ZIP",
}

SIGNED_URL_TTL_SECONDS = 3600


def _get_max_upload_mb() -> int:
    return get_int("MAX_UPLOAD_MB", 1024)


def validate_upload(filename: str, mime_type: Optional[str], size_bytes: int) -> None:
    limit_mb = _get_max_upload_mb()
    if size_bytes > limit_mb * 1024 * 1024:
        logger.warning("upload_too_large", extra={"file_name": filename, "size_bytes": size_bytes})
        raise ValidationFailed(f"File size exceeds {limit_mb}MB limit")
    if mime_type not in SUPPORTED_FILE_TYPES:
        logger.warning("upload_unsupported_mime", extra={"file_name": filename, "mime": mime_type})
        labels = ", ".join(sorted(set(SUPPORTED_FILE_TYPES.values())))
        raise ValidationFailed(f"File type not supported. Supported types: {labels}")


def generate_storage_path(user_id: str, original_filename: str) -> str:
    safe_name = re.sub(r"[^a-zA-Z0-9.-]", "_", original_filename)[:100]
    return f"{user_id}/{int(time.time() * 1000)}_{safe_name}"


def select_job_types(mime_type: str) -> List[JobType]:
    """Jobs to run for a MIME type; several categories may apply to one file."""
    mime = (mime_type or "").lower()
    jobs: List[JobType] = []
    if "pdf" in mime or "image" in mime:
        jobs.append(JobType.OCR)
    if "word" in mime or "powerpoint" in mime or "text" in mime:
        jobs.append(JobType.TEXT_EXTRACTION)
    if "video" in mime or "audio" in mime:
        jobs.append(JobType.TRANSCRIPTION)
    if "image" in mime or "pdf" in mime or "video" in mime:
        jobs.append(JobType.THUMBNAIL)
    return jobs


def reprocess_job_type(mime_type: str) -> JobType:
    for job_type in select_job_types(mime_type):
        if job_type in TEXT_JOB_TYPES:
            return job_type
    return JobType.TEXT_EXTRACTION


class DocumentManager:
    def __init__(self, backend):
        self.backend = backend

    def get(self, document_id: str) -> Optional[Document]:
        row = self.backend.get_document(document_id)
        return Document.model_validate(row) if row else None

    def require(self, document_id: str) -> Document:
        document = self.get(document_id)
        if document is None:
            raise NotFound("Document not found")
        return document

    def create_document(
        self,
        owner_id: str,
        filename: str,
        original_filename: str,
        mime_type: str,
        size: int,
        storage_path: str,
    ) -> Optional[Document]:
        """Insert a new `uploading` document; None means the upload must be aborted."""
        try:
            row = self.backend.insert_document({
                "user_id": owner_id,
                "filename": filename,
                "original_filename": original_filename,
                "file_type": mime_type,
                "file_size": size,
                "storage_path": storage_path,
                "status": DocumentStatus.UPLOADING.value,
                "upload_progress": 0,
                "metadata": {},
            })
        except BackendError:
            logger.error("document_create_failed", extra={"owner_id": owner_id, "file_name": original_filename})
            return None
        document = Document.model_validate(row)
        logger.info("document_created", extra={"doc_id": document.id, "owner_id": owner_id, "mime": mime_type, "size_bytes": size})
        return document

    def update_progress(self, document_id: str, progress: int, status: Optional[DocumentStatus] = None) -> bool:
        fields: Dict[str, Any] = {"upload_progress": progress}
        if status is not None:
            fields["status"] = DocumentStatus(status).value
        try:
            return self.backend.update_document(document_id, fields) is not None
        except BackendError:
            return False

    def delete_document(self, document_id: str) -> bool:
        document = self.get(document_id)
        if document is None:
            return False
        try:
            self.backend.remove_file(document.storage_path)
        except BackendError:
            # The row is removed anyway; the blob may be left orphaned
            logger.warning("document_blob_delete_failed", extra={"doc_id": document_id, "storage_path": document.storage_path})
        try:
            self.backend.delete_document(document_id)
        except BackendError:
            logger.error("document_row_delete_failed", extra={"doc_id": document_id})
            return False
        logger.info("document_deleted", extra={"doc_id": document_id})
        return True

    def enqueue_job(self, document: Document, job_type: JobType) -> ProcessingJob:
        job = ProcessingJob.model_validate(self.backend.insert_job({
            "document_id": document.id,
            "job_type": JobType(job_type).value,
            "status": JobStatus.PENDING.value,
            "progress": 0,
            "result": {},
        }))
        try:
            process_document_job.apply_async(
                args=[job.id, document.id, job.job_type.value],
                countdown=start_delay_seconds(),
            )
        except Exception as exc:  # broker errors come from several kombu/redis classes
            logger.error("job_schedule_failed", extra={"job_id": job.id, "doc_id": document.id}, exc_info=True)
            self.backend.update_job(job.id, {"status": JobStatus.FAILED.value, "error_message": f"Failed to schedule job: {exc}"})
            raise UpstreamError("Failed to schedule processing job") from exc
        logger.info("job_enqueued", extra={"job_id": job.id, "doc_id": document.id, "job_type": job.job_type.value})
        return job

    def start_processing(self, document: Document) -> List[ProcessingJob]:
        job_types = select_job_types(document.file_type)
        if not job_types:
            logger.info("document_no_jobs", extra={"doc_id": document.id, "mime": document.file_type})
            return []
        # Mark processing first so a fast job completion is not overwritten
        self.backend.update_document(document.id, {"status": DocumentStatus.PROCESSING.value})
        jobs: List[ProcessingJob] = []
        try:
            for job_type in job_types:
                jobs.append(self.enqueue_job(document, job_type))
        except UpstreamError:
            self.backend.update_document(document.id, {"status": DocumentStatus.FAILED.value})
            raise
        return jobs

    def complete_upload(self, document_id: str) -> Tuple[Document, List[ProcessingJob]]:
        document = self.require(document_id)
        row = self.backend.update_document(document_id, {
            "upload_progress": 100,
            "status": DocumentStatus.UPLOADED.value,
        })
        if row is None:
            raise NotFound("Document not found")
        jobs = self.start_processing(Document.model_validate(row))
        return self.get(document_id) or document, jobs

    def upload_document(self, user_id: str, original_filename: str, mime_type: str, content: bytes) -> Tuple[Document, List[ProcessingJob]]:
        validate_upload(original_filename, mime_type, len(content))
        storage_path = generate_storage_path(user_id, original_filename)
        document = self.create_document(
            owner_id=user_id,
            filename=storage_path.split("/")[-1],
            original_filename=original_filename,
            mime_type=mime_type,
            size=len(content),
            storage_path=storage_path,
        )
        if document is None:
            raise UpstreamError("Failed to create document record")
        try:
            self.backend.upload_file(storage_path, content, mime_type)
        except BackendError as exc:
            self.backend.update_document(document.id, {"status": DocumentStatus.FAILED.value})
            raise UpstreamError(f"Upload failed: {exc.message}") from exc
        return self.complete_upload(document.id)

    def reprocess(self, document_id: str) -> Tuple[Document, JobType]:
        document = self.require(document_id)
        expected = document.updated_at.isoformat() if document.updated_at else None
        row = self.backend.update_document(
            document_id,
            {
                "status": DocumentStatus.PROCESSING.value,
                "title": None,
                "summary": None,
                "key_points": None,
                "parsed_text": None,
            },
            expected_updated_at=expected,
        )
        if row is None:
            logger.warning("reprocess_conflict", extra={"doc_id": document_id})
            raise Conflict("Document was modified concurrently; please retry")
        job_type = reprocess_job_type(document.file_type)
        try:
            self.enqueue_job(document, job_type)
        except UpstreamError:
            self.backend.update_document(document_id, {"status": DocumentStatus.FAILED.value})
            raise UpstreamError("Failed to start reprocessing")
        logger.info("document_reprocess_started", extra={"doc_id": document_id, "job_type": job_type.value})
        return Document.model_validate(row), job_type

    def list_jobs(self, document_id: str) -> List[ProcessingJob]:
        return [ProcessingJob.model_validate(row) for row in self.backend.list_jobs(document_id)]

    def get_download_url(self, document_id: str) -> str:
        document = self.require(document_id)
        url = self.backend.create_signed_url(document.storage_path, SIGNED_URL_TTL_SECONDS)
        if not url:
            raise UpstreamError("Failed to create download URL")
        return url

    # Tags

    def list_user_documents(self, user_id: str) -> List[DocumentWithTags]:
        documents = self.backend.list_documents(user_id)
        if not documents:
            return []
        links = self.backend.list_document_tag_links(row["id"] for row in documents)
        tags = {row["id"]: Tag.model_validate(row) for row in self.backend.get_tags({link["tag_id"] for link in links})}
        by_document: Dict[str, List[Tag]] = {}
        for link in links:
            tag = tags.get(link["tag_id"])
            if tag is not None:
                by_document.setdefault(link["document_id"], []).append(tag)
        return [DocumentWithTags(**row, tags=by_document.get(row["id"], [])) for row in documents]

    def list_tags(self, user_id: str) -> List[Tag]:
        return [Tag.model_validate(row) for row in self.backend.list_tags(user_id)]

    def create_tag(self, user_id: str, name: str) -> Tag:
        name = name.strip()
        if not name:
            raise ValidationFailed("Tag name is required")
        # Not atomic: two concurrent requests can both pass this check
        if any(tag.name.lower() == name.lower() for tag in self.list_tags(user_id)):
            raise Conflict(f"Tag '{name}' already exists")
        return Tag.model_validate(self.backend.insert_tag({"user_id": user_id, "name": name}))

    def delete_tag(self, tag_id: str) -> None:
        self.backend.delete_tag(tag_id)

    def assign_tags(self, document_id: str, tag_ids: List[str]) -> None:
        self.backend.replace_document_tags(document_id, list(dict.fromkeys(tag_ids)))
