"""
Simulated document processing.

Stands in for a real OCR/extraction pipeline: after a short delay the job
moves to `processing`, then completes with a job-type-specific result. Plain
text and PDF files get their real text extracted; everything else receives
mock content.
"""
import logging
import time
from typing import Any, Dict

from .celery_app import celery_app
from models.document import DocumentStatus, JobStatus, JobType, TEXT_JOB_TYPES, Document
from services.backend import BackendError, get_backend, utc_now_iso
from services.extraction import PDF_MIME, TEXT_MIME, extract_pdf, extract_plain_text
from utils.config import get_float

logger = logging.getLogger("tasks.processing")


def start_delay_seconds() -> float:
	return get_float("PROCESSING_START_DELAY_SECONDS", 2.0)


def step_delay_seconds() -> float:
	return get_float("PROCESSING_STEP_DELAY_SECONDS", 3.0)


def build_job_result(backend, document: Document, job_type: JobType) -> Dict[str, Any]:
	if job_type == JobType.TEXT_EXTRACTION and document.file_type == TEXT_MIME:
		text = extract_plain_text(backend.download_file(document.storage_path))
		return {"text": text, "wordCount": len(text.split()), "language": "en"}
	if job_type == JobType.OCR and document.file_type == PDF_MIME:
		text, pages = extract_pdf(backend.download_file(document.storage_path))
		return {"text": text, "confidence": 0.95, "pages": pages}
	if job_type == JobType.TRANSCRIPTION:
		return {
			"transcript": f"Audio/video transcription not implemented yet for {document.original_filename}",
			"duration": 120,
			"language": "en",
		}
	if job_type == JobType.THUMBNAIL:
		return {"thumbnailUrl": "/placeholder-thumbnail.jpg", "width": 200, "height": 260}
	return {
		"text": f"Content extraction not implemented for {document.file_type} with job type {job_type.value}",
		"error": "Unsupported file type or job type combination",
	}


def parsed_text_from_result(job_type: JobType, result: Dict[str, Any]) -> str:
	if job_type == JobType.TRANSCRIPTION:
		return result.get("transcript") or ""
	return result.get("text") or ""


def run_job(backend, job_id: str, document_id: str, job_type: JobType) -> bool:
	job_row = backend.get_job(job_id)
	if job_row is None:
		logger.warning("job_missing", extra={"job_id": job_id, "doc_id": document_id})
		return False
	if job_row.get("status") != JobStatus.PENDING.value:
		# redelivered task; the first delivery already owns this job
		logger.info("job_already_started", extra={"job_id": job_id, "job_status": job_row.get("status")})
		return False

	try:
		backend.update_job(job_id, {
			"status": JobStatus.PROCESSING.value,
			"started_at": utc_now_iso(),
			"progress": 50,
		})
		logger.info("job_processing", extra={"job_id": job_id, "doc_id": document_id, "job_type": job_type.value})

		time.sleep(step_delay_seconds())

		row = backend.get_document(document_id)
		if row is None:
			raise LookupError(f"Document {document_id} not found")
		document = Document.model_validate(row)
		result = build_job_result(backend, document, job_type)

		backend.update_job(job_id, {
			"status": JobStatus.COMPLETED.value,
			"completed_at": utc_now_iso(),
			"progress": 100,
			"result": result,
		})

		# Re-read so results of sibling jobs that finished meanwhile are kept
		latest = Document.model_validate(backend.get_document(document_id) or row)
		update: Dict[str, Any] = {
			"status": DocumentStatus.READY.value,
			"metadata": {**latest.metadata, job_type.value: result},
		}
		if job_type in TEXT_JOB_TYPES:
			parsed_text = parsed_text_from_result(job_type, result)
			if parsed_text.strip():
				update["parsed_text"] = parsed_text
			else:
				logger.warning("job_no_text_extracted", extra={"job_id": job_id, "doc_id": document_id})
				update["parsed_text"] = f"Text extraction failed for {document.original_filename}. Please try re-uploading the file."
		backend.update_document(document_id, update)

		logger.info("job_completed", extra={"job_id": job_id, "doc_id": document_id, "job_type": job_type.value})
		return True
	except Exception as exc:
		logger.error("job_failed", extra={"job_id": job_id, "doc_id": document_id}, exc_info=True)
		_mark_failed(backend, job_id, document_id, str(exc) or "Processing failed")
		return False


def _mark_failed(backend, job_id: str, document_id: str, message: str) -> None:
	try:
		backend.update_job(job_id, {
			"status": JobStatus.FAILED.value,
			"completed_at": utc_now_iso(),
			"error_message": message,
		})
	except BackendError:
		logger.error("job_fail_status_not_saved", extra={"job_id": job_id, "doc_id": document_id})
	try:
		backend.update_document(document_id, {"status": DocumentStatus.FAILED.value})
	except BackendError:
		logger.error("document_fail_status_not_saved", extra={"job_id": job_id, "doc_id": document_id})


@celery_app.task(name="tasks.process_document_job")
def process_document_job(job_id, document_id, job_type):
	return run_job(get_backend(), job_id, document_id, JobType(job_type))
