from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from models.document import (
	AssignTagsRequest,
	ChatRequest,
	CreateDocumentRequest,
	FixParsedTextRequest,
	ProcessRequest,
	ProgressRequest,
)
from services.backend import BackendError, get_backend
from services.documents import DocumentManager, generate_storage_path
from services.extraction import extract_text, sample_text
from services.llm import get_llm_client
from services.summary import SummaryService
from utils.errors import NotFound, UpstreamError, ValidationFailed
from typing import Optional
import logging

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("api.documents")


def get_manager(backend=Depends(get_backend)) -> DocumentManager:
	return DocumentManager(backend)


def get_summary_service(backend=Depends(get_backend), llm=Depends(get_llm_client)) -> SummaryService:
	return SummaryService(backend, llm)


def _check_id(document_id: str) -> str:
	document_id = document_id.strip()
	if not document_id:
		raise ValidationFailed("Document ID is required")
	return document_id


@router.get("")
def list_documents(
	user_id: str = Query(..., min_length=1),
	manager: DocumentManager = Depends(get_manager),
):
	documents = manager.list_user_documents(user_id)
	return {"success": True, "documents": documents}


@router.post("")
def create_document(body: CreateDocumentRequest, manager: DocumentManager = Depends(get_manager)):
	"""Register a document whose bytes the client uploads straight to storage."""
	storage_path = body.storage_path or generate_storage_path(body.user_id, body.original_filename)
	document = manager.create_document(
		owner_id=body.user_id,
		filename=storage_path.split("/")[-1],
		original_filename=body.original_filename,
		mime_type=body.file_type,
		size=body.file_size,
		storage_path=storage_path,
	)
	if document is None:
		raise UpstreamError("Failed to create document record")
	return {"success": True, "document": document}


@router.post("/upload")
async def upload_document(
	file: UploadFile = File(...),
	user_id: str = Form(..., min_length=1),
	manager: DocumentManager = Depends(get_manager),
):
	content = await file.read()
	document, jobs = manager.upload_document(user_id, file.filename or "upload", file.content_type, content)
	logger.info(
		"upload_accepted",
		extra={
			"doc_id": document.id,
			"file_name": file.filename,
			"mime": file.content_type,
			"size_bytes": len(content),
			"jobs": [job.job_type.value for job in jobs],
		},
	)
	return {"success": True, "document": document, "jobs": jobs}


@router.post("/process")
def process_document(body: ProcessRequest, manager: DocumentManager = Depends(get_manager)):
	document = manager.require(body.documentId)
	try:
		job = manager.enqueue_job(document, body.jobType)
	except BackendError as exc:
		raise UpstreamError("Failed to create processing job") from exc
	return {"success": True, "job": job}


@router.post("/fix-parsed-text")
def fix_parsed_text(
	body: Optional[FixParsedTextRequest] = None,
	backend=Depends(get_backend),
):
	"""Backfill parsed_text for ready documents that ended up without any."""
	try:
		documents = backend.list_ready_documents_without_text(body.documentId if body else None)
	except BackendError as exc:
		raise UpstreamError(f"Failed to fetch documents: {exc.message}") from exc

	logger.info("fix_parsed_text_candidates", extra={"count": len(documents)})
	if not documents:
		return {"success": True, "message": "No documents need fixing", "updatedCount": 0, "totalFound": 0}

	updated = 0
	errors = []
	for doc in documents:
		name = doc.get("original_filename") or doc.get("filename") or doc["id"]
		try:
			extracted = extract_text(backend.download_file(doc["storage_path"]), doc.get("file_type"))
			if extracted is None:
				extracted = f"Unsupported file type: {doc.get('file_type')}. Please convert to PDF or text format for AI processing."
		except BackendError as exc:
			extracted = f"Failed to download file: {exc.message}"
		except Exception as exc:
			logger.warning("fix_parsed_text_extract_failed", extra={"doc_id": doc["id"]}, exc_info=True)
			extracted = f"Text extraction failed: {exc}"
		if not extracted.strip():
			extracted = sample_text(name)

		try:
			backend.update_document(doc["id"], {"parsed_text": extracted})
			updated += 1
		except BackendError as exc:
			errors.append(f"Document {doc['id']}: {exc.message}")

	logger.info("fix_parsed_text_done", extra={"updated": updated, "total": len(documents)})
	response = {
		"success": True,
		"message": f"Successfully updated {updated} documents",
		"updatedCount": updated,
		"totalFound": len(documents),
	}
	if errors:
		response["errors"] = errors
	return response


@router.delete("/{document_id}")
def delete_document(document_id: str, manager: DocumentManager = Depends(get_manager)):
	document_id = _check_id(document_id)
	if manager.get(document_id) is None:
		raise NotFound("Document not found")
	if not manager.delete_document(document_id):
		raise UpstreamError("Failed to delete document")
	return {"success": True}


@router.patch("/{document_id}/progress")
def update_progress(document_id: str, body: ProgressRequest, manager: DocumentManager = Depends(get_manager)):
	if not manager.update_progress(_check_id(document_id), body.progress, body.status):
		raise UpstreamError("Failed to update document progress")
	return {"success": True}


@router.post("/{document_id}/uploaded")
def complete_upload(document_id: str, manager: DocumentManager = Depends(get_manager)):
	document, jobs = manager.complete_upload(_check_id(document_id))
	return {"success": True, "document": document, "jobs": jobs}


@router.get("/{document_id}/download-url")
def download_url(document_id: str, manager: DocumentManager = Depends(get_manager)):
	return {"success": True, "url": manager.get_download_url(_check_id(document_id))}


@router.put("/{document_id}/tags")
def assign_tags(document_id: str, body: AssignTagsRequest, manager: DocumentManager = Depends(get_manager)):
	manager.assign_tags(_check_id(document_id), body.tagIds)
	return {"success": True}


@router.post("/{document_id}/chat")
def chat(document_id: str, body: ChatRequest, service: SummaryService = Depends(get_summary_service)):
	response, title = service.generate_chat_response(_check_id(document_id), body.message)
	return {"success": True, "response": response, "documentTitle": title}


@router.get("/{document_id}/chat")
def chat_context(document_id: str, service: SummaryService = Depends(get_summary_service)):
	return {"success": True, "document": service.chat_context(_check_id(document_id))}


@router.get("/{document_id}/summary")
def get_summary(document_id: str, service: SummaryService = Depends(get_summary_service)):
	return {"success": True, "summary": service.generate_summary(_check_id(document_id))}


@router.post("/{document_id}/summary")
def regenerate_summary(document_id: str, service: SummaryService = Depends(get_summary_service)):
	return {"success": True, "summary": service.regenerate_summary(_check_id(document_id))}


@router.post("/{document_id}/clear-cache")
def clear_cache(document_id: str, service: SummaryService = Depends(get_summary_service)):
	try:
		service.clear_summary(_check_id(document_id))
	except BackendError as exc:
		raise UpstreamError("Failed to clear summary cache") from exc
	return {"success": True, "message": "Summary cache cleared successfully"}


@router.post("/{document_id}/reprocess")
def reprocess(document_id: str, manager: DocumentManager = Depends(get_manager)):
	document_id = _check_id(document_id)
	_, job_type = manager.reprocess(document_id)
	return {
		"success": True,
		"message": "Document reprocessing started",
		"documentId": document_id,
		"jobType": job_type.value,
	}


@router.get("/{document_id}/jobs")
def list_jobs(document_id: str, manager: DocumentManager = Depends(get_manager)):
	return {"success": True, "jobs": manager.list_jobs(_check_id(document_id))}


@router.get("/{document_id}/debug")
def debug_document(document_id: str, manager: DocumentManager = Depends(get_manager)):
	document = manager.require(_check_id(document_id))
	text = document.parsed_text
	return {
		"success": True,
		"document": {
			"id": document.id,
			"original_filename": document.original_filename,
			"file_type": document.file_type,
			"file_size": document.file_size,
			"storage_path": document.storage_path,
			"status": document.status.value,
			"upload_progress": document.upload_progress,
			"title": document.title,
			"summary": document.summary,
			"key_points": document.key_points,
			"parsed_text_length": len(text) if text else 0,
			"parsed_text_preview": text[:500] if text else None,
			"has_parsed_text": bool(text),
			"created_at": document.created_at,
			"updated_at": document.updated_at,
			"metadata": document.metadata,
		},
	}
