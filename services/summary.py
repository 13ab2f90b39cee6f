import logging
from typing import Any, Dict, Tuple

from models.document import Document, SummaryResult
from services.backend import BackendError
from services.extraction import extract_text, is_placeholder_text
from utils.errors import NotFound, UpstreamError, ValidationFailed
from utils.logging_config import hash_text

logger = logging.getLogger("services.summary")

NO_CONTENT_MESSAGE = "Document has no parsed text content. Please ensure the document has been processed."


class NoContent(ValidationFailed):
    pass


class SummaryService:
    def __init__(self, backend, llm):
        self.backend = backend
        self.llm = llm

    def _load(self, document_id: str) -> Document:
        row = self.backend.get_document(document_id)
        if not row:
            raise NotFound("Document not found")
        return Document.model_validate(row)

    def _persist(self, document_id: str, result: Dict[str, Any]) -> None:
        self.backend.update_document(document_id, {
            "title": result["title"],
            "summary": result["summary"],
            "key_points": result["keyPoints"],
        })

    def generate_summary(self, document_id: str) -> SummaryResult:
        """Return the stored summary, generating and saving one on first use."""
        document = self._load(document_id)
        if document.has_summary():
            return SummaryResult(
                title=document.title,
                summary=document.summary,
                keyPoints=document.key_points,
                cached=True,
            )
        if not document.has_text():
            raise NoContent(NO_CONTENT_MESSAGE)

        logger.info("summary_generating", extra={"doc_id": document_id, "text_chars": len(document.parsed_text)})
        result = self.llm.generate_document_summary(document.parsed_text, document.original_filename)
        try:
            self._persist(document_id, result)
        except BackendError:
            # The caller still gets the summary; it will be generated again next time
            logger.error("summary_persist_failed", extra={"doc_id": document_id})
        return SummaryResult(**result, cached=False)

    def regenerate_summary(self, document_id: str) -> SummaryResult:
        """Force a new summary, re-extracting the file first when the stored text looks like a placeholder."""
        document = self._load(document_id)
        if not document.has_text():
            raise NoContent(NO_CONTENT_MESSAGE)

        text = document.parsed_text
        if is_placeholder_text(text):
            text = self._reextract(document) or text

        logger.info("summary_regenerating", extra={"doc_id": document_id, "text_chars": len(text)})
        result = self.llm.generate_document_summary(text, document.original_filename)
        try:
            self._persist(document_id, result)
        except BackendError as exc:
            raise UpstreamError("Failed to save summary to database") from exc
        return SummaryResult(**result, cached=False)

    def _reextract(self, document: Document) -> str:
        logger.info("placeholder_text_detected", extra={"doc_id": document.id, "mime": document.file_type})
        try:
            extracted = extract_text(self.backend.download_file(document.storage_path), document.file_type)
        except Exception:
            # Keep the stored text if the file cannot be read or parsed
            logger.warning("reextract_failed", extra={"doc_id": document.id}, exc_info=True)
            return ""
        if extracted is None:
            logger.warning("reextract_unsupported_type", extra={"doc_id": document.id, "mime": document.file_type})
            return ""
        if not extracted.strip():
            return ""
        try:
            self.backend.update_document(document.id, {"parsed_text": extracted})
        except BackendError:
            logger.warning("reextract_persist_failed", extra={"doc_id": document.id})
        logger.info("reextract_completed", extra={"doc_id": document.id, "text_chars": len(extracted)})
        return extracted

    def clear_summary(self, document_id: str) -> None:
        self.backend.update_document(document_id, {"title": None, "summary": None, "key_points": None})

    def generate_chat_response(self, document_id: str, message: str) -> Tuple[str, str]:
        message = message.strip()
        if not message:
            raise ValidationFailed("Message is required and must be a non-empty string")
        document = self._load(document_id)
        if not document.has_text():
            raise NoContent("Document has no parsed text content. Please ensure the document has been processed before chatting.")

        title = document.display_title
        logger.info(
            "chat_generating",
            extra={"doc_id": document_id, "message_hash": hash_text(message), "text_chars": len(document.parsed_text)},
        )
        response = self.llm.generate_chatbot_response(message, title, document.parsed_text)
        return response, title

    def chat_context(self, document_id: str) -> Dict[str, Any]:
        document = self._load(document_id)
        return {
            "id": document.id,
            "title": document.display_title,
            "canChat": document.status == "ready" and document.has_text(),
            "status": document.status.value,
            "hasContent": document.has_text(),
        }
