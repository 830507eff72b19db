import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .companies import get_company
from .constants import DOCUMENTS_BUCKET, MAX_UPLOAD_BYTES
from .deck_extractor import ExtractedText, extract_document_text, sanitize_filename, validate_document_extension
from .object_store import ObjectStore
from .storage import NotFoundError, RecordStore


logger = logging.getLogger("uvicorn.error")


@dataclass
class IncomingFile:
    filename: str
    content_type: Optional[str]
    data: bytes
    document_name: Optional[str] = None
    description: Optional[str] = None


def default_document_name(filename: str) -> str:
    return Path(filename or "").stem or "document"


def remove_objects(object_store: ObjectStore, bucket: str, paths: List[str]) -> None:
    for path in paths:
        try:
            object_store.delete(bucket, path)
        except Exception:
            logger.warning("Failed deleting object during cleanup: %s/%s", bucket, path, exc_info=True)


def _validate_batch(company_id: str, files: List[IncomingFile]) -> List[str]:
    if not files:
        raise ValueError("Please select at least one file to upload.")

    paths: List[str] = []
    for incoming in files:
        validate_document_extension(incoming.filename)
        if not incoming.data:
            raise ValueError(f"{incoming.filename} is empty.")
        if len(incoming.data) > MAX_UPLOAD_BYTES:
            raise ValueError(f"{incoming.filename} is too large. Max size is {MAX_UPLOAD_BYTES} bytes.")
        path = f"{company_id}/{sanitize_filename(incoming.filename)}"
        if path in paths:
            raise ValueError(f"{incoming.filename} was selected more than once.")
        paths.append(path)
    return paths


def upload_documents(
    record_store: RecordStore,
    object_store: ObjectStore,
    company_id: str,
    files: List[IncomingFile],
) -> List[dict]:
    """Upload every file, then record them in one batch.

    Objects written by a batch that fails part-way are deleted again, so a
    failed upload never leaves files without a documents row.
    """
    if not company_id:
        raise ValueError("Please select a company before uploading files.")
    get_company(record_store, company_id)
    paths = _validate_batch(company_id, files)

    uploaded: List[str] = []
    try:
        for incoming, path in zip(files, paths):
            object_store.upload_bytes(
                DOCUMENTS_BUCKET,
                path,
                incoming.data,
                incoming.content_type or "application/octet-stream",
                upsert=False,
            )
            uploaded.append(path)
    except Exception:
        remove_objects(object_store, DOCUMENTS_BUCKET, uploaded)
        raise

    rows = [
        {
            "company_id": company_id,
            "filename": Path(path).name,
            "document_name": (incoming.document_name or "").strip() or default_document_name(incoming.filename),
            "description": (incoming.description or "").strip() or None,
            "path": path,
            "size_bytes": len(incoming.data),
            "content_type": incoming.content_type,
        }
        for incoming, path in zip(files, paths)
    ]
    try:
        documents = record_store.insert_many("documents", rows)
    except Exception:
        remove_objects(object_store, DOCUMENTS_BUCKET, uploaded)
        raise

    logger.info("company_id=%s documents_uploaded count=%s", company_id, len(documents))
    return documents


def list_documents(record_store: RecordStore, company_id: str) -> List[dict]:
    get_company(record_store, company_id)
    return record_store.find("documents", filters={"company_id": company_id}, order_by="date_added", descending=True)


def latest_document(record_store: RecordStore, company_id: str) -> Optional[dict]:
    return record_store.find_one(
        "documents",
        filters={"company_id": company_id},
        order_by="date_added",
        descending=True,
    )


def get_document(record_store: RecordStore, document_id: str) -> dict:
    document = record_store.get("documents", document_id)
    if document is None:
        raise NotFoundError("Document not found.")
    return document


def update_document(
    record_store: RecordStore,
    document_id: str,
    *,
    document_name: Optional[str] = None,
    description: Optional[str] = None,
) -> dict:
    get_document(record_store, document_id)
    changes = {}
    if document_name is not None:
        if not document_name.strip():
            raise ValueError("Document name cannot be empty.")
        changes["document_name"] = document_name.strip()
    if description is not None:
        changes["description"] = description.strip() or None
    return record_store.update("documents", document_id, changes)


def delete_document(record_store: RecordStore, object_store: ObjectStore, document_id: str) -> None:
    document = get_document(record_store, document_id)
    object_store.delete(DOCUMENTS_BUCKET, document["path"])
    record_store.delete("documents", document_id)
    logger.info("document_id=%s document_deleted path=%s", document_id, document["path"])


def load_document_text(object_store: ObjectStore, document: dict) -> Optional[ExtractedText]:
    data = object_store.download_bytes(DOCUMENTS_BUCKET, document["path"])
    return extract_document_text(document["filename"], data)
