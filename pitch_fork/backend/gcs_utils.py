import logging
import os
from datetime import timedelta
from typing import Optional

from google.api_core.exceptions import NotFound, PreconditionFailed
from google.cloud import storage

from .gcp_auth import get_gcp_credentials, get_project_id_hint


logger = logging.getLogger("uvicorn.error")
_storage_client: Optional[storage.Client] = None


def get_default_bucket() -> str:
    bucket = os.getenv("GCS_BUCKET", "").strip()
    if not bucket:
        raise RuntimeError("GCS_BUCKET is not set. It is required when STORAGE_BACKEND=gcs.")
    return bucket


def get_storage_client() -> storage.Client:
    global _storage_client
    if _storage_client is None:
        credentials = get_gcp_credentials()
        project = get_project_id_hint()
        if credentials is not None or project:
            _storage_client = storage.Client(credentials=credentials, project=project)
        else:
            _storage_client = storage.Client()
    return _storage_client


def normalize_blob_path(blob_path: str) -> str:
    return blob_path.lstrip("/")


def build_gs_uri(bucket: str, blob_path: str) -> str:
    return f"gs://{bucket}/{normalize_blob_path(blob_path)}"


def upload_bytes(
    bucket: str,
    blob_path: str,
    data: bytes,
    content_type: str,
    *,
    overwrite: bool = False,
) -> str:
    client = get_storage_client()
    clean_path = normalize_blob_path(blob_path)
    blob = client.bucket(bucket).blob(clean_path)
    try:
        if overwrite:
            blob.upload_from_string(data, content_type=content_type)
        else:
            # Generation 0 only matches when no live object exists at this path.
            blob.upload_from_string(data, content_type=content_type, if_generation_match=0)
    except PreconditionFailed as exc:
        raise FileExistsError(f"Object already exists: {build_gs_uri(bucket, clean_path)}") from exc
    return build_gs_uri(bucket, clean_path)


def download_bytes(bucket: str, blob_path: str) -> bytes:
    client = get_storage_client()
    clean_path = normalize_blob_path(blob_path)
    blob = client.bucket(bucket).blob(clean_path)
    try:
        return blob.download_as_bytes()
    except NotFound as exc:
        raise FileNotFoundError(f"GCS object not found: gs://{bucket}/{clean_path}") from exc


def blob_exists(bucket: str, blob_path: str) -> bool:
    client = get_storage_client()
    return client.bucket(bucket).blob(normalize_blob_path(blob_path)).exists()


def list_blobs(prefix: str, bucket: Optional[str] = None) -> list[str]:
    bucket_name = bucket or get_default_bucket()
    client = get_storage_client()
    clean_prefix = normalize_blob_path(prefix)
    return sorted(
        blob.name
        for blob in client.list_blobs(bucket_name, prefix=clean_prefix)
        if blob.name and not blob.name.endswith("/")
    )


def delete_blob(bucket: str, blob_path: str) -> None:
    client = get_storage_client()
    clean_path = normalize_blob_path(blob_path)
    try:
        client.bucket(bucket).blob(clean_path).delete()
    except NotFound:
        return


def generate_signed_download_url(bucket: str, blob_path: str, expires_in_seconds: int) -> str:
    """V4 signed GET URL; requires service account credentials with a private key."""
    client = get_storage_client()
    blob = client.bucket(bucket).blob(normalize_blob_path(blob_path))
    return blob.generate_signed_url(
        version="v4",
        expiration=timedelta(seconds=expires_in_seconds),
        method="GET",
        credentials=get_gcp_credentials(),
    )
