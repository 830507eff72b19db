import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import List, Protocol
from urllib.parse import quote

from . import gcs_utils
from .auth import decode_token, encode_token


logger = logging.getLogger("uvicorn.error")


def _clean_object_path(path: str) -> str:
    parts = [part for part in (path or "").replace("\\", "/").split("/") if part]
    if not parts or any(part in {".", ".."} for part in parts):
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)


class ObjectStore(Protocol):
    storage_name: str

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str, *, upsert: bool = False
    ) -> str:
        pass

    def download_bytes(self, bucket: str, path: str) -> bytes:
        pass

    def exists(self, bucket: str, path: str) -> bool:
        pass

    def list(self, bucket: str, prefix: str = "") -> List[str]:
        pass

    def delete(self, bucket: str, path: str) -> None:
        pass

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        pass


class LocalObjectStore:
    """Buckets as directories under a root; signed URLs point back at this API."""

    storage_name = "local"

    def __init__(self, root: Path, public_base_url: str = "") -> None:
        self._root = Path(root).resolve()
        self._public_base_url = public_base_url.rstrip("/")

    def _object_path(self, bucket: str, path: str) -> Path:
        return self._root / _clean_object_path(bucket) / _clean_object_path(path)

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str, *, upsert: bool = False
    ) -> str:
        del content_type
        target = self._object_path(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with target.open("wb" if upsert else "xb") as output:
                output.write(data)
        except FileExistsError as exc:
            raise FileExistsError(f"Object already exists: {bucket}/{path}") from exc
        return f"{bucket}/{_clean_object_path(path)}"

    def download_bytes(self, bucket: str, path: str) -> bytes:
        target = self._object_path(bucket, path)
        if not target.is_file():
            raise FileNotFoundError(f"Object not found: {bucket}/{path}")
        return target.read_bytes()

    def exists(self, bucket: str, path: str) -> bool:
        return self._object_path(bucket, path).is_file()

    def list(self, bucket: str, prefix: str = "") -> List[str]:
        bucket_root = self._root / _clean_object_path(bucket)
        if not bucket_root.exists():
            return []
        names = (
            candidate.relative_to(bucket_root).as_posix()
            for candidate in bucket_root.rglob("*")
            if candidate.is_file()
        )
        return sorted(name for name in names if name.startswith(prefix))

    def delete(self, bucket: str, path: str) -> None:
        target = self._object_path(bucket, path)
        if target.is_file():
            target.unlink()

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        clean_path = _clean_object_path(path)
        token = encode_token(
            {"scope": "object", "bucket": bucket, "path": clean_path},
            timedelta(seconds=expires_in),
        )
        return f"{self._public_base_url}/api/storage/{bucket}/{quote(clean_path)}?token={token}"

    def verify_signed_path(self, bucket: str, path: str, token: str) -> None:
        claims = decode_token(token)
        if (
            claims.get("scope") != "object"
            or claims.get("bucket") != bucket
            or claims.get("path") != _clean_object_path(path)
        ):
            raise PermissionError("Token does not grant access to this object.")


class GcsObjectStore:
    """Logical buckets become top-level prefixes inside one GCS bucket."""

    storage_name = "gcs"

    def __init__(self, gcs_bucket: str) -> None:
        self._gcs_bucket = gcs_bucket

    def _blob_path(self, bucket: str, path: str) -> str:
        return f"{_clean_object_path(bucket)}/{_clean_object_path(path)}"

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str, *, upsert: bool = False
    ) -> str:
        return gcs_utils.upload_bytes(
            self._gcs_bucket,
            self._blob_path(bucket, path),
            data,
            content_type,
            overwrite=upsert,
        )

    def download_bytes(self, bucket: str, path: str) -> bytes:
        return gcs_utils.download_bytes(self._gcs_bucket, self._blob_path(bucket, path))

    def exists(self, bucket: str, path: str) -> bool:
        return gcs_utils.blob_exists(self._gcs_bucket, self._blob_path(bucket, path))

    def list(self, bucket: str, prefix: str = "") -> List[str]:
        bucket_prefix = f"{_clean_object_path(bucket)}/"
        names = gcs_utils.list_blobs(bucket_prefix + prefix, bucket=self._gcs_bucket)
        return [name[len(bucket_prefix):] for name in names]

    def delete(self, bucket: str, path: str) -> None:
        gcs_utils.delete_blob(self._gcs_bucket, self._blob_path(bucket, path))

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        return gcs_utils.generate_signed_download_url(
            self._gcs_bucket,
            self._blob_path(bucket, path),
            expires_in,
        )


def build_object_store() -> ObjectStore:
    backend = os.getenv("STORAGE_BACKEND", "local").strip().lower() or "local"
    if backend == "gcs":
        return GcsObjectStore(gcs_utils.get_default_bucket())
    if backend != "local":
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")
    root = Path(os.getenv("LOCAL_STORAGE_DIR", "data/storage"))
    logger.info("object_store backend=local root=%s", root.resolve())
    return LocalObjectStore(root, public_base_url=os.getenv("PUBLIC_BASE_URL", ""))
