#!/usr/bin/env python3
import os
import sys
import uuid
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pitch_fork.backend.constants import REPORTS_BUCKET
from pitch_fork.backend.object_store import build_object_store


def main() -> None:
    object_store = build_object_store()
    print(f"Backend: {object_store.storage_name} (STORAGE_BACKEND={os.getenv('STORAGE_BACKEND', 'local')})")

    object_path = f"diag/{uuid.uuid4().hex}/test.txt"
    payload = f"storage-diag-{uuid.uuid4().hex}"

    stored = object_store.upload_bytes(REPORTS_BUCKET, object_path, payload.encode("utf-8"), "text/plain")
    print(f"Uploaded: {stored}")

    try:
        object_store.upload_bytes(REPORTS_BUCKET, object_path, b"overwrite", "text/plain")
    except FileExistsError:
        print("Second upload without upsert rejected as expected.")
    else:
        raise RuntimeError("Upload without upsert overwrote an existing object.")

    roundtrip = object_store.download_bytes(REPORTS_BUCKET, object_path).decode("utf-8")
    print(f"Downloaded text: {roundtrip}")
    if roundtrip != payload:
        raise RuntimeError("Storage roundtrip mismatch.")

    print(f"Signed URL: {object_store.create_signed_url(REPORTS_BUCKET, object_path, 60)}")

    object_store.delete(REPORTS_BUCKET, object_path)
    if object_store.exists(REPORTS_BUCKET, object_path):
        raise RuntimeError("Object still present after delete.")
    print("Storage diagnostics passed.")


if __name__ == "__main__":
    main()
