import base64
import binascii
import json
import os
from functools import lru_cache
from typing import Optional, Tuple

from google.oauth2 import service_account


CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


def _load_json_object(raw_json: str, source: str) -> dict:
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"{source} does not contain valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise RuntimeError(f"{source} must contain a JSON object.")
    return parsed


def _service_account_from_env() -> Tuple[Optional[dict], Optional[str]]:
    """Return (service account info, key file path); at most one is set."""
    encoded = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_B64", "").strip()
    if encoded:
        padded = encoded + "=" * ((-len(encoded)) % 4)
        try:
            decoded = base64.b64decode(padded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise RuntimeError("GOOGLE_APPLICATION_CREDENTIALS_B64 is not valid base64.") from exc
        return _load_json_object(decoded, "GOOGLE_APPLICATION_CREDENTIALS_B64"), None

    inline = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON", "").strip()
    if inline:
        return _load_json_object(inline, "GOOGLE_APPLICATION_CREDENTIALS_JSON"), None

    key_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "").strip()
    if key_path:
        if not os.path.exists(key_path):
            raise RuntimeError(f"GOOGLE_APPLICATION_CREDENTIALS points to a missing file: {key_path}")
        return None, key_path

    return None, None


@lru_cache(maxsize=1)
def get_gcp_credentials() -> Optional[service_account.Credentials]:
    """Service account credentials, or None to fall back to ambient ADC.

    Signed report URLs need a private key, so ambient credentials only work
    for plain reads and writes.
    """
    info, key_path = _service_account_from_env()
    if info is not None:
        return service_account.Credentials.from_service_account_info(info, scopes=[CLOUD_PLATFORM_SCOPE])
    if key_path is not None:
        return service_account.Credentials.from_service_account_file(key_path, scopes=[CLOUD_PLATFORM_SCOPE])
    return None


def get_project_id_hint() -> Optional[str]:
    explicit = os.getenv("GCP_PROJECT_ID", "").strip()
    if explicit:
        return explicit
    credentials = get_gcp_credentials()
    return getattr(credentials, "project_id", None) if credentials is not None else None
