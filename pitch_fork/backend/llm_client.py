import json
import os
import re
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI


DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_MAX_RETRIES = 2
MAX_PROVIDER_ERROR_CHARS = 1200


def truncate(text: str, max_chars: int = MAX_PROVIDER_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError(
            "Missing OPENAI_API_KEY. Set it before requesting screenings or analyses "
            '(example: export OPENAI_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _base_url() -> Optional[str]:
    return os.getenv("OPENAI_BASE_URL", "").strip() or None


def model_name() -> str:
    return os.getenv("OPENAI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def _build_client() -> OpenAI:
    return OpenAI(
        base_url=_base_url(),
        api_key=_get_api_key(),
        timeout=float(os.getenv("OPENAI_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))),
        max_retries=int(os.getenv("OPENAI_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
    )


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def _status_message(exc: APIStatusError) -> str:
    return (getattr(exc, "message", "") or str(exc)).lower()


def _drop_unsupported_param(request_kwargs: Dict[str, Any], exc: APIStatusError) -> bool:
    """Adjust request_kwargs in place for a parameter the model rejected."""
    message = _status_message(exc)
    if "response_format" in request_kwargs and ("response_format" in message or "json_object" in message):
        request_kwargs.pop("response_format")
        return True
    if "temperature" in request_kwargs and "temperature" in message:
        request_kwargs.pop("temperature")
        return True
    if "max_tokens" in request_kwargs and "max_completion_tokens" in message:
        request_kwargs["max_completion_tokens"] = request_kwargs.pop("max_tokens")
        return True
    return False


def request_chat_completion(
    *,
    system_prompt: str,
    user_prompt: str,
    temperature: float = 0.3,
    max_tokens: int = 4000,
    response_format: Optional[Dict[str, Any]] = None,
) -> str:
    client = _build_client()
    request_kwargs: Dict[str, Any] = {
        "model": model_name(),
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if response_format is not None:
        request_kwargs["response_format"] = response_format

    response = None
    for _ in range(3):
        try:
            response = client.chat.completions.create(**request_kwargs)
            break
        except APIStatusError as exc:
            if exc.status_code == 400 and _drop_unsupported_param(request_kwargs, exc):
                continue
            provider_message = truncate(getattr(exc, "message", str(exc)))
            raise RuntimeError(f"LLM request failed ({exc.status_code}): {provider_message}") from exc
        except APITimeoutError as exc:
            raise RuntimeError("LLM request timed out.") from exc
        except APIConnectionError as exc:
            raise RuntimeError(f"Failed to connect to the LLM provider: {exc}") from exc
    if response is None:
        raise RuntimeError("LLM request kept failing on unsupported parameters.")

    choice = response.choices[0] if response.choices else None
    if choice is None:
        raise RuntimeError("LLM returned no choices.")
    content = _extract_content(choice.message.content)
    if not content:
        raise RuntimeError("LLM returned an empty response.")
    return content


def parse_json_object(raw_content: str) -> Dict[str, Any]:
    """Parse a JSON object, tolerating code fences or prose around it."""
    text = (raw_content or "").strip()
    text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Response did not contain a JSON object.")
        parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("JSON root must be an object.")
    return parsed


def build_repair_prompt(invalid_output: str) -> str:
    return (
        "Your previous output was invalid JSON. Return ONLY corrected valid JSON "
        "that matches the schema. Here is the invalid output:\n"
        f"<<<{invalid_output}>>>"
    )
