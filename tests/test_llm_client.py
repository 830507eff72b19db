import pytest

from pitch_fork.backend import llm_client


def test_parse_json_object_tolerates_fences_and_prose():
    assert llm_client.parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert llm_client.parse_json_object('Here it is: {"a": {"b": 2}} thanks') == {"a": {"b": 2}}


def test_parse_json_object_rejects_non_objects():
    with pytest.raises(ValueError):
        llm_client.parse_json_object("[1, 2]")
    with pytest.raises(ValueError):
        llm_client.parse_json_object("no json at all")


def test_truncate():
    assert llm_client.truncate("  short ") == "short"
    long_text = "x" * 2000
    assert len(llm_client.truncate(long_text)) == llm_client.MAX_PROVIDER_ERROR_CHARS
    assert llm_client.truncate(long_text).endswith("...")


def test_missing_api_key_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        llm_client.request_chat_completion(system_prompt="s", user_prompt="u")


def test_model_name_defaults(monkeypatch):
    monkeypatch.delenv("OPENAI_MODEL", raising=False)
    assert llm_client.model_name() == "gpt-4o"
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1-mini")
    assert llm_client.model_name() == "gpt-4.1-mini"
