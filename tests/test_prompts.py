from pitch_fork.backend.prompt_library import seed_default_prompts
from pitch_fork.backend.prompts.analysis import DEFAULT_PROMPTS


def test_default_prompts_are_seeded_once(client, investor_headers, app):
    names = {prompt["prompt_name"] for prompt in client.get("/api/prompts", headers=investor_headers).json()["prompts"]}
    assert names == set(DEFAULT_PROMPTS)
    assert seed_default_prompts(app.state.record_store) == 0


def test_prompt_crud(client, investor_headers):
    created = client.post(
        "/api/prompts",
        json={"prompt_name": "Custom", "prompt_detail": "Look at churn.", "preferred_llm": "GPT-4"},
        headers=investor_headers,
    )
    assert created.status_code == 200
    prompt_id = created.json()["id"]

    listed = client.get("/api/prompts", headers=investor_headers).json()["prompts"]
    assert listed[0]["id"] == prompt_id

    updated = client.patch(f"/api/prompts/{prompt_id}", json={"prompt_detail": "Look at NRR."}, headers=investor_headers)
    assert updated.json()["prompt_detail"] == "Look at NRR."
    assert updated.json()["prompt_name"] == "Custom"

    assert client.delete(f"/api/prompts/{prompt_id}", headers=investor_headers).status_code == 200
    assert client.delete(f"/api/prompts/{prompt_id}", headers=investor_headers).status_code == 404


def test_prompt_validation(client, investor_headers):
    missing = client.post("/api/prompts", json={"prompt_name": "X", "prompt_detail": "  "}, headers=investor_headers)
    assert missing.status_code == 400
    bad_llm = client.post(
        "/api/prompts",
        json={"prompt_name": "X", "prompt_detail": "Y", "preferred_llm": "Llama"},
        headers=investor_headers,
    )
    assert bad_llm.status_code == 400
