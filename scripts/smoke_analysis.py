#!/usr/bin/env python3
import argparse
import json
import sys
import time
import uuid
from pathlib import Path

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pitch_fork.backend.constants import REPORTS_BUCKET  # noqa: E402
from pitch_fork.backend.object_store import build_object_store  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="End-to-end check: deck upload, screening, one analysis report.")
    parser.add_argument("--deck", required=True, help="Path to a local PDF or PPTX pitch deck.")
    parser.add_argument("--api-base", default="http://127.0.0.1:8000", help="Backend base URL.")
    parser.add_argument("--analysis-type", default="team", help="Analysis type to run.")
    parser.add_argument("--timeout-seconds", type=int, default=300, help="Polling timeout.")
    args = parser.parse_args()

    deck_path = Path(args.deck).expanduser().resolve()
    if not deck_path.exists():
        raise FileNotFoundError(f"Deck file not found: {deck_path}")

    email = f"smoke-{uuid.uuid4().hex[:8]}@example.com"
    with httpx.Client(base_url=args.api_base, timeout=120.0, trust_env=False) as client:
        signup_resp = client.post(
            "/api/auth/signup",
            json={"email": email, "password": "smoke-pass-1", "confirm_password": "smoke-pass-1"},
        )
        signup_resp.raise_for_status()
        client.headers["Authorization"] = f"Bearer {signup_resp.json()['access_token']}"

        client.put(
            "/api/investor/preferences",
            json={"focus_areas": "B2B software", "investment_criteria_doc": "Seed stage, recurring revenue."},
        ).raise_for_status()

        company_resp = client.post("/api/companies", json={"name": f"Smoke Co {uuid.uuid4().hex[:6]}"})
        company_resp.raise_for_status()
        company_id = company_resp.json()["company"]["id"]
        print(f"company: {company_id}")

        with deck_path.open("rb") as deck_file:
            files = {"files": (deck_path.name, deck_file, "application/octet-stream")}
            client.post(f"/api/companies/{company_id}/documents", files=files).raise_for_status()

        screening = client.post("/api/screenings", json={"company_id": company_id})
        screening.raise_for_status()
        print(f"screening: {json.dumps(screening.json(), indent=2)}")

        job_resp = client.post(
            "/api/analyses",
            json={"company_id": company_id, "analysis_type": args.analysis_type},
        )
        job_resp.raise_for_status()
        job_id = job_resp.json()["job_id"]
        print(f"analysis job: {job_id}")

        started = time.time()
        final_payload = None
        while time.time() - started < args.timeout_seconds:
            poll_resp = client.get(f"/api/jobs/{job_id}")
            poll_resp.raise_for_status()
            payload = poll_resp.json()
            if payload.get("status") in {"done", "failed"}:
                final_payload = payload
                break
            time.sleep(2)

    if not final_payload:
        raise TimeoutError(f"Timed out waiting for analysis job: {job_id}")
    if final_payload.get("status") != "done":
        raise RuntimeError(f"Analysis failed: {final_payload.get('error')}")

    report = final_payload["result"]["report"]
    print(f"report: {report['file_path']}")

    object_store = build_object_store()
    if object_store.exists(REPORTS_BUCKET, report["file_path"]):
        print("report object verified in storage.")
    else:
        print("report object not visible from this machine's storage settings.")


if __name__ == "__main__":
    main()
