import json
import os

import httpx


def main() -> int:
    base_url = os.getenv("VERIFY_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
    print(f"Checking ingest gateway at {base_url}")
    with httpx.Client(base_url=base_url, timeout=10.0) as client:
        try:
            health = client.get("/health")
        except httpx.HTTPError as exc:
            print(f"[FAIL] Could not reach gateway: {exc}")
            return 1

        if health.status_code != 200:
            print(f"[FAIL] /health status={health.status_code}")
            return 1
        print(f"[OK] /health X-Ingest-App-Version={health.headers.get('X-Ingest-App-Version')}")

        version = client.get("/version")
        if version.status_code != 200:
            print(f"[FAIL] /version status={version.status_code}")
            return 2
        print(f"[OK] version payload: {json.dumps(version.json(), sort_keys=True)}")

        metrics = client.get("/metrics")
        if metrics.status_code != 200 or "ingest_chunks_uploaded_total" not in metrics.text:
            print(f"[FAIL] /metrics status={metrics.status_code} or ingest metrics missing")
            return 3
        print("[OK] /metrics exposes ingest counters.")

        # An empty submission must be rejected without reaching the ingestion endpoint.
        probe = client.post("/v1/batches", data={"job_id": "probe"}, headers={"Authorization": "Bearer probe"})
        if probe.status_code != 400 or probe.json().get("error_code") != "no-files":
            print(f"[FAIL] empty batch probe status={probe.status_code} body={probe.text}")
            return 4
        print("[OK] empty batch rejected with no-files.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
