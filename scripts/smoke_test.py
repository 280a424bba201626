from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request


def request_json(
    *, url: str, token: str | None = None, payload: dict | None = None
) -> tuple[int, dict | list | None]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method="POST" if data else "GET")
    request.add_header("Accept", "application/json")
    if data:
        request.add_header("Content-Type", "application/json")
    if token:
        request.add_header("Authorization", f"Bearer {token}")
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            body = response.read().decode("utf-8")
            return response.status, json.loads(body) if body else None
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        try:
            return exc.code, json.loads(body)
        except json.JSONDecodeError:
            return exc.code, None


def request_text(*, url: str) -> tuple[int, str]:
    try:
        with urllib.request.urlopen(url, timeout=20) as response:
            return response.status, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise RuntimeError(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test for the field service records API.")
    parser.add_argument("--base-url", required=True)
    parser.add_argument("--token", default="")
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    token = args.token.strip() or None

    status, data = request_json(url=f"{base_url}/health")
    assert_true(status == 200 and isinstance(data, dict), f"/health expected 200, got {status}")
    print("OK /health")

    status, data = request_json(url=f"{base_url}/health/ready")
    assert_true(status == 200, f"/health/ready expected 200, got {status}")
    print("OK /health/ready")

    status, body = request_text(url=f"{base_url}/metrics")
    assert_true(status == 200, f"/metrics expected 200, got {status}")
    assert_true("fieldops_requests_total" in body, "/metrics missing requests counter")
    print("OK /metrics")

    # Read-only: the check endpoint never writes.
    status, data = request_json(
        url=f"{base_url}/leads/duplicates/check",
        token=token,
        payload={"name": "Smoke Test Lead", "email": "smoke-test@example.invalid"},
    )
    assert_true(status == 200, f"/leads/duplicates/check expected 200, got {status}")
    assert_true(
        isinstance(data, dict) and "is_duplicate" in data,
        "/leads/duplicates/check invalid payload",
    )
    print("OK /leads/duplicates/check")

    for path in ("/quotes", "/work-orders", "/invoices"):
        status, data = request_json(url=f"{base_url}{path}?limit=1", token=token)
        assert_true(status == 200, f"{path} expected 200, got {status}")
        assert_true(isinstance(data, list), f"{path} expected a list")
        print(f"OK {path}")

    print("Smoke test passed.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        print(f"Smoke test failed: {exc}", file=sys.stderr)
        sys.exit(1)
