from __future__ import annotations

import re

from backend.fieldops.models import utc_now

NUMBER_PATTERN = {
    "/quotes": r"^Q-\d{8}-\d{4}$",
    "/work-orders": r"^WO-\d{8}-\d{4}$",
    "/invoices": r"^INV-\d{8}-\d{4}$",
}


def set_status(client, path: str, document_id: str, status: str):
    return client.post(f"{path}/{document_id}/status", json={"status": status})


def test_documents_get_sequential_numbers(client) -> None:
    stamp = utc_now().strftime("%Y%m%d")
    first = client.post("/quotes", json={"title": "Roof inspection", "total": 150})
    second = client.post("/quotes", json={"title": "Gutter clean"})
    assert first.status_code == 200
    assert second.status_code == 200
    first_number = first.json()["number"]
    second_number = second.json()["number"]
    if first_number.split("-")[1] == second_number.split("-")[1] == stamp:
        assert first_number == f"Q-{stamp}-0001"
        assert second_number == f"Q-{stamp}-0002"

    listed = client.get("/quotes")
    assert [item["number"] for item in listed.json()] == [second_number, first_number]


def test_each_kind_has_its_own_prefix(client) -> None:
    quote = client.post("/quotes", json={"title": "Quote"}).json()
    assert set_status(client, "/quotes", quote["document_id"], "accepted").status_code == 200
    order = client.post(
        "/work-orders", json={"title": "Order", "source_document_id": quote["document_id"]}
    ).json()
    for status in ("scheduled", "in_progress", "completed"):
        assert set_status(client, "/work-orders", order["document_id"], status).status_code == 200
    invoice = client.post(
        "/invoices",
        json={"title": "Invoice", "total": 99.5, "source_document_id": order["document_id"]},
    ).json()

    expected_status = {"/quotes": "accepted", "/work-orders": "completed", "/invoices": "draft"}
    for path, body in (("/quotes", quote), ("/work-orders", order), ("/invoices", invoice)):
        assert re.match(NUMBER_PATTERN[path], body["number"])
        fetched = client.get(f"{path}/{body['document_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["number"] == body["number"]
        assert fetched.json()["status"] == expected_status[path]

    assert order["status"] == "pending"
    metrics = client.get("/metrics").text
    assert 'fieldops_documents_numbered_total{kind="invoice"} 1' in metrics


def test_invoice_from_accepted_quote(client) -> None:
    quote = client.post("/quotes", json={"title": "Quote", "total": 300}).json()

    early = client.post(
        "/invoices", json={"title": "Invoice", "source_document_id": quote["document_id"]}
    )
    assert early.status_code == 409
    assert "must be accepted" in early.json()["detail"]

    set_status(client, "/quotes", quote["document_id"], "accepted")
    invoice = client.post(
        "/invoices", json={"title": "Invoice", "source_document_id": quote["document_id"]}
    )
    assert invoice.status_code == 200
    fetched = client.get(f"/invoices/{invoice.json()['document_id']}").json()
    assert fetched["source_document_id"] == quote["document_id"]


def test_status_change_errors(client) -> None:
    invoice = client.post("/invoices", json={"title": "Invoice"}).json()

    assert set_status(client, "/invoices", invoice["document_id"], "paid").status_code == 409
    assert set_status(client, "/invoices", invoice["document_id"], "accepted").status_code == 409
    assert set_status(client, "/invoices", invoice["document_id"], "archived").status_code == 422
    assert set_status(client, "/quotes", invoice["document_id"], "accepted").status_code == 404

    sent = set_status(client, "/invoices", invoice["document_id"], "sent")
    assert sent.status_code == 200
    assert sent.json()["status"] == "sent"


def test_document_reference_errors(client) -> None:
    quote = client.post("/quotes", json={"title": "Quote"}).json()
    invoice = client.post("/invoices", json={"title": "Invoice"}).json()

    missing_account = client.post("/quotes", json={"title": "X", "account_id": "acc_missing"})
    assert missing_account.status_code == 404

    missing_source = client.post(
        "/invoices", json={"title": "X", "source_document_id": "wo_missing"}
    )
    assert missing_source.status_code == 404

    wrong_source = client.post(
        "/work-orders", json={"title": "X", "source_document_id": invoice["document_id"]}
    )
    assert wrong_source.status_code == 409

    quote_with_source = client.post(
        "/quotes", json={"title": "X", "source_document_id": quote["document_id"]}
    )
    assert quote_with_source.status_code == 409

    assert client.get(f"/invoices/{quote['document_id']}").status_code == 404


def test_document_validation(client) -> None:
    assert client.post("/quotes", json={"title": "   "}).status_code == 422
    assert client.post("/invoices", json={"title": "X", "total": -1}).status_code == 422
