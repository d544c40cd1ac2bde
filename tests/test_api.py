import json

from rfp_cloud import models
from rfp_cloud.correlator import UNMATCHED_RFP_TITLE
from rfp_cloud.exceptions import LLMGenerationError

INBOUND = "/api/v1/email/inbound"


def _inbound(client, settings, data=None, files=None, token=None):
    token = settings.inbound_token if token is None else token
    return client.post(f"{INBOUND}?token={token}", data=data or {}, files=files)


def test_inbound_requires_token(client, settings):
    assert client.post(INBOUND, data={"from": "a@b.test"}).status_code == 401
    assert _inbound(client, settings, token="wrong").status_code == 401
    # token is checked before the method
    assert client.get(INBOUND).status_code == 401


def test_inbound_rejects_non_post(client, settings):
    resp = client.get(f"{INBOUND}?token={settings.inbound_token}")
    assert resp.status_code == 405


def test_inbound_creates_and_enriches_proposal(client, settings, store, llm, dispatch):
    llm.responses.append("```json\n" + json.dumps({
        "priceUsd": 9000, "deliveryDays": 5, "warrantyMonths": 24,
        "paymentTerms": "Net 30", "completenessScore": 80,
    }) + "\n```")

    resp = _inbound(
        client, settings,
        data={
            "from": "Acme Sales <sales@acme.test>",
            "to": "rfp@reply.test",
            "subject": "Re: Laptops",
            "text": "Price $9,000, 5 days, 2 year warranty, Net 30.\n\nOn Mon, Buyer wrote:\n> need laptops",
            "In-Reply-To": dispatch.message_id,
        },
        files={"quote": ("quote.pdf", b"%PDF", "application/pdf")},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    proposal = store.get("proposals", body["createdProposalId"])
    assert proposal.sent_rfp_reference == dispatch.reference_id
    assert proposal.price_usd == 9000
    assert proposal.parsed_at is not None
    assert proposal.attachments_meta[0].filename == "quote.pdf"
    assert "need laptops" not in llm.calls[0][1]
    assert store.get("sent_rfps", dispatch.id).status == models.DispatchStatus.DELIVERED


def test_inbound_survives_llm_failure(client, settings, store, llm):
    llm.responses.append(LLMGenerationError("timed out"))

    resp = _inbound(client, settings, data={"from": "new@vendor.test", "text": "Our price is $1,234 all in."})

    assert resp.status_code == 200
    proposal = store.get("proposals", resp.json()["createdProposalId"])
    assert proposal.parsed_at is None
    assert proposal.price_usd is None
    assert proposal.delivery_days is None
    assert store.get("rfps", proposal.rfp_id).title == UNMATCHED_RFP_TITLE


def test_inbound_accepts_raw_email_field(client, settings, store, dispatch):
    raw = (
        "From: sales@acme.test\n"
        "To: someone@reply.test\n"
        f"Subject: Re: quote [REF:{dispatch.reference_id}]\n"
        "\n"
        "ok\n"
    )
    resp = _inbound(client, settings, data={"email": raw})
    proposal = store.get("proposals", resp.json()["createdProposalId"])
    assert proposal.sent_rfp_reference == dispatch.reference_id


def test_inbound_returns_500_when_proposal_cannot_be_stored(client, settings, store, monkeypatch):
    def broken_insert(collection, record):
        raise OSError("disk unavailable")

    monkeypatch.setattr(store, "insert", broken_insert)
    resp = _inbound(client, settings, data={"from": "a@b.test", "text": "hello there"})
    assert resp.status_code == 500
    assert resp.json()["ok"] is False


def test_compare_endpoint(client, store, rfp, vendor):
    assert client.get("/api/v1/rfps/missing/compare").status_code == 404
    resp = client.get(f"/api/v1/rfps/{rfp.id}/compare")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No proposals found for this RFP"

    store.insert("proposals", models.Proposal(rfp_id=rfp.id, vendor_id=vendor.id, price_usd=9000,
                                              completeness_score=100, payment_terms="Net 30"))
    resp = client.get(f"/api/v1/rfps/{rfp.id}/compare")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ranked_proposals"][0]["recommendation"] == "BEST_CHOICE"
    assert data["ranked_proposals"][0]["ranking_score"] == 43
    assert data["summary"]["best_vendor"] == "Acme Co"


def test_create_rfp_from_text(client, store, llm):
    llm.responses.append(json.dumps({
        "title": "Office laptops",
        "items": [{"name": "Laptop", "qty": 20, "specs": {"ram": "16GB"}, "unit_budget_usd": None}],
        "total_budget_usd": 50000,
        "delivery_days": 30,
        "payment_terms": "net 30",
        "warranty_months": 12,
    }))

    resp = client.post("/api/v1/rfps", json={"text": "I need 20 laptops with 16GB RAM, budget $50,000."})

    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Office laptops"
    assert data["budget_usd"] == 50000
    assert data["requirements"]["metadata"]["item_count"] == 1
    assert len(data["reference_token"]) == 32
    assert store.get("rfps", data["id"]) is not None


def test_create_rfp_validation(client, llm):
    assert client.post("/api/v1/rfps", json={"text": "short"}).status_code == 400
    assert client.post("/api/v1/rfps", json={"text": "long enough text", "user_id": "ghost"}).status_code == 404

    llm.responses.append("I cannot help with that")
    assert client.post("/api/v1/rfps", json={"text": "I need 20 laptops please"}).status_code == 502

    llm.responses.append(json.dumps({"title": "Nothing", "items": []}))
    assert client.post("/api/v1/rfps", json={"text": "I need 20 laptops please"}).status_code == 400


def test_vendor_crud(client):
    resp = client.post("/api/v1/vendors", json={"name": "Acme", "email": "sales@acme.test"})
    assert resp.status_code == 200
    assert "password" not in resp.json()
    assert client.post("/api/v1/vendors", json={"name": "Dup", "email": "SALES@acme.test"}).status_code == 409
    assert client.post("/api/v1/vendors", json={"name": "Bad", "email": "not-an-email"}).status_code == 422
    assert [v["name"] for v in client.get("/api/v1/vendors").json()] == ["Acme"]


def test_send_rfp(client, store, mailer, rfp, vendor):
    resp = client.post(f"/api/v1/rfps/{rfp.id}/send", json={"vendor_ids": [vendor.id, "ghost"]})

    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    assert data["sent"][0]["status"] == "SENT"
    assert mailer.sent[0]["to"] == vendor.contact_email

    assert client.post(f"/api/v1/rfps/{rfp.id}/send", json={"vendor_ids": ["ghost"]}).status_code == 404
    assert client.post("/api/v1/rfps/missing/send", json={"vendor_ids": [vendor.id]}).status_code == 404


def test_proposal_endpoints(client, store, rfp, vendor):
    p = store.insert("proposals", models.Proposal(rfp_id=rfp.id, vendor_id=vendor.id))
    assert [x["id"] for x in client.get(f"/api/v1/rfps/{rfp.id}/proposals").json()] == [p.id]
    assert client.get(f"/api/v1/proposals/{p.id}").json()["vendor_id"] == vendor.id
    assert client.get("/api/v1/proposals/missing").status_code == 404
    assert client.get("/api/v1/rfps/missing/proposals").status_code == 404


def test_module_level_app_is_built_from_env(monkeypatch, tmp_path):
    from fastapi.testclient import TestClient

    from rfp_cloud import main

    monkeypatch.setenv("DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("INBOUND_TOKEN", "env-token")
    main.__dict__.pop("app", None)
    try:
        app = main.app
        assert main.app is app
        assert app.state.settings.inbound_token == "env-token"
        assert TestClient(app).get("/api/v1/vendors").json() == []
        assert (tmp_path / "env-data" / "vendors.json").exists()
    finally:
        main.__dict__.pop("app", None)
