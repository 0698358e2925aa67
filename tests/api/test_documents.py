import pytest

from profit_iq.utils.alerting import alert_tracker

PDF = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n"

LUMBER = {"description": "Lumber", "total": 15000, "category": "Materials", "sort_order": 0}


async def _project(client, **fields):
    payload = {"name": "Lakeside Cabin", "contract_value": 100000}
    payload.update(fields)
    r = await client.post("/api/v1/projects", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


async def _upload(client, project_id, *, filename="invoice.pdf", content=PDF, content_type="application/pdf"):
    return await client.post(
        "/api/v1/documents/upload",
        files={"file": (filename, content, content_type)},
        data={"project_id": project_id},
    )


async def _uploaded(client, project_id):
    r = await _upload(client, project_id)
    assert r.status_code == 201, r.text
    return r.json()


async def _extracted(client, project_id):
    doc = await _uploaded(client, project_id)
    r = await client.post(f"/api/v1/documents/{doc['id']}/extract")
    assert r.status_code == 200, r.text
    return doc


@pytest.mark.asyncio
async def test_upload_pdf(client, storage):
    project = await _project(client)
    r = await _upload(client, project["id"], filename="Acme invoice #12.pdf")
    assert r.status_code == 201
    doc = r.json()
    assert doc["status"] == "pending"
    assert doc["document_type"] is None
    assert doc["file_size"] == len(PDF)
    assert doc["file_name"] == "Acme invoice #12.pdf"
    assert doc["file_path"].startswith(f"https://storage.test/storage/v1/object/profit-iq/documents/{project['id']}/")
    assert list(storage.bucket.objects.values()) == [PDF]


@pytest.mark.asyncio
async def test_upload_rejects_non_pdf(client, storage):
    project = await _project(client)
    r = await _upload(client, project["id"], filename="photo.png", content=b"\x89PNG", content_type="image/png")
    assert r.status_code == 400
    assert r.json() == {"detail": "Only PDF files are allowed"}
    assert storage.bucket.objects == {}


@pytest.mark.asyncio
async def test_upload_rejects_empty_and_oversized(client, monkeypatch):
    project = await _project(client)
    r = await _upload(client, project["id"], content=b"")
    assert r.status_code == 400

    monkeypatch.setenv("MAX_UPLOAD_BYTES", "10")
    from profit_iq.core.config import get_settings

    get_settings.cache_clear()
    r = await _upload(client, project["id"])
    assert r.status_code == 400
    assert "less than" in r.json()["detail"]


@pytest.mark.asyncio
async def test_upload_to_foreign_project_is_not_found(client, other_client, storage):
    project = await _project(client)
    r = await _upload(other_client, project["id"])
    assert r.status_code == 404
    assert storage.bucket.objects == {}


@pytest.mark.asyncio
async def test_extract_with_mock_provider(client):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])

    r = await client.post(f"/api/v1/documents/{doc['id']}/extract")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["extraction"]["vendor"]["name"] == "Mock Supply Co."

    detail = (await client.get(f"/api/v1/documents/{doc['id']}")).json()
    assert detail["status"] == "extracted"
    assert detail["document_type"] == "invoice"
    assert detail["vendor_name"] == "Mock Supply Co."
    assert detail["total_amount"] == 250.0
    assert detail["raw_extraction"]["document_info"]["number"] == "MOCK-001"
    assert detail["line_items"] == []


@pytest.mark.asyncio
async def test_extract_fetch_failure_returns_generic_error(client, storage):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])
    storage.bucket.objects.clear()

    r = await client.post(f"/api/v1/documents/{doc['id']}/extract")
    assert r.status_code == 500
    assert r.json() == {"detail": "Extraction failed"}
    assert alert_tracker.count("EXTRACTION_FAILED") == 1

    detail = (await client.get(f"/api/v1/documents/{doc['id']}")).json()
    assert detail["status"] == "failed"


@pytest.mark.asyncio
async def test_confirm_and_reject_flow(client):
    project = await _project(client)
    doc = await _extracted(client, project["id"])

    r = await client.post(
        f"/api/v1/documents/{doc['id']}/confirm",
        json={
            "document_type": "invoice",
            "vendor_name": "Acme Lumber",
            "document_number": "INV-1",
            "document_date": "2026-04-02",
            "total_amount": 15000,
            "line_items": [LUMBER],
        },
    )
    assert r.status_code == 200
    assert r.json() == {"success": True}

    detail = (await client.get(f"/api/v1/documents/{doc['id']}")).json()
    assert detail["status"] == "confirmed"
    assert detail["confirmed_at"] is not None
    assert detail["vendor_name"] == "Acme Lumber"
    assert [(i["description"], i["total"], i["category"]) for i in detail["line_items"]] == [
        ("Lumber", 15000.0, "Materials")
    ]

    r = await client.post(f"/api/v1/documents/{doc['id']}/reject")
    assert r.status_code == 200
    detail = (await client.get(f"/api/v1/documents/{doc['id']}")).json()
    assert detail["status"] == "rejected"
    assert detail["line_items"] == []
    assert detail["raw_extraction"] is None
    assert detail["vendor_name"] is None
    assert detail["confirmed_at"] is None


@pytest.mark.asyncio
async def test_confirm_requires_extracted_document(client):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])
    r = await client.post(f"/api/v1/documents/{doc['id']}/confirm", json={"line_items": [LUMBER]})
    assert r.status_code == 400
    assert r.json() == {"detail": "Document must be in extracted status"}


@pytest.mark.asyncio
async def test_confirm_requires_line_items(client):
    project = await _project(client)
    doc = await _extracted(client, project["id"])
    r = await client.post(f"/api/v1/documents/{doc['id']}/confirm", json={"line_items": []})
    assert r.status_code == 400
    assert r.json() == {"detail": "At least one line item is required"}


@pytest.mark.asyncio
async def test_reject_pending_document_is_invalid(client):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])
    r = await client.post(f"/api/v1/documents/{doc['id']}/reject")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_end_to_end_budget_scenario(client):
    project = await _project(client, contract_value=100000)
    pid = project["id"]
    r = await client.put(f"/api/v1/projects/{pid}/budget", json={"category": "Materials", "estimated_amount": 20000})
    assert r.status_code == 200

    doc = await _extracted(client, pid)
    r = await client.post(f"/api/v1/documents/{doc['id']}/confirm", json={"line_items": [LUMBER]})
    assert r.status_code == 200

    budget = (await client.get(f"/api/v1/projects/{pid}/budget")).json()
    materials = next(row for row in budget if row["category"] == "Materials")
    assert materials == {
        "category": "Materials",
        "estimated_amount": 20000.0,
        "actual_amount": 15000.0,
        "variance": 5000.0,
    }

    totals = (await client.get(f"/api/v1/projects/{pid}/summary")).json()["totals"]
    assert totals["total_actual"] == 15000.0
    assert totals["margin_amount"] == 85000.0
    assert totals["margin_percent"] == 85.0


@pytest.mark.asyncio
async def test_unconfirmed_documents_do_not_count(client):
    project = await _project(client)
    pid = project["id"]
    confirmed = await _extracted(client, pid)
    await client.post(
        f"/api/v1/documents/{confirmed['id']}/confirm",
        json={"line_items": [{"description": "Drywall", "total": 100, "category": "Materials"}]},
    )
    await _extracted(client, pid)

    budget = (await client.get(f"/api/v1/projects/{pid}/budget")).json()
    materials = next(row for row in budget if row["category"] == "Materials")
    assert materials["actual_amount"] == 100.0


@pytest.mark.asyncio
async def test_list_documents_with_filters(client):
    project = await _project(client)
    pid = project["id"]
    extracted = await _extracted(client, pid)
    pending = await _uploaded(client, pid)

    r = await client.get(f"/api/v1/projects/{pid}/documents")
    assert {d["id"] for d in r.json()["items"]} == {extracted["id"], pending["id"]}

    r = await client.get(f"/api/v1/projects/{pid}/documents", params={"status": "pending"})
    assert [d["id"] for d in r.json()["items"]] == [pending["id"]]

    r = await client.get(f"/api/v1/projects/{pid}/documents", params={"document_type": "invoice"})
    assert [d["id"] for d in r.json()["items"]] == [extracted["id"]]


@pytest.mark.asyncio
async def test_delete_document(client, storage):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])

    r = await client.delete(f"/api/v1/documents/{doc['id']}")
    assert r.status_code == 200
    assert storage.bucket.objects == {}
    r = await client.get(f"/api/v1/documents/{doc['id']}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_document_survives_blob_failure(client, storage):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])
    storage.bucket.fail_remove = True

    r = await client.delete(f"/api/v1/documents/{doc['id']}")
    assert r.status_code == 200
    assert alert_tracker.count("BLOB_DELETE_FAILED") == 1
    r = await client.get(f"/api/v1/documents/{doc['id']}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_delete_confirmed_document_removes_actuals(client):
    project = await _project(client)
    pid = project["id"]
    doc = await _extracted(client, pid)
    await client.post(f"/api/v1/documents/{doc['id']}/confirm", json={"line_items": [LUMBER]})

    await client.delete(f"/api/v1/documents/{doc['id']}")

    totals = (await client.get(f"/api/v1/projects/{pid}/summary")).json()["totals"]
    assert totals["total_actual"] == 0.0


@pytest.mark.asyncio
async def test_download_redirects_to_signed_url(client):
    project = await _project(client)
    doc = await _uploaded(client, project["id"])
    r = await client.get(f"/api/v1/documents/{doc['id']}/download")
    assert r.status_code == 302
    assert r.headers["location"].startswith("https://storage.test/storage/v1/object/sign/profit-iq/documents/")


@pytest.mark.asyncio
async def test_other_owner_cannot_touch_documents(client, other_client):
    project = await _project(client)
    doc = await _extracted(client, project["id"])
    did = doc["id"]
    for method, path, body in (
        ("GET", f"/api/v1/documents/{did}", None),
        ("GET", f"/api/v1/documents/{did}/download", None),
        ("POST", f"/api/v1/documents/{did}/extract", None),
        ("POST", f"/api/v1/documents/{did}/confirm", {"line_items": [LUMBER]}),
        ("POST", f"/api/v1/documents/{did}/reject", None),
        ("DELETE", f"/api/v1/documents/{did}", None),
    ):
        r = await other_client.request(method, path, json=body)
        assert r.status_code == 404, (method, path)

    detail = (await client.get(f"/api/v1/documents/{did}")).json()
    assert detail["status"] == "extracted"


@pytest.mark.asyncio
async def test_confirm_rejects_email_type(client):
    project = await _project(client)
    doc = await _extracted(client, project["id"])

    r = await client.post(
        f"/api/v1/documents/{doc['id']}/confirm",
        json={"document_type": "email", "line_items": [LUMBER]},
    )
    assert r.status_code == 422

    detail = (await client.get(f"/api/v1/documents/{doc['id']}")).json()
    assert detail["status"] == "extracted"
    assert detail["document_type"] == "invoice"
    emails = (await client.get(f"/api/v1/projects/{project['id']}/emails")).json()["items"]
    assert emails == []
