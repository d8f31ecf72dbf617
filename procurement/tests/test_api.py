import pytest
from rest_framework.test import APIClient

from procurement.models import BuyingWeightNote, Trader
from procurement.services.traders import set_status


@pytest.fixture
def api(operator):
    client = APIClient()
    client.force_authenticate(user=operator)
    return client


@pytest.fixture
def reading(trader, make_reading):
    return make_reading(trader)


def _note_payload(reading, **overrides):
    payload = {
        "weighbridgeReadingId": reading.pk,
        "coffeeType": "ARABICA",
        "moistureContent": 135,
        "pricePerKgUGX": 8000,
        "buyingCentre": "Kampala",
    }
    payload.update(overrides)
    return payload


def _move(api, note_id, *statuses):
    for status in statuses:
        resp = api.post(f"/api/buying-weight-notes/{note_id}/transition/", {"to": status}, format="json")
        assert resp.status_code == 200, resp.data
    return resp


@pytest.mark.django_db
def test_requires_authentication(trader):
    resp = APIClient().get("/api/traders/")
    assert resp.status_code in (401, 403)


@pytest.mark.django_db
def test_healthz(client):
    resp = client.get("/healthz/")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.django_db
def test_delivery_end_to_end(api, operator, django_capture_on_commit_callbacks):
    resp = api.post(
        "/api/traders/",
        {
            "name": "Mbale Highland Farmers",
            "phoneNumber": "+256750987654",
            "district": "Mbale",
            "paymentTerms": {"preferredMethod": "BANK_TRANSFER", "bankName": "Centenary Bank"},
        },
        format="json",
    )
    assert resp.status_code == 201, resp.data
    trader_id = resp.data["id"]
    assert resp.data["traderCode"].startswith("TRD-")
    assert resp.data["paymentTerms"]["bankName"] == "Centenary Bank"

    resp = api.post(
        "/api/truck-entries/",
        {"truckNumber": "uax 555k", "driverName": "Sarah Nambozo", "traderId": trader_id},
        format="json",
    )
    assert resp.status_code == 201, resp.data
    entry_id = resp.data["id"]
    assert resp.data["truckNumber"] == "UAX 555K"
    assert resp.data["securityOfficer"]["id"] == operator.pk
    assert [e["id"] for e in api.get("/api/truck-entries/pending/").data] == [entry_id]

    resp = api.post(
        "/api/weighbridge-readings/",
        {"entryId": entry_id, "grossWeightKg": 25000, "tareWeightKg": 8000},
        format="json",
    )
    assert resp.status_code == 201, resp.data
    reading_id = resp.data["id"]
    assert resp.data["netWeightKg"] == 17000
    assert resp.data["operatorId"] == operator.pk
    assert api.get("/api/truck-entries/pending/").data == []

    unconverted = api.get("/api/weighbridge-readings/", {"unconverted": "true"}).data["results"]
    assert [r["id"] for r in unconverted] == [reading_id]

    resp = api.post(
        "/api/buying-weight-notes/",
        {"weighbridgeReadingId": reading_id, "coffeeType": "ARABICA", "moistureContent": 135, "pricePerKgUGX": 8000},
        format="json",
    )
    assert resp.status_code == 201, resp.data
    note_id = resp.data["id"]
    assert resp.data["status"] == "WEIGHED"
    assert resp.data["moistureDeductionKg"] == 340
    assert resp.data["finalNetWeightKg"] == 16660
    assert resp.data["totalAmountUGX"] == "133280000"
    assert resp.data["allowedTransitions"] == ["MOISTURE_TESTED", "REJECTED"]
    assert api.get("/api/weighbridge-readings/", {"unconverted": "true"}).data["results"] == []

    with django_capture_on_commit_callbacks(execute=True):
        _move(api, note_id, "MOISTURE_TESTED", "PRICE_CALCULATED", "AWAITING_QC")
        resp = api.post(
            f"/api/buying-weight-notes/{note_id}/qc-outcome/",
            {"outcome": "APPROVED", "defectCount": 9, "colorGrade": "Greenish", "moisturePercentage": "13.50"},
            format="json",
        )
        assert resp.status_code == 200, resp.data
        assert resp.data["qualityInspection"]["defectCount"] == 9
        _move(api, note_id, "PAYMENT_APPROVED")
        resp = api.post(f"/api/buying-weight-notes/{note_id}/confirm-payment/")
        assert resp.data["paymentStatus"] == "PAID"
        resp = _move(api, note_id, "COMPLETED")

    assert resp.data["status"] == "COMPLETED"
    assert resp.data["allowedTransitions"] == []

    perf = api.get(f"/api/traders/{trader_id}/performance/").data
    assert perf["totalDeliveries"] == 1
    assert perf["acceptedDeliveries"] == 1
    assert perf["totalVolumeKg"] == 16660
    assert perf["qualityConsistencyScore"] == "100.00"

    detail = api.get(f"/api/traders/{trader_id}/").data
    assert detail["totalDeliveries"] == 1
    assert detail["qualityAcceptanceRate"] == "100.00"


@pytest.mark.django_db
def test_weighbridge_errors(api, trader, make_entry):
    entry = make_entry(trader)
    resp = api.post(
        "/api/weighbridge-readings/",
        {"entryId": entry.pk, "grossWeightKg": 8000, "tareWeightKg": 9000},
        format="json",
    )
    assert resp.status_code == 400
    assert resp.data["error"] == "INVALID_WEIGHT"

    body = {"entryId": entry.pk, "grossWeightKg": 25000, "tareWeightKg": 8000}
    assert api.post("/api/weighbridge-readings/", body, format="json").status_code == 201
    resp = api.post("/api/weighbridge-readings/", body, format="json")
    assert resp.status_code == 409
    assert resp.data["error"] == "ENTRY_ALREADY_WEIGHED"

    resp = api.post("/api/weighbridge-readings/", dict(body, entryId=99999), format="json")
    assert resp.status_code == 404
    assert resp.data["error"] == "ENTRY_NOT_FOUND"


@pytest.mark.django_db
def test_malformed_body_is_a_validation_error(api, reading):
    resp = api.post("/api/buying-weight-notes/", {"coffeeType": "ARABICA"}, format="json")
    assert resp.status_code == 400
    assert resp.data["error"] == "VALIDATION_ERROR"
    assert "weighbridgeReadingId" in resp.data["fields"]

    resp = api.post("/api/buying-weight-notes/", _note_payload(reading, coffeeType="EXCELSA"), format="json")
    assert resp.status_code == 400
    assert resp.data["error"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_note_conflicts(api, trader, reading):
    resp = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json")
    note_id = resp.data["id"]

    resp = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json")
    assert resp.status_code == 409
    assert resp.data["error"] == "READING_ALREADY_CONVERTED"

    resp = api.post(f"/api/buying-weight-notes/{note_id}/transition/", {"to": "AWAITING_QC"}, format="json")
    assert resp.status_code == 409
    assert resp.data == {
        "error": "ILLEGAL_TRANSITION",
        "message": "Cannot move note from WEIGHED to AWAITING_QC",
        "from": "WEIGHED",
        "to": "AWAITING_QC",
    }

    body = {"to": "MOISTURE_TESTED", "expectedStatus": "WEIGHED"}
    assert api.post(f"/api/buying-weight-notes/{note_id}/transition/", body, format="json").status_code == 200
    resp = api.post(f"/api/buying-weight-notes/{note_id}/transition/", body, format="json")
    assert resp.status_code == 409
    assert resp.data["error"] == "CONCURRENCY_CONFLICT"
    assert resp.data["current"] == "MOISTURE_TESTED"

    resp = api.post(f"/api/buying-weight-notes/{note_id}/transition/", {"to": "REJECTED"}, format="json")
    assert resp.status_code == 400

    resp = api.post(
        f"/api/buying-weight-notes/{note_id}/transition/", {"to": "REJECTED", "reason": "Stones"}, format="json"
    )
    assert resp.status_code == 200
    assert resp.data["rejectionReason"] == "Stones"


@pytest.mark.django_db
def test_suspended_trader_is_refused(api, trader, reading):
    set_status(trader.pk, Trader.SUSPENDED)
    resp = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json")
    assert resp.status_code == 422
    assert resp.data["error"] == "TRADER_NOT_ELIGIBLE"
    assert not BuyingWeightNote.objects.exists()


@pytest.mark.django_db
def test_patch_note(api, reading):
    note_id = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json").data["id"]

    resp = api.patch(
        f"/api/buying-weight-notes/{note_id}/",
        {"moistureContent": 115, "outturn": "79%"},
        format="json",
    )
    assert resp.status_code == 200, resp.data
    assert resp.data["moistureDeductionKg"] == 0
    assert resp.data["totalAmountUGX"] == "136000000"
    assert resp.data["outturn"] == "79%"

    _move(api, note_id, "MOISTURE_TESTED")
    resp = api.patch(f"/api/buying-weight-notes/{note_id}/", {"pricePerKgUGX": 9000}, format="json")
    assert resp.status_code == 409
    assert resp.data["error"] == "NOTE_LOCKED"


@pytest.mark.django_db
def test_note_list_detail_and_stats(api, trader, make_note):
    first = make_note(trader, truck_number="UAX 1")
    make_note(trader, coffee_type="ROBUSTA", truck_number="UBB 2")

    data = api.get("/api/buying-weight-notes/").data
    assert data["count"] == 2
    assert api.get("/api/buying-weight-notes/", {"coffeeType": "ROBUSTA"}).data["count"] == 1
    assert api.get("/api/buying-weight-notes/", {"search": first.bwn_number}).data["count"] == 1

    detail = api.get(f"/api/buying-weight-notes/{first.pk}/").data
    assert detail["bwnNumber"] == first.bwn_number
    assert detail["weighbridgeReading"]["netWeightKg"] == 17000
    assert detail["qualityInspection"] is None

    resp = api.get("/api/buying-weight-notes/999999/")
    assert resp.status_code == 404
    assert resp.data["error"] == "NOTE_NOT_FOUND"

    stats = api.get("/api/buying-weight-notes/stats/").data
    assert stats == {
        "totalBWNs": 2,
        "pendingBWNs": 2,
        "completedBWNs": 0,
        "totalAmountUGX": "266560000",
        "arabicaCount": 1,
        "robustaCount": 1,
    }


@pytest.mark.django_db
def test_trader_endpoints(api, trader):
    resp = api.patch(f"/api/traders/{trader.pk}/", {"district": "Mukono", "trustScore": 70}, format="json")
    assert resp.status_code == 200, resp.data
    assert resp.data["district"] == "Mukono"
    assert resp.data["trustScore"] == 70

    resp = api.post(f"/api/traders/{trader.pk}/status/", {"status": "BLACKLISTED"}, format="json")
    assert resp.status_code == 200
    assert resp.data["status"] == "BLACKLISTED"

    resp = api.post(f"/api/traders/{trader.pk}/status/", {"status": "GONE"}, format="json")
    assert resp.status_code == 400

    assert api.get("/api/traders/", {"search": "ahmed"}).data["count"] == 1
    assert api.delete(f"/api/traders/{trader.pk}/").status_code == 204
    assert api.get("/api/traders/").data["count"] == 0
    assert api.get(f"/api/traders/{trader.pk}/").data["isActive"] is False

    resp = api.get("/api/traders/4242/performance/")
    assert resp.status_code == 404
    assert resp.data["error"] == "TRADER_NOT_FOUND"


@pytest.mark.django_db
def test_patch_with_one_bad_field_changes_nothing(api, reading):
    note_id = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json").data["id"]

    resp = api.patch(
        f"/api/buying-weight-notes/{note_id}/",
        {"moistureContent": 200, "coffeeType": "BOGUS"},
        format="json",
    )
    assert resp.status_code == 400
    assert resp.data["error"] == "VALIDATION_ERROR"

    note = BuyingWeightNote.objects.get(pk=note_id)
    assert note.moisture_content == 135
    assert note.total_amount_ugx == 133_280_000
    assert note.version == 1


@pytest.mark.django_db
def test_patch_details_with_stale_version(api, reading):
    note_id = api.post("/api/buying-weight-notes/", _note_payload(reading), format="json").data["id"]

    resp = api.patch(
        f"/api/buying-weight-notes/{note_id}/",
        {"coffeeType": "ROBUSTA", "expectedVersion": 99},
        format="json",
    )
    assert resp.status_code == 409
    assert resp.data["error"] == "CONCURRENCY_CONFLICT"
    assert BuyingWeightNote.objects.get(pk=note_id).coffee_type == "ARABICA"
