# Overview: Pytest coverage for the HTTP surface: auth, roles, and the main billing flow.

"""
Route Tests

Walks the main flow over HTTP:
challan -> bill -> adjusted payment -> summary
plus the 401/403/400 edges every blueprint shares.
"""

import io
import json

import pytest


def _create_challan(client, headers, customer_id, items):
    response = client.post("/api/challans", json={"customer_id": customer_id, "items": items}, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["challan"]


def _create_bill(client, headers, customer_id, challan_ids, **extra):
    body = {"customer_id": customer_id, "challan_ids": challan_ids}
    body.update(extra)
    return client.post("/api/bills", json=body, headers=headers)


class TestHealthAndAuth:
    def test_health_needs_no_token(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    @pytest.mark.parametrize("path", ["/api/challans", "/api/bills", "/api/payments", "/api/summary"])
    def test_missing_token(self, client, db_session, path):
        assert client.get(path).status_code == 401

    def test_garbage_token(self, client, db_session):
        response = client.get("/api/bills", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_customer_cannot_reach_vendor_only_routes(self, client, customer_headers):
        assert client.get("/api/summary", headers=customer_headers).status_code == 403
        assert client.get("/api/invoice-settings", headers=customer_headers).status_code == 403
        response = client.post("/api/payments", json={"type": "credit", "amount": 1}, headers=customer_headers)
        assert response.status_code == 403


class TestBillingFlow:
    def test_challan_bill_payment_summary(self, client, vendor_headers, customer_a, scenario_items):
        challan = _create_challan(client, vendor_headers, customer_a.id, scenario_items)
        assert challan["total_with_gst"] == "288.50"
        assert challan["status"] == "unpaid"

        detail = client.get(f"/api/challans/{challan['id']}", headers=vendor_headers).get_json()
        assert detail["paid"] == "0.00"
        assert detail["due"] == "288.50"

        response = _create_bill(
            client, vendor_headers, customer_a.id, [challan["id"]], discount_percent=10, gst_percent=12,
        )
        assert response.status_code == 201
        bill = response.get_json()["bill"]
        assert bill["total_with_gst"] == "252.00"
        assert bill["bill_number"] == "INV1001"

        response = client.post(
            "/api/payments",
            json={
                "type": "credit",
                "sub_type": "customer",
                "customer_id": customer_a.id,
                "amount": 252,
                "adjusted_invoices": [{"billId": bill["id"], "payAmount": 252}],
            },
            headers=vendor_headers,
        )
        assert response.status_code == 201
        payment = response.get_json()["payment"]
        assert payment["outstanding_after_payment"] == "0.00"

        settled = client.get(f"/api/bills/{bill['id']}", headers=vendor_headers).get_json()["bill"]
        assert settled["status"] == "paid"
        assert settled["pending_amount"] == "0.00"

        summary = client.get("/api/summary", headers=vendor_headers).get_json()
        assert summary["totalBills"] == "252.00"
        assert summary["totalPayments"] == "252.00"
        assert summary["totalPending"] == "0.00"

    def test_adjusted_sum_mismatch(self, client, vendor_headers, customer_a, scenario_items):
        challan = _create_challan(client, vendor_headers, customer_a.id, scenario_items)
        bill = _create_bill(client, vendor_headers, customer_a.id, [challan["id"]]).get_json()["bill"]

        response = client.post(
            "/api/payments",
            json={
                "type": "credit",
                "sub_type": "customer",
                "customer_id": customer_a.id,
                "amount": 252,
                "adjusted_invoices": [{"billId": bill["id"], "payAmount": 200}],
            },
            headers=vendor_headers,
        )
        assert response.status_code == 400
        assert response.get_json()["adjusted_total"] == "200.00"

        # Nothing was applied
        unchanged = client.get(f"/api/bills/{bill['id']}", headers=vendor_headers).get_json()["bill"]
        assert unchanged["paid_amount"] == "0.00"

    def test_unknown_field_rejected(self, client, vendor_headers, customer_a, scenario_items):
        response = client.post(
            "/api/challans",
            json={"customer_id": customer_a.id, "items": scenario_items, "status": "paid"},
            headers=vendor_headers,
        )
        assert response.status_code == 400
        assert "status" in response.get_json()["error"]


class TestInvoiceSettingsRoutes:
    def test_next_number_preview(self, client, vendor_headers):
        response = client.get("/api/invoice-settings/next-number", headers=vendor_headers)
        assert response.status_code == 200
        assert response.get_json()["full_number"] == "INV1001"

    def test_requested_number_out_of_sequence(self, client, vendor_headers):
        response = client.get("/api/invoice-settings/next-number?number=1007", headers=vendor_headers)
        assert response.status_code == 400
        body = response.get_json()
        assert body["kind"] == "NonSequentialInvoiceNumber"
        assert body["expected_next"] == 1001

    def test_bill_with_used_number_conflicts(self, client, vendor_headers, customer_a, scenario_items):
        first = _create_challan(client, vendor_headers, customer_a.id, scenario_items)
        second = _create_challan(client, vendor_headers, customer_a.id, scenario_items)
        assert _create_bill(client, vendor_headers, customer_a.id, [first["id"]]).status_code == 201

        response = _create_bill(client, vendor_headers, customer_a.id, [second["id"]], custom_invoice_number=1001)
        assert response.status_code == 409


class TestAdminScope:
    def test_admin_acts_for_named_vendor(self, client, admin_headers, vendor_a, customer_a, scenario_items):
        response = client.post(
            "/api/challans",
            json={"vendorId": vendor_a.id, "customer_id": customer_a.id, "items": scenario_items},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["challan"]["vendor_id"] == vendor_a.id

    def test_admin_without_vendor_id(self, client, admin_headers, customer_a, scenario_items):
        response = client.post(
            "/api/challans",
            json={"customer_id": customer_a.id, "items": scenario_items},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_admin_with_unknown_vendor(self, client, admin_headers):
        assert client.get("/api/summary?vendorId=4242", headers=admin_headers).status_code == 404


class TestCustomerReads:
    def test_customer_lists_only_own_payments(
        self, client, vendor_headers, customer_headers, customer_a, customer_a2
    ):
        for customer_id in (customer_a.id, customer_a2.id):
            response = client.post(
                "/api/payments",
                json={"type": "credit", "sub_type": "customer", "customer_id": customer_id, "amount": 10},
                headers=vendor_headers,
            )
            assert response.status_code == 201

        listed = client.get("/api/payments", headers=customer_headers).get_json()
        assert listed["total"] == 1
        assert listed["payments"][0]["customer_id"] == customer_a.id


class TestImportRoutes:
    def _payload(self):
        return {
            "customers": [{"customer_name": "Imported Co", "mobile_number": "9111111111"}],
            "challans": [{
                "challan_number": "CH-20260101-0001",
                "customer_mobile": "9111111111",
                "challan_date": "2026-01-01",
                "items": [{"product_name": "Bricks", "qty": 10, "price_per_unit": 8}],
            }],
        }

    def test_json_body_accepted_then_job_readable(self, client, vendor_headers):
        response = client.post("/api/imports", json=self._payload(), headers=vendor_headers)
        assert response.status_code == 202
        job = response.get_json()["job"]

        fetched = client.get(f"/api/imports/{job['id']}", headers=vendor_headers)
        assert fetched.status_code == 200
        body = fetched.get_json()["job"]
        assert body["status"] == "completed"
        assert body["summary"]["customers"]["inserted"] == 1
        assert body["summary"]["challans"]["inserted"] == 1

    def test_file_upload(self, client, vendor_headers):
        upload = io.BytesIO(json.dumps(self._payload()).encode("utf-8"))
        response = client.post(
            "/api/imports",
            data={"file": (upload, "export.json")},
            headers=vendor_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 202
        assert response.get_json()["job"]["source_file_name"] == "export.json"

    def test_unsupported_file(self, client, vendor_headers):
        response = client.post(
            "/api/imports",
            data={"file": (io.BytesIO(b"a,b"), "export.csv")},
            headers=vendor_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Unsupported file format"

    def test_other_vendor_cannot_read_job(self, client, vendor_headers, vendor_b_headers):
        job = client.post("/api/imports", json=self._payload(), headers=vendor_headers).get_json()["job"]
        assert client.get(f"/api/imports/{job['id']}", headers=vendor_b_headers).status_code == 404
