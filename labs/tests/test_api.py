"""
Integration tests for the lab order API.

These tests drive the HTTP surface end to end: order creation, the
payment / sample / processing / result lifecycle, role scoping of the
listings and the error envelope.  They use Django REST Framework's
APIClient within the APITestCase base class.

To run the tests:

```
pytest -q labs/tests
```
"""

from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from ..models import LabOrder, LabResult, LabTest, User


class LabOrderAPITests(APITestCase):
    def setUp(self) -> None:
        """Create one user per role and a small catalog."""
        self.doctor = User.objects.create_user(username="doc1", password="docpass", role="doctor",
                                               first_name="Amara", last_name="Okafor")
        self.other_doctor = User.objects.create_user(username="doc2", password="docpass", role="doctor")
        self.receptionist = User.objects.create_user(username="recep1", password="receppass", role="receptionist")
        self.tech = User.objects.create_user(username="tech1", password="techpass", role="lab_technician")
        self.patient = User.objects.create_user(username="patient1", password="patientpass", role="patient")
        self.other_patient = User.objects.create_user(username="patient2", password="patientpass", role="patient")
        self.cbc = LabTest.objects.create(code="HEM001", name="Complete Blood Count (CBC)", department="Hematology",
                                          turnaround_hours=24, units=["g/dL", "x10^9/L"])

    def authenticate(self, user: User) -> APIClient:
        """Return an authenticated APIClient for the given user."""
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def create_order(self, requires_payment=True, priority="routine", **extra):
        payload = {
            "patientId": self.patient.id,
            "testName": "Complete Blood Count",
            "priority": priority,
            "requiresPayment": requires_payment,
            **extra,
        }
        response = self.authenticate(self.doctor).post("/api/lab/orders", payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data["data"]

    def test_doctor_creates_order_under_own_name(self):
        data = self.create_order(notes="<b>fasting</b> sample")
        self.assertEqual(data["status"], "PAYMENT_PENDING")
        self.assertEqual(data["orderedById"], self.doctor.id)
        self.assertEqual(data["orderedByName"], "Amara Okafor")
        self.assertEqual(data["notes"], "fasting sample")
        self.assertIsNone(data["result"])
        self.assertFalse(data["overdue"])
        self.assertIn("cancel", data["actions"])

    def test_free_text_keeps_ampersands_and_comparisons(self):
        data = self.create_order(testName="Urea & Electrolytes", notes="K < 3.5 last week <i>recheck</i>")
        self.assertEqual(data["testName"], "Urea & Electrolytes")
        self.assertEqual(data["notes"], "K < 3.5 last week recheck")
        stored = LabOrder.objects.get(pk=data["id"])
        self.assertEqual((stored.test_name, stored.notes), ("Urea & Electrolytes", "K < 3.5 last week recheck"))

        r = self.authenticate(self.doctor).post(f"/api/lab/orders/{data['id']}/cancel",
                                                {"reason": "Na & K redone"}, format="json")
        self.assertEqual(r.data["data"]["cancelReason"], "Na & K redone")

    def test_create_without_payment_flag_is_rejected(self):
        client = self.authenticate(self.doctor)
        response = client.post("/api/lab/orders", {"patientId": self.patient.id, "testName": "CBC",
                                                   "priority": "routine"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"]["code"], "invalid_input")
        self.assertIn("requiresPayment", response.data["error"]["detail"])

    def test_create_with_unknown_priority_is_rejected(self):
        client = self.authenticate(self.doctor)
        response = client.post("/api/lab/orders", {"patientId": self.patient.id, "testName": "CBC",
                                                   "priority": "whenever", "requiresPayment": False}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"]["detail"], {"priority": "invalid"})

    def test_doctor_cannot_order_for_another_doctor(self):
        client = self.authenticate(self.doctor)
        response = client.post("/api/lab/orders", {"patientId": self.patient.id, "doctorId": self.other_doctor.id,
                                                   "testName": "CBC", "priority": "stat",
                                                   "requiresPayment": False}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"]["code"], "unauthorized")

    def test_patient_cannot_create_orders(self):
        client = self.authenticate(self.patient)
        response = client.post("/api/lab/orders", {"patientId": self.patient.id, "doctorId": self.doctor.id,
                                                   "testName": "CBC", "priority": "routine",
                                                   "requiresPayment": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_full_lifecycle_over_http(self):
        order_id = self.create_order(testCode="HEM001")["id"]
        reception = self.authenticate(self.receptionist)
        tech = self.authenticate(self.tech)

        r = reception.post(f"/api/lab/orders/{order_id}/confirm-payment", {"billId": "B-77"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["data"]["bill"], {"id": "B-77", "status": "PAID"})
        self.assertEqual(r.data["data"]["status"], "READY_FOR_SAMPLE_COLLECTION")

        r = tech.post(f"/api/lab/orders/{order_id}/collect-sample", {}, format="json")
        self.assertEqual(r.data["data"]["status"], "SAMPLE_COLLECTED")
        r = tech.post(f"/api/lab/orders/{order_id}/start-processing", {}, format="json")
        self.assertEqual(r.data["data"]["status"], "PROCESSING")
        self.assertEqual(r.data["data"]["actions"], ["record_result", "cancel"])

        result = {"parameters": [{"name": "Hemoglobin", "value": 13.5, "unit": "g/dL", "normalRange": "12-16"}]}
        r = tech.post("/api/lab/results", {"orderId": order_id, "result": result,
                                           "interpretation": "Normal"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_201_CREATED, r.data)
        data = r.data["data"]
        self.assertEqual(data["status"], "COMPLETED")
        self.assertIsNotNone(data["completedAt"])
        self.assertEqual(data["result"]["parameters"], result["parameters"])
        self.assertEqual(data["result"]["interpretation"], "Normal")
        self.assertEqual(data["actions"], [])

        # the patient reads the completed order with its history
        r = self.authenticate(self.patient).get(f"/api/lab/orders/{order_id}")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([t["to"] for t in r.data["data"]["transitionHistory"]], [
            "PAYMENT_PENDING", "READY_FOR_SAMPLE_COLLECTION", "SAMPLE_COLLECTED", "PROCESSING", "COMPLETED",
        ])

    def test_result_with_unit_outside_catalog_is_rejected(self):
        order_id = self.create_order(requires_payment=False, testCode="HEM001")["id"]
        tech = self.authenticate(self.tech)
        tech.post(f"/api/lab/orders/{order_id}/collect-sample", {}, format="json")
        tech.post(f"/api/lab/orders/{order_id}/start-processing", {}, format="json")
        r = tech.post("/api/lab/results", {"orderId": order_id,
                                           "parameters": [{"name": "Hb", "value": 13, "unit": "mmol/L"}]},
                      format="json")
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data["error"]["code"], "invalid_result")
        self.assertEqual(LabOrder.objects.get(pk=order_id).status, "PROCESSING")
        self.assertFalse(LabResult.objects.exists())

    def test_collect_before_payment_conflicts(self):
        order_id = self.create_order()["id"]
        r = self.authenticate(self.tech).post(f"/api/lab/orders/{order_id}/collect-sample", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data["error"]["code"], "invalid_transition")
        self.assertEqual(r.data["error"]["detail"], {"current": "PAYMENT_PENDING", "attempted": "SAMPLE_COLLECTED"})

    def test_cancel_is_idempotent_over_http(self):
        order_id = self.create_order(priority="stat")["id"]
        client = self.authenticate(self.doctor)
        first = client.post(f"/api/lab/orders/{order_id}/cancel", {"reason": "duplicate"}, format="json")
        second = client.post(f"/api/lab/orders/{order_id}/cancel", {}, format="json")
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data["data"], second.data["data"])
        self.assertEqual(second.data["data"]["cancelReason"], "duplicate")

    def test_status_patch_moves_order(self):
        order_id = self.create_order()["id"]
        r = self.authenticate(self.receptionist).patch(
            f"/api/lab/orders/{order_id}/status", {"status": "ready_for_sample_collection"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["data"]["status"], "READY_FOR_SAMPLE_COLLECTION")

        r = self.authenticate(self.tech).patch(f"/api/lab/orders/{order_id}/status", {"status": "COMPLETED"},
                                               format="json")
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)

    def test_listing_is_scoped_by_role(self):
        mine = self.create_order()["id"]
        client = self.authenticate(self.other_doctor)
        r = client.post("/api/lab/orders", {"patientId": self.other_patient.id, "testName": "HbA1c",
                                            "priority": "urgent", "requiresPayment": False}, format="json")
        theirs = r.data["data"]["id"]

        r = self.authenticate(self.doctor).get("/api/lab/orders")
        self.assertEqual([o["id"] for o in r.data["items"]], [mine])
        self.assertEqual(r.data["pagination"], {"total": 1, "limit": 50, "offset": 0})

        r = self.authenticate(self.tech).get("/api/lab/orders", {"ordering": "triage"})
        self.assertEqual([o["id"] for o in r.data["items"]], [theirs, mine])

        r = self.authenticate(self.other_patient).get("/api/lab/orders")
        self.assertEqual([o["id"] for o in r.data["items"]], [theirs])

    def test_my_orders_and_stats(self):
        self.create_order(priority="stat")
        self.create_order(requires_payment=False)
        client = self.authenticate(self.doctor)
        r = client.get("/api/lab/orders/my-orders", {"status": "ORDERED"})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["pagination"]["total"], 1)

        r = self.authenticate(self.tech).get("/api/lab/orders/my-orders")
        self.assertEqual(r.data["pagination"]["total"], 0)

        r = client.get("/api/lab/orders/stats")
        self.assertEqual(r.data["data"]["total"], 2)
        self.assertEqual(r.data["data"]["byPriority"]["stat"], 1)

    def test_list_query_validation(self):
        client = self.authenticate(self.tech)
        r = client.get("/api/lab/orders", {"status": "DONE"})
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        r = client.get("/api/lab/orders", {"dateFrom": "2026-10-02", "dateTo": "2026-10-01"})
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data["error"]["code"], "invalid_input")

    def test_overdue_query_flag(self):
        order_id = self.create_order(priority="stat")["id"]
        client = self.authenticate(self.tech)
        self.assertEqual(client.get("/api/lab/orders", {"overdue": "true"}).data["pagination"]["total"], 0)
        self.assertEqual(client.get("/api/lab/orders", {"overdue": "false"}).data["pagination"]["total"], 1)
        self.assertEqual(client.get("/api/lab/orders").data["items"][0]["id"], order_id)

    def test_pharmacist_has_no_lab_access(self):
        pharmacist = User.objects.create_user(username="pharm1", password="pharmpass", role="pharmacist")
        r = self.authenticate(pharmacist).get("/api/lab/orders")
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_catalog_read_and_write(self):
        r = self.authenticate(self.patient).get("/api/lab/tests")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([t["code"] for t in r.data["items"]], ["HEM001"])

        payload = {"code": " bio004 ", "name": "HbA1c", "department": "Biochemistry", "turnaroundHours": 4,
                   "units": ["%", "mmol/mol"]}
        r = self.authenticate(self.doctor).post("/api/lab/tests", payload, format="json")
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        r = self.authenticate(self.tech).post("/api/lab/tests", payload, format="json")
        self.assertEqual(r.status_code, status.HTTP_201_CREATED, r.data)
        self.assertEqual(r.data["data"]["code"], "BIO004")
        self.assertTrue(LabTest.objects.filter(code="BIO004", turnaround_hours=4).exists())
