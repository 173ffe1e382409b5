from conftest import make_callback
from models import db
from models.admin_notification import AdminNotification
from models.payment import LandlordPayment
from models.transaction import MpesaStkTransaction

SUCCESS_ITEMS = [
    {"Name": "Amount", "Value": 1},
    {"Name": "MpesaReceiptNumber", "Value": "NLJ7X92M"},
    {"Name": "TransactionDate", "Value": 20240101120000},
    {"Name": "PhoneNumber", "Value": 254712345678},
]

ACK = {"ResultCode": 0}


def _push(client, **overrides):
    body = {"customer_id": overrides.pop("customer_id"), "phone_number": "0712345678", "amount": 1}
    body.update(overrides)
    return client.post("/payments/stk-push", json=body)


def test_index(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.get_json()["endpoints"]["stk_push"] == "/payments/stk-push"


class TestStkPush:
    def test_success(self, client, daraja, customer):
        response = _push(client, customer_id=customer.id)

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["checkout_request_id"] == "ws_CO_1"
        assert body["data"]["merchant_request_id"] == "29115-34620561-1"
        assert body["data"]["customer_message"] == "Success. Request accepted for processing"

        transaction = MpesaStkTransaction.query.filter_by(checkout_request_id="ws_CO_1").one()
        assert transaction.status == "pending"
        assert transaction.customer_id == customer.id
        assert transaction.landlord_id == customer.landlord_id
        assert daraja.push_calls[0]["account_reference"] == "NOLOJIA-Jane Wanji"
        assert daraja.push_calls[0]["transaction_desc"] == "Internet payment for Jane Wanjiku"

    def test_explicit_account_reference(self, client, daraja, customer):
        _push(client, customer_id=customer.id, account_reference="HSE-12B")
        assert daraja.push_calls[0]["account_reference"] == "HSE-12B"

    def test_missing_fields(self, client, daraja, customer):
        response = client.post("/payments/stk-push", json={"customer_id": customer.id, "amount": 1})
        assert response.status_code == 400
        assert response.get_json() == {
            "success": False,
            "error": "customer_id, phone_number, and amount are required",
        }

    def test_non_json_body(self, client, daraja):
        response = client.post("/payments/stk-push", data="amount=1", content_type="text/plain")
        assert response.status_code == 400

    def test_amount_above_ceiling_has_no_side_effects(self, client, daraja, customer):
        response = _push(client, customer_id=customer.id, amount=200000)
        assert response.status_code == 400
        assert "between 1 and 150,000" in response.get_json()["error"]
        assert daraja.push_calls == []
        assert MpesaStkTransaction.query.count() == 0

    def test_amount_not_a_number(self, client, daraja, customer):
        response = _push(client, customer_id=customer.id, amount="lots")
        assert response.status_code == 400

    def test_unknown_customer(self, client, daraja):
        response = _push(client, customer_id="no-such-customer")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Customer not found"
        assert daraja.push_calls == []

    def test_not_configured(self, client, daraja, customer):
        daraja.configured = False
        response = _push(client, customer_id=customer.id)
        assert response.status_code == 503
        assert "not configured" in response.get_json()["error"]
        assert daraja.push_calls == []

    def test_provider_rejection(self, client, daraja, customer):
        daraja.push_response = {"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"}
        response = _push(client, customer_id=customer.id)
        assert response.status_code == 400
        assert response.get_json()["error"] == "Bad Request - Invalid PhoneNumber"
        assert MpesaStkTransaction.query.count() == 0

    def test_transport_error(self, client, daraja, customer, transport_error):
        daraja.push_error = transport_error
        response = _push(client, customer_id=customer.id)
        assert response.status_code == 400
        assert response.get_json()["success"] is False
        assert MpesaStkTransaction.query.count() == 0


def test_configuration_status(client, daraja):
    response = client.get("/payments/stk-push")
    assert response.get_json() == {
        "configured": True,
        "environment": "sandbox",
        "shortcode": "174379",
        "hasCallbackUrl": True,
    }


def test_configuration_status_with_real_client(client):
    body = client.get("/payments/stk-push").get_json()
    assert body["configured"] is True
    assert "test-consumer-secret" not in str(body)
    assert "test-passkey" not in str(body)


class TestStkCallback:
    def _initiate(self, client, customer):
        assert _push(client, customer_id=customer.id).status_code == 200

    def test_success_records_billing_payment(self, client, daraja, customer):
        self._initiate(client, customer)

        response = client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))

        assert response.status_code == 200
        assert response.get_json()["ResultCode"] == 0
        db.session.expire_all()
        transaction = MpesaStkTransaction.query.filter_by(checkout_request_id="ws_CO_1").one()
        assert transaction.status == "completed"
        assert transaction.mpesa_receipt_number == "NLJ7X92M"
        payment = LandlordPayment.query.one()
        assert payment.mpesa_receipt == "NLJ7X92M"
        assert payment.mpesa_phone == "254712345678"
        assert payment.customer_id == customer.id
        assert transaction.payment_id == payment.id

    def test_duplicate_callback_records_one_payment(self, client, daraja, customer):
        self._initiate(client, customer)
        client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))
        response = client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))
        assert response.get_json()["ResultCode"] == 0
        assert LandlordPayment.query.count() == 1

    def test_cancelled_payment(self, client, daraja, customer):
        self._initiate(client, customer)
        response = client.post("/payments/stk-callback", json=make_callback(result_code=1032))
        assert response.get_json()["ResultCode"] == 0
        db.session.expire_all()
        assert MpesaStkTransaction.query.one().status == "failed"
        assert LandlordPayment.query.count() == 0

    def test_unknown_checkout_id_is_acknowledged_and_recorded(self, client, billing):
        response = client.post("/payments/stk-callback", json=make_callback("ws_CO_ghost", items=SUCCESS_ITEMS))

        assert response.status_code == 200
        assert response.get_json() == {"ResultCode": 0, "ResultDesc": "Callback received"}
        notification = AdminNotification.query.filter_by(type="reconciliation").one()
        assert notification.related_id == "ws_CO_ghost"
        assert billing.calls == []

    def test_malformed_payload_is_acknowledged(self, client):
        response = client.post("/payments/stk-callback", json={"unexpected": True})
        assert response.status_code == 200
        assert response.get_json()["ResultCode"] == 0
        assert AdminNotification.query.filter_by(type="callback").count() == 1

    def test_non_json_payload_is_acknowledged(self, client):
        response = client.post("/payments/stk-callback", data="<xml/>", content_type="application/xml")
        assert response.status_code == 200
        assert response.get_json()["ResultCode"] == 0

    def test_unexpected_error_is_acknowledged(self, client, service, daraja, customer, monkeypatch):
        self._initiate(client, customer)

        def explode(callback):
            raise RuntimeError("database went away")

        monkeypatch.setattr(service, "process_callback", explode)
        response = client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))
        assert response.status_code == 200
        assert response.get_json()["ResultCode"] == 0
        assert AdminNotification.query.filter_by(type="system", related_id="ws_CO_1").count() == 1

    def test_health_check(self, client):
        body = client.get("/payments/stk-callback").get_json()
        assert body["status"] == "ok"


class TestStkStatus:
    def test_missing_param(self, client):
        response = client.get("/payments/stk-status")
        assert response.status_code == 400
        assert response.get_json()["error"] == "checkout_request_id is required"

    def test_unknown(self, client, daraja):
        response = client.get("/payments/stk-status?checkout_request_id=ws_CO_missing")
        assert response.status_code == 404

    def test_completed_without_provider_call(self, client, daraja, customer):
        _push(client, customer_id=customer.id)
        client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))

        response = client.get("/payments/stk-status?checkout_request_id=ws_CO_1")

        data = response.get_json()["data"]
        assert data["status"] == "completed"
        assert data["mpesa_receipt"] == "NLJ7X92M"
        assert data["amount"] == 1
        assert daraja.query_calls == []

    def test_pending_reconciled_by_poll(self, client, daraja, customer):
        _push(client, customer_id=customer.id)
        daraja.query_response.update({"ResultCode": "1032", "ResultDesc": "Request cancelled by user"})

        data = client.get("/payments/stk-status?checkout_request_id=ws_CO_1").get_json()["data"]

        assert data["status"] == "failed"
        assert data["result_description"] == "Request cancelled by user"
        db.session.expire_all()
        assert MpesaStkTransaction.query.one().status == "failed"

    def test_still_pending(self, client, daraja, customer):
        _push(client, customer_id=customer.id)
        daraja.query_response = {"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}

        data = client.get("/payments/stk-status?checkout_request_id=ws_CO_1").get_json()["data"]

        assert data["status"] == "pending"
        assert data["message"] == "Payment is still pending. Complete payment on your phone."

    def test_callback_after_poll_completes_audit_trail(self, client, daraja, customer):
        _push(client, customer_id=customer.id)
        client.get("/payments/stk-status?checkout_request_id=ws_CO_1")
        payment = LandlordPayment.query.one()
        assert payment.mpesa_receipt is None
        assert payment.transaction_ref == "ws_CO_1"

        response = client.post("/payments/stk-callback", json=make_callback(items=SUCCESS_ITEMS))

        assert response.get_json()["ResultCode"] == 0
        db.session.expire_all()
        transaction = MpesaStkTransaction.query.one()
        payment = LandlordPayment.query.one()
        assert transaction.mpesa_receipt_number == "NLJ7X92M"
        assert transaction.payment_id == payment.id
        assert payment.mpesa_receipt == "NLJ7X92M"
        assert payment.transaction_ref == "NLJ7X92M"
