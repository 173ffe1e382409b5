"""
Shared fixtures: in-memory SQLite app, fake Daraja client, fake billing.
"""
import os

# Must be set before config.py is imported (Config reads the environment at class definition)
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from app import create_app
from config import Config
from models import db
from models.landlord import Landlord, LandlordCustomer
from utils.errors import TransportError


class TestConfig(Config):
    __test__ = False
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MAIL_SERVER = None
    MAIL_SUPPRESS_SEND = True
    OPS_NOTIFICATION_EMAILS = []
    MPESA_ENVIRONMENT = "sandbox"
    MPESA_CONSUMER_KEY = "test-consumer-key"
    MPESA_CONSUMER_SECRET = "test-consumer-secret"
    MPESA_SHORTCODE = "174379"
    MPESA_PASSKEY = "test-passkey"
    MPESA_CALLBACK_URL = "https://pay.example.test/payments/stk-callback"
    MPESA_MAX_AMOUNT = 150000


class FakeDaraja:
    """Stands in for DarajaClient; records every provider call."""

    def __init__(self, configured=True):
        self.configured = configured
        self.push_calls = []
        self.query_calls = []
        self.push_response = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_1",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }
        self.query_response = {
            "ResponseCode": "0",
            "ResponseDescription": "The service request has been accepted successsfully",
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_1",
            "ResultCode": "0",
            "ResultDesc": "The service request is processed successfully.",
        }
        self.push_error = None
        self.query_error = None

    @property
    def is_configured(self):
        return self.configured

    def config_status(self):
        return {
            "environment": "sandbox",
            "shortcode": "174379",
            "hasConsumerKey": self.configured,
            "hasConsumerSecret": self.configured,
            "hasPasskey": True,
            "hasCallbackUrl": self.configured,
        }

    def stk_push(self, phone_number, amount, account_reference=None, transaction_desc=None):
        self.push_calls.append({
            "phone_number": phone_number,
            "amount": amount,
            "account_reference": account_reference,
            "transaction_desc": transaction_desc,
        })
        if self.push_error:
            raise self.push_error
        return dict(self.push_response)

    def stk_query(self, checkout_request_id):
        self.query_calls.append(checkout_request_id)
        if self.query_error:
            raise self.query_error
        return dict(self.query_response)


class FakePayment:
    def __init__(self, payment_id):
        self.id = payment_id


class FakeBilling:
    def __init__(self):
        self.calls = []
        self.receipt_calls = []
        self.error = None

    def record_mpesa_payment(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return FakePayment(f"pay-{len(self.calls)}")

    def attach_mpesa_receipt(self, payment_id, mpesa_receipt):
        self.receipt_calls.append((payment_id, mpesa_receipt))
        return True


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return app.extensions["stk_push"]


@pytest.fixture
def daraja(service):
    fake = FakeDaraja()
    service.client = fake
    return fake


@pytest.fixture
def billing(service):
    fake = FakeBilling()
    service.billing = fake
    return fake


@pytest.fixture
def customer(app):
    landlord = Landlord(name="Kilimani Heights", commission_rate=30)
    db.session.add(landlord)
    db.session.flush()
    customer = LandlordCustomer(landlord_id=landlord.id, name="Jane Wanjiku", phone="0712345678")
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def transport_error():
    return TransportError("Failed to reach M-Pesa: connection refused")


def make_callback(checkout_request_id="ws_CO_1", result_code=0, result_desc=None, items=None):
    """Build a Daraja {Body: {stkCallback: ...}} envelope."""
    stk = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc or (
            "The service request is processed successfully." if result_code == 0
            else "Request cancelled by user"
        ),
    }
    if items is not None:
        stk["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": stk}}
