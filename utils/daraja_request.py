"""
Daraja request builder: phone formatting, password and timestamp, signed payloads.
Pure functions, no I/O.
"""
import base64
import math
import re
from datetime import datetime

DEFAULT_COUNTRY_CODE = '254'
DEFAULT_ACCOUNT_REFERENCE = 'Nolojia ISP'
DEFAULT_TRANSACTION_DESC = 'Internet subscription payment'

_NON_DIGITS = re.compile(r'\D')


def normalize_phone_number(value, country_code=DEFAULT_COUNTRY_CODE):
    """
    Format a phone number as country-code-prefixed digits (254XXXXXXXXX).

    Never raises: garbage in gives a best-effort digit string out, and the
    caller decides whether it is a usable MSISDN.
    """
    raw = '' if value is None else str(value).strip()
    if raw.startswith('+'):
        raw = raw[1:]
    cleaned = _NON_DIGITS.sub('', raw)

    if cleaned.startswith('0'):
        return country_code + cleaned[1:]
    if not cleaned.startswith(country_code):
        return country_code + cleaned
    return cleaned


def compute_password(shortcode, passkey, timestamp):
    """Base64(Shortcode + Passkey + Timestamp), as Daraja expects it"""
    raw = f"{shortcode}{passkey}{timestamp}".encode('utf-8')
    return base64.b64encode(raw).decode('utf-8')


def generate_timestamp(now=None):
    """Local time as YYYYMMDDHHmmss"""
    return (now or datetime.now()).strftime('%Y%m%d%H%M%S')


def whole_amount(amount):
    """M-Pesa only accepts whole numbers; round up"""
    return int(math.ceil(float(amount)))


def build_stk_push_payload(shortcode, passkey, timestamp, phone_number, amount, callback_url,
                           account_reference=None, transaction_desc=None):
    """Signed body for /mpesa/stkpush/v1/processrequest. phone_number must already be normalized."""
    return {
        "BusinessShortCode": shortcode,
        "Password": compute_password(shortcode, passkey, timestamp),
        "Timestamp": timestamp,
        "TransactionType": "CustomerPayBillOnline",
        "Amount": whole_amount(amount),
        "PartyA": phone_number,
        "PartyB": shortcode,
        "PhoneNumber": phone_number,
        "CallBackURL": callback_url,
        "AccountReference": account_reference or DEFAULT_ACCOUNT_REFERENCE,
        "TransactionDesc": transaction_desc or DEFAULT_TRANSACTION_DESC,
    }


def build_stk_query_payload(shortcode, passkey, timestamp, checkout_request_id):
    """Signed body for /mpesa/stkpushquery/v1/query"""
    return {
        "BusinessShortCode": shortcode,
        "Password": compute_password(shortcode, passkey, timestamp),
        "Timestamp": timestamp,
        "CheckoutRequestID": checkout_request_id,
    }
