"""
M-Pesa STK Push payment lifecycle: initiation, callback processing, status
reconciliation and expiry of abandoned requests.

    [none] --initiate ok--> pending --result 0----> completed
                                    --result != 0-> failed

Terminal states are final. Every terminal write goes through the
repository's pending-only update, and the billing effect runs only for the
call that actually made the pending -> completed transition.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from models.transaction import STATUS_COMPLETED, STATUS_FAILED
from utils.billing import BillingService
from utils.daraja import DarajaClient
from utils.daraja_request import DEFAULT_COUNTRY_CODE, normalize_phone_number, whole_amount
from utils.errors import (
    CallbackParseError,
    ConfigurationError,
    ProviderError,
    ProviderRejection,
    ReconciliationError,
    TransactionNotFound,
    ValidationError,
)
from utils.notifications import notify_billing_failure, notify_payment_conflict
from utils.stk_repository import StkTransactionRepository

logger = logging.getLogger(__name__)

MIN_AMOUNT = 1
DEFAULT_MAX_AMOUNT = 150000
EXPIRED_RESULT_CODE = -1
EXPIRED_DESCRIPTION = 'Expired: no callback received'
PENDING_MESSAGE = 'Payment is still pending. Complete payment on your phone.'
NOT_CONFIGURED_MESSAGE = 'M-Pesa payment is not configured. Please contact administrator.'

# Daraja query answer while the customer has not yet acted on the prompt
PROCESSING_ERROR_CODE = '500.001.1001'

METADATA_FIELDS = ('MpesaReceiptNumber', 'Amount', 'PhoneNumber', 'TransactionDate')


@dataclass
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    customer_message: Optional[str]
    response_description: Optional[str] = None


@dataclass
class StkCallback:
    merchant_request_id: Optional[str]
    checkout_request_id: str
    result_code: int
    result_description: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self):
        return self.result_code == 0

    @property
    def receipt_number(self):
        return self.metadata.get('MpesaReceiptNumber')

    @property
    def amount(self):
        return self.metadata.get('Amount')

    @property
    def phone_number(self):
        return self.metadata.get('PhoneNumber')

    @property
    def transaction_date(self):
        return self.metadata.get('TransactionDate')


@dataclass
class CallbackOutcome:
    transaction_id: str
    status: str
    applied: bool
    payment_id: Optional[str] = None


@dataclass
class ProviderQuery:
    """
    What Daraja said about a pending transaction. `answered` is False when
    the query could not be made or understood, so the state is unknown.
    """
    answered: bool
    result_code: Optional[int] = None
    result_description: Optional[str] = None

    @property
    def final(self):
        return self.result_code is not None


def validate_amount(amount, max_amount=DEFAULT_MAX_AMOUNT):
    """Return `amount` as a Decimal in [1, max_amount] or raise ValidationError"""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError('Amount must be a number')
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError('Amount must be a number')
    if not value.is_finite() or value < MIN_AMOUNT or value > max_amount:
        raise ValidationError(f'Amount must be between {MIN_AMOUNT} and {max_amount:,} KES')
    return value


def extract_callback_metadata(callback_metadata):
    """
    Pick the named items out of CallbackMetadata.Item.
    Safaricom does not guarantee item order or that every item is present.
    """
    found = {}
    items = callback_metadata.get('Item') if isinstance(callback_metadata, dict) else None
    if not isinstance(items, list):
        return found
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get('Name')
        if name not in METADATA_FIELDS or 'Value' not in item:
            continue
        value = item['Value']
        if name == 'Amount':
            try:
                value = Decimal(str(value))
            except (InvalidOperation, ValueError):
                continue
        elif value is not None:
            value = str(value)
        found[name] = value
    return found


def parse_stk_callback(payload):
    """Turn the {Body: {stkCallback: {...}}} envelope into an StkCallback"""
    body = payload.get('Body') if isinstance(payload, dict) else None
    stk = body.get('stkCallback') if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackParseError('Invalid payload: missing Body.stkCallback')

    checkout_request_id = stk.get('CheckoutRequestID')
    if not checkout_request_id:
        raise CallbackParseError('Invalid payload: missing CheckoutRequestID')

    raw_code = stk.get('ResultCode')
    if raw_code is None or isinstance(raw_code, bool):
        raise CallbackParseError('Invalid payload: missing ResultCode')
    try:
        result_code = int(raw_code)
    except (TypeError, ValueError):
        raise CallbackParseError(f'Invalid payload: ResultCode {raw_code!r} is not an integer')

    metadata = {}
    if result_code == 0:
        metadata = extract_callback_metadata(stk.get('CallbackMetadata'))

    return StkCallback(
        merchant_request_id=stk.get('MerchantRequestID'),
        checkout_request_id=str(checkout_request_id),
        result_code=result_code,
        result_description=stk.get('ResultDesc'),
        metadata=metadata,
    )


class StkPushService:
    """Orchestrates Daraja calls, transaction persistence and billing"""

    def __init__(self, client, repository=None, billing=None, country_code=DEFAULT_COUNTRY_CODE,
                 max_amount=DEFAULT_MAX_AMOUNT, pending_timeout_minutes=30, clock=datetime.utcnow):
        self.client = client
        self.repository = repository or StkTransactionRepository()
        self.billing = billing
        self.country_code = country_code
        self.max_amount = max_amount
        self.pending_timeout_minutes = pending_timeout_minutes
        self.clock = clock

    @classmethod
    def from_config(cls, config):
        return cls(
            client=DarajaClient.from_config(config),
            billing=BillingService(),
            country_code=config.get('MPESA_COUNTRY_CODE', DEFAULT_COUNTRY_CODE),
            max_amount=config.get('MPESA_MAX_AMOUNT', DEFAULT_MAX_AMOUNT),
            pending_timeout_minutes=config.get('MPESA_PENDING_TIMEOUT_MINUTES', 30),
        )

    def is_configured(self):
        return self.client.is_configured

    def config_status(self):
        return self.client.config_status()

    # Initiation

    def initiate(self, phone_number, amount, account_reference=None, description=None,
                 customer_id=None, landlord_id=None):
        """
        Send an STK Push and record it as pending.

        Raises ConfigurationError or ValidationError before any I/O, and a
        ProviderError subclass when Daraja refuses or cannot be reached. No
        transaction is stored unless Daraja accepted the request.
        """
        if not self.is_configured():
            raise ConfigurationError(NOT_CONFIGURED_MESSAGE)
        value = validate_amount(amount, self.max_amount)
        phone = normalize_phone_number(phone_number, self.country_code)
        charged = whole_amount(value)

        logger.info("[STK Push] Initiating: customer=%s amount=%s", customer_id, charged)
        data = self.client.stk_push(phone, charged, account_reference, description)

        if str(data.get('ResponseCode')) != '0':
            error = data.get('errorMessage') or data.get('ResponseDescription') or 'STK Push failed'
            logger.error("[STK Push] Rejected by M-Pesa: %s", data)
            raise ProviderRejection(error, response_code=data.get('ResponseCode') or data.get('errorCode'))

        checkout_request_id = data.get('CheckoutRequestID')
        if not checkout_request_id:
            logger.error("[STK Push] Accepted without CheckoutRequestID: %s", data)
            raise ProviderRejection('M-Pesa did not return a CheckoutRequestID')

        self.repository.insert_pending(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get('MerchantRequestID'),
            phone_number=phone,
            amount=charged,
            customer_id=customer_id,
            landlord_id=landlord_id,
            account_reference=account_reference,
            transaction_desc=description,
        )
        logger.info("[STK Push] Initiated: %s", checkout_request_id)

        return StkPushResult(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get('MerchantRequestID'),
            customer_message=data.get('CustomerMessage'),
            response_description=data.get('ResponseDescription'),
        )

    # Terminal transitions

    def _settle(self, checkout_request_id, result_code, result_description,
                receipt=None, amount=None, phone_number=None):
        """
        Apply a terminal result. Returns (transaction, applied, payment_id).
        Billing runs only when this call moved the row to completed.
        """
        status = STATUS_COMPLETED if result_code == 0 else STATUS_FAILED
        applied = self.repository.update_terminal(
            checkout_request_id,
            status,
            result_code,
            result_description,
            mpesa_receipt_number=receipt,
            completed_at=self.clock(),
        )
        transaction = self.repository.find_by_checkout_id(checkout_request_id)
        if not applied:
            return transaction, False, None

        logger.info("[STK Push] %s -> %s (code %s)", checkout_request_id, status, result_code)
        payment_id = None
        if status == STATUS_COMPLETED:
            payment_id = self._credit_billing(transaction, amount, receipt, phone_number)
        return transaction, True, payment_id

    def _credit_billing(self, transaction, amount, receipt, phone_number):
        # The row is already durably completed; a billing failure is reported
        # for manual reconciliation and never reopens the payment.
        if self.billing is None:
            return None
        try:
            payment = self.billing.record_mpesa_payment(
                customer_id=transaction.customer_id,
                amount=amount if amount is not None else transaction.amount,
                mpesa_receipt=receipt,
                phone_number=phone_number or transaction.phone_number,
                transaction_ref=receipt or transaction.checkout_request_id,
            )
        except Exception as e:
            logger.error("[STK Push] Billing failed for %s: %s",
                         transaction.checkout_request_id, e, exc_info=True)
            notify_billing_failure(transaction, str(e))
            return None

        self.repository.link_payment(transaction.checkout_request_id, payment.id)
        logger.info("[STK Push] Payment %s linked to %s", payment.id, transaction.checkout_request_id)
        return payment.id

    # Callback

    def process_callback(self, callback):
        """
        Apply a parsed Daraja callback. Raises ReconciliationError when no
        transaction matches. Repeated callbacks are no-ops (applied=False).
        """
        logger.info("[STK Callback] Processing %s (code %s)",
                    callback.checkout_request_id, callback.result_code)
        existing = self.repository.find_by_checkout_id(callback.checkout_request_id)
        if existing is None:
            raise ReconciliationError(
                f"No STK transaction for CheckoutRequestID {callback.checkout_request_id}",
                checkout_request_id=callback.checkout_request_id,
            )

        transaction, applied, payment_id = self._settle(
            callback.checkout_request_id,
            callback.result_code,
            callback.result_description,
            receipt=callback.receipt_number if callback.succeeded else None,
            amount=callback.amount,
            phone_number=callback.phone_number,
        )
        if not applied:
            self._reconcile_settled(transaction, callback)
        return CallbackOutcome(
            transaction_id=transaction.id,
            status=transaction.status,
            applied=applied,
            payment_id=payment_id if applied else transaction.payment_id,
        )

    def _reconcile_settled(self, transaction, callback):
        """A callback for a row that the poller, the sweep or an earlier callback already settled"""
        checkout_request_id = transaction.checkout_request_id
        if not callback.succeeded:
            logger.info("[STK Callback] %s already %s; ignoring repeat", checkout_request_id, transaction.status)
            return

        if transaction.status == STATUS_FAILED:
            logger.error("[STK Callback] Success reported for %s which is already failed (%s)",
                         checkout_request_id, transaction.result_description)
            notify_payment_conflict(transaction, callback.receipt_number)
            return

        receipt = callback.receipt_number
        if transaction.mpesa_receipt_number or not receipt:
            logger.info("[STK Callback] %s already %s; ignoring repeat", checkout_request_id, transaction.status)
            return

        if not self.repository.fill_receipt(checkout_request_id, receipt):
            return
        logger.info("[STK Callback] Receipt %s recorded for %s", receipt, checkout_request_id)

        if self.billing is None or not transaction.payment_id:
            return
        try:
            self.billing.attach_mpesa_receipt(transaction.payment_id, receipt)
        except Exception as e:
            logger.error("[STK Callback] Could not attach receipt to payment %s: %s",
                         transaction.payment_id, e, exc_info=True)
            notify_billing_failure(transaction, str(e))

    # Status polling

    def _query_provider(self, checkout_request_id):
        """Ask Daraja for the result of a pending transaction"""
        if not self.is_configured():
            return ProviderQuery(answered=False)
        try:
            data = self.client.stk_query(checkout_request_id)
        except ProviderError as e:
            logger.warning("[STK Status] Query failed for %s: %s", checkout_request_id, e.message)
            return ProviderQuery(answered=False)

        if str(data.get('errorCode')) == PROCESSING_ERROR_CODE:
            logger.info("[STK Status] %s still processing", checkout_request_id)
            return ProviderQuery(answered=True)

        if str(data.get('ResponseCode')) != '0':
            logger.warning("[STK Status] Query for %s returned an error: %s", checkout_request_id,
                           data.get('errorMessage') or data.get('ResponseDescription'))
            return ProviderQuery(answered=False)

        if data.get('ResultCode') in (None, ''):
            return ProviderQuery(answered=True)
        try:
            result_code = int(data['ResultCode'])
        except (TypeError, ValueError):
            logger.warning("[STK Status] Unexpected ResultCode for %s: %r",
                           checkout_request_id, data.get('ResultCode'))
            return ProviderQuery(answered=False)
        return ProviderQuery(answered=True, result_code=result_code, result_description=data.get('ResultDesc'))

    def query_status(self, checkout_request_id):
        """Current view of a transaction, asking Daraja only while it is pending"""
        transaction = self.repository.find_by_checkout_id(checkout_request_id)
        if transaction is None:
            raise TransactionNotFound('Transaction not found')
        if transaction.is_terminal:
            return status_view(transaction)

        answer = self._query_provider(checkout_request_id)
        if answer.final:
            transaction, _, _ = self._settle(checkout_request_id, answer.result_code, answer.result_description)
        return status_view(transaction)

    # Expiry sweep

    def expire_stale_pending(self, older_than_minutes=None):
        """
        Resolve pending transactions older than the cutoff. Daraja's final
        result is applied when it has one; rows Daraja confirms are still
        unresolved are marked failed. Rows whose status could not be fetched
        stay pending for the next run. Returns the number of rows expired.
        """
        minutes = self.pending_timeout_minutes if older_than_minutes is None else older_than_minutes
        cutoff = self.clock() - timedelta(minutes=minutes)
        expired = 0
        unknown = 0
        for transaction in self.repository.find_stale_pending(cutoff):
            checkout_request_id = transaction.checkout_request_id
            answer = self._query_provider(checkout_request_id)
            if answer.final:
                self._settle(checkout_request_id, answer.result_code, answer.result_description)
                continue
            if not answer.answered:
                unknown += 1
                continue
            _, applied, _ = self._settle(checkout_request_id, EXPIRED_RESULT_CODE, EXPIRED_DESCRIPTION)
            if applied:
                expired += 1
        if expired:
            logger.info("[STK Sweep] Expired %s pending transaction(s) older than %s minutes", expired, minutes)
        if unknown:
            logger.warning("[STK Sweep] Left %s stale transaction(s) pending: M-Pesa status unavailable", unknown)
        return expired


def _iso(value):
    return value.isoformat() if value else None


def status_view(transaction):
    view = {
        'status': transaction.status,
        'amount': transaction.amount,
        'phone_number': transaction.phone_number,
        'created_at': _iso(transaction.created_at),
    }
    if transaction.is_terminal:
        view.update({
            'mpesa_receipt': transaction.mpesa_receipt_number,
            'result_description': transaction.result_description,
            'completed_at': _iso(transaction.completed_at),
        })
    else:
        view['message'] = PENDING_MESSAGE
    return view
