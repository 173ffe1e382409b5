"""
Landlord billing: records received payments and splits revenue between the
landlord and the platform.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from models import db
from models.invoice import LandlordInvoice
from models.landlord import LandlordCustomer
from models.payment import LandlordPayment
from utils.errors import CustomerNotFound

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE = Decimal('30')
CENTS = Decimal('0.01')

CYCLE_DAYS = {
    'daily': 1,
    'weekly': 7,
    'monthly': 30,
    'quarterly': 90,
    'yearly': 365,
}


def split_revenue(amount, commission_rate=DEFAULT_COMMISSION_RATE):
    """Return (landlord_share, nolojia_share) for `amount` at `commission_rate` percent"""
    amount = Decimal(str(amount))
    rate = Decimal(str(commission_rate if commission_rate is not None else DEFAULT_COMMISSION_RATE))
    nolojia_share = (amount * rate / 100).quantize(CENTS, rounding=ROUND_HALF_UP)
    return amount - nolojia_share, nolojia_share


def extend_subscription(subscription, today=None):
    """
    Push `subscription` forward one billing cycle and mark it active.
    A lapsed subscription restarts from today rather than its old end date.
    """
    today = today or datetime.utcnow().date()
    days = CYCLE_DAYS.get(subscription.billing_cycle, CYCLE_DAYS['monthly'])
    base = max(subscription.end_date, today) if subscription.end_date else today
    subscription.end_date = base + timedelta(days=days)
    subscription.status = 'active'
    return subscription.end_date


def current_subscription(customer):
    if not customer.subscriptions:
        return None
    return max(customer.subscriptions, key=lambda s: (s.end_date, s.created_at or datetime.min))


class BillingService:
    """Billing collaborator invoked once per completed M-Pesa payment"""

    def record_mpesa_payment(self, customer_id, amount, mpesa_receipt=None, phone_number=None,
                             transaction_ref=None):
        """
        Create a completed LandlordPayment for the customer, extend their
        subscription, settle unpaid invoices and re-enable the customer if
        they were suspended.

        Args:
            customer_id: LandlordCustomer id
            amount: Amount received (whole KES)
            mpesa_receipt: M-Pesa receipt number, when the callback carried one
            phone_number: Paying MSISDN
            transaction_ref: Reference stored on the payment (receipt or checkout id)

        Returns:
            LandlordPayment
        """
        customer = db.session.get(LandlordCustomer, customer_id) if customer_id else None
        if not customer:
            raise CustomerNotFound(f"Customer {customer_id} not found")

        landlord = customer.landlord
        commission_rate = landlord.commission_rate if landlord else None
        landlord_share, nolojia_share = split_revenue(amount, commission_rate)
        subscription = current_subscription(customer)
        now = datetime.utcnow()

        payment = LandlordPayment(
            customer_id=customer.id,
            landlord_id=customer.landlord_id,
            subscription_id=subscription.id if subscription else None,
            amount=Decimal(str(amount)),
            payment_method='mpesa',
            transaction_ref=transaction_ref or mpesa_receipt,
            mpesa_receipt=mpesa_receipt,
            mpesa_phone=phone_number,
            status='completed',
            paid_at=now,
            landlord_share=landlord_share,
            nolojia_share=nolojia_share,
        )

        try:
            db.session.add(payment)
            db.session.flush()

            if customer.status == 'suspended':
                customer.status = 'active'
                logger.info("[Billing] Re-enabled suspended customer %s after payment", customer.id)

            if subscription:
                new_end = extend_subscription(subscription, now.date())
                logger.info("[Billing] Subscription %s extended to %s", subscription.id, new_end)

            settled = LandlordInvoice.query.filter_by(
                customer_id=customer.id,
                status='unpaid',
            ).update({'status': 'paid', 'paid_at': now, 'payment_id': payment.id}, synchronize_session=False)

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("[Billing] Recorded M-Pesa payment %s: KES %s for customer %s (%s invoice(s) settled)",
                    payment.id, amount, customer.id, settled)
        return payment

    def attach_mpesa_receipt(self, payment_id, mpesa_receipt):
        """
        Fill the receipt on a payment recorded before one was known (status
        poll settled first). Returns True if the payment was updated.
        """
        try:
            updated = LandlordPayment.query.filter_by(
                id=payment_id,
                mpesa_receipt=None,
            ).update({'mpesa_receipt': mpesa_receipt, 'transaction_ref': mpesa_receipt},
                     synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        if updated:
            logger.info("[Billing] Receipt %s attached to payment %s", mpesa_receipt, payment_id)
        return updated == 1
