"""
Persistence for STK Push transactions.
All terminal writes are conditional on the row still being pending, so the
callback, the status poller and the expiry sweep can race without one
overwriting another.
"""
from datetime import datetime

from models import db
from models.transaction import MpesaStkTransaction, STATUS_COMPLETED, STATUS_PENDING


class StkTransactionRepository:
    """Narrow data access over mpesa_stk_transactions"""

    def find_by_checkout_id(self, checkout_request_id):
        return MpesaStkTransaction.query.filter_by(checkout_request_id=checkout_request_id).first()

    def insert_pending(self, checkout_request_id, merchant_request_id, phone_number, amount,
                       customer_id=None, landlord_id=None, account_reference=None, transaction_desc=None):
        transaction = MpesaStkTransaction(
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            phone_number=phone_number,
            amount=amount,
            customer_id=customer_id,
            landlord_id=landlord_id,
            account_reference=account_reference,
            transaction_desc=transaction_desc,
            status=STATUS_PENDING,
        )
        db.session.add(transaction)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return transaction

    def update_terminal(self, checkout_request_id, status, result_code, result_description,
                        mpesa_receipt_number=None, completed_at=None):
        """
        Move a pending row to `status`. Returns True if this call made the
        transition, False if the row was already terminal (or absent).
        """
        now = completed_at or datetime.utcnow()
        values = {
            'status': status,
            'result_code': result_code,
            'result_description': result_description,
            'completed_at': now,
            'updated_at': now,
        }
        if status == STATUS_COMPLETED and mpesa_receipt_number is not None:
            values['mpesa_receipt_number'] = mpesa_receipt_number

        try:
            updated = MpesaStkTransaction.query.filter_by(
                checkout_request_id=checkout_request_id,
                status=STATUS_PENDING,
            ).update(values, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return updated == 1

    def fill_receipt(self, checkout_request_id, mpesa_receipt_number):
        """
        Set the receipt on a completed row that has none yet. Never replaces
        an existing receipt. Returns True if the row was updated.
        """
        try:
            updated = MpesaStkTransaction.query.filter_by(
                checkout_request_id=checkout_request_id,
                status=STATUS_COMPLETED,
                mpesa_receipt_number=None,
            ).update({'mpesa_receipt_number': mpesa_receipt_number, 'updated_at': datetime.utcnow()},
                     synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return updated == 1

    def link_payment(self, checkout_request_id, payment_id):
        try:
            MpesaStkTransaction.query.filter_by(
                checkout_request_id=checkout_request_id,
                payment_id=None,
            ).update({'payment_id': payment_id}, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def find_stale_pending(self, cutoff):
        """Pending rows created before `cutoff`, oldest first"""
        return (
            MpesaStkTransaction.query
            .filter(MpesaStkTransaction.status == STATUS_PENDING)
            .filter(MpesaStkTransaction.created_at < cutoff)
            .order_by(MpesaStkTransaction.created_at)
            .all()
        )
