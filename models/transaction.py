"""
M-Pesa STK Push transaction model
"""
import uuid
from models import db
from datetime import datetime

STATUS_PENDING = 'pending'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


class MpesaStkTransaction(db.Model):
    """One STK Push attempt. Created pending, updated once to a terminal state, never deleted."""
    __tablename__ = 'mpesa_stk_transactions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), index=True)
    landlord_id = db.Column(db.String(36))
    phone_number = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    account_reference = db.Column(db.String(50))
    transaction_desc = db.Column(db.String(100))
    checkout_request_id = db.Column(db.String(100), unique=True, nullable=False)
    merchant_request_id = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)
    result_code = db.Column(db.Integer)
    result_description = db.Column(db.String(255))
    mpesa_receipt_number = db.Column(db.String(50))
    payment_id = db.Column(db.String(36), db.ForeignKey('landlord_payments.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = db.Column(db.DateTime)

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f'<MpesaStkTransaction {self.checkout_request_id} {self.status}>'
