"""
Landlord payment model: the billing-side record of a received payment
"""
import uuid
from models import db
from datetime import datetime


class LandlordPayment(db.Model):
    """Payment credited to a landlord customer, with the revenue split"""
    __tablename__ = 'landlord_payments'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), db.ForeignKey('landlord_customers.id'), nullable=False, index=True)
    landlord_id = db.Column(db.String(36), db.ForeignKey('landlords.id'), nullable=False, index=True)
    subscription_id = db.Column(db.String(36), db.ForeignKey('landlord_subscriptions.id'), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)  # mpesa, cash, bank, card
    transaction_ref = db.Column(db.String(100))
    mpesa_receipt = db.Column(db.String(50), unique=True)
    mpesa_phone = db.Column(db.String(20))
    status = db.Column(db.String(20), default='completed')
    paid_at = db.Column(db.DateTime, default=datetime.utcnow)
    landlord_share = db.Column(db.Numeric(12, 2))
    nolojia_share = db.Column(db.Numeric(12, 2))

    def __repr__(self):
        return f'<LandlordPayment {self.id}>'
