"""
Landlord customer subscription model
"""
import uuid
from models import db
from datetime import datetime


class LandlordSubscription(db.Model):
    """Internet package period for a landlord customer; extended by each payment"""
    __tablename__ = 'landlord_subscriptions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), db.ForeignKey('landlord_customers.id'), nullable=False, index=True)
    billing_cycle = db.Column(db.String(20), default='monthly')  # daily, weekly, monthly, quarterly, yearly
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), default='active')  # active, expired, cancelled
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<LandlordSubscription {self.id}>'
