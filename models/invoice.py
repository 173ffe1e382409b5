"""
Landlord invoice model
"""
import uuid
from models import db
from datetime import datetime


class LandlordInvoice(db.Model):
    """Amount billed to a landlord customer; settled by the next payment"""
    __tablename__ = 'landlord_invoices'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = db.Column(db.String(36), db.ForeignKey('landlord_customers.id'), nullable=False, index=True)
    landlord_id = db.Column(db.String(36), db.ForeignKey('landlords.id'), nullable=False)
    invoice_number = db.Column(db.String(20), unique=True, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(20), default='unpaid')  # unpaid, paid, cancelled
    due_date = db.Column(db.Date)
    paid_at = db.Column(db.DateTime, nullable=True)
    payment_id = db.Column(db.String(36), db.ForeignKey('landlord_payments.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<LandlordInvoice {self.invoice_number}>'
