"""
Landlord and landlord customer models
"""
import uuid
from models import db
from datetime import datetime


def _uuid():
    return str(uuid.uuid4())


class Landlord(db.Model):
    """Property owner reselling internet to tenants"""
    __tablename__ = 'landlords'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(120), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 2), default=30)  # platform share, percent
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    customers = db.relationship('LandlordCustomer', backref='landlord', lazy=True)

    def __repr__(self):
        return f'<Landlord {self.name}>'


class LandlordCustomer(db.Model):
    """Tenant subscribed to internet through a landlord"""
    __tablename__ = 'landlord_customers'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    landlord_id = db.Column(db.String(36), db.ForeignKey('landlords.id'), nullable=False, index=True)
    name = db.Column(db.String(120))
    phone = db.Column(db.String(20))
    status = db.Column(db.String(20), default='active')  # active, suspended
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    subscriptions = db.relationship('LandlordSubscription', backref='customer', lazy=True)

    def __repr__(self):
        return f'<LandlordCustomer {self.name}>'
