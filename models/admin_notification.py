"""
Admin Notification model definition
"""
from models import db
from datetime import datetime

class AdminNotification(db.Model):
    """Operator-facing record of payment problems that callers never see"""
    __tablename__ = 'admin_notifications'
    
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False)  # reconciliation, billing, callback, system
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    related_id = db.Column(db.String(100), nullable=True)  # checkout_request_id or transaction id
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    def __repr__(self):
        return f'<AdminNotification {self.id}: {self.type}>'
