"""
Models package for the Noloji payments application
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Import all models here to ensure they're registered
from models.landlord import Landlord, LandlordCustomer
from models.subscription import LandlordSubscription
from models.payment import LandlordPayment
from models.invoice import LandlordInvoice
from models.transaction import MpesaStkTransaction
from models.admin_notification import AdminNotification

__all__ = [
    'db',
    'Landlord',
    'LandlordCustomer',
    'LandlordSubscription',
    'LandlordPayment',
    'LandlordInvoice',
    'MpesaStkTransaction',
    'AdminNotification',
]
