"""
Routes package for the Noloji payments application
"""
from routes.payments import payments_bp

__all__ = [
    'payments_bp',
]
