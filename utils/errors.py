"""
Payment error taxonomy.
Each error carries the HTTP status the API layer answers with.
"""


class PaymentError(Exception):
    """Base class for payment flow errors"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(PaymentError):
    """M-Pesa credentials or callback URL are missing"""
    status_code = 503


class ValidationError(PaymentError):
    """Request input is malformed or out of range"""
    status_code = 400


class CustomerNotFound(PaymentError):
    status_code = 404


class TransactionNotFound(PaymentError):
    status_code = 404


class ProviderError(PaymentError):
    """Initiation failed on the provider side; the caller may retry"""
    status_code = 400


class ProviderAuthError(ProviderError):
    """OAuth token exchange with Daraja failed"""


class ProviderRejection(ProviderError):
    """Daraja answered but did not accept the request"""

    def __init__(self, message, response_code=None):
        super().__init__(message)
        self.response_code = response_code


class TransportError(ProviderError):
    """Daraja could not be reached"""


class CallbackParseError(PaymentError):
    """Webhook payload lacks the expected Body.stkCallback structure"""
    status_code = 400


class ReconciliationError(PaymentError):
    """Callback references a checkout request we never recorded"""
    status_code = 404

    def __init__(self, message, checkout_request_id=None):
        super().__init__(message)
        self.checkout_request_id = checkout_request_id
