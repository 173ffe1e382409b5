"""
Admin notification utility functions.
Payment problems that the M-Pesa callback never reports back to anyone end up here.
"""
from models import db
from models.admin_notification import AdminNotification
from flask import current_app
from utils.errors import CallbackParseError, ReconciliationError
from utils.mail import send_ops_notification

def create_notification(notification_type, title, message, related_id=None):
    """
    Create a new admin notification
    
    Args:
        notification_type: 'reconciliation', 'billing', 'callback', or 'system'
        title: Notification title
        message: Notification message
        related_id: Optional checkout request id or transaction id
    
    Returns:
        AdminNotification object or None if creation failed
    """
    try:
        notification = AdminNotification(
            type=notification_type,
            title=title,
            message=message,
            related_id=related_id,
            is_read=False
        )
        db.session.add(notification)
        db.session.commit()
        return notification
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to create notification: {str(e)}", exc_info=True)
        return None

def notify_callback_failure(error, checkout_request_id=None):
    """Record a webhook we acknowledged but could not apply"""
    if isinstance(error, ReconciliationError):
        title = "Unmatched M-Pesa Callback"
        message = f"Callback for unknown CheckoutRequestID {error.checkout_request_id}: {error.message}"
        notification = create_notification('reconciliation', title, message,
                                           related_id=error.checkout_request_id)
        send_ops_notification(title, message)
        return notification
    if isinstance(error, CallbackParseError):
        return create_notification('callback', "Malformed M-Pesa Callback", error.message,
                                   related_id=checkout_request_id)
    return create_notification('system', "M-Pesa Callback Error", str(error),
                               related_id=checkout_request_id)

def notify_payment_conflict(transaction, mpesa_receipt=None):
    """Safaricom reports success for a transaction we already settled as failed"""
    title = "Paid M-Pesa Transaction Marked Failed"
    message = (
        f"Success callback (receipt {mpesa_receipt or 'N/A'}, KES {transaction.amount}) arrived for "
        f"STK transaction {transaction.checkout_request_id}, which was already failed: "
        f"{transaction.result_description}. No billing record was created."
    )
    notification = create_notification('reconciliation', title, message, related_id=transaction.checkout_request_id)
    send_ops_notification(title, message)
    return notification

def notify_billing_failure(transaction, error_message):
    """Payment is completed but the billing record could not be created"""
    title = "Billing Failed For Completed Payment"
    message = (
        f"STK transaction {transaction.checkout_request_id} (receipt "
        f"{transaction.mpesa_receipt_number or 'N/A'}, KES {transaction.amount}) is completed "
        f"but billing failed: {error_message}"
    )
    notification = create_notification('billing', title, message, related_id=transaction.checkout_request_id)
    send_ops_notification(title, message)
    return notification
