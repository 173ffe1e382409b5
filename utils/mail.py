"""
Email utility functions
"""
from flask_mail import Mail, Message
from flask import current_app

mail = Mail()

def send_email(subject, recipients, body, html=None):
    """
    Send an email
    
    Args:
        subject: Email subject
        recipients: List of recipient email addresses
        body: Plain text body
        html: HTML body (optional)
    """
    msg = Message(
        subject=subject,
        recipients=recipients,
        body=body,
        html=html
    )
    mail.send(msg)

def send_ops_notification(subject, body):
    """
    Email payment operators (OPS_NOTIFICATION_EMAILS).
    No-op when mail is not configured; never raises.
    """
    if 'mail' not in current_app.extensions:
        return
    
    if not current_app.config.get('MAIL_SERVER'):
        return
    
    recipients = current_app.config.get('OPS_NOTIFICATION_EMAILS') or []
    if not recipients:
        return
    
    try:
        send_email(f"[Noloji Payments] {subject}", recipients, body)
    except Exception as e:
        current_app.logger.error(f"Error sending ops notification: {str(e)}", exc_info=True)
        # Don't raise - ops notifications are non-critical
