"""
M-Pesa STK Push API routes
"""
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from models import db
from models.landlord import LandlordCustomer
from utils.errors import PaymentError, ConfigurationError, ValidationError, CustomerNotFound
from utils.notifications import notify_callback_failure
from utils.stk_push import NOT_CONFIGURED_MESSAGE, parse_stk_callback, validate_amount

payments_bp = Blueprint('payments', __name__, url_prefix='/payments')


def get_stk_service():
    return current_app.extensions['stk_push']


@payments_bp.errorhandler(PaymentError)
def handle_payment_error(e):
    return jsonify({'success': False, 'error': e.message}), e.status_code


@payments_bp.route('/stk-push', methods=['POST'])
def stk_push():
    """
    Initiate an STK Push payment request

    Body: {customer_id, phone_number, amount, account_reference?}
    """
    service = get_stk_service()
    if not service.is_configured():
        current_app.logger.error(f"[STK Push] Daraja not configured: {service.config_status()}")
        raise ConfigurationError(NOT_CONFIGURED_MESSAGE)

    data = request.get_json(silent=True) or {}
    customer_id = data.get('customer_id')
    phone_number = data.get('phone_number')
    amount = data.get('amount')

    if not customer_id or not phone_number or amount in (None, ''):
        raise ValidationError('customer_id, phone_number, and amount are required')
    validate_amount(amount, service.max_amount)

    customer = db.session.get(LandlordCustomer, str(customer_id))
    if not customer:
        raise CustomerNotFound('Customer not found')

    name = (customer.name or '').strip()
    account_reference = data.get('account_reference') or f"NOLOJIA-{name[:10] or str(customer_id)[:8]}"

    result = service.initiate(
        phone_number=phone_number,
        amount=amount,
        account_reference=account_reference,
        description=f"Internet payment for {name or 'Customer'}",
        customer_id=customer.id,
        landlord_id=customer.landlord_id,
    )

    return jsonify({
        'success': True,
        'data': {
            'checkout_request_id': result.checkout_request_id,
            'merchant_request_id': result.merchant_request_id,
            'customer_message': result.customer_message,
            'message': 'Payment prompt sent to phone. Please complete the payment.',
        },
    })


@payments_bp.route('/stk-push', methods=['GET'])
def stk_push_config():
    """Configuration status (flags only, never secrets)"""
    service = get_stk_service()
    status = service.config_status()
    return jsonify({
        'configured': service.is_configured(),
        'environment': status['environment'],
        'shortcode': status['shortcode'],
        'hasCallbackUrl': status['hasCallbackUrl'],
    })


def _callback_checkout_id(payload):
    try:
        return payload['Body']['stkCallback'].get('CheckoutRequestID')
    except (KeyError, TypeError, AttributeError):
        return None


@payments_bp.route('/stk-callback', methods=['POST'])
def stk_callback():
    """
    Safaricom result webhook.

    Always acknowledged with ResultCode 0, even when we could not apply it,
    otherwise Safaricom keeps retrying. Failures are logged and recorded as
    admin notifications instead.
    """
    payload = request.get_json(silent=True)
    current_app.logger.info(f"[STK Callback] Received: {payload}")

    checkout_request_id = _callback_checkout_id(payload)

    try:
        callback = parse_stk_callback(payload)
        outcome = get_stk_service().process_callback(callback)
    except PaymentError as e:
        current_app.logger.error(f"[STK Callback] Processing failed: {e.message}")
        notify_callback_failure(e, checkout_request_id)
        return jsonify({'ResultCode': 0, 'ResultDesc': 'Callback received'})
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"[STK Callback] Error: {str(e)}", exc_info=True)
        notify_callback_failure(e, checkout_request_id)
        return jsonify({'ResultCode': 0, 'ResultDesc': 'Callback received'})

    current_app.logger.info(
        f"[STK Callback] Processed {checkout_request_id}: transaction={outcome.transaction_id} "
        f"status={outcome.status} applied={outcome.applied}"
    )
    return jsonify({'ResultCode': 0, 'ResultDesc': 'Callback received and processed successfully'})


@payments_bp.route('/stk-callback', methods=['GET'])
def stk_callback_health():
    """Health check for callback URL validation"""
    return jsonify({
        'status': 'ok',
        'message': 'M-Pesa STK callback endpoint is active',
        'timestamp': datetime.utcnow().isoformat() + 'Z',
    })


@payments_bp.route('/stk-status', methods=['GET'])
def stk_status():
    """Reconciled status of an STK Push transaction"""
    checkout_request_id = request.args.get('checkout_request_id', '').strip()
    if not checkout_request_id:
        raise ValidationError('checkout_request_id is required')

    view = get_stk_service().query_status(checkout_request_id)
    return jsonify({'success': True, 'data': view})
