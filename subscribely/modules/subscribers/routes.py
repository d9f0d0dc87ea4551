"""
Subscribers Routes
==================

Provides:
- POST /api/subscribe -- register an email (create or reactivate)
- POST /api/unsubscribe -- unsubscribe by token or email
- GET /api/subscribers -- paged subscriber list (?page&limit&status)
- GET /api/subscribers/stats -- subscriber statistics

Every response carries ``success``. Failure messages are generic; the raw
error is only logged server side.
"""

import logging
from flask import request, jsonify, current_app
from . import subscribers_bp
from .models import (
    ALREADY_UNSUBSCRIBED, CREATED, REACTIVATED,
    InvalidArgumentError, InvalidEmailError, NotFoundError,
    StorageUnavailableError, SubscriberError,
)
from ...core.logging_service import LoggingService, db_log
from .registry import is_present

# Setup logging
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

MESSAGES = {
    'created': 'Subscription complete! Thanks for subscribing.',
    'reactivated': 'Welcome back! Your subscription has been reactivated.',
    'already_active': 'This email address is already subscribed.',
    'invalid_email': 'Please enter a valid email address.',
    'unsubscribed': 'You have been unsubscribed successfully.',
    'already_unsubscribed': 'This email address is already unsubscribed.',
    'missing_identifier': 'An unsubscribe token or email address is required.',
    'not_found': 'Subscription not found.',
    'bad_request': 'Invalid request.',
    'subscribe_failed': 'Something went wrong while subscribing. Please try again later.',
    'unsubscribe_failed': 'Something went wrong while unsubscribing. Please try again later.',
    'list_failed': 'Could not load the subscriber list.',
    'stats_failed': 'Could not load subscriber statistics.',
}


def get_registry():
    """The SubscriberRegistry built by the Subscribely extension"""
    return current_app.extensions['subscribely'].registry


def get_client_ip():
    """Get client IP address from request"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def _fail(message_key, status_code):
    return jsonify({'success': False, 'message': MESSAGES[message_key]}), status_code


def _storage_failure(operation, error, message_key):
    logger.error(f"Storage error in {operation}: {error}")
    db_log('error', 'subscribers', f'Storage error in {operation}', {'error': str(error)})
    return _fail(message_key, 500)


# ===================
# PUBLIC API ROUTES
# ===================

@subscribers_bp.route('/subscribe', methods=['POST'])
def subscribe():
    """Handle new subscription requests"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get('email'):
        return _fail('invalid_email', 400)

    try:
        result = get_registry().register(
            data['email'],
            ip_address=get_client_ip(),
            user_agent=request.headers.get('User-Agent', '')[:500],
        )
    except InvalidEmailError:
        return _fail('invalid_email', 400)
    except StorageUnavailableError as e:
        return _storage_failure('subscribe', e, 'subscribe_failed')
    except SubscriberError as e:
        logger.error(f"Error in subscribe: {e}")
        LoggingService.log_error_with_traceback('subscribers', e, {'operation': 'subscribe'})
        return _fail('subscribe_failed', 500)

    if result.outcome in (CREATED, REACTIVATED):
        return jsonify({
            'success': True,
            'message': MESSAGES[result.outcome],
            'subscriber_id': result.subscriber.id,
        }), 200

    return _fail('already_active', 409)


@subscribers_bp.route('/unsubscribe', methods=['POST'])
def unsubscribe():
    """Handle unsubscribe requests by token or email"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    token = data.get('token')
    email = data.get('email')
    if not is_present(token) and not is_present(email):
        return _fail('missing_identifier', 400)

    try:
        result = get_registry().unsubscribe(
            token=token if is_present(token) else None,
            email=email if is_present(email) else None,
        )
    except InvalidArgumentError:
        return _fail('missing_identifier', 400)
    except NotFoundError:
        return _fail('not_found', 404)
    except StorageUnavailableError as e:
        return _storage_failure('unsubscribe', e, 'unsubscribe_failed')
    except SubscriberError as e:
        logger.error(f"Error in unsubscribe: {e}")
        LoggingService.log_error_with_traceback('subscribers', e, {'operation': 'unsubscribe'})
        return _fail('unsubscribe_failed', 500)

    message_key = 'already_unsubscribed' if result.outcome == ALREADY_UNSUBSCRIBED else 'unsubscribed'
    return jsonify({'success': True, 'message': MESSAGES[message_key]}), 200


# ===================
# ADMIN QUERY ROUTES
# ===================

@subscribers_bp.route('/subscribers', methods=['GET'])
def list_subscribers():
    """Paged subscriber list, newest first"""
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        return _fail('bad_request', 400)
    limit = min(limit, MAX_PAGE_SIZE)
    status = request.args.get('status', 'active')

    try:
        result = get_registry().list_subscribers(page, limit, status)
    except InvalidArgumentError:
        return _fail('bad_request', 400)
    except StorageUnavailableError as e:
        return _storage_failure('list_subscribers', e, 'list_failed')

    return jsonify({'success': True, 'data': result.to_dict()}), 200


@subscribers_bp.route('/subscribers/stats', methods=['GET'])
def get_subscriber_stats():
    """Get subscriber statistics"""
    try:
        stats = get_registry().get_statistics()
    except StorageUnavailableError as e:
        return _storage_failure('get_subscriber_stats', e, 'stats_failed')

    return jsonify({'success': True, 'stats': stats.to_dict()}), 200
