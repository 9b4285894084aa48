"""
Telegram Bot Routes
Presence probe, reminder responses, webhook and reminder trigger endpoints
"""

from flask import Blueprint, request, jsonify
from config import Config, ShiftCode
from services.exceptions import Conflict, NotFound, ValidationError, UpstreamDeliveryFailure
from services.geofence_service import extract_client_ip
from services.reminder_service import probe, respond, run_reminder_cycle
from services.telegram_service import (
    parse_callback_data, answer_callback_query, send_response_confirmation
)
import logging

logger = logging.getLogger(__name__)

telegram_bot_bp = Blueprint('telegram_bot', __name__)

SECRET_HEADER = 'X-Telegram-Bot-Api-Secret-Token'


def _acknowledge(callback_query_id):
    try:
        answer_callback_query(callback_query_id)
    except UpstreamDeliveryFailure as e:
        logger.error(f"❌ Callback answer {callback_query_id} failed: {e.message}")


def _require(data, field):
    value = data.get(field)
    if value in (None, ''):
        raise ValidationError(f"{field} is required")
    return value


def _optional_id(data, field):
    """Positive integer id or None; numeric strings accepted"""
    value = data.get(field)
    if value in (None, ''):
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{field} must be an integer", {field: value})
    try:
        value = int(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer", {field: value})
    if value <= 0:
        raise ValidationError(f"{field} must be positive", {field: value})
    return value


def _optional_flag(data, field):
    value = data.get(field)
    if value is not None and not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false", {field: value})
    return value


@telegram_bot_bp.route('/check-presence', methods=['POST'])
def check_presence():
    """
    Presence probe from the mini-app

    Request Body:
        {
            "telegramId": "123456789",
            "attendanceId": 42  // optional, defaults to the open session
        }
    """
    data = request.get_json(silent=True) or {}
    telegram_id = _require(data, 'telegramId')

    result = probe(telegram_id, extract_client_ip(request.headers), _optional_id(data, 'attendanceId'))
    return jsonify(result), 200


@telegram_bot_bp.route('/reminder-response', methods=['POST'])
def reminder_response():
    """
    Worker's answer to a checkout prompt

    Request Body:
        {
            "telegramId": "123456789",
            "reminderId": 7,             // optional, defaults to latest active
            "attendanceId": 42,          // optional
            "responseType": "45min",     // i_left | im_at_work | 45min | 2hours | all_day
            "ipAddress": "10.0.0.5",     // optional
            "ipVerified": true           // optional
        }
    """
    data = request.get_json(silent=True) or {}
    telegram_id = _require(data, 'telegramId')
    response_type = _require(data, 'responseType')

    result = respond(
        telegram_id,
        response_type,
        reminder_id=_optional_id(data, 'reminderId'),
        attendance_id=_optional_id(data, 'attendanceId'),
        ip_address=data.get('ipAddress'),
        ip_verified=_optional_flag(data, 'ipVerified')
    )
    return jsonify(result), 200


@telegram_bot_bp.route('/webhook', methods=['POST'])
def webhook():
    """
    Telegram Bot API webhook

    Handles callback queries from checkout prompt buttons
    (callback_data 'r:<response_type>:<reminder_id>'). Answers to an
    already-completed reminder are acknowledged without changes.
    """
    if Config.TELEGRAM_WEBHOOK_SECRET and \
            request.headers.get(SECRET_HEADER) != Config.TELEGRAM_WEBHOOK_SECRET:
        logger.warning("Webhook call with invalid secret token")
        return jsonify({
            "success": False,
            "error": "forbidden",
            "message": "Invalid webhook secret",
            "data": {}
        }), 403

    update = request.get_json(silent=True) or {}
    callback = update.get('callback_query')
    if not callback:
        return jsonify({"ok": True}), 200

    parsed = parse_callback_data(callback.get('data'))
    if parsed is None:
        logger.info(f"Ignoring callback data {callback.get('data')!r}")
        return jsonify({"ok": True}), 200

    response_type, reminder_id = parsed
    telegram_id = (callback.get('from') or {}).get('id')
    chat_id = ((callback.get('message') or {}).get('chat') or {}).get('id') or telegram_id

    try:
        result = respond(telegram_id, response_type, reminder_id=reminder_id)
    except Conflict:
        logger.info(f"Duplicate answer for reminder {reminder_id} from {telegram_id}, ignored")
        _acknowledge(callback.get('id'))
        return jsonify({"ok": True, "duplicate": True}), 200
    except NotFound as e:
        logger.warning(f"⚠️ Webhook answer for reminder {reminder_id}: {e.message}")
        _acknowledge(callback.get('id'))
        return jsonify({"ok": True}), 200

    _acknowledge(callback.get('id'))
    try:
        send_response_confirmation(chat_id, response_type, result['data'].get('language'))
    except UpstreamDeliveryFailure as e:
        logger.error(f"❌ Confirmation to {chat_id} failed: {e.message}")

    return jsonify({"ok": True, "data": result['data']}), 200


@telegram_bot_bp.route('/trigger-reminders', methods=['POST'])
def trigger_reminders():
    """
    Start a shift's reminder ladder and dispatch due reminders

    Request Body:
        {
            "shiftType": "day"  // optional; without it only due reminders are sent
        }
    """
    data = request.get_json(silent=True) or {}
    shift_type = data.get('shiftType')

    if shift_type and not ShiftCode.is_valid(shift_type):
        raise ValidationError(f"Invalid shift '{shift_type}'. Use one of {ShiftCode.all()}")

    stats = run_reminder_cycle(shift_type)
    return jsonify({"success": True, "data": stats}), 200
