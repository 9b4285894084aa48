"""
Attendance Routes
Check-in, check-out and presence status endpoints
"""

from flask import Blueprint, request, jsonify
from services.attendance_service import (
    check_in_by_ip, remote_check_in, close_session, get_presence_status
)
from services.exceptions import ValidationError
from services.geofence_service import extract_client_ip

attendance_bp = Blueprint('attendance', __name__)


def _require_telegram_id(data):
    telegram_id = (data or {}).get('telegramId')
    if telegram_id in (None, ''):
        raise ValidationError("telegramId is required")
    return telegram_id


@attendance_bp.route('/ip-checkin', methods=['POST'])
def ip_checkin():
    """
    In-person check-in, verified by office network address

    Request Body:
        {
            "telegramId": "123456789",
            "shiftId": "day"  // optional
        }

    Guards:
        - Observed IP must belong to a branch
        - Only one open session allowed
    """
    data = request.get_json(silent=True) or {}
    telegram_id = _require_telegram_id(data)

    result = check_in_by_ip(telegram_id, extract_client_ip(request.headers), data.get('shiftId'))

    if not result['success']:
        return jsonify(result), 403
    return jsonify(result), 201


@attendance_bp.route('/remote-checkin', methods=['POST'])
def remote_checkin():
    """
    Remote check-in (no geofence)

    Request Body:
        {
            "telegramId": "123456789",
            "shiftId": "night"  // optional
        }

    Guards:
        - Worker must have remote work enabled
        - Only one open session allowed
    """
    data = request.get_json(silent=True) or {}
    telegram_id = _require_telegram_id(data)

    result = remote_check_in(telegram_id, data.get('shiftId'))
    return jsonify(result), 201


@attendance_bp.route('/<int:attendance_id>/checkout', methods=['POST'])
def checkout(attendance_id):
    """
    Administrative check-out

    Request Body:
        {
            "checkOutTime": "18:05",       // HH:MM or HH:MM:SS
            "checkOutDate": "2025-01-16"   // optional, YYYY-MM-DD
        }
    """
    data = request.get_json(silent=True) or {}

    result = close_session(attendance_id, data.get('checkOutTime'), data.get('checkOutDate'))
    return jsonify(result), 200


@attendance_bp.route('/status', methods=['GET'])
def status():
    """
    Current open session for a worker

    Query Parameters:
        telegramId: worker's Telegram id
    """
    telegram_id = _require_telegram_id(request.args)

    result = get_presence_status(telegram_id)
    return jsonify(result), 200
