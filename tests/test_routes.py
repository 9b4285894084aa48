import pytest

import app as app_module
from config import Config
from routes import attendance as attendance_routes
from routes import telegram_bot as bot_routes
from services.exceptions import Conflict, ConfigurationUnavailable, NotFound, RemoteWorkNotAllowed


@pytest.fixture
def client():
    return app_module.create_app().test_client()


@pytest.fixture
def recorder():
    class Recorder:
        def __init__(self):
            self.calls = []

        def returning(self, value):
            def fn(*args, **kwargs):
                self.calls.append((args, kwargs))
                if isinstance(value, Exception):
                    raise value
                return value
            return fn
    return Recorder()


# ---------------- Attendance ----------------

def test_ip_checkin_uses_forwarded_address(client, monkeypatch, recorder):
    monkeypatch.setattr(attendance_routes, 'check_in_by_ip', recorder.returning({'success': True, 'data': {'id': 42}}))

    response = client.post('/api/attendance/ip-checkin', json={'telegramId': '555', 'shiftId': 'day'},
                           headers={'X-Forwarded-For': '10.0.0.5, 172.16.0.1'})

    assert response.status_code == 201
    assert recorder.calls[0][0] == ('555', '10.0.0.5', 'day')


def test_ip_checkin_outside_office(client, monkeypatch, recorder):
    miss = {'success': False, 'error': 'ip_not_matched', 'message': 'Office network not detected',
            'detectedIp': 'unknown', 'remoteWorkEnabled': False}
    monkeypatch.setattr(attendance_routes, 'check_in_by_ip', recorder.returning(miss))

    response = client.post('/api/attendance/ip-checkin', json={'telegramId': '555'})

    assert response.status_code == 403
    assert response.get_json()['error'] == 'ip_not_matched'


def test_missing_telegram_id(client):
    response = client.post('/api/attendance/ip-checkin', json={})

    assert response.status_code == 400
    assert response.get_json() == {
        'success': False, 'error': 'validation_error', 'message': 'telegramId is required', 'data': {}
    }


def test_remote_checkin_not_allowed(client, monkeypatch, recorder):
    monkeypatch.setattr(attendance_routes, 'remote_check_in',
                        recorder.returning(RemoteWorkNotAllowed("Remote work is not enabled for this employee")))

    response = client.post('/api/attendance/remote-checkin', json={'telegramId': 555})

    assert response.status_code == 403
    assert response.get_json()['error'] == 'remote_not_allowed'


def test_checkout(client, monkeypatch, recorder):
    monkeypatch.setattr(attendance_routes, 'close_session',
                        recorder.returning({'success': True, 'totalHours': 9.1, 'isEarlyLeave': False}))

    response = client.post('/api/attendance/42/checkout', json={'checkOutTime': '18:05', 'checkOutDate': '2025-01-15'})

    assert response.status_code == 200
    assert recorder.calls[0][0] == (42, '18:05', '2025-01-15')


def test_checkout_conflict_body(client, monkeypatch, recorder):
    monkeypatch.setattr(attendance_routes, 'close_session',
                        recorder.returning(Conflict("Employee has already checked out", {'attendance_id': 42})))

    response = client.post('/api/attendance/42/checkout', json={'checkOutTime': '18:05'})

    assert response.status_code == 409
    assert response.get_json() == {
        'success': False, 'error': 'conflict',
        'message': 'Employee has already checked out', 'data': {'attendance_id': 42}
    }


@pytest.mark.parametrize('body', [
    {'checkOutTime': 1805},
    {'checkOutTime': '18:05', 'checkOutDate': 20250116},
])
def test_checkout_rejects_numeric_time_and_date(client, cursor, body):
    response = client.post('/api/attendance/42/checkout', json=body)

    assert response.status_code == 400
    assert response.get_json()['error'] == 'validation_error'
    assert cursor.queries == []


def test_status(client, monkeypatch, recorder):
    monkeypatch.setattr(attendance_routes, 'get_presence_status',
                        recorder.returning({'success': True, 'data': {'is_checked_in': False}}))

    response = client.get('/api/attendance/status?telegramId=555')

    assert response.status_code == 200
    assert recorder.calls[0][0] == ('555',)


# ---------------- Telegram bot ----------------

def test_check_presence(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'probe', recorder.returning({'success': True, 'data': {'ipMatched': False}}))

    response = client.post('/api/telegram-bot/check-presence', json={'telegramId': '555', 'attendanceId': 42},
                           headers={'X-Real-IP': '10.0.0.9'})

    assert response.status_code == 200
    assert recorder.calls[0][0] == ('555', '10.0.0.9', 42)


def test_reminder_response(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning({'success': True, 'data': {}}))

    response = client.post('/api/telegram-bot/reminder-response', json={
        'telegramId': '555', 'reminderId': 7, 'responseType': '45min',
        'ipAddress': '10.0.0.5', 'ipVerified': True
    })

    assert response.status_code == 200
    args, kwargs = recorder.calls[0]
    assert args == ('555', '45min')
    assert kwargs == {'reminder_id': 7, 'attendance_id': None, 'ip_address': '10.0.0.5', 'ip_verified': True}


def test_reminder_response_accepts_numeric_string_ids(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning({'success': True, 'data': {}}))

    response = client.post('/api/telegram-bot/reminder-response', json={
        'telegramId': '555', 'reminderId': '7', 'attendanceId': '42', 'responseType': 'i_left'
    })

    assert response.status_code == 200
    assert recorder.calls[0][1]['reminder_id'] == 7
    assert recorder.calls[0][1]['attendance_id'] == 42


@pytest.mark.parametrize('field, value', [
    ('reminderId', 'abc'),
    ('reminderId', True),
    ('reminderId', 1.5),
    ('attendanceId', 'abc'),
    ('attendanceId', -3),
    ('ipVerified', 'yes'),
    ('ipVerified', 1),
])
def test_reminder_response_rejects_malformed_fields(client, monkeypatch, recorder, field, value):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning({'success': True, 'data': {}}))

    response = client.post('/api/telegram-bot/reminder-response', json={
        'telegramId': '555', 'responseType': '45min', field: value
    })

    assert response.status_code == 400
    assert response.get_json()['error'] == 'validation_error'
    assert recorder.calls == []


def test_check_presence_rejects_malformed_attendance_id(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'probe', recorder.returning({'success': True, 'data': {}}))

    response = client.post('/api/telegram-bot/check-presence', json={'telegramId': '555', 'attendanceId': 'abc'})

    assert response.status_code == 400
    assert recorder.calls == []


def test_reminder_response_storage_down(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning(ConfigurationUnavailable("Database is unavailable")))

    response = client.post('/api/telegram-bot/reminder-response', json={'telegramId': '555', 'responseType': '45min'})

    assert response.status_code == 503


def callback_update(data='r:45min:7'):
    return {
        'update_id': 1,
        'callback_query': {
            'id': 'cb-1',
            'from': {'id': 555},
            'message': {'message_id': 321, 'chat': {'id': 555}},
            'data': data
        }
    }


@pytest.fixture
def quiet_bot(monkeypatch):
    monkeypatch.setattr(bot_routes, 'answer_callback_query', lambda *args, **kwargs: True)
    confirmations = []
    monkeypatch.setattr(bot_routes, 'send_response_confirmation',
                        lambda chat_id, response_type, language=None: confirmations.append((chat_id, response_type)))
    return confirmations


def test_webhook_applies_callback(client, monkeypatch, recorder, quiet_bot):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning({'success': True, 'data': {'language': 'uz'}}))

    response = client.post('/api/telegram-bot/webhook', json=callback_update('r:2h:7'))

    assert response.status_code == 200
    args, kwargs = recorder.calls[0]
    assert args == (555, '2hours')
    assert kwargs == {'reminder_id': 7}
    assert quiet_bot == [(555, '2hours')]


@pytest.mark.parametrize('error', [Conflict("Reminder already answered"), NotFound("Reminder not found")])
def test_webhook_duplicate_is_noop(client, monkeypatch, recorder, quiet_bot, error):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning(error))

    response = client.post('/api/telegram-bot/webhook', json=callback_update())

    assert response.status_code == 200
    assert response.get_json()['ok'] is True
    assert quiet_bot == []


def test_webhook_ignores_other_updates(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'respond', recorder.returning(None))

    assert client.post('/api/telegram-bot/webhook', json={'update_id': 2, 'message': {'text': '/start'}}).status_code == 200
    assert client.post('/api/telegram-bot/webhook', json=callback_update('menu:open')).status_code == 200
    assert recorder.calls == []


def test_webhook_secret(client, monkeypatch):
    monkeypatch.setattr(Config, 'TELEGRAM_WEBHOOK_SECRET', 's3cret')

    response = client.post('/api/telegram-bot/webhook', json=callback_update(),
                           headers={'X-Telegram-Bot-Api-Secret-Token': 'wrong'})

    assert response.status_code == 403


def test_trigger_reminders(client, monkeypatch, recorder):
    monkeypatch.setattr(bot_routes, 'run_reminder_cycle', recorder.returning({'sent': 2}))

    response = client.post('/api/telegram-bot/trigger-reminders', json={'shiftType': 'night'})

    assert response.status_code == 200
    assert response.get_json()['data'] == {'sent': 2}
    assert recorder.calls[0][0] == ('night',)


def test_trigger_reminders_rejects_unknown_shift(client):
    response = client.post('/api/telegram-bot/trigger-reminders', json={'shiftType': 'evening'})

    assert response.status_code == 400


# ---------------- App ----------------

def test_health(client, monkeypatch):
    monkeypatch.setattr(app_module, 'ping_database', lambda: True)

    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['database'] == 'connected'


def test_health_database_down(client, monkeypatch):
    def down():
        raise ConfigurationUnavailable("Database is unavailable")
    monkeypatch.setattr(app_module, 'ping_database', down)

    assert client.get('/health').status_code == 503


def test_unknown_route_and_method(client):
    assert client.get('/api/nope').get_json()['error'] == 'not_found'
    assert client.get('/api/telegram-bot/webhook').status_code == 405


def test_bootstrap_creates_pool_and_closes_it_at_exit(monkeypatch):
    calls = []
    monkeypatch.setattr(app_module, 'initialize_connection_pool', lambda: calls.append('pool') or True)
    monkeypatch.setattr(app_module, 'init_database', lambda: calls.append('schema'))
    monkeypatch.setattr(app_module.atexit, 'register', lambda fn: calls.append(fn))

    class LiveConfig(Config):
        TESTING = True
        SCHEDULER_ENABLED = False

    app_module._bootstrap(app_module.create_app(LiveConfig), LiveConfig)

    assert calls == ['pool', app_module.close_connection_pool, 'schema']
