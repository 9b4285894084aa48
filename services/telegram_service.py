"""
Telegram Service
Telegram Bot API integration for checkout prompts and confirmations
"""

from typing import Dict, Optional, Tuple
import requests
from config import Config, ResponseType
from services.exceptions import UpstreamDeliveryFailure
import logging

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = 'r'

PROMPT_TEXT = {
    'uz': "⏰ {name}, ish vaqtingiz tugadi. Hali ishdamisiz?",
    'ru': "⏰ {name}, ваша смена закончилась. Вы ещё на работе?",
}

BUTTON_LABELS = {
    ResponseType.I_LEFT: {'uz': "Ketdim", 'ru': "Я ушёл"},
    ResponseType.AT_WORK: {'uz': "Ishdaman", 'ru': "Я на работе"},
    ResponseType.IN_45_MIN: {'uz': "45 daqiqa", 'ru': "45 минут"},
    ResponseType.IN_2_HOURS: {'uz': "2 soat", 'ru': "2 часа"},
    ResponseType.ALL_DAY: {'uz': "Kun bo'yi", 'ru': "Весь день"},
}

CONFIRMATION_TEXT = {
    ResponseType.I_LEFT: {'uz': "✅ Ketish qayd etildi", 'ru': "✅ Уход отмечен"},
    ResponseType.AT_WORK: {'uz': "👍 45 daqiqadan keyin so'raymiz", 'ru': "👍 Спросим через 45 минут"},
    ResponseType.IN_45_MIN: {'uz': "👍 45 daqiqadan keyin so'raymiz", 'ru': "👍 Спросим через 45 минут"},
    ResponseType.IN_2_HOURS: {'uz': "👍 2 soatdan keyin so'raymiz", 'ru': "👍 Спросим через 2 часа"},
    ResponseType.ALL_DAY: {'uz': "👍 Bugun boshqa so'ramaymiz", 'ru': "👍 Сегодня больше не спросим"},
}


def _languages(preferred: Optional[str]) -> Tuple[str, str]:
    """Both languages, preferred one first"""
    if preferred == 'ru':
        return 'ru', 'uz'
    return 'uz', 'ru'


def _bilingual(texts: Dict[str, str], preferred: Optional[str], separator: str = "\n\n") -> str:
    first, second = _languages(preferred)
    return f"{texts[first]}{separator}{texts[second]}"


def build_callback_data(response_type: str, reminder_id) -> str:
    return f"{CALLBACK_PREFIX}:{response_type}:{reminder_id}"


def parse_callback_data(data: str) -> Optional[Tuple[str, int]]:
    """
    Decode 'r:<response_type>:<reminder_id>'.
    Legacy short codes (il, aw, 45, 2h, ad) are accepted.
    Returns (response_type, reminder_id) or None if not a reminder button.
    """
    if not data:
        return None

    parts = data.split(':')
    if len(parts) != 3 or parts[0] != CALLBACK_PREFIX:
        return None

    response_type = ResponseType.normalize(parts[1])
    if response_type is None:
        return None

    try:
        reminder_id = int(parts[2])
    except ValueError:
        return None

    return response_type, reminder_id


def build_checkout_prompt(employee: Dict, reminder_id) -> Dict:
    """sendMessage payload with one inline button per response type"""
    language = employee.get('preferred_language')
    name = employee.get('full_name') or ''
    body = _bilingual({lang: text.format(name=name) for lang, text in PROMPT_TEXT.items()}, language)

    keyboard = []
    for response_type in ResponseType.all():
        keyboard.append([{
            "text": _bilingual(BUTTON_LABELS[response_type], language, separator=" / "),
            "callback_data": build_callback_data(response_type, reminder_id)
        }])

    return {
        "chat_id": employee['telegram_id'],
        "text": body,
        "reply_markup": {"inline_keyboard": keyboard}
    }


def _api_url(method: str) -> str:
    return f"{Config.TELEGRAM_API_BASE}/bot{Config.TELEGRAM_BOT_TOKEN}/{method}"


def _call(method: str, payload: Dict) -> Dict:
    """POST to the Bot API; raises UpstreamDeliveryFailure on any failure"""
    try:
        response = requests.post(_api_url(method), json=payload, timeout=Config.TELEGRAM_TIMEOUT)
    except requests.exceptions.Timeout as e:
        logger.error(f"Telegram API timeout after {Config.TELEGRAM_TIMEOUT} seconds ({method})")
        raise UpstreamDeliveryFailure("Telegram API timeout", {"method": method}) from e
    except requests.exceptions.RequestException as e:
        logger.error(f"Telegram API transport error ({method}): {e}")
        raise UpstreamDeliveryFailure("Telegram API unreachable", {"method": method}) from e

    if response.status_code != 200:
        logger.error(f"Telegram API error - Status: {response.status_code}")
        logger.error(f"Response: {response.text}")
        raise UpstreamDeliveryFailure(
            "Telegram API rejected the request",
            {"method": method, "status": response.status_code}
        )

    try:
        body = response.json()
    except ValueError as e:
        raise UpstreamDeliveryFailure("Telegram API returned invalid JSON", {"method": method}) from e

    if not body.get('ok'):
        logger.error(f"Telegram API not ok ({method}): {body.get('description')}")
        raise UpstreamDeliveryFailure(
            body.get('description') or "Telegram API rejected the request",
            {"method": method}
        )

    return body.get('result') or {}


def send_checkout_prompt(employee: Dict, reminder_id) -> Optional[int]:
    """
    Send the checkout prompt to a worker.

    Returns:
        Telegram message id, or None in DEV MODE
    Raises:
        UpstreamDeliveryFailure
    """
    payload = build_checkout_prompt(employee, reminder_id)

    if not Config.TELEGRAM_BOT_TOKEN:
        logger.info(
            f"DEV MODE - Checkout prompt for {employee.get('full_name')} "
            f"({employee['telegram_id']}), reminder {reminder_id}: {payload}"
        )
        return None

    logger.info(f"Sending checkout prompt to {employee['telegram_id']} (reminder {reminder_id})")
    result = _call('sendMessage', payload)
    logger.info(f"Checkout prompt delivered to {employee['telegram_id']}")
    return result.get('message_id')


def send_text(chat_id, text: str) -> Optional[int]:
    """Plain message; raises UpstreamDeliveryFailure"""
    if not Config.TELEGRAM_BOT_TOKEN:
        logger.info(f"DEV MODE - Message to {chat_id}: {text}")
        return None

    result = _call('sendMessage', {"chat_id": chat_id, "text": text})
    return result.get('message_id')


def send_response_confirmation(chat_id, response_type: str, language: str = None) -> Optional[int]:
    return send_text(chat_id, _bilingual(CONFIRMATION_TEXT[response_type], language, separator="\n"))


def answer_callback_query(callback_query_id: str, text: str = None) -> bool:
    """Stop the button spinner in the client"""
    if not Config.TELEGRAM_BOT_TOKEN:
        logger.info(f"DEV MODE - Callback answer {callback_query_id}: {text}")
        return True

    payload = {"callback_query_id": callback_query_id}
    if text:
        payload["text"] = text
    _call('answerCallbackQuery', payload)
    return True
