"""
Токены игроков: "<identity_id>.<hmac-sha256>".
Выдаются внешним сервисом учётных записей с тем же AUTH_SECRET.
"""
import hashlib
import hmac

from .config import get_config


def _signature(identity_id: str, secret: str) -> str:
    secret_key = hmac.new(
        b"ChessroomToken",
        secret.encode(),
        hashlib.sha256
    ).digest()
    return hmac.new(
        secret_key,
        identity_id.encode(),
        hashlib.sha256
    ).hexdigest()


def issue_token(identity_id: str) -> str:
    config = get_config()
    return f"{identity_id}.{_signature(identity_id, config.auth_secret)}"


def verify_token(token: str) -> str | None:
    """
    Проверяет подпись токена и возвращает identity_id или None.
    """
    if not token:
        return None
    identity_id, _, signature = token.rpartition(".")
    config = get_config()
    if not config.auth_secret:
        if config.debug:
            # В режиме отладки без секрета принимаем токен без проверки
            return identity_id or signature or None
        return None
    if not identity_id or not signature:
        return None
    expected = _signature(identity_id, config.auth_secret)
    if not hmac.compare_digest(expected, signature):
        return None
    return identity_id
