# Copyright (c) 2025 sprowii
"""Защита персональных данных.

Модуль обеспечивает:
- Псевдонимизацию user_id/group_id в логах (HMAC с солью)
- Шифрование отображаемых имён в хранилище предупреждений

Если DATA_ENCRYPTION_KEY не задан, имена хранятся открыто.
"""
import base64
import hashlib
import hmac
import os
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from linkguard.logging_config import log

ENCRYPTED_PREFIX = "enc:"


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

# Соль для хэширования ID. Без неё псевдонимы меняются после рестарта.
_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning("DATA_HASH_SALT не задан, генерирую временную соль (псевдонимы в логах изменятся после рестарта)")
    _HASH_SALT = secrets.token_hex(32)


def _create_fernet(key: str, salt: str) -> Fernet:
    """Создать Fernet из ключа или из пароля (через PBKDF2)."""
    try:
        return Fernet(key.encode())
    except (ValueError, TypeError):
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode()[:16],
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


_ENCRYPTION_KEY = os.getenv("DATA_ENCRYPTION_KEY")
_fernet: Optional[Fernet] = _create_fernet(_ENCRYPTION_KEY, _HASH_SALT) if _ENCRYPTION_KEY else None


def encryption_enabled() -> bool:
    return _fernet is not None


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id, context: str = "default") -> str:
    """Псевдонимизировать идентификатор через HMAC-SHA256.

    Один и тот же id в одном контексте всегда даёт один псевдоним,
    восстановить id без соли нельзя.

    Args:
        user_id: Идентификатор пользователя транспорта
        context: Контекст использования

    Returns:
        Псевдоним вида "u_<16 hex>"
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id) -> str:
    return pseudonymize_id(chat_id, context="chat")


def safe_log_action(
    action_type: str,
    target_user_id,
    group_id,
    admin_id=None,
    reason: Optional[str] = None,
) -> str:
    """Строка для логов о действии модерации без открытых ID."""
    parts = [
        f"action={action_type}",
        f"target={pseudonymize_id(target_user_id)}",
        f"chat={pseudonymize_chat_id(group_id)}",
    ]
    if admin_id is not None:
        parts.append(f"admin={pseudonymize_id(admin_id)}")
    else:
        parts.append("admin=auto")
    if reason:
        # Причина может содержать имена, обрезаем
        parts.append(f"reason={reason[:50]}")
    return " ".join(parts)


# ============================================================================
# ШИФРОВАНИЕ
# ============================================================================

def encrypt_pii(value: str) -> str:
    """Зашифровать строку с персональными данными.

    Returns:
        "enc:<token>" или исходная строка, если шифрование отключено
    """
    if not value or _fernet is None or value.startswith(ENCRYPTED_PREFIX):
        return value
    return ENCRYPTED_PREFIX + _fernet.encrypt(value.encode()).decode()


def decrypt_pii(value: str) -> str:
    """Расшифровать строку, сохранённую через encrypt_pii.

    Незашифрованные значения возвращаются как есть. Если ключа нет
    или он не подходит, возвращается пустая строка.
    """
    if not value or not value.startswith(ENCRYPTED_PREFIX):
        return value
    if _fernet is None:
        log.warning("Попытка расшифровать данные без ключа шифрования")
        return ""
    try:
        return _fernet.decrypt(value[len(ENCRYPTED_PREFIX):].encode()).decode()
    except InvalidToken:
        log.error("Не удалось расшифровать данные: неверный ключ")
        return ""
