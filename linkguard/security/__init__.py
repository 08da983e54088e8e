# Copyright (c) 2025 sprowii
"""Security-related helpers.

Модули:
- data_protection: Шифрование и псевдонимизация данных
"""
from linkguard.security.data_protection import (
    decrypt_pii,
    encrypt_pii,
    encryption_enabled,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
)

__all__ = [
    "decrypt_pii",
    "encrypt_pii",
    "encryption_enabled",
    "pseudonymize_chat_id",
    "pseudonymize_id",
    "safe_log_action",
]
