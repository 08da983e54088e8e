# Copyright (c) 2025 sprowii
"""LinkGuard: бот-модератор групповых чатов (ссылки и голосовые сообщения)."""

__version__ = "1.0.0"
