# Copyright (c) 2025 sprowii
"""Детектор нарушений: ссылки в тексте/подписи и голосовые сообщения.

Проверка намеренно разрешающая: лишнее срабатывание допустимо,
пропущенная ссылка - нет. Поэтому границы слов не требуются.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from linkguard.logging_config import log
from linkguard.moderation.errors import DetectionInputMalformed
from linkguard.moderation.models import DEFAULT_LINK_PREFIXES, DEFAULT_LINK_TLDS, MediaKind


def build_link_pattern(
    tlds: Iterable[str] = DEFAULT_LINK_TLDS,
    prefixes: Iterable[str] = DEFAULT_LINK_PREFIXES,
) -> re.Pattern:
    """Собрать регулярку ссылок из списков префиксов и доменов верхнего уровня.

    Args:
        tlds: Домены верхнего уровня для "голых" доменов (example.io)
        prefixes: Префиксы явных ссылок (https://, www.)

    Returns:
        Скомпилированный регистронезависимый паттерн
    """
    # Длинные варианты первыми, чтобы "com" не уступал "co"
    tld_list = sorted({t.strip().lower().lstrip(".") for t in tlds if t and t.strip()}, key=len, reverse=True)
    prefix_list = sorted({p.strip().lower() for p in prefixes if p and p.strip()}, key=len, reverse=True)
    if not tld_list or not prefix_list:
        raise ValueError("link pattern needs at least one tld and one prefix")

    prefix_alt = "|".join(re.escape(p) for p in prefix_list)
    tld_alt = "|".join(re.escape(t) for t in tld_list)
    return re.compile(
        rf"(?:{prefix_alt})\S+|[a-z0-9.-]+\.(?:{tld_alt})(?:/\S*)?",
        re.IGNORECASE,
    )


LINK_REGEX = build_link_pattern()


@dataclass(frozen=True)
class DetectionResult:
    """Результат проверки сообщения."""
    is_violation: bool
    reason: Optional[str] = None  # link, voice
    matched: Optional[str] = None


def _coerce_text(value, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DetectionInputMalformed(f"{field_name} must be str, got {type(value).__name__}")
    return value


def _coerce_media_kind(value) -> MediaKind:
    if value is None:
        return MediaKind.NONE
    if isinstance(value, MediaKind):
        return value
    try:
        return MediaKind(value)
    except ValueError:
        raise DetectionInputMalformed(f"unknown media kind: {value!r}")


class LinkDetector:
    """Чистый предикат "нарушает ли сообщение правила".

    Никогда не бросает исключений: некорректная часть входа
    считается отсутствием нарушения.
    """

    def __init__(self, pattern: Optional[re.Pattern] = None):
        self.pattern = pattern or LINK_REGEX

    @classmethod
    def from_tables(cls, tlds: Iterable[str], prefixes: Iterable[str]) -> "LinkDetector":
        return cls(build_link_pattern(tlds, prefixes))

    def find_link(self, text) -> Optional[str]:
        """Вернуть первую найденную ссылку или None."""
        try:
            text = _coerce_text(text, "text")
        except DetectionInputMalformed as exc:
            log.debug(f"Detector input ignored: {exc}")
            return None
        if not text:
            return None
        match = self.pattern.search(text)
        return match.group(0) if match else None

    def check(self, text, caption=None, media_kind=MediaKind.NONE) -> DetectionResult:
        """Проверить текст, подпись и тип вложения.

        Args:
            text: Текст сообщения
            caption: Подпись к медиа
            media_kind: Тип вложения

        Returns:
            DetectionResult с причиной нарушения
        """
        try:
            kind = _coerce_media_kind(media_kind)
        except DetectionInputMalformed as exc:
            log.debug(f"Detector input ignored: {exc}")
            kind = MediaKind.NONE

        for part in (text, caption):
            matched = self.find_link(part)
            if matched:
                return DetectionResult(is_violation=True, reason="link", matched=matched)

        # Голосовые и аудио запрещены независимо от текста
        if kind == MediaKind.VOICE:
            return DetectionResult(is_violation=True, reason="voice")

        return DetectionResult(is_violation=False)

    def detect(self, text, caption=None, media_kind=MediaKind.NONE) -> bool:
        return self.check(text, caption, media_kind).is_violation


_default_detector = LinkDetector()


def detect(message_text, caption_text=None, media_kind=MediaKind.NONE) -> bool:
    """Нарушает ли сообщение правила (детектор со списками по умолчанию)."""
    return _default_detector.detect(message_text, caption_text, media_kind)
