# Copyright (c) 2025 sprowii
"""Политика эскалации: предупреждение или удаление из группы.

Чистые функции без I/O, решение зависит только от счётчика и настроек.
"""
import re

from linkguard.moderation.models import Decision, DecisionAction, ModerationConfig

_PLACEHOLDER_REGEX = re.compile(r"\{(name|count|limit)\}")


def render_template(template: str, name: str, count: int, limit: int) -> str:
    """Подставить {name}, {count}, {limit} в шаблон.

    Каждый плейсхолдер заменяется один раз (первое вхождение).
    Подставленные значения повторно не разбираются, поэтому имя
    вида "{count}" останется как есть. Прочие фигурные скобки
    и неизвестные плейсхолдеры сохраняются.

    Args:
        template: Шаблон сообщения
        name: Имя нарушителя
        count: Текущее число предупреждений
        limit: Порог удаления

    Returns:
        Готовый текст
    """
    values = {"name": str(name), "count": str(count), "limit": str(limit)}
    used = set()

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in used:
            return match.group(0)
        used.add(key)
        return values[key]

    return _PLACEHOLDER_REGEX.sub(_substitute, template)


def decide(count: int, name: str, cfg: ModerationConfig) -> Decision:
    """Определить действие по количеству предупреждений.

    Эскалация начинается ровно с порога (count >= warn_threshold).
    """
    if count >= cfg.warn_threshold:
        return Decision(
            action=DecisionAction.ESCALATE,
            rendered_text=render_template(cfg.kick_template, name, count, cfg.warn_threshold),
            warning_count=count,
        )

    return Decision(
        action=DecisionAction.WARN,
        rendered_text=render_template(cfg.warn_template, name, count, cfg.warn_threshold),
        warning_count=count,
    )
