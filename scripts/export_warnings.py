#!/usr/bin/env python3
"""Выгрузка предупреждений и журнала модерации из Redis в JSON.

Запуск:
    python scripts/export_warnings.py > warnings.json
    python scripts/export_warnings.py --group -1001234567890

Нужны переменные окружения (или .env):
    - REDIS_URL
    - DATA_ENCRYPTION_KEY (если имена хранятся зашифрованными)
"""
import argparse
import json
import sys
from dataclasses import asdict

from linkguard import config
from linkguard.moderation.storage import (
    MAX_MODLOG_ENTRIES,
    MODLOG_PREFIX,
    WARN_PREFIX,
    WarningStore,
    create_redis_client,
)


def _iter_warning_keys(store: WarningStore, group_id=None):
    pattern = f"{WARN_PREFIX}{group_id}:*" if group_id else f"{WARN_PREFIX}*"
    for key in store.client.scan_iter(match=pattern):
        # warn:{group_id}:{user_id}, group_id может содержать "-"
        _, rest = key.split(":", 1)
        group, user = rest.rsplit(":", 1)
        yield group, user


def export(store: WarningStore, group_id=None) -> dict:
    warnings = []
    groups = set()
    for group, user in _iter_warning_keys(store, group_id):
        record = store.get(group, user)
        if record.exists:
            warnings.append(asdict(record))
            groups.add(group)

    if group_id:
        groups.add(group_id)
    else:
        for key in store.client.scan_iter(match=f"{MODLOG_PREFIX}*"):
            groups.add(key[len(MODLOG_PREFIX):])

    mod_log = {
        group: [asdict(action) for action in store.load_mod_log(group, limit=MAX_MODLOG_ENTRIES)]
        for group in sorted(groups)
    }
    return {"warnings": warnings, "modlog": mod_log}


def main() -> int:
    parser = argparse.ArgumentParser(description="Export LinkGuard warnings as JSON")
    parser.add_argument("--group", help="export only this group id")
    args = parser.parse_args()

    if not config.REDIS_URL:
        print("❌ REDIS_URL не задан!", file=sys.stderr)
        return 1

    store = WarningStore(create_redis_client(config.REDIS_URL))
    try:
        payload = export(store, args.group)
    finally:
        store.close()

    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    print()
    print(f"✅ Exported {len(payload['warnings'])} warning records", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
