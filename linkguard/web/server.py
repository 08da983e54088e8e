# Copyright (c) 2025 sprowii
"""HTTP-эндпоинт для хостингов, которым нужен открытый порт."""
import threading

from flask import Flask, jsonify

from linkguard import __version__, config
from linkguard.logging_config import log
from linkguard.moderation.storage import WarningStore


def create_web_app(store: WarningStore) -> Flask:
    flask_app = Flask(__name__)

    @flask_app.route("/")
    def home():
        return "LinkGuard is running"

    @flask_app.route("/healthz")
    def healthz():
        redis_ok = store.ping()
        payload = {
            "status": "ok" if redis_ok else "degraded",
            "redis": redis_ok,
            "version": __version__,
        }
        return jsonify(payload), 200 if redis_ok else 503

    return flask_app


def start_web_server(store: WarningStore) -> threading.Thread:
    """Запустить Flask в фоновом потоке."""
    flask_app = create_web_app(store)
    thread = threading.Thread(
        target=flask_app.run,
        kwargs={"host": config.FLASK_HOST, "port": config.FLASK_PORT, "use_reloader": False},
        name="linkguard-web",
        daemon=True,
    )
    thread.start()
    log.info(f"Web server listening on {config.FLASK_HOST}:{config.FLASK_PORT}")
    return thread
