"""Flask status and control API for the thermabox."""

import queue
import threading
from threading import Thread
from typing import Any, Dict, Optional

import requests
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config_loader import WebserverConfig
from errors import ProbeReadError
from interfaces import ThermaboxState
from logger import get_logger
from thermabox import Thermabox


class StatePublisher(Thread):
    """Drain published snapshots, keep the latest and forward each to a URL."""

    def __init__(self, publish_url: str = "") -> None:
        super().__init__(daemon=True, name="thermabox-publisher")
        self.publish_url = publish_url
        self.queue: "queue.Queue[ThermaboxState]" = queue.Queue()
        self.running = True
        self.logger = get_logger(__name__)
        self._lock = threading.Lock()
        self._latest: Optional[ThermaboxState] = None

    @property
    def latest(self) -> Optional[ThermaboxState]:
        with self._lock:
            return self._latest

    def handle(self, snapshot: ThermaboxState) -> None:
        with self._lock:
            self._latest = snapshot
        if self.publish_url:
            self._post(snapshot.to_dict())

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            r = requests.post(self.publish_url, json=payload, timeout=5)
            if r.status_code != 200:
                self.logger.warning("Publish failed: status %s", r.status_code)
        except requests.RequestException as exc:
            self.logger.warning("Publish failed: %s", exc)

    def stop(self) -> None:
        self.running = False

    def run(self) -> None:
        while self.running:
            try:
                snapshot = self.queue.get(timeout=1)
            except queue.Empty:
                continue
            self.handle(snapshot)


class ThermaboxServer(Thread):
    """Simple Flask server running in a thread."""

    CHANNEL_NAME = "webserver"

    def __init__(self, thermabox: Thermabox, config: Optional[WebserverConfig] = None) -> None:
        super().__init__(daemon=True, name="thermabox-server")
        self.thermabox = thermabox
        self.config = config or WebserverConfig()
        self.api_key = self.config.api_key
        self.logger = get_logger(__name__)
        self.publisher = StatePublisher(self.config.publish)
        self.thermabox.register_channel(self.publisher.queue, self.CHANNEL_NAME)
        self.app = Flask(__name__)
        self._setup_routes()

    def _forward_limits(self, temperature: float, threshold: float) -> None:
        if not self.config.forward:
            return
        try:
            requests.post(
                self.config.forward,
                json={"temperature": temperature, "threshold": threshold},
                timeout=5,
            )
        except requests.RequestException as exc:
            self.logger.warning("Failed to forward limits to %s: %s", self.config.forward, exc)

    def _setup_routes(self):
        app = self.app
        tbox = self.thermabox

        def require_key() -> Any:
            """Validate X-API-Key header for POST requests when a key is configured."""
            if not self.api_key:
                return None
            key = request.headers.get("X-API-Key")
            if key != self.api_key:
                self.logger.warning("Unauthorized request from %s", request.remote_addr)
                return jsonify({"error": "unauthorized"}), 401
            return None

        @app.after_request
        def allow_any_origin(response):
            response.headers["Access-Control-Allow-Origin"] = "*"
            return response

        @app.route("/get-temperature/")
        def get_temperature():
            try:
                temp = tbox.get_temperature()
            except ProbeReadError as exc:
                self.logger.error("Failed to handle '/get-temperature': %s", exc)
                return f"Failed to get temperature: {exc}", 503, {"Content-Type": "text/plain"}
            return str(temp), 200, {"Content-Type": "text/plain"}

        @app.route("/get-all-temperatures/")
        def get_all_temperatures():
            return jsonify(tbox.get_all_temperatures())

        @app.route("/get-limits/")
        def get_limits():
            temperature, threshold = tbox.get_limits()
            return jsonify({"temperature": temperature, "threshold": threshold})

        @app.route("/set-limits/", methods=["POST"])
        def set_limits():
            auth_error = require_key()
            if auth_error:
                return auth_error
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                data = request.form
            try:
                temperature = float(data.get("temperature"))
                threshold = float(data.get("threshold"))
                tbox.set_limits(temperature, threshold)
            except (TypeError, ValueError) as exc:
                return jsonify({"error": f"invalid limits: {exc}"}), 400
            self._forward_limits(temperature, threshold)
            self.logger.info("Set limits to %s (+/- %s) from %s", temperature, threshold, request.remote_addr)
            return jsonify({"temperature": temperature, "threshold": threshold})

        @app.route("/get-state/")
        def get_state():
            return tbox.get_state(), 200, {"Content-Type": "text/plain"}

        @app.route("/disable-thermabox/", methods=["POST"])
        def disable():
            auth_error = require_key()
            if auth_error:
                return auth_error
            tbox.disable_thermabox()
            return jsonify({"disabled": True})

        @app.route("/enable-thermabox/", methods=["POST"])
        def enable():
            auth_error = require_key()
            if auth_error:
                return auth_error
            tbox.enable_thermabox()
            return jsonify({"disabled": False})

        @app.route("/state")
        def state():
            snapshot = self.publisher.latest
            if snapshot is None:
                return jsonify({"error": "no state published yet"}), 404
            return jsonify(snapshot.to_dict())

        @app.route("/healthz")
        def healthz():
            reasons = []
            age = tbox.last_reading_age()
            if age > tbox.probe_grace_sec:
                reasons.append("stale sensor data")
            ok = not reasons
            if not ok:
                self.logger.warning("Health check failed: %s", ", ".join(reasons))
            payload = {
                "status": "ok" if ok else "error",
                "state": tbox.get_state(),
                "disabled": tbox.is_disabled(),
                "last_reading_age_sec": round(age, 1),
            }
            return jsonify(payload), 200 if ok else 503

        @app.errorhandler(Exception)
        def handle_exception(exc: Exception):
            if isinstance(exc, HTTPException):
                return exc
            self.logger.exception("Unhandled error: %s", exc)
            return jsonify({"error": "internal server error"}), 500

    def run(self):
        self.publisher.start()
        self.logger.info("Starting Flask server on %s:%s", self.config.host, self.config.port)
        self.app.run(host=self.config.host, port=self.config.port)
