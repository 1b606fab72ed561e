"""Garage door state from an MQTT topic.

The paho network loop runs in its own thread (``loop_start``) and handles
reconnects; callbacks update the cached state under a lock so HTTP
handlers can read it at any time.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "home/garage/door/state"
DEFAULT_PORT = 1883
KEEPALIVE_SECONDS = 60
RECONNECT_MIN_DELAY = 5
RECONNECT_MAX_DELAY = 60


def parse_broker(broker: str, default_port: int = DEFAULT_PORT) -> tuple[str, int]:
    """Split ``mqtt://host:port`` style broker strings into host and port."""
    host = broker.strip().removeprefix("mqtt://").removeprefix("mqtts://").rstrip("/")
    port = default_port
    if ":" in host:
        name, _, raw_port = host.rpartition(":")
        if raw_port.isdigit():
            host, port = name, int(raw_port)
    return host, port


def _default_client_factory() -> mqtt.Client:
    return mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2)


class GarageDoorService:
    """Subscribes to the garage door topic and caches the latest payload."""

    def __init__(
        self,
        broker: Optional[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic: str = DEFAULT_TOPIC,
        port: int = DEFAULT_PORT,
        enabled: bool = True,
        client_factory: Callable[[], Any] = _default_client_factory,
        clock: Callable[[], float] = time.time,
    ):
        self.broker = broker
        self.username = username
        self.password = password
        self.topic = topic or DEFAULT_TOPIC
        self.port = port
        self.enabled = enabled and bool(broker)
        self._client_factory = client_factory
        self._clock = clock

        self._lock = threading.Lock()
        self._client: Optional[Any] = None
        self._state: Optional[str] = None
        self._last_update: Optional[int] = None
        self._connected = False
        self._connection_status = "disconnected"

    def start(self) -> None:
        """Connect to the broker in the background. No-op when disabled or already started."""
        if not self.enabled or not self.broker:
            logger.warning("MQTT not configured; garage door state is disabled")
            return
        if self._client is not None:
            return

        host, port = parse_broker(self.broker, self.port)
        client = self._client_factory()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        if self.username:
            client.username_pw_set(self.username, self.password)
        client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)

        logger.info("Connecting to MQTT broker at %s:%d", host, port)
        try:
            client.connect_async(host, port, KEEPALIVE_SECONDS)
            client.loop_start()
        except (OSError, ValueError) as e:
            logger.error("Failed to start MQTT client: %s", e)
            self._set_status("error", connected=False)
            return
        self._client = client

    def _set_status(self, status: str, connected: bool) -> None:
        with self._lock:
            self._connection_status = status
            self._connected = connected

    def _on_connect(self, client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("MQTT connection refused: %s", reason_code)
            self._set_status("error", connected=False)
            return
        logger.info("Connected to MQTT broker; subscribing to %s", self.topic)
        self._set_status("connected", connected=True)
        client.subscribe(self.topic)

    def _on_subscribe(self, _client: Any, _userdata: Any, _mid: Any, reason_codes: Any, _properties: Any = None) -> None:
        if any(getattr(code, "is_failure", False) for code in reason_codes or []):
            logger.error("Failed to subscribe to MQTT topic %s", self.topic)
            self._set_status("error", connected=self._connected)

    def _on_disconnect(
        self, _client: Any, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any = None
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.warning("MQTT client offline (%s); reconnecting", reason_code)
            self._set_status("offline", connected=False)
        else:
            self._set_status("disconnected", connected=False)

    def _on_message(self, _client: Any, _userdata: Any, message: Any) -> None:
        payload = message.payload
        state = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else str(payload)
        with self._lock:
            self._state = state.strip()
            self._last_update = int(self._clock() * 1000)
        logger.info("Garage door state updated: %s", state)

    def get_state(self) -> dict[str, Any]:
        """Return the cached door state in the dashboard's JSON shape."""
        if not self.enabled:
            return {"state": None, "lastUpdate": None, "connected": False, "enabled": False}

        if self._client is None:
            self.start()

        with self._lock:
            return {
                "state": self._state,
                "lastUpdate": self._last_update,
                "connected": self._connected,
                "connectionStatus": self._connection_status,
                "enabled": True,
            }

    def disconnect(self) -> None:
        """Stop the network loop and drop the connection."""
        client = self._client
        if client is None:
            return
        self._client = None
        try:
            client.disconnect()
        finally:
            client.loop_stop()
        self._set_status("disconnected", connected=False)
        logger.info("MQTT client disconnected")
