"""MQTT preview channel.

Previews are best-effort: they are published with QoS 0, may be lost,
duplicated or reordered, and are never persisted.
"""

import asyncio
import logging
from typing import Any

import paho.mqtt.client as mqtt

from .config import MQTTConfig
from .marks import MarkKind
from .wire import Preview, WireError, decode_preview, encode_preview

logger = logging.getLogger(__name__)


class PreviewChannel:
    """Async wrapper around a paho client carrying encoded previews."""

    def __init__(self, config: MQTTConfig, kind: MarkKind, queue_size: int = 1000):
        self.config = config
        self.kind = kind
        self._queue_size = queue_size

        # Paho MQTT client
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        # Connection state
        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None

        # Queue handing previews from the paho thread to the event loop
        self._queue: asyncio.Queue[Preview] | None = None
        self._dropped = 0

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")
            client.subscribe(self.config.preview_topic, qos=0)
            logger.info(f"Subscribed to preview topic: {self.config.preview_topic}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Decode an incoming preview on the paho thread and queue it."""
        try:
            preview = decode_preview(msg.payload, self.kind)
        except WireError as e:
            logger.debug(f"Dropping undecodable preview on {msg.topic}: {e}")
            return

        if self._queue is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._enqueue, preview)

    def _enqueue(self, preview: Preview) -> None:
        try:
            self._queue.put_nowait(preview)
        except asyncio.QueueFull:
            self._dropped += 1

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self, timeout: float = 5.0) -> bool:
        """Connect to the MQTT broker.

        Args:
            timeout: Seconds to wait for the broker to acknowledge.

        Returns:
            True if connection successful. On failure the network thread
            is stopped again.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._queue_size)

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(max(1, int(timeout / 0.1))):
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            self._client.loop_stop()
            return False

        except OSError as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    def send(self, preview: Preview) -> bool:
        """Publish a preview. Returns False if it was not handed to paho."""
        if not self._connected:
            return False
        try:
            payload = encode_preview(preview, self.kind)
        except WireError as e:
            logger.debug(f"Not sending preview: {e}")
            return False
        result = self._client.publish(self.config.preview_topic, payload, qos=0)
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    async def get_preview(self, timeout: float | None = None) -> Preview | None:
        """Get the next received preview.

        Args:
            timeout: Optional timeout in seconds.

        Returns:
            Preview or None if timeout.
        """
        if not self._queue:
            return None

        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def dropped(self) -> int:
        """Previews dropped because the queue was full."""
        return self._dropped
