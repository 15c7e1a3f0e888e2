"""MQTT session against the TTN broker."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import ssl
import time
import logging
from enum import Enum

import paho.mqtt.client as mqtt

from handlers.mapper import map_uplink
from handlers.uplink import UplinkDecodeError, decode_uplink

logger = logging.getLogger("ttn-bridge.handlers.mqtt")


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"
    ENDED = "ended"


class ConnectionState:
    """
    Broker liveness shared with the watchdog.

    Only the session's callbacks write it; everyone else reads the two
    properties. Plain attribute reads are enough, a stale value is fine.
    """

    def __init__(self, started_at=None):
        self._is_connected = False
        # Start the clock at process start so the watchdog doesn't fire right away
        self._last_connected_at = time.time() if started_at is None else started_at

    @property
    def is_connected(self):
        return self._is_connected

    @property
    def last_connected_at(self):
        return self._last_connected_at

    def record_connect(self, now):
        self._last_connected_at = now
        self._is_connected = True

    def record_disconnect(self):
        self._is_connected = False

    def record_activity(self, now):
        self._last_connected_at = max(self._last_connected_at, now)


class BrokerSession:
    """Handles the TTN MQTT connection and turns uplinks into sink writes."""

    def __init__(self, config, sink, clock=time.time):
        self.config = config
        self.sink = sink
        self.clock = clock
        self.client = None
        self.state = SessionState.DISCONNECTED
        self.connection_state = ConnectionState(started_at=clock())
        self.topic = config.uplink_topic

        self.rx_count = 0
        self.written_count = 0
        self.dropped_count = 0
        self.last_message_at = 0

    def _create_client(self, use_tls):
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.config.mqtt_client_id)
        if self.config.mqtt_username:
            client.username_pw_set(self.config.mqtt_username, self.config.mqtt_password)

        if use_tls:
            logger.info("SSL/TLS Enabled")
            client.tls_set_context(ssl.create_default_context())

        # Fixed-period retries, paho's loop drives them forever
        client.reconnect_delay_set(min_delay=self.config.mqtt_reconnect_delay,
                                   max_delay=self.config.mqtt_reconnect_delay)
        client.connect_timeout = self.config.mqtt_connect_timeout
        client.enable_logger(logging.getLogger("ttn-bridge.handlers.mqtt.paho"))

        client.on_pre_connect = self._on_pre_connect
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        return client

    def start(self):
        """Connect and start the MQTT network loop."""
        host, port, use_tls = self.config.broker_address()
        if not host:
            logger.error("Invalid broker URI: %s", self.config.mqtt_server)
            return

        logger.info("Starting MQTT Client...")
        logger.info("  Server: %s:%d", host, port)
        logger.info("  User: %s", self.config.mqtt_username)
        logger.info("  Topic: %s", self.topic)

        self.client = self._create_client(use_tls)
        self.state = SessionState.CONNECTING
        try:
            self.client.connect_async(host, port, keepalive=self.config.mqtt_keepalive)
            self.client.loop_start()
        except Exception as e:
            logger.error("Failed to start MQTT client: %s", e)

    def stop(self):
        """Disconnect and stop the MQTT loop."""
        if self.state == SessionState.ENDED:
            return
        self.state = SessionState.ENDED
        self.connection_state.record_disconnect()
        if self.client:
            try:
                self.client.disconnect()
                self.client.loop_stop()
            except Exception as e:
                logger.debug("Error stopping MQTT client: %s", e)

    def _on_pre_connect(self, client, userdata):
        if self.state == SessionState.ENDED:
            return
        if self.state == SessionState.OFFLINE:
            logger.info("Reconnecting to TTN...")
        self.state = SessionState.CONNECTING

    def _on_connect(self, client, userdata, flags, rc, props=None):
        logger.info("MQTT Connected with result code: %s", rc)
        if rc == 0:
            self.state = SessionState.CONNECTED
            self.connection_state.record_connect(self.clock())

            logger.info("Subscribing to uplinks: %s", self.topic)
            result, _mid = client.subscribe(self.topic)
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.error("Subscription request failed: rc=%s", result)
        else:
            self.state = SessionState.OFFLINE
            self.connection_state.record_disconnect()
            logger.error("MQTT Connect failed: %s", rc)

    def _on_connect_fail(self, client, userdata):
        if self.state != SessionState.ENDED:
            self.state = SessionState.OFFLINE
        self.connection_state.record_disconnect()
        logger.warning("MQTT connection attempt failed. Retrying in %ss.", self.config.mqtt_reconnect_delay)

    def _on_disconnect(self, client, userdata, flags, rc, props=None):
        self.connection_state.record_disconnect()
        if self.state == SessionState.ENDED:
            logger.info("MQTT Disconnected gracefully.")
            return
        self.state = SessionState.OFFLINE
        if rc != 0:
            logger.warning("MQTT Disconnected unexpectedly (rc=%s). Will attempt to reconnect.", rc)
        else:
            logger.info("MQTT Connection closed.")

    def _on_subscribe(self, client, userdata, mid, reason_codes, props=None):
        failures = [rc for rc in reason_codes if rc.is_failure]
        if failures:
            logger.error("Subscription to %s rejected: %s", self.topic, ", ".join(str(rc) for rc in failures))
        else:
            logger.info("Subscribed to TTN uplink topic")

    def _on_message(self, client, userdata, message):
        """Handle incoming MQTT messages."""
        try:
            now = self.clock()
            self.rx_count += 1
            self.last_message_at = now
            if self.config.liveness_on_message:
                self.connection_state.record_activity(now)

            logger.debug("MQTT message: Topic=%s Size=%d bytes", message.topic, len(message.payload))
            self.process_uplink(message.payload, topic=message.topic, received_at=now)

        except Exception as e:
            self.dropped_count += 1
            logger.error("Error handling MQTT message: %s", e)

    def process_uplink(self, payload, topic=None, received_at=None):
        """
        Decode, map and write a single uplink.

        Returns:
            True if a point was handed to the sink.
        """
        try:
            uplink = decode_uplink(payload, topic=topic)
        except UplinkDecodeError as e:
            self.dropped_count += 1
            logger.warning("Dropping uplink on %s: %s", topic, e)
            return False

        if received_at is None:
            received_at = self.clock()
        point = map_uplink(uplink, measurement=self.config.influx_measurement, received_at=received_at)
        if not point.fields:
            self.dropped_count += 1
            logger.info("Device %s sent no numeric fields, nothing to write", uplink.device_id)
            return False

        if not self.sink.write_point(point):
            self.dropped_count += 1
            return False

        self.written_count += 1
        logger.info("Data written from device %s: %s", uplink.device_id, point.fields)
        return True
