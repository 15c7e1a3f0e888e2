"""Configuration management for the TTN InfluxDB bridge."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import os
import logging
from urllib.parse import urlsplit

logger = logging.getLogger("ttn-bridge.config")

TLS_SCHEMES = ("mqtts", "ssl", "tls")


class Config:
    """Configuration manager for the TTN InfluxDB bridge."""

    def __init__(self):
        # logging setup
        self.log_level_str = os.environ.get("LOG_LEVEL", "INFO").upper()
        self.log_level = getattr(logging, self.log_level_str, logging.INFO)

        # TTN broker configuration
        self.mqtt_server = os.environ.get("TTN_MQTT_SERVER", "mqtts://au1.cloud.thethings.network:8883")
        self.mqtt_username = os.environ.get("TTN_USERNAME", "")
        self.mqtt_password = os.environ.get("TTN_PASSWORD", "")
        # TTN v3 usernames are the application id (e.g. "my-app@ttn")
        self.ttn_application_id = os.environ.get("TTN_APPLICATION_ID", self.mqtt_username)
        self.mqtt_client_id = os.environ.get("MQTT_CLIENT_ID", "")

        # Broker connection policy (in seconds)
        self.mqtt_reconnect_delay = int(os.environ.get("MQTT_RECONNECT_DELAY", "5"))  # fixed interval
        self.mqtt_connect_timeout = int(os.environ.get("MQTT_CONNECT_TIMEOUT", "30"))
        self.mqtt_keepalive = int(os.environ.get("MQTT_KEEPALIVE", "60"))

        # InfluxDB configuration
        self.influx_url = os.environ.get("INFLUX_URL", "")
        self.influx_token = os.environ.get("INFLUX_TOKEN", "")
        self.influx_org = os.environ.get("INFLUX_ORG", "")
        self.influx_bucket = os.environ.get("INFLUX_BUCKET", "")
        self.influx_measurement = os.environ.get("INFLUX_MEASUREMENT", "air_quality")
        self.influx_host_tag = os.environ.get("INFLUX_HOST_TAG", "render-ttn")
        self.influx_batch_size = int(os.environ.get("INFLUX_BATCH_SIZE", "100"))
        self.influx_flush_interval = int(os.environ.get("INFLUX_FLUSH_INTERVAL", "1000"))  # milliseconds

        # Liveness HTTP endpoint
        self.http_host = os.environ.get("HTTP_HOST", "0.0.0.0")
        self.http_port = int(os.environ.get("PORT", "10000"))

        # Watchdog configurations
        self.watchdog_interval = int(os.environ.get("WATCHDOG_INTERVAL", "30"))
        self.watchdog_threshold = int(os.environ.get("WATCHDOG_THRESHOLD", "300"))  # 5 minutes default
        # "disconnected": only restart when the broker is down as well
        # "elapsed": restart whenever the last connect is older than the threshold
        self.watchdog_policy = os.environ.get("WATCHDOG_POLICY", "disconnected").lower()
        # Count any received uplink as liveness, not just broker handshakes
        self.liveness_on_message = os.environ.get("LIVENESS_ON_MESSAGE", "false").lower() == "true"

        self.shutdown_flush_timeout = float(os.environ.get("SHUTDOWN_FLUSH_TIMEOUT", "5"))
        self.health_check_status_interval = int(os.environ.get("HEALTH_CHECK_STATUS_INTERVAL", "60"))  # 60 seconds default

    @property
    def uplink_topic(self):
        """Wildcard uplink topic for every device of the application."""
        return f"v3/{self.ttn_application_id}/devices/+/up"

    def broker_address(self):
        """
        Split the broker URI into its parts.

        Returns:
            Tuple of (host, port, use_tls).
        """
        parts = urlsplit(self.mqtt_server)
        if not parts.scheme or not parts.hostname:
            # Bare "host" or "host:port"
            parts = urlsplit(f"mqtt://{self.mqtt_server}")

        use_tls = parts.scheme.lower() in TLS_SCHEMES
        port = parts.port or (8883 if use_tls else 1883)
        return parts.hostname, port, use_tls

    def missing_required(self):
        """Names of required environment variables that are not set."""
        required = {
            "TTN_USERNAME": self.mqtt_username,
            "TTN_PASSWORD": self.mqtt_password,
            "INFLUX_URL": self.influx_url,
            "INFLUX_TOKEN": self.influx_token,
            "INFLUX_ORG": self.influx_org,
            "INFLUX_BUCKET": self.influx_bucket,
        }
        return [name for name, value in required.items() if not value]

# Global instance
cfg = Config()
