"""InfluxDB sink for the TTN bridge."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import time
import logging
import threading

from influxdb_client import InfluxDBClient, Point, WriteOptions, WritePrecision
from influxdb_client.client.write_api import PointSettings

logger = logging.getLogger("ttn-bridge.handlers.influx")


def to_influx_point(metric):
    """
    Convert a MetricPoint into an influxdb_client Point stamped in whole seconds.

    The batching writer groups by the point's own precision, so the time is
    set on the point rather than passed to write().
    """
    stamp = metric.time if metric.time is not None else time.time()
    point = Point(metric.measurement).time(int(stamp), write_precision=WritePrecision.S)
    for key, value in metric.tags.items():
        point.tag(key, value)
    for key, value in metric.fields.items():
        point.field(key, value)
    return point


class InfluxSink:
    """
    Batched, fire-and-forget writer for measurement points.

    Failed batches are logged and dropped; nothing is retried.
    """

    def __init__(self, config):
        """
        Initialize the sink.

        Args:
            config: Config object with the influx_* settings.
        """
        self.config = config
        self.bucket = config.influx_bucket
        self.org = config.influx_org
        self.write_count = 0
        self.write_failures = 0
        self.batch_failures = 0

        self._lock = threading.Lock()
        self._closed = False
        self._closer = None

        self.client = InfluxDBClient(url=config.influx_url, token=config.influx_token, org=config.influx_org)
        self.write_api = self.client.write_api(
            write_options=WriteOptions(
                batch_size=config.influx_batch_size,
                flush_interval=config.influx_flush_interval,
                max_retries=0,
            ),
            point_settings=PointSettings(host=config.influx_host_tag),
            success_callback=self._on_batch_written,
            error_callback=self._on_batch_error,
        )
        logger.info("InfluxDB sink ready: %s (org=%s, bucket=%s)", config.influx_url, self.org, self.bucket)

    def write_point(self, metric):
        """Queue a MetricPoint for the next batch. Returns False if it was rejected."""
        if self._closed:
            logger.warning("Sink closed, dropping point for %s", metric.tags)
            return False

        try:
            point = to_influx_point(metric)
            self.write_api.write(bucket=self.bucket, org=self.org, record=point, write_precision=WritePrecision.S)
            self.write_count += 1
            return True
        except Exception as e:
            self.write_failures += 1
            logger.error("Failed to queue point for %s: %s", metric.tags, e)
            return False

    def close(self, timeout=None):
        """
        Flush pending points and release the client.

        Safe to call from several threads at once. Waits at most `timeout`
        seconds so a stuck flush never blocks process exit.

        Returns:
            True if the flush finished within the timeout.
        """
        with self._lock:
            if self._closer is None:
                self._closed = True
                self._closer = threading.Thread(target=self._close_handles, daemon=True, name="InfluxSinkClose")
                self._closer.start()
            closer = self._closer

        closer.join(timeout)
        if closer.is_alive():
            logger.warning("InfluxDB flush did not finish within %ss, abandoning pending points", timeout)
            return False
        return True

    def _close_handles(self):
        try:
            self.write_api.close()
            logger.info("InfluxDB write buffer flushed (%d points queued, %d failed batches)",
                        self.write_count, self.batch_failures)
        except Exception as e:
            logger.error("Error flushing InfluxDB writes: %s", e)
        try:
            self.client.close()
        except Exception as e:
            logger.debug("Error closing InfluxDB client: %s", e)

    def _on_batch_written(self, conf, data):
        logger.debug("InfluxDB batch written to %s: %d line(s)", conf[0], _line_count(data))

    def _on_batch_error(self, conf, data, exception):
        self.batch_failures += 1
        logger.error("InfluxDB write failed, dropping %d line(s): %s", _line_count(data), exception)


def _line_count(data):
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not data:
        return 0
    return len(str(data).splitlines())
