#!/usr/bin/env python3
"""TTN -> InfluxDB bridge entry point."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import os
import sys
import time
import signal
import logging
import threading

from config import cfg
from handlers.health import LivenessServer
from handlers.influx import InfluxSink
from handlers.mqtt import BrokerSession
from handlers.watchdog import Watchdog

# Configure logging
logging.basicConfig(
    level=cfg.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("ttn-bridge")


class TTNBridge:
    """Wires the broker session, sink, watchdog and liveness endpoint together."""

    def __init__(self, config=None, exit_func=os._exit):
        self.config = config or cfg
        self.exit_func = exit_func
        self.running = True
        self.exit_code = None

        self.sink = None
        self.session = None
        self.watchdog = None
        self.liveness = None

        self.last_status_log_time = 0
        self._shutdown_lock = threading.Lock()

    def setup(self):
        """Create all components."""
        self.sink = InfluxSink(self.config)
        self.session = BrokerSession(self.config, self.sink)
        self.watchdog = Watchdog(self.config, self.session.connection_state, self.on_watchdog_trigger)
        self.liveness = LivenessServer(self.config.http_host, self.config.http_port)

    def install_handlers(self):
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)
        sys.excepthook = self.handle_exception
        threading.excepthook = self.handle_thread_exception

    # ------------------------------------------------------------------
    # Exit paths
    # ------------------------------------------------------------------
    def handle_signal(self, sig, frame):
        try:
            name = signal.Signals(sig).name
        except ValueError:
            name = str(sig)
        logger.info("Received %s, shutting down...", name)
        self.shutdown(0, f"signal {name}")

    def handle_exception(self, exc_type, exc_value, exc_tb):
        logger.critical("Uncaught exception, shutting down", exc_info=(exc_type, exc_value, exc_tb))
        self.shutdown(1, f"uncaught {exc_type.__name__}")

    def handle_thread_exception(self, args):
        if issubclass(args.exc_type, SystemExit):
            return
        thread_name = args.thread.name if args.thread else "<unknown>"
        logger.critical("Uncaught exception in thread %s, shutting down", thread_name,
                        exc_info=(args.exc_type, args.exc_value, args.exc_traceback))
        self.shutdown(1, f"uncaught {args.exc_type.__name__} in {thread_name}")

    def on_watchdog_trigger(self, reason):
        self.shutdown(1, reason)

    def shutdown(self, exit_code, reason=None):
        """Flush the sink (bounded), stop everything and exit the process."""
        with self._shutdown_lock:
            self.running = False
            self.exit_code = exit_code

        logger.info("Shutting down (exit code %d): %s", exit_code, reason or "requested")
        self._cleanup()

        for handler in logging.getLogger().handlers:
            try:
                handler.flush()
            except Exception:
                pass
        self.exit_func(exit_code)

    def _cleanup(self):
        if self.watchdog:
            self.watchdog.stop()
        if self.session:
            try:
                self.session.stop()
            except Exception as e:
                logger.error("Error stopping broker session: %s", e)
        if self.liveness:
            self.liveness.stop()
        if self.sink:
            try:
                self.sink.close(timeout=self.config.shutdown_flush_timeout)
            except Exception as e:
                logger.error("Error closing InfluxDB sink: %s", e)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def _log_status(self, current_time):
        """Log a status block every health_check_status_interval seconds."""
        if current_time - self.last_status_log_time <= self.config.health_check_status_interval:
            return False
        if not self.session:
            return False

        state = self.session.connection_state
        since_connect = current_time - state.last_connected_at
        since_rx = current_time - self.session.last_message_at if self.session.last_message_at > 0 else -1

        logger.info("=== TTN Bridge Status ===")
        logger.info("  MQTT: %s (connected=%s, last connect %ds ago)",
                    self.session.state.value, state.is_connected, int(since_connect))
        logger.info("  Uplinks RX: %d (last: %s ago)",
                    self.session.rx_count,
                    f"{int(since_rx)}s" if since_rx >= 0 else "never")
        logger.info("  Points written: %d, dropped: %d",
                    self.session.written_count, self.session.dropped_count)
        if self.sink:
            logger.info("  InfluxDB failed batches: %d", self.sink.batch_failures)
        self.last_status_log_time = current_time
        return True

    def run(self):
        missing = self.config.missing_required()
        if missing:
            logger.error("Missing required configuration: %s", ", ".join(missing))
            return 1

        self.setup()
        self.install_handlers()

        self.liveness.start()
        self.session.start()
        self.watchdog.start()

        while self.running:
            time.sleep(1)
            self._log_status(time.time())

        return self.exit_code or 0


def main():
    logger.info("TTN bridge starting...")
    bridge = TTNBridge()
    sys.exit(bridge.run())


if __name__ == "__main__":
    main()
