"""Broker liveness watchdog for the TTN bridge."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import time
import logging
import threading

logger = logging.getLogger("ttn-bridge.handlers.watchdog")

POLICY_DISCONNECTED = "disconnected"
POLICY_ELAPSED = "elapsed"


class Watchdog:
    """
    Periodically checks broker liveness and requests a restart when it is gone.

    The process manager restarts us after a non-zero exit, which is the only
    reliable way to recover from a wedged network stack.
    """

    def __init__(self, config, connection_state, on_trigger, clock=time.time):
        """
        Initialize the watchdog.

        Args:
            config: Config object with the watchdog_* settings.
            connection_state: Read-only view of the broker ConnectionState.
            on_trigger: Callable(reason) invoked once the threshold is exceeded.
            clock: Time source, epoch seconds.
        """
        self.config = config
        self.connection_state = connection_state
        self.on_trigger = on_trigger
        self.clock = clock
        self.interval = config.watchdog_interval
        self.threshold = config.watchdog_threshold
        self.policy = config.watchdog_policy
        if self.policy not in (POLICY_DISCONNECTED, POLICY_ELAPSED):
            logger.warning("Unknown watchdog policy '%s', using '%s'", self.policy, POLICY_DISCONNECTED)
            self.policy = POLICY_DISCONNECTED

        self.running = False
        self.triggered = False
        self.thread = None
        self._stop_event = threading.Event()

    def start(self):
        """Start the watchdog thread."""
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run_loop, daemon=True, name="LivenessWatchdog")
        self.thread.start()
        logger.info("Watchdog started (interval=%ds, threshold=%ds, policy=%s)",
                    self.interval, self.threshold, self.policy)

    def stop(self):
        """Stop the watchdog thread."""
        self.running = False
        self._stop_event.set()
        if self.thread and self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout=1.0)

    def check(self, now=None):
        """
        Evaluate liveness once.

        Returns:
            Tuple of (triggered, reason).
        """
        if now is None:
            now = self.clock()

        is_connected = self.connection_state.is_connected
        elapsed = now - self.connection_state.last_connected_at

        if self.policy == POLICY_DISCONNECTED and is_connected:
            return False, None

        if elapsed > self.threshold:
            state = "connected" if is_connected else "disconnected"
            return True, f"No broker connection for {int(elapsed)}s ({state}, threshold: {self.threshold}s)"

        if not is_connected and elapsed > self.threshold * 0.8:
            logger.warning("Watchdog warning: broker down for %ds (restart in %ds)",
                           int(elapsed), int(self.threshold - elapsed))
        return False, None

    def tick(self, now=None):
        """Run one check and fire the trigger if needed. Never raises."""
        try:
            triggered, reason = self.check(now)
            if triggered and not self.triggered:
                self.triggered = True
                logger.critical("Watchdog FAILED: %s. Forcing restart.", reason)
                self.on_trigger(reason)
            return triggered
        except Exception as e:
            logger.error("Error in watchdog check: %s", e)
            return False

    def _run_loop(self):
        while self.running:
            if self._stop_event.wait(self.interval):
                break
            self.tick()
