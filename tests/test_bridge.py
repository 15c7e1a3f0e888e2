import os
import sys
import signal
import threading
import pytest
from unittest.mock import MagicMock, patch

import importlib.util

def load_module(name, path):
    spec = importlib.util.spec_from_file_location(name, path)
    mod = importlib.util.module_from_spec(spec)
    sys.modules[name] = mod
    spec.loader.exec_module(mod)
    return mod

# Load ttn-bridge
bridge_mod = load_module("ttn_bridge", os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "ttn-bridge.py"))
TTNBridge = bridge_mod.TTNBridge


@pytest.fixture
def bridge(config):
    bridge = TTNBridge(config, exit_func=MagicMock())
    bridge.sink = MagicMock()
    bridge.session = MagicMock()
    bridge.watchdog = MagicMock()
    bridge.liveness = MagicMock()
    return bridge


def test_signal_shutdown_exits_zero(bridge):
    bridge.handle_signal(signal.SIGTERM, None)

    assert bridge.running is False
    bridge.watchdog.stop.assert_called_once()
    bridge.session.stop.assert_called_once()
    bridge.liveness.stop.assert_called_once()
    bridge.sink.close.assert_called_once_with(timeout=5.0)
    bridge.exit_func.assert_called_once_with(0)


def test_sigint_exits_zero(bridge):
    bridge.handle_signal(signal.SIGINT, None)
    bridge.exit_func.assert_called_once_with(0)


def test_uncaught_exception_exits_one(bridge):
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        bridge.handle_exception(*sys.exc_info())

    bridge.sink.close.assert_called_once()
    bridge.exit_func.assert_called_once_with(1)


def test_thread_exception_exits_one(bridge):
    args = MagicMock()
    args.exc_type = ValueError
    args.exc_value = ValueError("bad")
    args.exc_traceback = None
    args.thread = threading.current_thread()

    bridge.handle_thread_exception(args)
    bridge.exit_func.assert_called_once_with(1)


def test_thread_system_exit_is_ignored(bridge):
    args = MagicMock()
    args.exc_type = SystemExit
    bridge.handle_thread_exception(args)
    bridge.exit_func.assert_not_called()


def test_watchdog_trigger_exits_one(bridge):
    bridge.on_watchdog_trigger("No broker connection for 360s")
    bridge.sink.close.assert_called_once_with(timeout=5.0)
    bridge.exit_func.assert_called_once_with(1)


def test_shutdown_survives_component_errors(bridge):
    bridge.session.stop.side_effect = RuntimeError("already closed")
    bridge.sink.close.side_effect = RuntimeError("flush failed")

    bridge.shutdown(1, "test")
    bridge.exit_func.assert_called_once_with(1)


def test_concurrent_shutdowns_all_exit(bridge):
    threads = [threading.Thread(target=bridge.shutdown, args=(1, "race")) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert bridge.exit_func.call_count == 3
    assert bridge.exit_code == 1


def test_shutdown_before_setup(config):
    bridge = TTNBridge(config, exit_func=MagicMock())
    bridge.shutdown(0)
    bridge.exit_func.assert_called_once_with(0)


def test_run_with_missing_config(config):
    config.influx_token = ""
    bridge = TTNBridge(config, exit_func=MagicMock())
    with patch.object(bridge, "setup") as mock_setup:
        assert bridge.run() == 1
        mock_setup.assert_not_called()


def test_setup_wires_components(config):
    bridge = TTNBridge(config, exit_func=MagicMock())
    with patch.object(bridge_mod, "InfluxSink") as mock_sink, \
         patch.object(bridge_mod, "BrokerSession") as mock_session, \
         patch.object(bridge_mod, "Watchdog") as mock_watchdog, \
         patch.object(bridge_mod, "LivenessServer") as mock_liveness:
        bridge.setup()

        mock_sink.assert_called_once_with(config)
        mock_session.assert_called_once_with(config, mock_sink.return_value)
        mock_watchdog.assert_called_once_with(
            config, mock_session.return_value.connection_state, bridge.on_watchdog_trigger
        )
        mock_liveness.assert_called_once_with("0.0.0.0", 10000)


def test_run_starts_components(config):
    bridge = TTNBridge(config, exit_func=MagicMock())

    def stop_loop(_seconds):
        bridge.running = False

    with patch.object(bridge_mod, "InfluxSink"), \
         patch.object(bridge_mod, "BrokerSession"), \
         patch.object(bridge_mod, "Watchdog"), \
         patch.object(bridge_mod, "LivenessServer"), \
         patch.object(bridge, "install_handlers") as mock_install, \
         patch("time.sleep", side_effect=stop_loop):
        assert bridge.run() == 0

        mock_install.assert_called_once()
        bridge.liveness.start.assert_called_once()
        bridge.session.start.assert_called_once()
        bridge.watchdog.start.assert_called_once()


def test_install_handlers(config):
    bridge = TTNBridge(config, exit_func=MagicMock())
    old_excepthook, old_thread_hook = sys.excepthook, threading.excepthook
    try:
        with patch("signal.signal") as mock_signal:
            bridge.install_handlers()
            mock_signal.assert_any_call(signal.SIGINT, bridge.handle_signal)
            mock_signal.assert_any_call(signal.SIGTERM, bridge.handle_signal)
        assert sys.excepthook == bridge.handle_exception
        assert threading.excepthook == bridge.handle_thread_exception
    finally:
        sys.excepthook, threading.excepthook = old_excepthook, old_thread_hook


def test_log_status(bridge):
    bridge.session.state = MagicMock(value="connected")
    bridge.session.connection_state.last_connected_at = 900.0
    bridge.session.connection_state.is_connected = True
    bridge.session.last_message_at = 990.0
    bridge.session.rx_count = 4
    bridge.session.written_count = 3
    bridge.session.dropped_count = 1
    bridge.sink.batch_failures = 0
    bridge.last_status_log_time = 0

    with patch.object(bridge_mod.logger, "info") as mock_log:
        assert bridge._log_status(1000.0) is True
        mock_log.assert_any_call("  Points written: %d, dropped: %d", 3, 1)

    # Within the interval nothing is logged
    assert bridge._log_status(1010.0) is False
