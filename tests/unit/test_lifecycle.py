"""Unit tests for lifecycle states and the lifecycle controller."""

# pylint: disable=redefined-outer-name

import json
import signal
import socket
import threading
import time

import pytest

from main import main
from service_template.bootstrap.config import ServerSettings
from service_template.errors import ConfigError, LifecycleError, ShutdownError
from service_template.handlers.health import HealthResponder
from service_template.lifecycle.controller import (
    EXIT_FAILURE,
    EXIT_OK,
    LifecycleController,
)
from service_template.lifecycle.state import LifecycleState, ServerLifecycle
from tests.utils.http import read_http_response, read_log_events, reserve_port

HOST = "127.0.0.1"


def _settings_for(port):
    def loader(_env_file):
        return ServerSettings(address=HOST, port=port, env="local", log_level="debug")

    return loader


class ControllerRunner:
    """Runs a controller on a background thread and collects its exit code."""

    def __init__(self, controller):
        self.controller = controller
        self.exit_code = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        self.exit_code = self.controller.run()

    def start(self):
        self._thread.start()
        assert self.controller.lifecycle.wait_until_running(5)
        return self

    def join(self, timeout=10.0):
        self._thread.join(timeout)
        assert not self._thread.is_alive()
        return self.exit_code


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "server.log"


def _events(log_file):
    return {record.get("event"): record for record in read_log_events(log_file)}


def test_lifecycle_follows_clean_path():
    lifecycle = ServerLifecycle()
    assert lifecycle.state is LifecycleState.INITIALIZING

    for state in (LifecycleState.RUNNING, LifecycleState.DRAINING, LifecycleState.STOPPED):
        lifecycle.transition(state)

    assert lifecycle.state is LifecycleState.STOPPED
    assert lifecycle.is_finished()


@pytest.mark.parametrize(
    ("path", "illegal"),
    [
        ((), LifecycleState.DRAINING),
        ((), LifecycleState.STOPPED),
        ((LifecycleState.RUNNING,), LifecycleState.STOPPED),
        ((LifecycleState.ABORTED,), LifecycleState.RUNNING),
        (
            (LifecycleState.RUNNING, LifecycleState.DRAINING, LifecycleState.STOPPED),
            LifecycleState.ABORTED,
        ),
    ],
)
def test_lifecycle_rejects_illegal_transitions(path, illegal):
    lifecycle = ServerLifecycle()
    for state in path:
        lifecycle.transition(state)

    with pytest.raises(LifecycleError):
        lifecycle.transition(illegal)


def test_every_state_can_abort_until_finished():
    for path in ((), (LifecycleState.RUNNING,), (LifecycleState.RUNNING, LifecycleState.DRAINING)):
        lifecycle = ServerLifecycle()
        for state in path:
            lifecycle.transition(state)
        lifecycle.transition(LifecycleState.ABORTED)
        assert lifecycle.is_finished()


def test_controller_serves_and_stops_cleanly(log_file):
    """A shutdown request drains the listener and exits with 0."""
    port = reserve_port(HOST)
    controller = LifecycleController(
        log_destination=str(log_file),
        install_signal_handlers=False,
        settings_loader=_settings_for(port),
    )
    runner = ControllerRunner(controller).start()

    with socket.create_connection((HOST, port), timeout=5) as client:
        client.sendall(b"GET /health/ready HTTP/1.1\r\nHost: localhost\r\n\r\n")
        response = read_http_response(client)
    assert response.status_code == 200
    assert response.body == b"{}"

    controller.request_shutdown()

    assert runner.join() == EXIT_OK
    assert controller.lifecycle.state is LifecycleState.STOPPED
    events = _events(log_file)
    assert events["config_loaded"]["config"]["port"] == port
    assert events["server_listening"]["port"] == port
    assert "server_stopped" in events


def test_controller_signal_handler_starts_shutdown(log_file):
    """The signal handler only posts a message; the controller does the rest."""
    controller = LifecycleController(
        log_destination=str(log_file),
        install_signal_handlers=False,
        settings_loader=_settings_for(reserve_port(HOST)),
    )
    runner = ControllerRunner(controller).start()

    controller._on_signal(signal.SIGTERM, None)  # pylint: disable=protected-access

    assert runner.join() == EXIT_OK
    assert _events(log_file)["shutdown_started"]["signal"] == "SIGTERM"


def test_controller_skips_signals_off_main_thread(log_file):
    controller = LifecycleController(
        log_destination=str(log_file),
        settings_loader=_settings_for(reserve_port(HOST)),
    )
    runner = ControllerRunner(controller).start()
    controller.request_shutdown()

    assert runner.join() == EXIT_OK
    assert "signals_skipped" in _events(log_file)


def test_invalid_configuration_aborts(log_file):
    def broken_loader(_env_file):
        raise ConfigError(["SERVER_PORT: Field required"])

    controller = LifecycleController(
        log_destination=str(log_file),
        install_signal_handlers=False,
        settings_loader=broken_loader,
    )

    assert controller.run() == EXIT_FAILURE
    assert controller.lifecycle.state is LifecycleState.ABORTED
    record = _events(log_file)["startup_failed"]
    assert record["level"] == "CRITICAL"
    assert record["error_type"] == "ConfigError"
    assert "SERVER_PORT" in record["error"]


def test_port_in_use_aborts(log_file):
    with socket.create_server((HOST, 0)) as blocker:
        port = blocker.getsockname()[1]
        controller = LifecycleController(
            log_destination=str(log_file),
            install_signal_handlers=False,
            settings_loader=_settings_for(port),
        )

        assert controller.run() == EXIT_FAILURE

    assert controller.lifecycle.state is LifecycleState.ABORTED
    assert _events(log_file)["startup_failed"]["error_type"] == "BindError"


def test_stuck_request_is_force_closed_after_deadline(log_file):
    """Requests outliving the drain deadline are cut off; exit is still clean."""
    entered = threading.Event()
    release = threading.Event()

    def stuck_check():
        entered.set()
        return release.wait(10)

    port = reserve_port(HOST)
    controller = LifecycleController(
        log_destination=str(log_file),
        drain_timeout=0.3,
        health_responder=HealthResponder({"stuck": stuck_check}),
        install_signal_handlers=False,
        settings_loader=_settings_for(port),
    )
    runner = ControllerRunner(controller).start()
    client = socket.create_connection((HOST, port), timeout=5)
    try:
        client.sendall(b"GET /health/ready HTTP/1.1\r\nHost: localhost\r\n\r\n")
        assert entered.wait(5)

        controller.request_shutdown()

        assert runner.join() == EXIT_OK
    finally:
        release.set()
        client.close()
    events = _events(log_file)
    assert events["shutdown_timeout"]["remaining_connections"] == 1
    assert "connections_closed" in events
    assert controller.lifecycle.state is LifecycleState.STOPPED


def test_listener_failure_aborts(log_file):
    controller = LifecycleController(
        log_destination=str(log_file),
        install_signal_handlers=False,
        settings_loader=_settings_for(reserve_port(HOST)),
    )
    runner = ControllerRunner(controller).start()

    controller.listener._server_socket.close()  # pylint: disable=protected-access

    assert runner.join() == EXIT_FAILURE
    assert controller.lifecycle.state is LifecycleState.ABORTED
    assert "listener_failed" in _events(log_file)


def test_main_returns_failure_without_configuration(tmp_path, log_file):
    exit_code = main(
        [
            "--env-file",
            str(tmp_path / ".env"),
            "--log-destination",
            str(log_file),
        ]
    )

    assert exit_code == EXIT_FAILURE
    events = _events(log_file)
    assert "env_file_missing" in events
    assert events["startup_failed"]["error_type"] == "ConfigError"


def _blocking_readiness():
    entered = threading.Event()
    release = threading.Event()

    def stuck_check():
        entered.set()
        return release.wait(10)

    return HealthResponder({"stuck": stuck_check}), entered, release


def test_forced_close_failure_aborts(log_file, monkeypatch):
    """A connection that cannot be closed after the deadline aborts with 1."""
    responder, entered, release = _blocking_readiness()
    port = reserve_port(HOST)
    controller = LifecycleController(
        log_destination=str(log_file),
        drain_timeout=0.3,
        health_responder=responder,
        install_signal_handlers=False,
        settings_loader=_settings_for(port),
    )
    runner = ControllerRunner(controller).start()

    def failing_force_close():
        raise ShutdownError("failed to close 1 connection(s): bad file descriptor")

    monkeypatch.setattr(controller.listener, "force_close", failing_force_close)
    client = socket.create_connection((HOST, port), timeout=5)
    try:
        client.sendall(b"GET /health/ready HTTP/1.1\r\nHost: localhost\r\n\r\n")
        assert entered.wait(5)

        controller.request_shutdown()

        assert runner.join() == EXIT_FAILURE
    finally:
        release.set()
        client.close()
    assert controller.lifecycle.state is LifecycleState.ABORTED
    record = _events(log_file)["shutdown_failed"]
    assert record["level"] == "CRITICAL"
    assert record["error_type"] == "ShutdownError"


def test_signal_handlers_stay_installed_while_draining(log_file):
    """Repeated signals during the drain reach the controller, not the default handler."""
    original = signal.getsignal(signal.SIGTERM)
    responder, entered, release = _blocking_readiness()
    port = reserve_port(HOST)
    controller = LifecycleController(
        log_destination=str(log_file),
        drain_timeout=5.0,
        health_responder=responder,
        settings_loader=_settings_for(port),
    )
    observed = {}

    def drive_shutdown():
        try:
            if not controller.lifecycle.wait_until_running(5):
                return
            with socket.create_connection((HOST, port), timeout=5) as client:
                client.sendall(b"GET /health/ready HTTP/1.1\r\nHost: localhost\r\n\r\n")
                entered.wait(5)
                controller.request_shutdown()
                deadline = time.monotonic() + 5
                while (
                    controller.lifecycle.state is not LifecycleState.DRAINING
                    and time.monotonic() < deadline
                ):
                    time.sleep(0.01)
                observed["handler"] = signal.getsignal(signal.SIGTERM)
                release.set()
                observed["status"] = read_http_response(client).status_code
        finally:
            release.set()
            controller.request_shutdown()

    driver = threading.Thread(target=drive_shutdown, daemon=True)
    driver.start()
    exit_code = controller.run()
    driver.join(5)

    assert exit_code == EXIT_OK
    assert observed["handler"] == controller._on_signal  # pylint: disable=protected-access
    assert observed["status"] == 200
    assert signal.getsignal(signal.SIGTERM) is original


def test_unusable_log_destination_aborts(tmp_path, capsys):
    """A log destination that cannot be opened still yields one fatal JSON line."""
    controller = LifecycleController(
        log_destination=str(tmp_path),
        install_signal_handlers=False,
        settings_loader=_settings_for(reserve_port(HOST)),
    )

    assert controller.run() == EXIT_FAILURE

    assert controller.lifecycle.state is LifecycleState.ABORTED
    records = [
        json.loads(line)
        for line in capsys.readouterr().out.splitlines()
        if line.strip()
    ]
    failures = [r for r in records if r.get("event") == "startup_failed"]
    assert len(failures) == 1
    assert failures[0]["level"] == "CRITICAL"
    assert failures[0]["error_type"] == "LoggingSetupError"
