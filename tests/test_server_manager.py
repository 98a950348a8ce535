import subprocess

import pytest

import server_manager
from errors import ServerStartupError
from server_manager import ServerManager, ServerState


class FakeProcess:
    def __init__(self, exit_code=None, ignores_terminate=False):
        self.returncode = exit_code
        self.ignores_terminate = ignores_terminate
        self.terminated = False
        self.killed = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        if not self.ignores_terminate:
            self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired("ollama", timeout)
        return self.returncode


class Spawner:
    def __init__(self, proc=None, error=None):
        self.proc = proc or FakeProcess()
        self.error = error
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append(command)
        if self.error:
            raise self.error
        return self.proc


class Probe:
    """Health check that fails ``failures`` times before succeeding."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.calls > self.failures


def _manager(spawner, sleeps=None, **kwargs):
    sleeps = sleeps if sleeps is not None else []
    kwargs.setdefault("sweep_command", None)
    return ServerManager(command=["ollama", "serve"], spawn=spawner, sleep=sleeps.append, **kwargs)


def test_running_server_is_not_spawned():
    spawner = Spawner()
    statuses = []
    manager = _manager(spawner)

    manager.ensure_running(lambda: True, statuses.append)

    assert spawner.calls == []
    assert statuses == ["Server is running"]
    assert manager.state is ServerState.RUNNING


def test_server_answers_on_third_poll():
    spawner = Spawner()
    sleeps = []
    statuses = []
    probe = Probe(failures=3)  # initial probe + two polls fail
    manager = _manager(spawner, sleeps)

    manager.ensure_running(probe, statuses.append)

    assert spawner.calls == [["ollama", "serve"]]
    assert probe.calls - 1 == 3
    assert sleeps == [1.0, 1.0, 1.0]
    assert statuses == ["Starting Ollama server...", "Waiting for server...", "Server connected"]
    assert manager.state is ServerState.RUNNING
    assert manager.is_alive is True


def test_server_that_never_answers_fails_after_five_polls():
    sleeps = []
    probe = Probe(failures=100)
    manager = _manager(Spawner(), sleeps)

    with pytest.raises(ServerStartupError) as info:
        manager.ensure_running(probe)

    assert "did not respond after 5 attempts" in str(info.value)
    assert probe.calls - 1 == 5
    assert len(sleeps) == 5
    assert manager.state is ServerState.FAILED


def test_probe_exceptions_count_as_failures():
    calls = []

    def probe():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("connection refused")
        return True

    manager = _manager(Spawner())
    manager.ensure_running(probe)
    assert len(calls) == 3
    assert manager.state is ServerState.RUNNING


def test_spawn_failure_raises_startup_error():
    manager = _manager(Spawner(error=FileNotFoundError("ollama")))
    with pytest.raises(ServerStartupError) as info:
        manager.ensure_running(lambda: False)
    assert "Could not start Ollama server process" in str(info.value)
    assert isinstance(info.value.__cause__, FileNotFoundError)
    assert manager.state is ServerState.FAILED


def test_process_that_exits_immediately_is_a_spawn_failure():
    manager = _manager(Spawner(proc=FakeProcess(exit_code=1)))
    with pytest.raises(ServerStartupError):
        manager.start_server()
    assert manager.is_alive is False


def test_stop_without_process_is_a_noop():
    manager = _manager(Spawner())
    manager.stop_server()
    manager.stop_server()
    assert manager.is_alive is False


def test_stop_terminates_gracefully():
    proc = FakeProcess()
    manager = _manager(Spawner(proc=proc))
    manager.start_server()

    manager.stop_server()

    assert proc.terminated is True
    assert proc.killed is False
    assert manager.is_alive is False
    manager.stop_server()


def test_stop_kills_a_process_that_ignores_terminate():
    proc = FakeProcess(ignores_terminate=True)
    manager = _manager(Spawner(proc=proc))
    manager.start_server()

    manager.stop_server()

    assert proc.terminated is True
    assert proc.killed is True


def test_sweep_errors_are_ignored(monkeypatch):
    calls = []

    def failing_run(cmd, **kwargs):
        calls.append(cmd)
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(server_manager.subprocess, "run", failing_run)
    manager = _manager(Spawner(), sweep_command=["taskkill", "/F", "/IM", "ollama.exe"])

    manager.stop_server()

    assert calls == [["taskkill", "/F", "/IM", "ollama.exe"]]


def test_context_manager_stops_server():
    proc = FakeProcess()
    with _manager(Spawner(proc=proc)) as manager:
        manager.start_server()
        assert manager.is_alive is True
    assert proc.terminated is True


def test_shutdown_hooks_register_once(monkeypatch):
    registered = []
    handlers = {}
    monkeypatch.setattr(server_manager.atexit, "register", registered.append)
    monkeypatch.setattr(server_manager.signal, "signal", lambda sig, fn: handlers.__setitem__(sig, fn))
    manager = _manager(Spawner())

    manager.install_shutdown_hooks()
    manager.install_shutdown_hooks()

    assert registered == [manager.stop_server]
    handler = handlers[server_manager.signal.SIGTERM]
    with pytest.raises(SystemExit):
        handler(server_manager.signal.SIGTERM, None)


def test_repeated_failed_startup_reuses_the_live_process():
    spawned = []

    def spawner(command, **kwargs):
        proc = FakeProcess()
        spawned.append(proc)
        return proc

    manager = _manager(spawner)
    for _ in range(2):
        with pytest.raises(ServerStartupError):
            manager.ensure_running(lambda: False)

    manager.stop_server()

    assert len(spawned) == 1
    assert all(proc.terminated for proc in spawned)


def test_dead_process_is_replaced_on_next_start():
    spawned = []

    def spawner(command, **kwargs):
        proc = FakeProcess()
        spawned.append(proc)
        return proc

    manager = _manager(spawner)
    manager.start_server()
    spawned[0].returncode = 1  # crashed on its own
    manager.start_server()
    manager.stop_server()

    assert len(spawned) == 2
    assert spawned[1].terminated is True
