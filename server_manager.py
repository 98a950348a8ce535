"""Supervises the local ``ollama serve`` process.

The manager only starts a server when the health probe says none is
reachable, and it only stops the process it started itself. Probing is
delegated to the caller (normally ``ChatService.is_server_running``).
"""

from __future__ import annotations

import atexit
import contextlib
import logging
import os
import signal
import subprocess
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

from errors import ServerStartupError


OLLAMA_BIN = os.getenv("OLLAMA_BIN", "ollama")
OLLAMA_SERVE_COMMAND = [OLLAMA_BIN, "serve"]
# Advisory cleanup of runner processes that survive their parent on Windows.
SWEEP_COMMAND: Optional[List[str]] = ["taskkill", "/F", "/IM", "ollama.exe"] if os.name == "nt" else None

POLL_ATTEMPTS = 5
POLL_INTERVAL = 1.0
STOP_TIMEOUT = 3.0

LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


class ServerState(str, Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


def _probe(health_check: Callable[[], bool]) -> bool:
    try:
        return bool(health_check())
    except Exception as exc:  # a probe that blows up is a probe that failed
        LOGGER.debug("Health check raised %r", exc)
        return False


class ServerManager:
    def __init__(
        self,
        command: Sequence[str] = OLLAMA_SERVE_COMMAND,
        spawn: Callable[..., Any] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        poll_attempts: int = POLL_ATTEMPTS,
        poll_interval: float = POLL_INTERVAL,
        stop_timeout: float = STOP_TIMEOUT,
        sweep_command: Optional[Sequence[str]] = SWEEP_COMMAND,
    ) -> None:
        self.command = list(command)
        self._spawn = spawn
        self._sleep = sleep
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.sweep_command = list(sweep_command) if sweep_command else None
        self.state = ServerState.UNKNOWN
        self._process: Optional[Any] = None
        self._hooks_installed = False

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start_server(self) -> Any:
        """Spawn ``ollama serve`` with inherited stdio and return the handle.

        A process started earlier that is still alive is reused.
        """
        if self.is_alive:
            LOGGER.info("Reusing Ollama server process started earlier")
            return self._process
        LOGGER.info("Starting Ollama server: %s", " ".join(self.command))
        try:
            proc = self._spawn(self.command, env=os.environ.copy())
        except (OSError, subprocess.SubprocessError) as exc:
            self.state = ServerState.FAILED
            raise ServerStartupError("Could not start Ollama server process") from exc
        if proc.poll() is not None:
            self.state = ServerState.FAILED
            raise ServerStartupError(
                f"Could not start Ollama server process (exited with {proc.returncode})"
            )
        self._process = proc
        return proc

    def ensure_running(
        self,
        health_check: Callable[[], bool],
        status_callback: Optional[StatusCallback] = None,
    ) -> None:
        """Make sure a server answers ``health_check``, starting one if needed.

        Blocks the calling thread while polling; run it off the UI thread.
        Raises ``ServerStartupError`` when the process cannot be spawned or
        does not become healthy within ``poll_attempts`` probes.
        """
        report = status_callback or (lambda _msg: None)

        self.state = ServerState.PROBING
        if _probe(health_check):
            self.state = ServerState.RUNNING
            report("Server is running")
            return

        self.state = ServerState.STARTING
        report("Starting Ollama server...")
        self.start_server()

        report("Waiting for server...")
        self.state = ServerState.PROBING
        for attempt in range(1, self.poll_attempts + 1):
            self._sleep(self.poll_interval)
            if _probe(health_check):
                LOGGER.info("Ollama server answered after %d probe(s)", attempt)
                self.state = ServerState.RUNNING
                report("Server connected")
                return

        self.state = ServerState.FAILED
        raise ServerStartupError(
            f"Server started but did not respond after {self.poll_attempts} attempts"
        )

    def stop_server(self) -> None:
        proc = self._process
        if proc is not None and proc.poll() is None:
            LOGGER.info("Stopping Ollama server...")
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                proc.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                LOGGER.warning("Ollama server ignored terminate; killing it")
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                with contextlib.suppress(subprocess.TimeoutExpired):
                    proc.wait(timeout=self.stop_timeout)
        self._process = None

        if self.sweep_command:
            with contextlib.suppress(OSError, subprocess.SubprocessError):
                subprocess.run(
                    self.sweep_command,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    check=False,
                    timeout=self.stop_timeout,
                )

    def install_shutdown_hooks(self) -> None:
        """Stop the server at interpreter exit and on SIGTERM."""
        if self._hooks_installed:
            return
        atexit.register(self.stop_server)

        def _on_sigterm(signum: int, _frame: Any) -> None:
            # SystemExit unwinds ``with`` blocks and then runs atexit.
            raise SystemExit(128 + signum)

        with contextlib.suppress(ValueError):  # not on the main thread
            signal.signal(signal.SIGTERM, _on_sigterm)
        self._hooks_installed = True

    def __enter__(self) -> "ServerManager":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop_server()
