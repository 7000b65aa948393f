"""Starting, stopping and watching the agent process."""

from __future__ import annotations

import subprocess
import threading
from typing import IO

from opamp.callbacks import Logger, NopLogger
from opamp.config import AgentConfig

DEFAULT_STOP_TIMEOUT = 10.0


class Commander:
    """Runs the agent executable; its stdout and stderr go to a log file."""

    def __init__(
        self,
        config: AgentConfig,
        *args: str,
        logger: Logger | None = None,
        log_file: str = "agent.log",
    ) -> None:
        if not config.executable:
            raise ValueError("agent.executable config option must be specified")
        self._config = config
        self._args = list(args)
        self._logger: Logger = logger if logger is not None else NopLogger()
        self._log_file = log_file
        self._process: subprocess.Popen[bytes] | None = None
        self._watcher: threading.Thread | None = None
        self._done = threading.Event()
        self._running = threading.Event()

    def start(self) -> None:
        """Start the agent and begin watching the process."""
        self._logger.debug("Starting agent %s", self._config.executable)
        log = open(self._log_file, "wb")
        try:
            process = subprocess.Popen(
                [self._config.executable, *self._args], stdout=log, stderr=log
            )
        except BaseException:
            log.close()
            raise
        done = threading.Event()
        self._process, self._done = process, done
        self._logger.debug("Agent process started, PID=%d", process.pid)
        self._running.set()
        self._watcher = threading.Thread(
            target=self._watch, args=(process, log, done), daemon=True
        )
        self._watcher.start()

    def restart(self) -> None:
        """Stop the agent, then start it again."""
        self.stop()
        self.start()

    def _watch(self, process: subprocess.Popen[bytes], log: IO[bytes], done: threading.Event) -> None:
        process.wait()
        log.close()
        if self._process is process:
            self._running.clear()
        done.set()

    def done(self) -> threading.Event:
        """An event that is set when the current agent process finishes."""
        return self._done

    def pid(self) -> int:
        """The agent's PID, or 0 if it was not started."""
        return self._process.pid if self._process is not None else 0

    def exit_code(self) -> int:
        """The agent's exit code; 0 if it has not exited, -1 if a signal ended it."""
        if self._process is None or self._process.returncode is None:
            return 0
        code = self._process.returncode
        return -1 if code < 0 else code

    def is_running(self) -> bool:
        return self._running.is_set()

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Terminate the agent, killing it if it is still alive after ``timeout`` seconds.

        Returns once the process has ended.
        """
        process = self._process
        if process is None:
            return
        self._logger.debug("Stopping agent process, PID=%d", process.pid)
        process.terminate()
        done = self._done
        if done.wait(timeout):
            self._logger.debug("Agent process PID=%d successfully stopped.", process.pid)
        else:
            self._logger.debug(
                "Agent process PID=%d is not responding to SIGTERM. Sending SIGKILL to kill forcedly.",
                process.pid,
            )
            process.kill()
            done.wait()
        if self._watcher is not None:
            self._watcher.join()
        self._running.clear()