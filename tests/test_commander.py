import os
import sys

import pytest

from opamp.commander import Commander
from opamp.config import AgentConfig


def make(tmp_path, script):
    return Commander(
        AgentConfig(executable=sys.executable), "-c", script, log_file=str(tmp_path / "agent.log")
    )


def test_requires_executable():
    with pytest.raises(ValueError, match="agent.executable"):
        Commander(AgentConfig())


def test_not_started_state(tmp_path):
    commander = make(tmp_path, "pass")
    assert commander.pid() == 0
    assert commander.exit_code() == 0
    assert not commander.is_running()


def test_process_exit_is_reported(tmp_path):
    commander = make(tmp_path, "import sys; print('hello'); sys.exit(3)")
    commander.start()
    assert commander.done().wait(10)
    assert commander.exit_code() == 3
    assert not commander.is_running()
    assert "hello" in (tmp_path / "agent.log").read_text()


def test_stop_running_process(tmp_path):
    commander = make(tmp_path, "import time; time.sleep(60)")
    commander.start()
    assert commander.is_running()
    assert commander.pid() > 0
    assert commander.pid() != os.getpid()
    commander.stop(timeout=5)
    assert not commander.is_running()
    assert commander.done().is_set()


def test_restart(tmp_path):
    commander = make(tmp_path, "import time; time.sleep(60)")
    commander.start()
    first_done = commander.done()
    commander.restart()
    try:
        assert first_done.is_set()
        assert commander.is_running()
        assert not commander.done().is_set()
    finally:
        commander.stop(timeout=5)
    assert not commander.is_running()


def test_missing_executable_fails_to_start(tmp_path):
    commander = Commander(
        AgentConfig(executable=str(tmp_path / "no-such-agent")), log_file=str(tmp_path / "a.log")
    )
    with pytest.raises(FileNotFoundError):
        commander.start()
    assert not commander.is_running()