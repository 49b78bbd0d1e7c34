import io
import os
import subprocess
import sys
import time

import pytest

from modelkit import output
from modelkit.constants import harness_path
from modelkit.download import LLAMAFILE_VERSION
from modelkit.harness import (
    HarnessError,
    LLMHarness,
    check_harness,
    is_process_running,
    print_logs,
    read_pid_file,
    write_pid_file,
)

EXE = "llamafile.exe" if sys.platform == "win32" else "llamafile"


def _install(home, version=LLAMAFILE_VERSION, ui_is_dir=True):
    os.makedirs(home, exist_ok=True)
    with open(os.path.join(home, EXE), "w") as handle:
        handle.write("#!/bin/sh\n")
    with open(os.path.join(home, "llamafile.version"), "w") as handle:
        handle.write(version + "\n")
    ui = os.path.join(home, "ui")
    if ui_is_dir:
        os.makedirs(ui, exist_ok=True)
    else:
        with open(ui, "w") as handle:
            handle.write("not a dir")


def _dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def test_pid_file_round_trip(tmp_path):
    path = tmp_path / "sub" / "process.pid"
    write_pid_file(str(path), 4321)
    assert read_pid_file(str(path)) == 4321


def test_read_pid_file_rejects_garbage(tmp_path):
    path = tmp_path / "process.pid"
    path.write_text("not-a-pid")
    with pytest.raises(ValueError):
        read_pid_file(str(path))


def test_read_pid_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_pid_file(str(tmp_path / "absent.pid"))


def test_current_process_is_running():
    assert is_process_running(os.getpid()) is True


def test_finished_process_is_not_running():
    assert is_process_running(_dead_pid()) is False


def test_check_harness_ready(tmp_path):
    home = str(tmp_path / "harness")
    _install(home)
    assert check_harness(home) is True


def test_check_harness_missing_files(tmp_path):
    assert check_harness(str(tmp_path / "empty")) is False


def test_check_harness_outdated_version(tmp_path):
    home = str(tmp_path / "harness")
    _install(home, version="0.0.1")
    assert check_harness(home) is False


def test_check_harness_ui_not_directory(tmp_path):
    home = str(tmp_path / "harness")
    _install(home, ui_is_dir=False)
    with pytest.raises(HarnessError, match="'ui' exists but is not a directory"):
        check_harness(home)


def test_init_keeps_ready_installation(tmp_path):
    home = harness_path(str(tmp_path))
    _install(home)
    LLMHarness("127.0.0.1", 8080, str(tmp_path)).init()
    assert check_harness(home) is True
    assert sorted(os.listdir(home)) == sorted([EXE, "llamafile.version", "ui"])


def test_print_logs_copies_log(tmp_path):
    home = harness_path(str(tmp_path))
    os.makedirs(home)
    with open(os.path.join(home, "harness.log"), "w") as handle:
        handle.write("server line one\nserver line two\n")
    stream = io.StringIO()
    print_logs(str(tmp_path), stream)
    assert stream.getvalue() == "server line one\nserver line two\n"


def test_print_logs_reports_missing_log(tmp_path):
    err = io.StringIO()
    output.set_err(err)
    try:
        stream = io.StringIO()
        print_logs(str(tmp_path), stream)
    finally:
        output.set_err(None)
    assert stream.getvalue() == ""
    assert "No log file found" in err.getvalue()


def test_stop_without_server(tmp_path):
    with pytest.raises(HarnessError, match="no Running server found"):
        LLMHarness("127.0.0.1", 8080, str(tmp_path)).stop()


def test_stop_with_dead_process(tmp_path):
    pid = _dead_pid()
    write_pid_file(os.path.join(harness_path(str(tmp_path)), "process.pid"), pid)
    with pytest.raises(HarnessError, match=f"no running process found with PID {pid}"):
        LLMHarness("127.0.0.1", 8080, str(tmp_path)).stop()


def test_stop_interrupts_running_process(tmp_path):
    proc = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(30)"],
        stderr=subprocess.DEVNULL,
    )
    pid_file = os.path.join(harness_path(str(tmp_path)), "process.pid")
    write_pid_file(pid_file, proc.pid)
    try:
        time.sleep(0.5)
        assert is_process_running(proc.pid) is True
        LLMHarness("127.0.0.1", 8080, str(tmp_path)).stop()
        code = proc.wait(timeout=10)
    finally:
        if proc.poll() is None:
            proc.kill()
    assert code != 0
    assert is_process_running(proc.pid) is False
    with pytest.raises(FileNotFoundError):
        read_pid_file(pid_file)


def test_start_refuses_when_running(tmp_path):
    pid_file = os.path.join(harness_path(str(tmp_path)), "process.pid")
    write_pid_file(pid_file, os.getpid())
    with pytest.raises(HarnessError, match="already running"):
        LLMHarness("127.0.0.1", 8080, str(tmp_path)).start("model.gguf")


def test_start_launches_server_with_arguments(tmp_path):
    home = harness_path(str(tmp_path))
    os.makedirs(home)
    script = os.path.join(home, "llamafile")
    with open(script, "w") as handle:
        handle.write('#!/bin/sh\necho "$@"\n')
    os.chmod(script, 0o755)
    pid_file = os.path.join(home, "process.pid")
    write_pid_file(pid_file, _dead_pid())

    LLMHarness("127.0.0.1", 8080, str(tmp_path)).start("model.gguf")

    assert read_pid_file(pid_file) > 0
    log_path = os.path.join(home, "harness.log")
    content = ""
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        with open(log_path) as handle:
            content = handle.read()
        if "--unsecure" in content:
            break
        time.sleep(0.1)
    assert "--model model.gguf" in content
    assert "--port 8080" in content
    assert "--host 127.0.0.1" in content