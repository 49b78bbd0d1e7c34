"""Running a local model server in the background for development."""

from __future__ import annotations

import os
import re
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass
from typing import TextIO

from modelkit import output
from modelkit.archive import ArchiveError
from modelkit.constants import harness_path
from modelkit.download import LLAMAFILE_VERSION, DownloadError, extract_server, extract_ui

_PROCESS_FILE = "process.pid"
_LOG_FILE = "harness.log"
_PID_RE = re.compile(r"[+-]?\d+", re.ASCII)


class HarnessError(Exception):
    """The development server cannot be set up, started or stopped."""


def _executable_name() -> str:
    return "llamafile.exe" if sys.platform == "win32" else "llamafile"


@dataclass
class LLMHarness:
    """A model server listening on host:port, installed under config_home."""

    host: str
    port: int
    config_home: str

    @property
    def _home(self) -> str:
        return harness_path(self.config_home)

    def init(self) -> None:
        """Install the server and UI unless an up-to-date copy is present."""
        home = self._home
        try:
            ready = check_harness(home)
        except (HarnessError, OSError) as exc:
            raise HarnessError(f"failed to verify dev server: {exc}") from exc
        if ready:
            return
        try:
            extract_server(home)
        except (DownloadError, ArchiveError, OSError) as exc:
            raise HarnessError(f"failed to extract dev server files: {exc}") from exc
        try:
            extract_ui(home)
        except (DownloadError, ArchiveError, OSError) as exc:
            raise HarnessError(f"failed to extract dev UI files: {exc}") from exc

    def start(self, model_path: str) -> None:
        """Start the server for model_path in the background and record its PID."""
        home = self._home
        pid_file = os.path.join(home, _PROCESS_FILE)
        log_file = os.path.join(home, _LOG_FILE)

        if os.path.lexists(pid_file):
            try:
                pid = read_pid_file(pid_file)
            except (OSError, ValueError) as exc:
                raise HarnessError(f"failed to read PID file: {exc}") from exc
            if is_process_running(pid):
                raise HarnessError(f"a server process with PID {pid} is already running")
            output.info(
                "The process previously recorded is not running. Proceeding to start a new process."
            )

        ui_home = os.path.join(home, "ui")
        output.debug("model path is %s", model_path)
        if sys.platform == "win32":
            command: list[str] = [
                os.path.join(home, "llamafile.exe"),
                "--server",
                "--model", model_path,
                "--host", self.host,
                "--port", str(self.port),
                "--path", ui_home,
                "--gpu", "AUTO",
                "--nobrowser",
                "--unsecure",
            ]
        else:
            command = [
                "sh",
                "-c",
                f"./llamafile --server --model {model_path} --host {self.host} "
                f"--port {self.port} --path {ui_home} --gpu AUTO --nobrowser --unsecure",
            ]

        try:
            logs = open(log_file, "wb")
        except OSError as exc:
            raise HarnessError(f"failed to open log file for harness: {exc}") from exc
        with logs:
            output.debug("Saving server logs to %s", log_file)
            try:
                process = subprocess.Popen(
                    command,
                    cwd=home,
                    stdout=logs,
                    stderr=logs,
                    stdin=subprocess.DEVNULL,
                )
            except OSError as exc:
                raise HarnessError(f"error starting llm harness: {exc}") from exc

        try:
            write_pid_file(pid_file, process.pid)
        except OSError as exc:
            raise HarnessError(f"failed to write PID file: {exc}") from exc
        output.debug("Started harness with PID %d and saved to file.", process.pid)

    def stop(self) -> None:
        """Stop the recorded server process and remove its PID file."""
        pid_file = os.path.join(self._home, _PROCESS_FILE)
        try:
            pid = read_pid_file(pid_file)
        except FileNotFoundError as exc:
            raise HarnessError("no Running server found") from exc

        if not is_process_running(pid):
            raise HarnessError(f"no running process found with PID {pid}")

        try:
            # Try to stop it gently first
            os.kill(pid, signal.SIGINT)
        except OSError as exc:
            output.debug("Error killing process %s", exc)
            try:
                os.kill(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
            except OSError as kill_exc:
                raise HarnessError(f"error killing process: {kill_exc}") from kill_exc

        output.debug("Process with PID %d has been killed.", pid)
        try:
            os.remove(pid_file)
        except OSError as exc:
            raise HarnessError(f"error removing PID file: {exc}") from exc


def print_logs(config_home: str, stream: TextIO) -> None:
    """Copy the server log to stream; report an error if there is no log."""
    log_path = os.path.join(harness_path(config_home), _LOG_FILE)
    try:
        handle = open(log_path, encoding="utf-8", errors="replace")
    except FileNotFoundError:
        output.error("No log file found")
        return
    except OSError as exc:
        raise HarnessError(f"error reading log file: {exc}") from exc
    with handle:
        try:
            shutil.copyfileobj(handle, stream)
        except OSError as exc:
            raise HarnessError(f"failed to print log file: {exc}") from exc


def is_process_running(pid: int) -> bool:
    """Return True if a process with pid exists."""
    if sys.platform == "win32":
        return True
    if pid <= 0:
        return False
    try:
        # Signal 0 only checks that the process can be signalled
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def write_pid_file(path: str, pid: int) -> None:
    """Write pid to path, creating its directory if needed."""
    directory = os.path.dirname(path)
    if directory:
        try:
            os.makedirs(directory, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise OSError(f"error creating directory {directory}: {exc}") from exc
    try:
        with open(path, "w", encoding="ascii") as handle:
            handle.write(str(pid))
    except OSError as exc:
        raise OSError(f"error writing PID to file {path}: {exc}") from exc


def read_pid_file(path: str) -> int:
    """Read a PID written by write_pid_file; ValueError if it is not a number."""
    with open(path, encoding="ascii", errors="replace") as handle:
        text = handle.read()
    if _PID_RE.fullmatch(text) is None:
        raise ValueError(f"invalid PID in {path}: {text!r}")
    return int(text)


def check_harness(harness_home: str) -> bool:
    """Return True if the server, its version file and the UI are installed and current."""
    llamafile_path = os.path.join(harness_home, _executable_name())
    version_path = os.path.join(harness_home, "llamafile.version")
    ui_path = os.path.join(harness_home, "ui")

    for path, label in ((llamafile_path, "llamafile"), (version_path, "llamafile.version")):
        try:
            os.stat(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise HarnessError(f"error checking '{label}': {exc}") from exc

    try:
        with open(version_path, encoding="utf-8", errors="replace") as handle:
            version = handle.read().strip()
    except OSError as exc:
        raise HarnessError(f"error reading 'llamafile.version': {exc}") from exc
    if version != LLAMAFILE_VERSION:
        return False

    try:
        ui_stat = os.stat(ui_path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise HarnessError(f"error checking 'ui' directory: {exc}") from exc
    if not os.path.isdir(ui_path) or not ui_stat:
        raise HarnessError("'ui' exists but is not a directory")
    return True