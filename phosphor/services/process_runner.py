"""
ProcessRunner - runs the proxmark3 client as a subprocess.

One-shot commands run with a timeout and return cleaned stdout. Long
operations (key recovery) stream output line by line to a callback and can
be cancelled from another thread. This is a pure Python service with no Qt
dependencies, so it can be unit tested with a mocked subprocess.
"""

import logging
import os
import queue
import re
import subprocess
import sys
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

import chardet

from ..models.config import AppConfig
from ..models.device import DeviceInfo
from ..parsers.hw_version import parse_detailed_hw_version, parse_hw_version
from ..parsers.text import strip_ansi
from .command_builder import FORBIDDEN_CHARS, HW_VERSION, tool_arguments
from .errors import (
    BinaryNotFoundError,
    CommandFailedError,
    DeviceNotFoundError,
    InvalidCommandError,
    OperationCancelledError,
    PM3TimeoutError,
)


logger = logging.getLogger(__name__)

PM3_COMMAND_TIMEOUT = 30
PM3_STREAM_TIMEOUT = 3600

# Exit codes the client uses when the device stops answering
PM3_TIMEOUT_EXIT_CODES = (-5, 251)

PORT_RE = re.compile(r"COM[1-9]\d*|/dev/tty(?:ACM|USB)\d{1,2}|/dev/tty\.usbmodem\w+")
PASSWORD_ARG_RE = re.compile(r"(-p\s+)[0-9A-Fa-f]{8}\b")

BINARY_NAME = "proxmark3"

WINDOWS_BINARY_PATHS = [
    r"C:\proxmark3\client\proxmark3.exe",
    r"C:\Program Files\proxmark3\proxmark3.exe",
]
MACOS_BINARY_PATHS = [
    "/usr/local/bin/proxmark3",
    "/opt/homebrew/bin/proxmark3",
]
LINUX_BINARY_PATHS = [
    "/usr/local/bin/proxmark3",
    "/usr/bin/proxmark3",
]

MACOS_PORT_SUFFIXES = ["iceman1", "14101", "14201", "14301", "1", "2", "3"]


def resource_path(relative_path: str) -> str:
    """Get absolute path to resource, works for dev and for PyInstaller."""
    if hasattr(sys, "_MEIPASS"):
        return os.path.join(sys._MEIPASS, relative_path)
    return os.path.join(os.path.abspath("."), relative_path)


def decode_output(raw_data: bytes) -> str:
    """Decode client output; fall back to chardet for non-UTF-8 consoles."""
    if not raw_data:
        return ""
    try:
        return raw_data.decode("utf-8")
    except UnicodeDecodeError:
        result = chardet.detect(raw_data)
        encoding = result["encoding"] or "utf-8"
        return raw_data.decode(encoding, errors="replace")


def redact(cmd: str) -> str:
    """Hide blank passwords in logged commands."""
    return PASSWORD_ARG_RE.sub(r"\1********", cmd)


def validate_arguments(port: str, cmd: str) -> None:
    """
    Reject anything that could smuggle a second client command.

    The client treats ';' in `-c` as a command separator, so this check is
    repeated here even though the command builder already enforces it.

    Raises:
        InvalidCommandError: port shape or command characters are invalid
    """
    if any(c in cmd for c in FORBIDDEN_CHARS) or any(c in port for c in FORBIDDEN_CHARS):
        raise InvalidCommandError("Invalid characters in command")
    if not PORT_RE.fullmatch(port):
        raise InvalidCommandError(f"Invalid port: {port}")


def platform_binary_paths(platform: Optional[str] = None) -> List[str]:
    platform = platform or sys.platform
    if platform.startswith("win"):
        return list(WINDOWS_BINARY_PATHS)
    if platform == "darwin":
        return list(MACOS_BINARY_PATHS)
    return list(LINUX_BINARY_PATHS)


def port_candidates(platform: Optional[str] = None) -> List[str]:
    """Serial ports a Proxmark3 commonly enumerates as."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        # extended to 40 to cover USB hub reassignment
        return [f"COM{i}" for i in range(1, 41)]
    if platform == "darwin":
        return [f"/dev/tty.usbmodem{suffix}" for suffix in MACOS_PORT_SUFFIXES]
    ports = []
    for i in range(6):
        ports.append(f"/dev/ttyACM{i}")
        ports.append(f"/dev/ttyUSB{i}")
    return ports


class ProcessRunner:
    """
    Service for invoking the proxmark3 client.

    Only one streaming operation can be active at a time; its process handle
    is kept in a lock-guarded slot so cancel() can reach it from any thread.
    """

    def __init__(
        self,
        pm3_path: Optional[str] = None,
        verbose: bool = False,
        command_timeout: int = PM3_COMMAND_TIMEOUT,
        stream_timeout: int = PM3_STREAM_TIMEOUT,
    ):
        """
        Initialize the runner.

        Args:
            pm3_path: Explicit client binary, tried before auto-detection
            verbose: Record every command (passwords redacted)
            command_timeout: Seconds allowed for one-shot commands
            stream_timeout: Seconds allowed for streaming operations
        """
        self.pm3_path = pm3_path
        self.verbose = verbose
        self.command_timeout = command_timeout
        self.stream_timeout = stream_timeout
        self._command_log: List[str] = []
        self._lock = threading.Lock()
        self._active: Optional[subprocess.Popen] = None
        self._cancelled = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProcessRunner":
        """Create a runner from the persisted settings."""
        return cls(
            pm3_path=config.pm3_path,
            verbose=config.verbose,
            command_timeout=config.command_timeout,
            stream_timeout=config.stream_timeout,
        )

    # === Binary discovery ===

    def binary_candidates(self) -> List[str]:
        """
        Client binaries in the order they are tried.

        Configured override, then a copy bundled next to the app, then PATH
        lookup, then the usual install locations for this platform.
        """
        candidates = []
        if self.pm3_path:
            candidates.append(self.pm3_path)

        bundled_name = BINARY_NAME + (".exe" if os.name == "nt" else "")
        bundled = resource_path(bundled_name)
        if os.path.isfile(bundled):
            candidates.append(bundled)

        candidates.append(BINARY_NAME)
        candidates.extend(platform_binary_paths())

        unique = []
        for candidate in candidates:
            if candidate not in unique:
                unique.append(candidate)
        return unique

    # === Command log ===

    def _log_command(self, port: str, cmd: str) -> None:
        safe = redact(cmd)
        logger.debug("pm3 %s: %s", port, safe)
        if self.verbose:
            self._command_log.append(f"{port}: {safe}")

    def get_command_log(self) -> List[str]:
        """Get the log of executed commands (passwords redacted)."""
        return list(self._command_log)

    def clear_command_log(self) -> None:
        self._command_log.clear()

    # === One-shot commands ===

    def run_command(self, port: str, cmd: str, timeout: Optional[int] = None) -> str:
        """
        Run one client command and wait for it.

        Args:
            port: Serial port of the device
            cmd: Client command, e.g. 'lf search'
            timeout: Seconds before the process is killed

        Returns:
            ANSI-stripped stdout

        Raises:
            InvalidCommandError: unsafe port or command
            BinaryNotFoundError: no client binary could be started
            PM3TimeoutError: timeout, or the client reported a device timeout
            CommandFailedError: any other non-zero exit
        """
        validate_arguments(port, cmd)
        timeout = timeout or self.command_timeout
        self._log_command(port, cmd)

        first_spawn_error: Optional[BinaryNotFoundError] = None
        for binary in self.binary_candidates():
            try:
                result = subprocess.run(
                    [binary] + tool_arguments(port, cmd),
                    capture_output=True,
                    timeout=timeout,
                    stdin=subprocess.DEVNULL,
                )
            except subprocess.TimeoutExpired:
                logger.warning("pm3 command timed out after %ss: %s", timeout, redact(cmd))
                raise PM3TimeoutError(f"PM3 command timed out after {timeout}s: {cmd}")
            except OSError as e:
                # Binary missing or not executable at this location
                logger.debug("Could not spawn %s: %s", binary, e)
                if first_spawn_error is None:
                    first_spawn_error = BinaryNotFoundError(f"Failed to spawn proxmark3: {e}")
                continue

            return self._check_result(
                cmd,
                result.returncode,
                decode_output(result.stdout),
                decode_output(result.stderr),
            )

        raise first_spawn_error or BinaryNotFoundError(
            "Failed to spawn proxmark3: binary not found"
        )

    def _check_result(self, cmd: str, code: int, stdout: str, stderr: str) -> str:
        if code == 0:
            return strip_ansi(stdout)
        if code in PM3_TIMEOUT_EXIT_CODES:
            logger.warning("pm3 timed out running: %s", redact(cmd))
            raise PM3TimeoutError(f"PM3 timed out running: {cmd}")
        detail = strip_ansi(stderr) if stderr else strip_ansi(stdout)
        logger.warning("pm3 exit code %d for %s", code, redact(cmd))
        raise CommandFailedError(f"Exit code {code}: {detail}")

    # === Streaming commands ===

    def _spawn_streaming(self, port: str, cmd: str) -> subprocess.Popen:
        first_spawn_error: Optional[BinaryNotFoundError] = None
        for binary in self.binary_candidates():
            try:
                return subprocess.Popen(
                    [binary] + tool_arguments(port, cmd),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                )
            except OSError as e:
                logger.debug("Could not spawn %s: %s", binary, e)
                if first_spawn_error is None:
                    first_spawn_error = BinaryNotFoundError(f"Failed to spawn proxmark3: {e}")
        raise first_spawn_error or BinaryNotFoundError(
            "Failed to spawn proxmark3: binary not found"
        )

    @staticmethod
    def _pump(stream, lines: "queue.Queue") -> None:
        """Reader thread: forward raw lines, then None at EOF."""
        try:
            for raw in iter(stream.readline, b""):
                lines.put(raw)
        except (OSError, ValueError) as e:
            # stream closed underneath us after a kill
            logger.debug("Output reader stopped: %s", e)
        finally:
            lines.put(None)

    def run_streaming(
        self,
        port: str,
        cmd: str,
        on_line: Callable[[str], None],
        timeout: Optional[int] = None,
    ) -> str:
        """
        Run a long client command, delivering each output line as it arrives.

        Args:
            port: Serial port of the device
            cmd: Client command, e.g. 'hf mf autopwn --1k'
            on_line: Called in order with every non-empty, ANSI-stripped line
            timeout: Overall deadline in seconds

        Returns:
            The full ANSI-stripped output

        Raises:
            OperationCancelledError: cancel() was called; outcome unknown
            PM3TimeoutError: the deadline passed
            CommandFailedError: non-zero exit or another stream is active
        """
        validate_arguments(port, cmd)
        timeout = timeout or self.stream_timeout
        self._log_command(port, cmd)

        with self._lock:
            if self._active is not None:
                raise CommandFailedError("Another streaming operation is already running")
            self._cancelled = False
            process = self._spawn_streaming(port, cmd)
            self._active = process

        output_lines: List[str] = []
        try:
            pending: "queue.Queue" = queue.Queue()
            reader = threading.Thread(
                target=self._pump, args=(process.stdout, pending), daemon=True
            )
            reader.start()

            deadline = time.monotonic() + timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PM3TimeoutError(f"PM3 command timed out after {timeout}s: {cmd}")
                try:
                    raw = pending.get(timeout=remaining)
                except queue.Empty:
                    continue
                if raw is None:
                    break
                line = strip_ansi(decode_output(raw)).rstrip("\r\n")
                output_lines.append(line)
                if line.strip():
                    on_line(line)

            code = process.wait()
            if self._cancelled:
                raise OperationCancelledError(f"Operation cancelled: {cmd}")

            output = "\n".join(output_lines)
            return self._check_result(cmd, code, output, "")
        finally:
            with self._lock:
                self._active = None
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stdout is not None:
                process.stdout.close()

    def cancel(self) -> bool:
        """
        Kill the active streaming operation, if any.

        Returns:
            True if a process was signalled
        """
        with self._lock:
            process = self._active
            if process is None:
                return False
            self._cancelled = True
        logger.info("Cancelling streaming pm3 operation")
        try:
            process.kill()
        except OSError as e:
            logger.debug("Kill failed, process already gone: %s", e)
        return True

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return self._active is not None

    # === Device discovery ===

    def detect_device(self, candidates: Optional[List[str]] = None) -> DeviceInfo:
        """
        Probe serial ports with `hw version` until a Proxmark3 answers.

        A client/firmware version mismatch is not an error; it is reported
        through DeviceInfo.firmware_mismatch.

        Raises:
            BinaryNotFoundError: the client itself could not be started
            DeviceNotFoundError: every candidate port failed or stayed silent
        """
        first_error: Optional[Exception] = None

        for port in candidates or port_candidates():
            try:
                output = self.run_command(port, HW_VERSION)
            except BinaryNotFoundError:
                raise
            except (CommandFailedError, PM3TimeoutError) as e:
                logger.debug("No device on %s: %s", port, e)
                if first_error is None:
                    first_error = e
                continue

            parsed = parse_hw_version(output)
            if parsed is None:
                continue
            model, firmware = parsed
            info = DeviceInfo(
                port=port,
                model=model,
                firmware=firmware,
                hw_info=parse_detailed_hw_version(output),
            )
            logger.info("Found %s on %s", model, port)
            if info.firmware_mismatch:
                logger.warning("Client and firmware versions differ on %s", port)
            return info

        message = "PM3 not found on any port"
        if first_error is not None:
            message = f"{message} (first error: {first_error})"
        raise DeviceNotFoundError(message)


class MockProcessRunner(ProcessRunner):
    """
    Mock ProcessRunner for testing.

    Responses are scripted per command. A command matches its exact text
    first, then the longest scripted prefix. Several responses for one
    command are returned in order and the last one repeats. A response that
    is an exception instance is raised instead of returned.
    """

    def __init__(self):
        super().__init__(verbose=True)
        self._responses: Dict[str, List[Union[str, Exception]]] = {}
        self._device: Union[DeviceInfo, Exception, None] = None
        self.calls: List[Tuple[str, str]] = []
        self.cancel_requested = False
        self.detect_candidates: Optional[List[str]] = None

    def set_response(self, cmd: str, *responses: Union[str, Exception]) -> None:
        """Script the output (or error) for a command or command prefix."""
        self._responses[cmd] = list(responses)

    def set_device(self, device: Union[DeviceInfo, Exception]) -> None:
        """Set the result of detect_device()."""
        self._device = device

    def commands(self) -> List[str]:
        """Commands run so far, in order."""
        return [cmd for _, cmd in self.calls]

    def _next_response(self, cmd: str) -> str:
        key = cmd if cmd in self._responses else None
        if key is None:
            prefixes = [k for k in self._responses if cmd.startswith(k)]
            if prefixes:
                key = max(prefixes, key=len)
        if key is None:
            raise CommandFailedError(f"No mock response for: {cmd}")

        queued = self._responses[key]
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, Exception):
            raise response
        return response

    def run_command(self, port: str, cmd: str, timeout: Optional[int] = None) -> str:
        validate_arguments(port, cmd)
        self._log_command(port, cmd)
        self.calls.append((port, cmd))
        return self._next_response(cmd)

    def run_streaming(
        self,
        port: str,
        cmd: str,
        on_line: Callable[[str], None],
        timeout: Optional[int] = None,
    ) -> str:
        validate_arguments(port, cmd)
        self._log_command(port, cmd)
        self.calls.append((port, cmd))
        output = self._next_response(cmd)
        for line in output.splitlines():
            if line.strip():
                on_line(line)
        return output

    def cancel(self) -> bool:
        self.cancel_requested = True
        return True

    def detect_device(self, candidates: Optional[List[str]] = None) -> DeviceInfo:
        self.detect_candidates = candidates
        if isinstance(self._device, Exception):
            raise self._device
        if self._device is None:
            raise DeviceNotFoundError("PM3 not found on any port")
        return self._device
