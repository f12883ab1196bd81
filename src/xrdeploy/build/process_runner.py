"""External process execution.

Every external tool (cmake, aapt2, zipalign, apksigner, the store uploader)
is launched through a ProcessRunner. The runner blocks until the process
exits, captures combined stdout/stderr into a bounded buffer, and enforces a
timeout and a cancellation event. A timed-out or cancelled process is killed
together with its children, since build tools fan out into compiler
subprocesses that would otherwise keep running.

Design:
    - subprocess.Popen with stderr folded into stdout
    - A reader thread drains the pipe so the child never blocks on a full pipe
    - Only the tail of the output is kept (max_output_bytes)
    - Output is never parsed; callers receive it verbatim
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Mapping, Optional, Sequence

import psutil

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024
REDACTED = "****"


def redact(text: str, secrets: Sequence[str]) -> str:
    """Replace every non-empty secret in text."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


@dataclass
class ProcessResult:
    """Outcome of one external process.

    Attributes:
        command: Command line with secrets redacted
        exit_code: Process exit code, or None if it never started
        output: Tail of combined stdout/stderr, secrets redacted
        duration: Wall-clock seconds
        timed_out: Killed because the timeout expired
        cancelled: Killed because cancellation was requested
    """

    command: List[str]
    exit_code: Optional[int]
    output: str
    duration: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class _TailBuffer:
    """Keeps the last max_bytes written to it."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self.data = bytearray()
        self.truncated = False

    def write(self, chunk: bytes) -> None:
        self.data.extend(chunk)
        overflow = len(self.data) - self.max_bytes
        if overflow > 0:
            del self.data[:overflow]
            self.truncated = True

    def text(self) -> str:
        text = self.data.decode("utf-8", errors="replace")
        if self.truncated:
            return "[... earlier output truncated ...]\n" + text
        return text


def kill_process_tree(pid: int, timeout: float = 3.0) -> int:
    """
    Terminate a process and all of its children.

    Children are terminated first, stragglers are force killed after
    ``timeout`` seconds.

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return 0

    try:
        processes = root.children(recursive=True)
    except psutil.NoSuchProcess:
        processes = []
    processes.append(root)

    signalled = 0
    for proc in processes:
        try:
            proc.terminate()
            signalled += 1
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
    return signalled


class ProcessRunner:
    """Runs external tools synchronously with timeout and cancellation."""

    def __init__(
        self,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        poll_interval: float = 0.1,
        echo: bool = False,
    ):
        """Initialize the runner.

        Args:
            max_output_bytes: Size of the captured output tail
            poll_interval: Seconds between timeout/cancel checks
            echo: Also print output lines as they arrive (verbose mode)
        """
        self.max_output_bytes = max_output_bytes
        self.poll_interval = poll_interval
        self.echo = echo

    def run(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        secrets: Sequence[str] = (),
    ) -> ProcessResult:
        """Run a command to completion.

        Args:
            command: Program and arguments
            cwd: Working directory
            env: Full environment for the child (None inherits)
            timeout: Seconds before the process tree is killed
            cancel_event: When set, the process tree is killed
            secrets: Strings to redact from the recorded command and output

        Returns:
            ProcessResult; never raises for tool failures
        """
        shown = [redact(str(part), secrets) for part in command]
        logging.debug(f"Running: {' '.join(shown)}")
        start = time.monotonic()

        try:
            proc = subprocess.Popen(
                [str(part) for part in command],
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            return ProcessResult(
                command=shown,
                exit_code=None,
                output=redact(f"Failed to launch {shown[0]}: {e}", secrets),
                duration=time.monotonic() - start,
            )

        buffer = _TailBuffer(self.max_output_bytes)
        reader = threading.Thread(
            target=self._drain, args=(proc.stdout, buffer, secrets), daemon=True
        )
        reader.start()

        timed_out = False
        cancelled = False
        deadline = start + timeout if timeout else None
        try:
            while True:
                try:
                    proc.wait(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                elif deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                if timed_out or cancelled:
                    reason = "timed out" if timed_out else "cancelled"
                    logging.warning(f"{shown[0]} {reason}; killing process tree {proc.pid}")
                    kill_process_tree(proc.pid)
                    proc.wait()
                    break
        except KeyboardInterrupt:
            kill_process_tree(proc.pid)
            proc.wait()
            raise
        finally:
            reader.join(timeout=5)

        duration = time.monotonic() - start
        output = redact(buffer.text(), secrets)
        if timed_out:
            output += f"\n[timed out after {timeout:.0f}s]"
        elif cancelled:
            output += "\n[cancelled]"

        return ProcessResult(
            command=shown,
            exit_code=proc.returncode,
            output=output,
            duration=duration,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _drain(
        self, stream: Optional[IO[bytes]], buffer: _TailBuffer, secrets: Sequence[str]
    ) -> None:
        if stream is None:
            return
        with stream:
            for chunk in iter(lambda: stream.readline(), b""):
                buffer.write(chunk)
                if self.echo:
                    print(redact(chunk.decode("utf-8", errors="replace"), secrets), end="")
