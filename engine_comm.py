"""Engine transport: UCI line parsing, process channels and timers."""

from __future__ import annotations

import queue
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

LineCallback = Callable[[str], None]
ExitCallback = Callable[[Optional[int]], None]


class Cancellable(Protocol):
    def cancel(self) -> None:
        ...


CallLater = Callable[[float, Callable[[], None]], Cancellable]


class EngineChannel(Protocol):
    def start(self) -> None:
        ...

    def send(self, command: str) -> None:
        ...

    def close(self) -> None:
        ...


ChannelFactory = Callable[[LineCallback, ExitCallback], EngineChannel]


@dataclass(frozen=True)
class EngineEvent:
    kind: str
    move: Optional[str] = None
    ponder: Optional[str] = None
    text: str = ""


def parse_engine_line(line: str) -> EngineEvent:
    """Classify engine output as ``ready``, ``synced``, ``bestmove`` or ``info``."""
    stripped = line.strip()
    if stripped == "uciok":
        return EngineEvent("ready", text=stripped)
    if stripped == "readyok":
        return EngineEvent("synced", text=stripped)
    if stripped.startswith("bestmove"):
        parts = stripped.split()
        move = parts[1] if len(parts) >= 2 and parts[1] != "(none)" else None
        ponder = None
        if len(parts) >= 4 and parts[2] == "ponder":
            ponder = parts[3]
        return EngineEvent("bestmove", move=move, ponder=ponder, text=stripped)
    return EngineEvent("info", text=stripped)


class _TimerHandle:
    def __init__(self) -> None:
        self.cancelled = False
        self._timer: Optional[threading.Timer] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class Dispatcher:
    """Runs engine events and timer callbacks on the orchestration thread.

    Reader and timer threads only ``post``; ``run_pending`` executes the
    queued callables on whichever thread drives the poll loop.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def post(self, callback: Callable[[], None]) -> None:
        self._queue.put(callback)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Cancellable:
        handle = _TimerHandle()

        def fire() -> None:
            if not handle.cancelled:
                callback()

        timer = threading.Timer(max(0.0, delay_ms) / 1000.0, lambda: self.post(fire))
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle

    def run_pending(self, timeout: float = 0.0) -> int:
        """Run queued callbacks, waiting up to ``timeout`` seconds for the first."""
        executed = 0
        try:
            callback = self._queue.get(timeout=timeout) if timeout > 0 else self._queue.get_nowait()
        except queue.Empty:
            return 0
        while True:
            callback()
            executed += 1
            try:
                callback = self._queue.get_nowait()
            except queue.Empty:
                return executed


class SubprocessChannel:
    """UCI engine process with a reader thread feeding a dispatcher."""

    def __init__(
        self,
        command: Sequence[str],
        on_line: LineCallback,
        on_exit: ExitCallback,
        *,
        dispatcher: Dispatcher,
        workdir: Optional[str] = None,
    ) -> None:
        self.command = list(command)
        self._on_line = on_line
        self._on_exit = on_exit
        self._dispatcher = dispatcher
        self._workdir = workdir
        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()

    def start(self) -> None:
        self._proc = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            cwd=self._workdir,
        )
        self._reader = threading.Thread(target=self._read_output, daemon=True)
        self._reader.start()

    def _read_output(self) -> None:
        proc = self._proc
        if proc is None or proc.stdout is None:
            return
        for raw in proc.stdout:
            line = raw.strip()
            if line:
                self._dispatcher.post(lambda line=line: self._on_line(line))
        code = proc.wait()
        self._dispatcher.post(lambda: self._on_exit(code))

    def send(self, command: str) -> None:
        with self._write_lock:
            if self._proc is None or self._proc.stdin is None:
                return
            try:
                self._proc.stdin.write(command + "\n")
                self._proc.stdin.flush()
            except (BrokenPipeError, ValueError):
                # The reader thread reports the exit.
                pass

    def close(self, timeout: float = 2.0) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.poll() is None:
            self.send("quit")
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                try:
                    proc.wait(timeout=1.0)
                except subprocess.TimeoutExpired:
                    pass
        if proc.stdin:
            try:
                proc.stdin.close()
            except OSError:
                pass


def subprocess_channel_factory(
    command: Sequence[str], dispatcher: Dispatcher, *, workdir: Optional[str] = None
) -> ChannelFactory:
    def factory(on_line: LineCallback, on_exit: ExitCallback) -> EngineChannel:
        return SubprocessChannel(command, on_line, on_exit, dispatcher=dispatcher, workdir=workdir)

    return factory


def engine_command(path: str) -> List[str]:
    """Python engine scripts run under the current interpreter."""
    if path.endswith(".py"):
        return [sys.executable, path]
    return [path]


class QtProcessChannel:
    """UCI engine driven by ``QProcess``; callbacks run on the Qt thread."""

    def __init__(self, command: Sequence[str], on_line: LineCallback, on_exit: ExitCallback) -> None:
        from PySide6.QtCore import QProcess

        self.command = list(command)
        self._on_line = on_line
        self._on_exit = on_exit
        self._proc = QProcess()
        self._proc.setProcessChannelMode(QProcess.MergedChannels)
        self._proc.readyReadStandardOutput.connect(self._drain)
        self._proc.finished.connect(lambda code, _status: self._on_exit(code))
        self._proc.errorOccurred.connect(self._handle_error)
        self._closing = False

    def start(self) -> None:
        self._proc.start(self.command[0], self.command[1:])
        if not self._proc.waitForStarted(5000):
            raise OSError(f"Engine failed to start within timeout: {' '.join(self.command)}")

    def _drain(self) -> None:
        while self._proc.canReadLine():
            line = bytes(self._proc.readLine()).decode(errors="replace").strip()
            if line:
                self._on_line(line)

    def _handle_error(self, error) -> None:
        from PySide6.QtCore import QProcess

        # FailedToStart never emits finished.
        if error == QProcess.FailedToStart and not self._closing:
            self._on_exit(None)

    def send(self, command: str) -> None:
        from PySide6.QtCore import QProcess

        if self._proc.state() != QProcess.Running:
            return
        self._proc.write((command + "\n").encode())
        self._proc.waitForBytesWritten()

    def close(self) -> None:
        from PySide6.QtCore import QProcess

        self._closing = True
        if self._proc.state() != QProcess.NotRunning:
            self.send("quit")
            self._proc.closeWriteChannel()
            if not self._proc.waitForFinished(3000):
                self._proc.terminate()
                if not self._proc.waitForFinished(2000):
                    self._proc.kill()
                    self._proc.waitForFinished(1000)


def qt_channel_factory(command: Sequence[str]) -> ChannelFactory:
    def factory(on_line: LineCallback, on_exit: ExitCallback) -> EngineChannel:
        return QtProcessChannel(command, on_line, on_exit)

    return factory


def qt_call_later(delay_ms: float, callback: Callable[[], None]) -> Cancellable:
    from PySide6.QtCore import QTimer

    timer = QTimer()
    timer.setSingleShot(True)
    timer.timeout.connect(callback)
    timer.start(int(max(0.0, delay_ms)))
    return _QtTimerHandle(timer)


class _QtTimerHandle:
    def __init__(self, timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.stop()
