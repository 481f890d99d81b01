from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
from typing import Iterator, List, Optional

from ..errors import TrialError
from .registry import register_searcher

log = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 400
_KILL_GRACE_SECONDS = 2.0


class CommandHandle:
    """Streams candidate words from a running searcher process, one per line.

    The process leads its own process group; `close()` signals the whole
    group so helpers it spawned cannot keep stdout open. The pipes are
    released by whichever side finishes last: the reading thread once its
    loop ends, or `close()` when nothing ever read.
    """

    def __init__(self, proc: subprocess.Popen, stderr_file) -> None:
        self._proc = proc
        self._stderr = stderr_file
        self._lock = threading.Lock()
        self._closed = False
        self._reading = False

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            if self._closed:
                return
            self._reading = True
        assert self._proc.stdout is not None
        try:
            for line in self._proc.stdout:
                word = line.strip()
                if word:
                    yield word
            returncode = self._proc.wait()
            if returncode != 0 and not self._closed:
                raise TrialError(f"searcher exited with status {returncode}: {self._stderr_tail()}")
        finally:
            self._release()

    def _stderr_tail(self) -> str:
        try:
            self._stderr.seek(0)
            data = self._stderr.read().decode("utf-8", errors="replace")
        except (OSError, ValueError):
            return ""
        return data.strip()[-_STDERR_TAIL_CHARS:]

    def _release(self) -> None:
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        self._stderr.close()

    def _signal_group(self, sig: int) -> bool:
        if os.name != "posix":
            if self._proc.poll() is None:
                self._proc.send_signal(sig)
            return True
        try:
            os.killpg(self._proc.pid, sig)
        except ProcessLookupError:
            return False
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            reading = self._reading
        if self._signal_group(signal.SIGTERM):
            try:
                self._proc.wait(timeout=_KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                log.warning("searcher_kill", extra={"pid": self._proc.pid})
            # stragglers in the group that ignored SIGTERM
            self._signal_group(getattr(signal, "SIGKILL", signal.SIGTERM))
        self._proc.wait()
        if not reading:
            self._release()


class CommandSearcher:
    """Runs an external searcher program per start word.

    `argv` is a template; `{word}`, `{rules_file}` and `{dict_file}` are
    substituted in every argument.
    """

    name = "command"

    def __init__(self, argv: List[str], rules_file: Optional[str] = None, dict_file: Optional[str] = None) -> None:
        if not argv:
            raise ValueError("searcher command must not be empty")
        self.argv = list(argv)
        self.rules_file = rules_file or ""
        self.dict_file = dict_file or ""

    def build_argv(self, start_word: str) -> List[str]:
        return [
            arg.replace("{rules_file}", self.rules_file)
            .replace("{dict_file}", self.dict_file)
            .replace("{word}", start_word)
            for arg in self.argv
        ]

    def search(self, start_word: str) -> CommandHandle:
        argv = self.build_argv(start_word)
        stderr_file = tempfile.TemporaryFile()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            stderr_file.close()
            raise TrialError(f"cannot start searcher {argv[0]!r}: {exc}") from exc
        return CommandHandle(proc, stderr_file)


def _from_config(cfg) -> CommandSearcher:
    return CommandSearcher(cfg.searcher_command, rules_file=cfg.rules_file, dict_file=cfg.dict_file)


register_searcher(aliases=["command", "cmd"], factory=_from_config)
