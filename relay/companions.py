"""
Companion programs started along the relay and killed when it closes.
"""

import logging
import shlex
import subprocess
import sys
import threading
from typing import List, Optional


class CompanionProcess:
    def __init__(self, process: subprocess.Popen, path: str):
        self.process: Optional[subprocess.Popen] = process
        self.path = path
        self.pid = process.pid

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def kill(self, timeout: float = 5.0):
        """
        Kill the process and reap it. Safe to call more than once.
        """
        process, self.process = self.process, None
        if process is None:
            return
        if process.poll() is None:
            logging.info(f"Killing companion {self.path} (pid={self.pid})")
            process.kill()
        process.wait(timeout)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.kill()


class CompanionGroup:
    """
    Processes launched with launch(); kill_all() terminates every one of them.
    """

    def __init__(self):
        self._processes: List[CompanionProcess] = []
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._processes)

    def launch(self, path: str, show_window: bool = False, args: str = "") -> CompanionProcess:
        command = [path, *shlex.split(args, posix=sys.platform != "win32")]
        options = {}
        if not show_window:
            options["stdout"] = subprocess.DEVNULL
            options["stderr"] = subprocess.DEVNULL
            if sys.platform == "win32":
                options["creationflags"] = subprocess.CREATE_NO_WINDOW
        companion = CompanionProcess(subprocess.Popen(command, **options), path)
        with self._lock:
            self._processes.append(companion)
        logging.info(f"Started companion {path} (pid={companion.pid})")
        return companion

    def kill_all(self):
        with self._lock:
            processes, self._processes = self._processes, []
        for companion in processes:
            try:
                companion.kill()
            except (OSError, subprocess.TimeoutExpired) as exc:
                logging.error(f"Failed to kill companion {companion.path} (pid={companion.pid}): {exc}")
