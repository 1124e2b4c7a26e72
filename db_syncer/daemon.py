# db_syncer/daemon.py
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DaemonManager:
    """PID-file based management of a background syncer process"""

    def __init__(self, pid_file: str = './db_syncer.pid'):
        self.pid_file = Path(pid_file)

    def write_pid_file(self, pid: Optional[int] = None) -> None:
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(pid or os.getpid()))
        logger.debug(f"Wrote PID file {self.pid_file}")

    def read_pid_file(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning(f"PID file {self.pid_file} is corrupt")
            return None

    def remove_pid_file(self) -> None:
        if self.pid_file.exists():
            self.pid_file.unlink()
            logger.debug(f"Removed PID file {self.pid_file}")

    @staticmethod
    def process_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def is_running(self) -> bool:
        pid = self.read_pid_file()
        return pid is not None and self.process_alive(pid)

    def start_daemon(self, argv: List[str]) -> int:
        """Spawn ``argv`` as a detached background process and record its PID"""
        if self.is_running():
            raise RuntimeError(f"Syncer already running with PID {self.read_pid_file()}")

        log_dir = Path('logs')
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / 'daemon.out', 'a') as out:
            process = subprocess.Popen(
                [sys.executable, *argv],
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                start_new_session=True
            )
        self.write_pid_file(process.pid)
        logger.info(f"Started syncer daemon with PID {process.pid}")
        return process.pid

    def stop_daemon(self, timeout: float = 10.0) -> bool:
        """Send SIGTERM and wait for the process to exit"""
        pid = self.read_pid_file()
        if pid is None:
            logger.info("No PID file, syncer is not running")
            return False
        if not self.process_alive(pid):
            logger.warning(f"Removing stale PID file for dead process {pid}")
            self.remove_pid_file()
            return False

        os.kill(pid, signal.SIGTERM)
        if not self._wait_for_exit(pid, timeout):
            logger.warning(f"Process {pid} did not stop in {timeout}s, sending SIGKILL")
            os.kill(pid, signal.SIGKILL)
            self._wait_for_exit(pid, timeout)
        self.remove_pid_file()
        logger.info(f"Stopped syncer process {pid}")
        return True

    def _wait_for_exit(self, pid: int, timeout: float) -> bool:
        deadline = time.time() + timeout
        while time.time() < deadline:
            if not self.process_alive(pid):
                return True
            time.sleep(0.1)
        return not self.process_alive(pid)

    def get_status(self) -> Dict[str, Any]:
        pid = self.read_pid_file()
        running = pid is not None and self.process_alive(pid)
        return {
            'running': running,
            'pid': pid if running else None,
            'pid_file': str(self.pid_file),
            'stale_pid_file': pid is not None and not running,
        }
