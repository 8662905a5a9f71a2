"""Log aggregation for the orchestrator, live ingestion and sessions."""
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

LOG_FILE_NAME = "radar.log"


class LogAggregator:
    """Keeps recent log lines in memory, mirrors them to a file and optionally echoes them.

    Lines look like "[12:00:01] [SOURCE] message". Sessions prefix their
    messages with "[session_id]".
    """

    def __init__(
        self,
        log_directory: Optional[str | Path] = None,
        root: Optional[Path] = None,
        echo: Optional[Callable[[str], None]] = None,
        maxlen: int = 2000,
    ) -> None:
        self.lines: deque = deque(maxlen=maxlen)
        self.echo = echo
        self._lock = threading.Lock()
        self.log_path: Optional[Path] = None
        if log_directory:
            log_dir = Path(log_directory)
            if not log_dir.is_absolute():
                log_dir = (root or Path.cwd()) / log_dir
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = log_dir / LOG_FILE_NAME

    def add(self, message: str, source: str = "RADAR") -> str:
        timestamp = datetime.now().strftime("%H:%M:%S")
        line = f"[{timestamp}] [{source}] {message}"
        # Ingestion thread and event loop both log
        with self._lock:
            self.lines.append(line)
            if self.log_path is not None:
                with open(self.log_path, "a", encoding="utf-8", errors="replace") as f:
                    f.write(line + "\n")
        if self.echo is not None:
            self.echo(line)
        return line

    def get_aggregated_logs(self, filters: Optional[dict] = None) -> list[str]:
        """Recent lines, optionally filtered by source tag or session id."""
        filters = filters or {}
        with self._lock:
            result = list(self.lines)
        if filters.get("source"):
            tag = f"[{filters['source'].upper()}]"
            result = [line for line in result if tag in line]
        if filters.get("session_id"):
            tag = f"[{filters['session_id']}]"
            result = [line for line in result if tag in line]
        tail = max(int(filters.get("tail", 100)), 0)
        return result[-tail:] if tail else []
