"""
Data models for application server provisioning.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any


@dataclass
class ServerHandle:
    """Reference to a running application server and its bound address."""

    session_name: str
    host: str
    port: int
    managed: bool = False
    process: Optional[asyncio.subprocess.Process] = field(default=None, repr=False)
    pid: Optional[int] = None
    log_path: Optional[Path] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ready: bool = False
    stopped: bool = False
    stop_count: int = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def is_running(self) -> bool:
        """True while a managed process has not exited."""
        if self.process is None:
            return False
        return self.process.returncode is None

    def read_log_tail(self, max_chars: int = 2000) -> str:
        """Return the end of the server log, if any was written."""
        if self.log_path is None or not self.log_path.exists():
            return ""
        try:
            text = self.log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return ""
        return text[-max_chars:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_name": self.session_name,
            "address": self.address,
            "managed": self.managed,
            "pid": self.pid,
            "log_path": str(self.log_path) if self.log_path else None,
            "ready": self.ready,
            "stopped": self.stopped,
        }
