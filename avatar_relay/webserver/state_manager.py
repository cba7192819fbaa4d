"""
Avatar Relay State Manager

Keeps the single human-readable status string, relay flags and recent
activity, and assembles the system status served by /api/status.
"""

import time
import psutil
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Callable

from avatar_relay import __version__


@dataclass
class SystemState:
    """Current relay state."""
    server_online: bool = True
    start_time: float = field(default_factory=time.time)
    server_name: str = "avatar-relay"
    server_version: str = __version__
    status: str = "Waiting for connection..."
    host_connected: bool = False
    signaling_state: str = "idle"
    tracking_ready: bool = False


class StateManager:
    """Manages relay state and provides data for clients."""

    MAX_LOG_ENTRIES = 500  # Keep last 500 log entries

    def __init__(self, server_name: str = "avatar-relay", logger=None):
        self.state = SystemState(server_name=server_name)
        self.logger = logger
        self._status_providers: Dict[str, Callable[[], Dict[str, Any]]] = {}
        self._log_entries: List[Dict[str, Any]] = []  # Circular buffer for logs

    def add_status_provider(self, name: str, provider: Callable[[], Dict[str, Any]]):
        """Add a component whose status dict is included in get_system_status()."""
        self._status_providers[name] = provider

    def _log_activity(self, message: str, level: str = "info"):
        """Log an activity event."""
        entry = {
            "time": time.time(),
            "text": message,
            "level": level,
        }
        self._log_entries.append(entry)

        # Trim to max size
        if len(self._log_entries) > self.MAX_LOG_ENTRIES:
            self._log_entries = self._log_entries[-self.MAX_LOG_ENTRIES:]

        if self.logger:
            if level == "debug":
                self.logger.debug(message)
            elif level == "warn" or level == "warning":
                self.logger.warning(message)
            elif level == "error":
                self.logger.error(message)
            else:
                self.logger.info(message)

    def get_logs(self, limit: int = 100, level: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get recent log entries.

        Args:
            limit: Maximum number of entries to return
            level: Optional filter by log level

        Returns:
            List of log entries (newest first)
        """
        logs = self._log_entries
        if level and level != 'all':
            logs = [e for e in logs if e['level'] == level]
        return list(reversed(logs[-limit:]))

    @property
    def status(self) -> str:
        return self.state.status

    def set_status(self, status: str, level: str = "info"):
        """Set the user-visible status string."""
        if status == self.state.status:
            return
        self.state.status = status
        self._log_activity(f"Status: {status}", level)

    def set_host_connected(self, connected: bool):
        """Update host channel connection flag."""
        if connected != self.state.host_connected:
            self.state.host_connected = connected
            self._log_activity(f"Host {'connected' if connected else 'disconnected'}")

    def set_signaling_state(self, state: str):
        self.state.signaling_state = state

    def set_tracking_ready(self, ready: bool):
        self.state.tracking_ready = ready

    def get_system_status(self) -> Dict[str, Any]:
        """Get current relay status."""
        try:
            cpu_usage = psutil.cpu_percent(interval=None)
            memory = psutil.virtual_memory()
            memory_usage = memory.percent
        except Exception:
            cpu_usage = 0.0
            memory_usage = 0.0

        status = {
            "server_online": self.state.server_online,
            "server_name": self.state.server_name,
            "server_version": self.state.server_version,
            "uptime_seconds": int(time.time() - self.state.start_time),
            "cpu_usage": cpu_usage,
            "memory_usage": memory_usage,
            "status": self.state.status,
            "host_connected": self.state.host_connected,
            "signaling_state": self.state.signaling_state,
            "tracking_ready": self.state.tracking_ready,
        }

        for name, provider in self._status_providers.items():
            try:
                status[name] = provider()
            except Exception as e:
                if self.logger:
                    self.logger.error(f"Status provider '{name}' failed: {e}")
                status[name] = None

        return status
