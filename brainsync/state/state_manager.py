"""
Local machine state (persistent across runs)

Stored as JSON in the global config directory:
  {"machineId": ..., "machineName": ..., "lastSync": ..., "selectedConversations": "all" | [...]}
"""
import json
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .. import config as _cfg
from ..core import crypto
from ..utils.file_utils import atomic_write
from ..utils.logging import vlog, warn


@dataclass
class LocalState:
    machine_id: str
    machine_name: str
    last_sync: Optional[str] = None
    selected_conversations: Union[str, list] = field(default="all")

    def is_selected(self, conv_id: str) -> bool:
        return self.selected_conversations == "all" or conv_id in self.selected_conversations

    def to_dict(self) -> dict:
        return {
            "machineId": self.machine_id,
            "machineName": self.machine_name,
            "lastSync": self.last_sync,
            "selectedConversations": self.selected_conversations,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocalState":
        sel = data.get("selectedConversations", "all")
        return cls(
            machine_id=str(data["machineId"]),
            machine_name=str(data.get("machineName") or socket.gethostname()),
            last_sync=data.get("lastSync"),
            selected_conversations="all" if sel in (None, "all") else [str(s) for s in sel],
        )


def default_state() -> LocalState:
    """Fresh identity for this machine, honouring config overrides."""
    return LocalState(
        machine_id=crypto.generate_machine_id(),
        machine_name=_cfg.MACHINE_NAME or socket.gethostname(),
        selected_conversations=_cfg.SELECTED_CONVERSATIONS,
    )


def load_state(path: Optional[Path] = None) -> Optional[LocalState]:
    """Return the saved state, or None if this machine was never set up.

    A corrupt file is reported and treated as missing; the next setup
    rewrites it.
    """
    state_file = path or _cfg.get_state_file()
    if not state_file.exists():
        return None
    try:
        return LocalState.from_dict(json.loads(state_file.read_text("utf-8")))
    except (ValueError, KeyError, TypeError) as exc:
        warn(f"Ignoring unreadable state file {state_file}: {exc}")
        return None


def save_state(state: LocalState, path: Optional[Path] = None):
    state_file = path or _cfg.get_state_file()
    atomic_write(state_file, json.dumps(state.to_dict(), indent=2).encode("utf-8"))
    vlog(f"[state] saved {state_file}")
