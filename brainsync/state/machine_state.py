"""
Per-machine sync state stored remotely at machines/<machineId>.json.enc

Besides the roster data duplicated in the manifest, a MachineState records
for every conversation the hashes this machine last agreed on with the
remote. Those hashes are the base of the three-way classification.
"""
import json
from dataclasses import dataclass, field
from typing import Optional

from ..core import crypto
from ..core.errors import DecryptionError, FormatError
from ..core.manifest import FileHashes, file_hashes_from_dict, file_hashes_to_dict, now_iso
from ..core.remote_store import ObjectStore
from ..utils.logging import vlog, warn

MACHINES_PREFIX = "machines/"
STATE_SUFFIX = ".json.enc"


def machine_state_path(machine_id: str) -> str:
    return f"{MACHINES_PREFIX}{machine_id}{STATE_SUFFIX}"


@dataclass
class ConversationState:
    id: str
    overall_hash: str
    file_hashes: FileHashes = field(default_factory=dict)
    last_synced: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "localHash": self.overall_hash,
            "fileHashes": file_hashes_to_dict(self.file_hashes),
            "lastSynced": self.last_synced,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationState":
        return cls(
            id=str(data["id"]),
            overall_hash=str(data.get("localHash", data.get("overallHash", "")) or ""),
            file_hashes=file_hashes_from_dict(data.get("fileHashes")),
            last_synced=str(data.get("lastSynced", "")),
        )


@dataclass
class MachineState:
    machine_id: str
    machine_name: str
    created_at: str = ""
    last_sync: Optional[str] = None
    upload_count: int = 0
    download_count: int = 0
    conversations: dict[str, ConversationState] = field(default_factory=dict)

    def base_for(self, conv_id: str) -> Optional[ConversationState]:
        return self.conversations.get(conv_id)

    def record(self, conv_id: str, overall_hash: str, file_hashes: FileHashes):
        """Remember that local and remote agreed on these hashes just now."""
        self.conversations[conv_id] = ConversationState(
            id=conv_id,
            overall_hash=overall_hash,
            file_hashes=dict(file_hashes),
            last_synced=now_iso(),
        )

    def forget(self, conv_id: str) -> bool:
        return self.conversations.pop(conv_id, None) is not None

    def to_dict(self) -> dict:
        return {
            "machineId": self.machine_id,
            "machineName": self.machine_name,
            "createdAt": self.created_at,
            "lastSync": self.last_sync,
            "uploadCount": self.upload_count,
            "downloadCount": self.download_count,
            "conversationStates": [c.to_dict() for _, c in sorted(self.conversations.items())],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MachineState":
        states = [ConversationState.from_dict(c) for c in data.get("conversationStates", []) or []]
        return cls(
            machine_id=str(data["machineId"]),
            machine_name=str(data.get("machineName") or data["machineId"]),
            created_at=str(data.get("createdAt", "")),
            last_sync=data.get("lastSync"),
            upload_count=int(data.get("uploadCount", 0) or 0),
            download_count=int(data.get("downloadCount", 0) or 0),
            conversations={c.id: c for c in states},
        )


class MachineStateStore:
    """Loads and saves encrypted MachineState objects."""

    def __init__(self, store: ObjectStore, password: str, compress: bool = True):
        self.store = store
        self._password = password
        self._compress = compress

    def load(self, machine_id: str) -> Optional[MachineState]:
        """Return the stored state, or None when this machine has none yet.

        DecryptionError propagates: a state we cannot read means the wrong
        password, and silently starting from an empty base would turn every
        conversation into a conflict.
        """
        blob = self.store.get_object(machine_state_path(machine_id))
        if blob is None:
            return None
        raw = crypto.decrypt(blob, self._password)
        try:
            return MachineState.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as exc:
            raise FormatError(f"Machine state for {machine_id} is not valid JSON: {exc}") from exc

    def load_or_new(self, machine_id: str, machine_name: str) -> MachineState:
        state = self.load(machine_id)
        if state is None:
            vlog(f"[state] no remote state for {machine_id}, starting fresh")
            return MachineState(machine_id=machine_id, machine_name=machine_name, created_at=now_iso())
        state.machine_name = machine_name
        return state

    def save(self, state: MachineState):
        text = json.dumps(state.to_dict())
        blob = crypto.encrypt(text.encode("utf-8"), self._password, self._compress)
        self.store.put_object(machine_state_path(state.machine_id), blob)
        vlog(f"[state] saved machine state ({len(state.conversations)} conversation(s))")

    def list_machine_ids(self) -> list[str]:
        ids = []
        for path in self.store.list_objects(MACHINES_PREFIX):
            name = path[len(MACHINES_PREFIX):]
            if "/" not in name and name.endswith(STATE_SUFFIX):
                ids.append(name[:-len(STATE_SUFFIX)])
        return ids

    def load_all(self) -> list[MachineState]:
        """Every readable MachineState; unreadable ones are reported and skipped."""
        states = []
        for machine_id in self.list_machine_ids():
            try:
                state = self.load(machine_id)
            except (DecryptionError, FormatError) as exc:
                warn(f"[state] cannot read state of machine {machine_id}: {exc}")
                continue
            if state is not None:
                states.append(state)
        return states
