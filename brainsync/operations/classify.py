"""
Diff & classify: decide per conversation, then per file, what a pass does

Conversation level (local L, remote R, base B = this machine's last-synced
hash from its MachineState):

  L only                      -> push  (no tombstones: always treated as new)
  R only                      -> pull
  L == R                      -> skip  (title-only manifest update if titles differ)
  no B                        -> conflict (unknown history)
  L != B, R == B              -> push
  L == B, R != B              -> pull
  L != B, R != B              -> conflict

File level (inside one push or pull): a file is transferred when its hash
differs from the counterpart map or is missing there, and deleted on the
side where it is absent.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Union

from ..core.manifest import FileHashInfo, SyncedConversation
from ..state.machine_state import ConversationState
from .scanner import LocalConversation


class Action(str, Enum):
    PUSH = "push"
    PULL = "pull"
    SKIP = "skip"
    CONFLICT = "conflict"


@dataclass
class Decision:
    conv_id: str
    action: Action
    reason: str
    # Hashes agree but the local title differs from the manifest's
    title_update: bool = False


def classify(local_hash: Optional[str], remote_hash: Optional[str],
             base_hash: Optional[str]) -> tuple[Action, str]:
    """Three-way decision on overall hashes; None means absent."""
    if local_hash is None and remote_hash is None:
        return Action.SKIP, "absent on both sides"
    if remote_hash is None:
        return Action.PUSH, "local only"
    if local_hash is None:
        return Action.PULL, "remote only"
    if local_hash == remote_hash:
        return Action.SKIP, "in sync"
    if base_hash is None:
        return Action.CONFLICT, "both sides have content and there is no sync history"
    local_changed = local_hash != base_hash
    remote_changed = remote_hash != base_hash
    if local_changed and not remote_changed:
        return Action.PUSH, "changed locally"
    if remote_changed and not local_changed:
        return Action.PULL, "changed remotely"
    return Action.CONFLICT, "changed on both sides since last sync"


def classify_conversation(conv_id: str,
                          local: Optional[LocalConversation],
                          remote: Optional[SyncedConversation],
                          base: Optional[ConversationState]) -> Decision:
    action, reason = classify(
        local.overall_hash if local is not None else None,
        remote.overall_hash if remote is not None else None,
        base.overall_hash if base is not None else None,
    )
    title_update = (
        action is Action.SKIP
        and local is not None and remote is not None
        and local.title != remote.title
    )
    return Decision(conv_id=conv_id, action=action, reason=reason, title_update=title_update)


# ══════════════════════════════════════════════════════════════════════════════
#  FILE-LEVEL PLAN
# ══════════════════════════════════════════════════════════════════════════════

HashMap = Mapping[str, Union[FileHashInfo, str]]


def _digest(value: Union[FileHashInfo, str]) -> str:
    return value.hash if isinstance(value, FileHashInfo) else str(value)


@dataclass
class FilePlan:
    transfer: list[str] = field(default_factory=list)
    delete: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.transfer and not self.delete


def diff_files(source: HashMap, target: HashMap) -> FilePlan:
    """Plan to make target match source.

    transfer: paths whose hash differs in target or that target lacks.
    delete:   paths target has and source does not.
    """
    plan = FilePlan()
    for rel in sorted(source):
        other = target.get(rel)
        if other is None or _digest(other) != _digest(source[rel]):
            plan.transfer.append(rel)
        else:
            plan.unchanged.append(rel)
    plan.delete = sorted(rel for rel in target if rel not in source)
    return plan
