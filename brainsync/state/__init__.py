"""State management (local machine state and remote per-machine state)"""
from .state_manager import LocalState, load_state, save_state
from .machine_state import MachineState, MachineStateStore

__all__ = [
    "LocalState", "load_state", "save_state",
    "MachineState", "MachineStateStore",
]
