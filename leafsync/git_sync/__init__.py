"""Git reconciliation functionality for leafsync."""

from .clone import CloneResult, clone_project
from .conflicts import ConflictChoice, ConflictOutcome, ConflictResolver, DeferredConflictPrompt
from .engine import CycleOutcome, CycleResult, SyncEngine
from .repository import RepositoryAdapter, RepositorySnapshot
from .state import RetryState, SyncState

__all__ = [
    'CloneResult',
    'clone_project',
    'ConflictChoice',
    'ConflictOutcome',
    'ConflictResolver',
    'DeferredConflictPrompt',
    'CycleOutcome',
    'CycleResult',
    'SyncEngine',
    'RepositoryAdapter',
    'RepositorySnapshot',
    'RetryState',
    'SyncState',
]
