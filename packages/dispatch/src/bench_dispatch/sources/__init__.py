from .files import ChangeEventIn, iter_events_jsonl, parse_event, read_event_json
from .git import GitDiffError, changed_paths
from .github import event_from_actions_env, event_from_payload

__all__ = [
    "ChangeEventIn",
    "GitDiffError",
    "changed_paths",
    "event_from_actions_env",
    "event_from_payload",
    "iter_events_jsonl",
    "parse_event",
    "read_event_json",
]
