import json
from pathlib import Path
from typing import Any, Iterator

from .fs import atomic_write_text


def atomic_write_json(path: Path, obj: Any, *, indent: int = 2) -> None:
    atomic_write_text(
        path, json.dumps(obj, ensure_ascii=False, indent=indent, default=str) + "\n"
    )


def read_json(path: Path) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def iter_jsonl(path: Path, *, comments: bool = False) -> Iterator[tuple[int, Any]]:
    """
    Yield `(lineno, value)` for each non-blank line. With `comments`, lines
    starting with `#` are skipped too. A malformed line raises ValueError
    naming `path:lineno`.
    """
    with Path(path).open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or (comments and line.startswith("#")):
                continue
            try:
                yield lineno, json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON: {e.msg}") from e


def stable_json_dumps(obj: Any, *, indent: int | None = 2) -> str:
    """
    Deterministic JSON:
      - sort_keys=True
      - stable separators when indent is None
    """
    if indent is None:
        return json.dumps(
            obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")
        )
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, indent=indent)
