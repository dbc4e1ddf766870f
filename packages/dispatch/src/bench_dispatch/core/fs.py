import hashlib
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class FileDigest:
    sha256: str
    bytes: int


def ensure_parent(path: Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def relpath_posix(path: Path, base_dir: Path) -> str:
    return path.relative_to(base_dir).as_posix()


def file_size(path: Path) -> int:
    return int(path.stat().st_size)


def fsync_dir(parent: Path) -> None:
    """
    Ensure directory entry durability after atomic rename.
    """
    fd: int | None = None
    try:
        fd = os.open(parent, os.O_RDONLY)
        os.fsync(fd)
    finally:
        if fd is not None:
            os.close(fd)


def _mkstemp_beside(path: Path, *, text: bool) -> tuple[int, Path]:
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
        text=text,
    )
    return fd, Path(tmp_name)


def atomic_write_text(
    path: Path,
    text: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
    mode: int = 0o644,
) -> None:
    """
    Atomically write text to `path`.

    Guarantees:
      - readers either see the old complete file or the new complete file
      - no partial/truncated file on crash
      - temp file written in the same directory (atomic replace works)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: Path | None = None

    try:
        fd, tmp_path = _mkstemp_beside(path, text=True)

        with os.fdopen(fd, "w", encoding=encoding, newline=newline) as f:
            fd = None
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)

        fsync_dir(path.parent)

    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and tmp_path.exists():
            safe_unlink(tmp_path)


def atomic_copy(src: Path, dst: Path) -> None:
    """
    Copy `src` over `dst` via a temp file in dst's directory.

    File mode is preserved so staged executables stay executable. Re-copying the
    same source leaves `dst` byte-identical.
    """
    src = Path(src)
    dst = Path(dst)
    ensure_parent(dst)

    fd: int | None = None
    tmp_path: Path | None = None
    try:
        fd, tmp_path = _mkstemp_beside(dst, text=False)
        os.close(fd)
        fd = None

        shutil.copy2(src, tmp_path)
        os.replace(tmp_path, dst)
        fsync_dir(dst.parent)
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None and tmp_path.exists():
            safe_unlink(tmp_path)


def file_digest(path: Path) -> FileDigest:
    """sha256 and size of a staged artifact, recorded in the run report."""
    path = Path(path)
    with path.open("rb") as f:
        h = hashlib.file_digest(f, "sha256")
    return FileDigest(sha256=h.hexdigest(), bytes=file_size(path))
