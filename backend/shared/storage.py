"""Storage abstractions for completed session records and channel configuration.

Session records are plain JSON documents, one per finished PUG, kept for
offline analysis. Channel configuration is one small JSON document per channel
and is read back at startup. Both are written atomically (temp file, fsync,
rename) with owner-only permissions.
"""

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class SessionRecordStorage(Protocol):
    """Protocol for the append-only sink of completed sessions."""

    def save_session_record(self, key: str, content: str) -> None: ...


class ChannelStorage(Protocol):
    """Protocol for persisting per-channel configuration."""

    def save_channel(self, channel_id: str, content: str) -> None: ...

    def load_channels(self) -> list[str]: ...


def _resolve_target(root: Path, name: str) -> Path:
    target = (root / f"{name}.json").resolve()
    if not target.is_relative_to(root):
        raise ValueError(f"Path traversal rejected: '{name}' resolves outside {root}")
    return target


def _write_atomic(root: Path, target: Path, content: str) -> None:
    root.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
    root.chmod(_DIR_MODE)

    fd, tmp_path = tempfile.mkstemp(dir=str(root), suffix=".tmp", prefix=".write_")
    fd_owned = True
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            fd_owned = False  # os.fdopen took ownership; it will close fd
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, _FILE_MODE)  # noqa: PTH101
        Path(tmp_path).replace(target)
    except BaseException:
        if fd_owned:
            with contextlib.suppress(OSError):
                os.close(fd)
        with contextlib.suppress(OSError):
            Path(tmp_path).unlink()
        raise


class LocalSessionRecordStorage:
    """Writes one JSON file per completed session under a records directory.

    Records are never overwritten in practice because keys embed the session
    start time, but a repeated key replaces the earlier file atomically.
    """

    def __init__(self, records_dir: str) -> None:
        self._records_dir = Path(records_dir).resolve()

    def save_session_record(self, key: str, content: str) -> None:
        target = _resolve_target(self._records_dir, key)
        _write_atomic(self._records_dir, target, content)
        logger.info("saved session record", key=key, path=str(target))


class LocalChannelStorage:
    """Keeps channel configuration as `<channel_id>.json` files."""

    def __init__(self, channels_dir: str) -> None:
        self._channels_dir = Path(channels_dir).resolve()

    def save_channel(self, channel_id: str, content: str) -> None:
        target = _resolve_target(self._channels_dir, channel_id)
        _write_atomic(self._channels_dir, target, content)

    def load_channels(self) -> list[str]:
        """Return the raw contents of every saved channel file.

        Unreadable files are logged and skipped so one bad file does not
        hide the rest of the configuration.
        """
        if not self._channels_dir.is_dir():
            return []
        contents: list[str] = []
        for entry in sorted(self._channels_dir.iterdir()):
            if entry.suffix != ".json" or not entry.is_file():
                continue
            try:
                contents.append(entry.read_text(encoding="utf-8"))
            except OSError:
                logger.exception("failed to read channel file", path=str(entry))
        return contents
