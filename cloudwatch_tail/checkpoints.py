from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from .exceptions import ConfigurationError
from .logging_utils import get_logger, log_json
from .utils import sincedb_name

logger = get_logger(__name__)

SINCEDB_SUBDIR = ("plugins", "inputs", "cloudwatch_logs")


class LoadStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    EMPTY = "empty"
    PARSE_ERROR = "parse_error"
    PERMISSION_DENIED = "permission_denied"
    IO_ERROR = "io_error"


class SaveStatus(str, Enum):
    OK = "ok"
    PERMISSION_DENIED = "permission_denied"
    IO_ERROR = "io_error"


@dataclass
class LoadResult:
    status: LoadStatus
    entries: Dict[str, int] = field(default_factory=dict)
    skipped_lines: List[int] = field(default_factory=list)
    error: str | None = None


@dataclass
class SaveResult:
    status: SaveStatus
    error: str | None = None

    def __bool__(self) -> bool:
        return self.status is SaveStatus.OK


def parse_sincedb(text: str) -> tuple[Dict[str, int], List[int]]:
    """Parse ``group offset`` lines. Malformed lines are skipped, not fatal."""
    entries: Dict[str, int] = {}
    skipped: List[int] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            skipped.append(lineno)
            continue
        group, rest = parts
        try:
            entries[group] = int(rest.strip())
        except ValueError:
            skipped.append(lineno)
    return entries, skipped


def serialize_sincedb(entries: Mapping[str, int]) -> str:
    return "".join(f"{group} {int(offset)}\n" for group, offset in entries.items())


class CheckpointStore:
    """Flat ``group offset`` file holding one resume offset per log group."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Dict[str, int]:
        return self.load_result().entries

    def load_result(self) -> LoadResult:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            log_json(logger, logging.DEBUG, "checkpoint_absent", path=str(self.path))
            return LoadResult(status=LoadStatus.ABSENT)
        except PermissionError as e:
            log_json(logger, logging.WARNING, "checkpoint_load_failed", path=str(self.path), reason="permission_denied", error=str(e))
            return LoadResult(status=LoadStatus.PERMISSION_DENIED, error=str(e))
        except (OSError, UnicodeDecodeError) as e:
            log_json(logger, logging.WARNING, "checkpoint_load_failed", path=str(self.path), reason="io_error", error=str(e))
            return LoadResult(status=LoadStatus.IO_ERROR, error=str(e))

        entries, skipped = parse_sincedb(text)
        if skipped:
            # the other lines still load
            log_json(logger, logging.WARNING, "checkpoint_lines_skipped", path=str(self.path), lines=skipped)
            status = LoadStatus.PARSE_ERROR
        else:
            status = LoadStatus.OK if entries else LoadStatus.EMPTY
        log_json(logger, logging.DEBUG, "checkpoint_read", path=str(self.path), status=status.value, entries=entries)
        return LoadResult(status=status, entries=entries, skipped_lines=skipped)

    def save(self, entries: Mapping[str, int]) -> SaveResult:
        data = serialize_sincedb(entries)
        with self._lock:
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp_name, self.path)
                tmp_name = None
            except PermissionError as e:
                log_json(logger, logging.WARNING, "checkpoint_save_failed", path=str(self.path), reason="permission_denied", error=str(e))
                return SaveResult(status=SaveStatus.PERMISSION_DENIED, error=str(e))
            except OSError as e:
                log_json(logger, logging.WARNING, "checkpoint_save_failed", path=str(self.path), reason="io_error", error=str(e))
                return SaveResult(status=SaveStatus.IO_ERROR, error=str(e))
            finally:
                if tmp_name is not None:
                    _unlink_quietly(tmp_name)
        log_json(logger, logging.DEBUG, "checkpoint_saved", path=str(self.path), entries=dict(entries))
        return SaveResult(status=SaveStatus.OK)


def _unlink_quietly(name: str) -> None:
    try:
        os.unlink(name)
    except FileNotFoundError:
        pass
    except OSError as e:
        log_json(logger, logging.DEBUG, "checkpoint_tmp_cleanup_failed", path=name, error=str(e))


def default_sincedb_path(
    log_group: str,
    log_streams: Sequence[str] = (),
    data_dir: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Derive the sincedb path when none is configured.

    ``<data_dir>/plugins/inputs/cloudwatch_logs/.sincedb_<md5>`` when a data
    directory is set, otherwise ``$SINCEDB_DIR`` or ``$HOME``.
    """
    name = sincedb_name(log_group, log_streams)
    if data_dir:
        return Path(data_dir).joinpath(*SINCEDB_SUBDIR) / name

    env = os.environ if environ is None else environ
    base = env.get("SINCEDB_DIR") or env.get("HOME")
    if not base:
        raise ConfigurationError(
            "No SINCEDB_DIR or HOME environment variable set, I don't know where "
            "to keep track of the log group I'm tailing. Set HOME or SINCEDB_DIR, "
            "or set sincedb_path explicitly."
        )
    return Path(base) / name
