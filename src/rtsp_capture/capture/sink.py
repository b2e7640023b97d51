from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class FrameSink(Protocol):
    """Persists encoded snapshot bytes under a name; reports success."""

    def write(self, name: str, data: bytes) -> bool: ...


class FileFrameSink:
    """Writes each snapshot as a file under `out_dir`."""

    def __init__(self, out_dir: Union[str, os.PathLike] = ".") -> None:
        self.out_dir = Path(out_dir)
        self.files_written = 0
        self.bytes_written = 0
        self._dir_ready = False

    def ensure_out_dir(self) -> bool:
        if self._dir_ready:
            return True
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Failed to create snapshot dir %s: %s", self.out_dir, e)
            return False
        self._dir_ready = True
        return True

    def path_for(self, name: str) -> Path:
        return self.out_dir / name

    def write(self, name: str, data: bytes) -> bool:
        if not self.ensure_out_dir():
            return False
        path = self.path_for(name)
        try:
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as e:
            logger.warning("Failed to write snapshot %s: %s", path, e)
            return False
        self.files_written += 1
        self.bytes_written += len(data)
        logger.debug("snapshot: %s (%d bytes)", path, len(data))
        return True
