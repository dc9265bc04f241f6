"""File-backed repository for the store document."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from bolus_tracker.domain.errors import IOFailureError


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` through a temporary file and a rename."""
    tmp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        ) as handle:
            tmp_path = Path(handle.name)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise IOFailureError(f"Could not write {path}: {exc}") from exc


@dataclass
class JsonDocumentRepository:
    """Reads and writes the store document as a single JSON file."""

    path: Path

    def load(self) -> bytes | None:
        """Return the stored bytes, or None when nothing was saved yet."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise IOFailureError(f"Could not read {self.path}: {exc}") from exc

    def save(self, data: bytes) -> None:
        """Replace the stored document atomically."""
        write_atomic(self.path, data)
