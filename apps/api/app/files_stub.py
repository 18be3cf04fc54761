from __future__ import annotations

import tempfile
import uuid
from pathlib import Path


def _base_dir() -> Path:
    base = Path(tempfile.gettempdir()) / "realty_crm_documents"
    base.mkdir(parents=True, exist_ok=True)
    return base


def _path_for(file_id: uuid.UUID) -> Path | None:
    # Files are stored as <file_id><extension>.
    matches = list(_base_dir().glob(f"{file_id}.*"))
    return matches[0] if matches else None


def store_bytes(content: bytes, filename: str, content_type: str) -> uuid.UUID:
    file_id = uuid.uuid4()
    safe_name = filename or "file.bin"
    extension = Path(safe_name).suffix or ".bin"
    file_path = _base_dir() / f"{file_id}{extension}"
    file_path.write_bytes(content)
    return file_id


def get_bytes(file_id: uuid.UUID) -> bytes:
    path = _path_for(file_id)
    if path is None or not path.exists():
        raise FileNotFoundError(f"file_id not found: {file_id}")
    return path.read_bytes()


def delete_bytes(file_id: uuid.UUID) -> bool:
    path = _path_for(file_id)
    if path is None or not path.exists():
        return False
    path.unlink()
    return True
