"""Utilities for managing rendered documents and keeping their index consistent."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from config import ARTIFACTS_DIR as _CONFIGURED_ARTIFACTS_DIR

LOGGER = logging.getLogger("ebook_factory.artifacts")

ARTIFACTS_DIR = Path(_CONFIGURED_ARTIFACTS_DIR).resolve()
INDEX_FILENAME = "index.json"


@dataclass
class ArtifactRecord:
    """Normalized representation of an artifact entry."""

    id: str
    path: str
    metadata_path: Optional[str]
    name: str
    updated_at: Optional[str]
    status: Optional[str]
    extra: Dict[str, Any]


def _index_path() -> Path:
    return ARTIFACTS_DIR / INDEX_FILENAME


def _ensure_dir() -> None:
    ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)


def resolve_artifact_path(raw_path: str | Path) -> Path:
    """Return absolute path within the artifacts directory."""

    base_dir = ARTIFACTS_DIR.resolve()
    candidate = raw_path if isinstance(raw_path, Path) else Path(str(raw_path))
    if not candidate.is_absolute():
        candidate = (base_dir / candidate).resolve()
    else:
        candidate = candidate.resolve()

    if candidate == base_dir:
        raise ValueError("Requested path points at the artifacts directory itself")
    try:
        candidate.relative_to(base_dir)
    except ValueError as exc:
        raise ValueError("Requested path is outside the artifacts directory") from exc
    return candidate


def atomic_write_bytes(path: Path, data: bytes, *, validator: Optional[Callable[[Path], None]] = None) -> None:
    """Write ``data`` through a temporary file so readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if validator is not None:
            validator(tmp_path)
        os.replace(tmp_path, path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str, *, validator: Optional[Callable[[Path], None]] = None) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), validator=validator)


def _read_index() -> List[Dict[str, Any]]:
    index_path = _index_path()
    if not index_path.exists():
        return []
    try:
        raw = json.loads(index_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        LOGGER.warning("artifact_index_unreadable", extra={"error": str(exc)})
        return []
    if not isinstance(raw, list):
        LOGGER.warning("artifact_index_not_a_list")
        return []
    return [entry for entry in raw if isinstance(entry, dict)]


def _write_index(entries: Sequence[Dict[str, Any]]) -> None:
    _ensure_dir()
    atomic_write_text(
        _index_path(),
        json.dumps(list(entries), ensure_ascii=False, indent=2, sort_keys=True),
    )


def _relative_path(path: Path) -> str:
    try:
        return path.relative_to(ARTIFACTS_DIR.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def _read_metadata(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists() or not path.is_file():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        LOGGER.warning("artifact_metadata_unreadable", extra={"path": str(path), "error": str(exc)})
        return {}
    return payload if isinstance(payload, dict) else {}


def _build_record_from_entry(entry: Dict[str, Any]) -> ArtifactRecord | None:
    raw_path = entry.get("path")
    if not isinstance(raw_path, str) or not raw_path.strip():
        return None
    try:
        artifact_path = resolve_artifact_path(raw_path)
    except ValueError:
        return None

    metadata_path = None
    metadata_path_str = entry.get("metadata_path")
    if isinstance(metadata_path_str, str) and metadata_path_str.strip():
        try:
            metadata_path = resolve_artifact_path(metadata_path_str)
        except ValueError:
            metadata_path = None

    known = {"id", "path", "metadata_path", "name", "updated_at", "status"}
    updated_at = entry.get("updated_at")
    status = entry.get("status")
    return ArtifactRecord(
        id=str(entry.get("id") or artifact_path.stem),
        path=_relative_path(artifact_path),
        metadata_path=_relative_path(metadata_path) if metadata_path else None,
        name=str(entry.get("name") or artifact_path.name),
        updated_at=str(updated_at) if updated_at else None,
        status=str(status) if status else None,
        extra={k: v for k, v in entry.items() if k not in known},
    )


def _build_record_from_file(path: Path, metadata: Dict[str, Any]) -> ArtifactRecord:
    metadata_path = path.with_suffix(".json")
    status = metadata.get("status") or ("ready" if path.exists() else None)
    updated_at = metadata.get("generated_at")
    return ArtifactRecord(
        id=str(metadata.get("id") or metadata.get("job_id") or path.stem),
        path=_relative_path(path),
        metadata_path=_relative_path(metadata_path) if metadata_path.exists() else None,
        name=str(metadata.get("name") or path.name),
        updated_at=str(updated_at) if updated_at else None,
        status=str(status) if status else None,
        extra={},
    )


def _entry_from_record(record: ArtifactRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "path": record.path,
        "metadata_path": record.metadata_path,
        "name": record.name,
        "status": record.status,
        "updated_at": record.updated_at,
    }


def register_artifact(artifact_path: Path, metadata: Optional[Dict[str, Any]] = None) -> ArtifactRecord:
    """Ensure that the artifact index contains an entry for the file."""

    resolved = resolve_artifact_path(artifact_path)
    payload = metadata if metadata is not None else _read_metadata(resolved.with_suffix(".json"))
    record = _build_record_from_file(resolved, payload)
    entries = _read_index()

    for idx, entry in enumerate(entries):
        candidate = _build_record_from_entry(entry)
        if candidate and (candidate.path == record.path or candidate.id == record.id):
            merged = dict(entry)
            merged.update(_entry_from_record(record))
            entries[idx] = merged
            break
    else:
        entries.append(_entry_from_record(record))

    _write_index(_sort_entries(entries))
    LOGGER.info("artifact_registered", extra={"artifact_id": record.id, "path": record.path})
    return record


def _sort_entries(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def _key(entry: Dict[str, Any]) -> tuple:
        updated_at = entry.get("updated_at")
        return (str(updated_at) if updated_at else "", str(entry.get("name") or ""))

    return sorted(list(entries), key=_key, reverse=True)


def _format_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def list_artifacts(*, auto_cleanup: bool = False) -> List[Dict[str, Any]]:
    """Return indexed artifacts suitable for API output, newest first."""

    if auto_cleanup:
        cleanup_index()

    items: List[Dict[str, Any]] = []
    for record in (_build_record_from_entry(entry) for entry in _read_index()):
        if record is None:
            continue
        artifact_path = resolve_artifact_path(record.path)
        metadata_path = resolve_artifact_path(record.metadata_path) if record.metadata_path else None
        metadata = _read_metadata(metadata_path)
        stat = artifact_path.stat() if artifact_path.is_file() else None
        items.append(
            {
                "id": record.id,
                "name": record.name,
                "path": record.path,
                "metadata_path": record.metadata_path,
                "size": stat.st_size if stat else None,
                "modified_at": _format_iso(stat.st_mtime) if stat else record.updated_at,
                "metadata": metadata,
                "status": record.status or metadata.get("status") or "ready",
            }
        )
    items.sort(key=lambda item: item.get("modified_at") or "", reverse=True)
    return items


def find_artifact(identifier: str) -> Optional[ArtifactRecord]:
    for entry in _read_index():
        record = _build_record_from_entry(entry)
        if record and (record.id == identifier or record.path == identifier):
            return record
    return None


def delete_artifact(identifier: str) -> Dict[str, Any]:
    """Delete artifact files and remove the entry from the index."""

    entries = _read_index()
    target = find_artifact(identifier)
    result: Dict[str, Any] = {
        "deleted": False,
        "metadata_deleted": False,
        "not_found": False,
        "index_updated": False,
        "errors": [],
        "removed_id": target.id if target else None,
        "removed_path": target.path if target else None,
    }

    try:
        artifact_path = resolve_artifact_path(target.path if target else identifier)
    except ValueError as exc:
        result["errors"].append(str(exc))
        return result

    for path, key in ((artifact_path, "deleted"), (artifact_path.with_suffix(".json"), "metadata_deleted")):
        try:
            path.unlink()
            result[key] = True
        except FileNotFoundError:
            if key == "deleted":
                result["not_found"] = True
        except OSError as exc:
            result["errors"].append(str(exc))

    relative = _relative_path(artifact_path)
    kept = []
    for entry in entries:
        record = _build_record_from_entry(entry)
        if record and (record.path == relative or record.id == result["removed_id"]):
            continue
        kept.append(entry)
    if len(kept) != len(entries):
        try:
            _write_index(kept)
            result["index_updated"] = True
        except OSError as exc:
            result["errors"].append(str(exc))
    return result


def cleanup_index() -> Dict[str, Any]:
    """Remove entries from the index if their files are missing."""

    entries = _read_index()
    if not entries:
        return {"checked": 0, "removed": 0, "errors": [], "removed_ids": []}

    kept: List[Dict[str, Any]] = []
    removed_ids: List[str] = []
    errors: List[str] = []
    for entry in entries:
        record = _build_record_from_entry(entry)
        if not record:
            removed_ids.append(str(entry.get("id") or ""))
            continue
        artifact_path = resolve_artifact_path(record.path)
        if artifact_path.exists():
            kept.append(entry)
            continue
        removed_ids.append(record.id)
        try:
            artifact_path.with_suffix(".json").unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            errors.append(str(exc))

    removed = len(entries) - len(kept)
    if removed or errors:
        try:
            _write_index(kept)
        except OSError as exc:
            errors.append(str(exc))
    return {"checked": len(entries), "removed": removed, "errors": errors, "removed_ids": removed_ids}


__all__ = [
    "ArtifactRecord",
    "atomic_write_bytes",
    "atomic_write_text",
    "cleanup_index",
    "delete_artifact",
    "find_artifact",
    "list_artifacts",
    "register_artifact",
    "resolve_artifact_path",
]
