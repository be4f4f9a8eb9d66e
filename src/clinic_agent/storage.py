"""Flat JSON-file storage for clinic records.

Each resource kind is kept as a FHIR Bundle in its own file under DATA_DIR:

    data/patients.json
    {
      "resourceType": "Bundle",
      "type": "collection",
      "total": 1,
      "entry": [{"fullUrl": "urn:uuid:pat-...", "resource": {...}}]
    }

Every mutation reads the whole file, changes it in memory and writes it back.
There is no locking and no conflict detection: two concurrent writers can
clobber each other and the last write wins. The only concurrency hint is
meta.versionId, which is bumped on every update.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from clinic_agent.config import DATA_DIR
from clinic_agent.fhir import RESOURCE_TYPES, ResourceKind, id_prefix

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_id(prefix: str) -> str:
    """Generate an id like "pat-lx2k9q1a-4f7h2c" (prefix, time, random)."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{prefix}-{timestamp}-{suffix}"


def create_meta(version_id: str = "1") -> dict[str, str]:
    return {
        "versionId": version_id,
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


def _empty_bundle() -> dict[str, Any]:
    return {"resourceType": "Bundle", "type": "collection", "total": 0, "entry": []}


class JsonRecordStore:
    """Read-modify-write CRUD over one JSON bundle file per resource kind.

    Args:
        data_dir: Directory holding the bundle files. Created on first use.
    """

    def __init__(self, data_dir: Path = DATA_DIR) -> None:
        self.data_dir = Path(data_dir)

    def _path(self, kind: ResourceKind) -> Path:
        return self.data_dir / f"{kind.value}.json"

    # --- Bundle I/O ---

    def read_bundle(self, kind: ResourceKind) -> dict[str, Any]:
        """Load the bundle for a kind, creating an empty one if missing.

        A file that can't be parsed is treated like a missing one (and
        overwritten on the next write).
        """
        path = self._path(kind)
        try:
            with path.open(encoding="utf-8") as f:
                bundle = json.load(f)
        except FileNotFoundError:
            bundle = _empty_bundle()
            self.write_bundle(kind, bundle)
            return bundle
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable bundle %s (%s); starting empty", path, exc)
            bundle = _empty_bundle()
            self.write_bundle(kind, bundle)
            return bundle

        bundle.setdefault("entry", [])
        return bundle

    def write_bundle(self, kind: ResourceKind, bundle: dict[str, Any]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        bundle["total"] = len(bundle.get("entry") or [])
        with self._path(kind).open("w", encoding="utf-8") as f:
            json.dump(bundle, f, indent=2)

    # --- CRUD ---

    def list(self, kind: ResourceKind) -> list[dict[str, Any]]:
        bundle = self.read_bundle(kind)
        return [e["resource"] for e in bundle["entry"] if e.get("resource")]

    def get(self, kind: ResourceKind, resource_id: str) -> dict[str, Any] | None:
        for resource in self.list(kind):
            if resource.get("id") == resource_id:
                return resource
        return None

    def search(
        self,
        kind: ResourceKind,
        predicate: Callable[[dict[str, Any]], bool],
    ) -> list[dict[str, Any]]:
        return [r for r in self.list(kind) if predicate(r)]

    def create(self, kind: ResourceKind, resource: dict[str, Any]) -> dict[str, Any]:
        """Append a new resource, assigning an id (if absent) and meta."""
        bundle = self.read_bundle(kind)

        resource = dict(resource)
        resource.setdefault("resourceType", RESOURCE_TYPES[kind])
        if not resource.get("id"):
            resource["id"] = generate_id(id_prefix(kind))
        resource["meta"] = create_meta()

        bundle["entry"].append({"fullUrl": f"urn:uuid:{resource['id']}", "resource": resource})
        self.write_bundle(kind, bundle)
        logger.debug("Created %s/%s", kind.value, resource["id"])
        return resource

    def update(
        self,
        kind: ResourceKind,
        resource_id: str,
        updates: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Shallow-merge updates into a resource. Returns None if it doesn't exist."""
        bundle = self.read_bundle(kind)

        for entry in bundle["entry"]:
            existing = entry.get("resource")
            if not existing or existing.get("id") != resource_id:
                continue

            current_version = int(existing.get("meta", {}).get("versionId", "1"))
            updated = {
                **existing,
                **updates,
                # id and resourceType are never overwritten by an update
                "id": resource_id,
                "resourceType": existing.get("resourceType", RESOURCE_TYPES[kind]),
                "meta": create_meta(str(current_version + 1)),
            }
            entry["resource"] = updated
            self.write_bundle(kind, bundle)
            logger.debug("Updated %s/%s to version %d", kind.value, resource_id, current_version + 1)
            return updated

        return None

    def delete(self, kind: ResourceKind, resource_id: str) -> bool:
        bundle = self.read_bundle(kind)
        before = len(bundle["entry"])
        bundle["entry"] = [
            e for e in bundle["entry"] if (e.get("resource") or {}).get("id") != resource_id
        ]
        if len(bundle["entry"]) == before:
            return False

        self.write_bundle(kind, bundle)
        logger.debug("Deleted %s/%s", kind.value, resource_id)
        return True

    def count(self, kind: ResourceKind) -> int:
        """Number of stored records of a kind (for scripts and tests)."""
        return len(self.read_bundle(kind)["entry"])
