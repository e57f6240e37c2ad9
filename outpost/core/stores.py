"""Credential and instance stores.

``InMemoryCredentialStore``/``InMemoryInstanceStore`` back the long-running
server and the tests. ``JsonCredentialStore``/``JsonInstanceStore`` keep
records in JSON files under a data directory so separate CLI invocations see
the same state.

Every store hands out copies: mutating a returned record has no effect until
it is passed back to ``save``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from outpost.core.models import CloudCredential, ComputeInstance, InstanceStatus, utc_now
from outpost.utils import atomic_file_write

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.json"
INSTANCES_FILE = "instances.json"


class InMemoryCredentialStore:
    """Credential store held in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, CloudCredential] = {}

    async def get_by_workspace(self, workspace_id: str) -> CloudCredential | None:
        for record in self._records.values():
            if record.workspace_id == workspace_id:
                return copy.deepcopy(record)
        return None

    async def save(self, credential: CloudCredential) -> CloudCredential:
        credential.updated_at = utc_now()
        self._records[credential.id] = copy.deepcopy(credential)
        return copy.deepcopy(credential)

    async def delete(self, credential_id: str) -> None:
        self._records.pop(credential_id, None)


class InMemoryInstanceStore:
    """Instance store held in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, ComputeInstance] = {}

    async def create(self, instance: ComputeInstance) -> ComputeInstance:
        self._records[instance.id] = copy.deepcopy(instance)
        return copy.deepcopy(instance)

    async def get(self, instance_id: str) -> ComputeInstance | None:
        record = self._records.get(instance_id)
        return copy.deepcopy(record) if record else None

    async def get_for_workspace(
        self, workspace_id: str, instance_id: str
    ) -> ComputeInstance | None:
        record = self._records.get(instance_id)
        if record is None or record.workspace_id != workspace_id:
            return None
        return copy.deepcopy(record)

    async def list_for_workspace(self, workspace_id: str) -> list[ComputeInstance]:
        records = [r for r in self._records.values() if r.workspace_id == workspace_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in records]

    async def save(self, instance: ComputeInstance) -> ComputeInstance:
        instance.updated_at = utc_now()
        self._records[instance.id] = copy.deepcopy(instance)
        return copy.deepcopy(instance)

    async def count_by_status(
        self, credential_id: str, statuses: Iterable[InstanceStatus]
    ) -> int:
        wanted = set(statuses)
        return sum(
            1
            for r in self._records.values()
            if r.credential_id == credential_id and r.status in wanted
        )


class _JsonFile:
    """A JSON object file mapping record id to serialized record."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Corrupted data file {self.path}: {e}") from e

    def write(self, records: dict[str, dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_file_write(self.path, json.dumps(records, indent=2, sort_keys=True))


class JsonCredentialStore:
    """Credential store persisted to ``<data_dir>/credentials.json``.

    Parameters
    ----------
    data_dir : Path
        Directory holding the data files
    """

    def __init__(self, data_dir: Path) -> None:
        self._file = _JsonFile(Path(data_dir) / CREDENTIALS_FILE)

    async def get_by_workspace(self, workspace_id: str) -> CloudCredential | None:
        records = await asyncio.to_thread(self._file.read)
        for data in records.values():
            if data["workspace_id"] == workspace_id:
                return CloudCredential.from_dict(data)
        return None

    async def save(self, credential: CloudCredential) -> CloudCredential:
        credential.updated_at = utc_now()
        records = await asyncio.to_thread(self._file.read)
        records[credential.id] = credential.to_dict()
        await asyncio.to_thread(self._file.write, records)
        return credential

    async def delete(self, credential_id: str) -> None:
        records = await asyncio.to_thread(self._file.read)
        if records.pop(credential_id, None) is not None:
            await asyncio.to_thread(self._file.write, records)


class JsonInstanceStore:
    """Instance store persisted to ``<data_dir>/instances.json``.

    Parameters
    ----------
    data_dir : Path
        Directory holding the data files
    """

    def __init__(self, data_dir: Path) -> None:
        self._file = _JsonFile(Path(data_dir) / INSTANCES_FILE)

    async def _load(self) -> list[ComputeInstance]:
        records = await asyncio.to_thread(self._file.read)
        return [ComputeInstance.from_dict(data) for data in records.values()]

    async def create(self, instance: ComputeInstance) -> ComputeInstance:
        return await self.save(instance)

    async def get(self, instance_id: str) -> ComputeInstance | None:
        records = await asyncio.to_thread(self._file.read)
        data = records.get(instance_id)
        return ComputeInstance.from_dict(data) if data else None

    async def get_for_workspace(
        self, workspace_id: str, instance_id: str
    ) -> ComputeInstance | None:
        record = await self.get(instance_id)
        if record is None or record.workspace_id != workspace_id:
            return None
        return record

    async def list_for_workspace(self, workspace_id: str) -> list[ComputeInstance]:
        records = [r for r in await self._load() if r.workspace_id == workspace_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def save(self, instance: ComputeInstance) -> ComputeInstance:
        instance.updated_at = utc_now()
        records = await asyncio.to_thread(self._file.read)
        records[instance.id] = instance.to_dict()
        await asyncio.to_thread(self._file.write, records)
        return instance

    async def count_by_status(
        self, credential_id: str, statuses: Iterable[InstanceStatus]
    ) -> int:
        wanted = set(statuses)
        return sum(
            1
            for r in await self._load()
            if r.credential_id == credential_id and r.status in wanted
        )
