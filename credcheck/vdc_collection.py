"""A collection of verifiable digital credentials kept in a key-value store."""

from __future__ import annotations

import abc
import contextlib
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

import cbor2

logger = logging.getLogger(__name__)

KEY_PREFIX = "Credential."

SERIALIZE_FAILED = "Failed to Serialize Value"
DESERIALIZE_FAILED = "Failed to Deserialize Value"
STORE_FAILED = "Failed to Write to Storage"
LOAD_FAILED = "Failed to Read from Storage"
DELETE_FAILED = "Failed to Delete from Storage"


class StorageManager(abc.ABC):
    """An asynchronous key-value store for raw bytes."""

    @abc.abstractmethod
    async def add(self, key: str, value: bytes) -> None:
        """Store a value under a key."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the value under a key, or None if there is none."""

    @abc.abstractmethod
    async def remove(self, key: str) -> None:
        """Remove the value under a key."""

    @abc.abstractmethod
    async def list(self) -> List[str]:
        """Return every stored key."""


@dataclass(frozen=True)
class StoredCredential:
    """A credential as held in the collection."""

    id: uuid.UUID
    format: str
    credential_type: str
    payload: bytes
    key_alias: Optional[str] = None

    def to_bytes(self) -> bytes:
        """Encode as a CBOR map; raise ValueError if a field cannot be encoded."""
        try:
            return cbor2.dumps(
                {
                    "id": self.id.bytes,
                    "format": self.format,
                    "type": self.credential_type,
                    "payload": bytes(self.payload),
                    "key_alias": self.key_alias,
                }
            )
        except (AttributeError, TypeError, ValueError, cbor2.CBOREncodeError) as exc:
            raise ValueError(f"credential could not be encoded: {exc}") from exc

    @classmethod
    def from_bytes(cls, data: bytes) -> StoredCredential:
        """Decode a CBOR map; raise ValueError if it is not a credential record."""
        try:
            record = cbor2.loads(data)
        except (cbor2.CBORDecodeError, ValueError, TypeError) as exc:
            raise ValueError(f"credential record is not valid CBOR: {exc}") from exc
        if not isinstance(record, dict):
            raise ValueError("credential record is not a map")
        try:
            raw_id = record["id"]
            credential_format = record["format"]
            credential_type = record["type"]
            payload = record["payload"]
        except KeyError as exc:
            raise ValueError(f"credential record is missing {exc}") from exc
        key_alias = record.get("key_alias")
        if not isinstance(raw_id, bytes) or len(raw_id) != 16:
            raise ValueError("credential id is not a 16-byte UUID")
        if not isinstance(credential_format, str) or not isinstance(credential_type, str):
            raise ValueError("credential format and type must be strings")
        if not isinstance(payload, bytes):
            raise ValueError("credential payload must be bytes")
        if key_alias is not None and not isinstance(key_alias, str):
            raise ValueError("credential key alias must be a string")
        return cls(uuid.UUID(bytes=raw_id), credential_format, credential_type, payload, key_alias)


class VdcCollectionError(Exception):
    """A credential could not be encoded, decoded, stored, loaded or deleted."""

    def __init__(self, message: str, storage_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.storage_error = storage_error


def _id_to_key(credential_id: uuid.UUID) -> str:
    return f"{KEY_PREFIX}{credential_id}"


def _key_to_id(key: str) -> Optional[uuid.UUID]:
    if not key.startswith(KEY_PREFIX):
        return None
    try:
        return uuid.UUID(key[len(KEY_PREFIX) :])
    except ValueError:
        return None


class VdcCollection:
    """The main interface to stored credentials."""

    def __init__(self, storage: StorageManager) -> None:
        self._storage = storage

    async def add(self, credential: StoredCredential) -> None:
        """Add a credential, replacing any with the same id."""
        try:
            value = credential.to_bytes()
        except ValueError as exc:
            raise VdcCollectionError(SERIALIZE_FAILED) from exc
        try:
            await self._storage.add(_id_to_key(credential.id), value)
        except Exception as exc:
            raise VdcCollectionError(STORE_FAILED, exc) from exc

    async def get(self, credential_id: uuid.UUID) -> Optional[StoredCredential]:
        """Return the credential with this id, or None if there is none."""
        try:
            raw = await self._storage.get(_id_to_key(credential_id))
        except Exception as exc:
            raise VdcCollectionError(LOAD_FAILED, exc) from exc
        if raw is None:
            return None
        try:
            return StoredCredential.from_bytes(raw)
        except ValueError as exc:
            raise VdcCollectionError(DESERIALIZE_FAILED) from exc

    async def delete(self, credential_id: uuid.UUID) -> None:
        """Remove the credential with this id."""
        try:
            await self._storage.remove(_id_to_key(credential_id))
        except Exception as exc:
            raise VdcCollectionError(DELETE_FAILED, exc) from exc

    async def all_entries(self) -> List[uuid.UUID]:
        """Return the ids of all stored credentials."""
        try:
            keys = await self._storage.list()
        except Exception as exc:
            raise VdcCollectionError(LOAD_FAILED, exc) from exc
        return [cid for cid in map(_key_to_id, keys) if cid is not None]

    async def all_entries_by_type(self, credential_type: str) -> List[uuid.UUID]:
        """Return the ids of readable credentials of the given type."""
        matches = []
        for credential_id in await self.all_entries():
            credential = None
            with contextlib.suppress(VdcCollectionError):
                credential = await self.get(credential_id)
            if credential is not None and credential.credential_type == credential_type:
                matches.append(credential.id)
        return matches

    async def dump(self) -> None:
        """Log every stored credential."""
        try:
            ids = await self.all_entries()
        except VdcCollectionError as exc:
            logger.info("Unable to get list: %r", exc)
            return
        for credential_id in ids:
            with contextlib.suppress(VdcCollectionError):
                logger.info("%r", await self.get(credential_id))