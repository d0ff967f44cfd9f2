"""
MongoDB Document Store

DESIGN DECISION: MongoDB gives us exactly the primitives the ledger needs:
1. $inc for atomic spent deltas (no read-modify-write)
2. $addToSet / $pull for idempotent membership changes
3. Change streams for live checklist delivery

TRADEOFFS:
- Change streams require a replica set (a single-node one is fine)
- No multi-document transactions are used; the ledger tolerates partial
  failure instead
- Decimals are stored as Decimal128 through a codec
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from family_ledger.clock import utc_now
from family_ledger.config import StoreSettings, get_settings
from family_ledger.services.storage.interface import (
    ChangeWatch,
    DocumentNotFoundError,
    DocumentStore,
    ErrorListener,
    SnapshotListener,
    StorageError,
    StoreConnectionError,
    WriteConflictError,
)


class DecimalCodec(TypeCodec):
    """Store Python Decimals as BSON Decimal128."""
    
    python_type = Decimal
    bson_type = Decimal128
    
    def transform_python(self, value: Decimal) -> Decimal128:
        return Decimal128(value)
    
    def transform_bson(self, value: Decimal128) -> Decimal:
        return value.to_decimal()


def _from_mongo(document: Optional[dict]) -> Optional[dict]:
    if document is None:
        return None
    document = dict(document)
    document["id"] = document.pop("_id")
    return document


def _to_mongo(data: dict) -> dict:
    document = dict(data)
    document.pop("id", None)
    return document


class MongoDocumentStore(DocumentStore):
    """
    MongoDB implementation of the document store.
    
    Documents use string ids under _id; every returned document exposes
    the id as "id" like the other stores.
    """
    
    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        client: Optional[AsyncMongoClient] = None,
    ):
        self._settings = settings or get_settings().store
        self._client = client or AsyncMongoClient(self._settings.mongo_uri, tz_aware=False)
        self._codec_options = CodecOptions(type_registry=TypeRegistry([DecimalCodec()]))
        self._database = self._client.get_database(
            self._settings.database_name,
            codec_options=self._codec_options,
        )
    
    def _collection(self, name: str):
        return self._database.get_collection(name)
    
    async def connect(self) -> None:
        """
        Verify the server is reachable.
        
        Retried with exponential backoff before giving up.
        """
        attempts = self._settings.connect_retry_attempts
        
        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(ConnectionFailure),
            reraise=True,
        )
        async def ping() -> None:
            await self._client.admin.command("ping")
        
        try:
            await ping()
        except ConnectionFailure as e:
            raise StoreConnectionError(f"Failed to connect to MongoDB: {e}")
    
    async def close(self) -> None:
        await self._client.close()
    
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            document = await self._collection(collection).find_one({"_id": doc_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to get {collection}/{doc_id}: {e}")
        return _from_mongo(document)
    
    async def find(
        self,
        collection: str,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        try:
            cursor = self._collection(collection).find(filters or {})
            documents = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise StorageError(f"Failed to query {collection}: {e}")
        return [_from_mongo(document) for document in documents]
    
    async def insert(
        self,
        collection: str,
        data: dict,
        doc_id: Optional[str] = None,
    ) -> dict:
        now = utc_now()
        document = _to_mongo(data)
        document["_id"] = doc_id or uuid4().hex
        document["createdAt"] = now
        document["updatedAt"] = now
        try:
            await self._collection(collection).insert_one(document)
        except PyMongoError as e:
            raise StorageError(f"Failed to insert into {collection}: {e}")
        return _from_mongo(document)
    
    async def upsert(self, collection: str, doc_id: str, data: dict) -> dict:
        now = utc_now()
        fields = _to_mongo(data)
        fields.pop("createdAt", None)
        fields["updatedAt"] = now
        try:
            document = await self._collection(collection).find_one_and_update(
                {"_id": doc_id},
                {"$set": fields, "$setOnInsert": {"createdAt": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to upsert {collection}/{doc_id}: {e}")
        return _from_mongo(document)
    
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        expected: Optional[dict] = None,
    ) -> dict:
        changes = _to_mongo(fields)
        changes.pop("createdAt", None)
        changes["updatedAt"] = utc_now()
        query = {**_to_mongo(expected or {}), "_id": doc_id}
        try:
            document = await self._collection(collection).find_one_and_update(
                query,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            if document is None and expected:
                if await self._collection(collection).count_documents({"_id": doc_id}, limit=1):
                    raise WriteConflictError(collection, doc_id)
        except PyMongoError as e:
            raise StorageError(f"Failed to update {collection}/{doc_id}: {e}")
        if document is None:
            raise DocumentNotFoundError(collection, doc_id)
        return _from_mongo(document)
    
    async def _apply(self, collection: str, doc_id: str, operation: dict) -> None:
        operation.setdefault("$set", {})["updatedAt"] = utc_now()
        try:
            result = await self._collection(collection).update_one({"_id": doc_id}, operation)
        except PyMongoError as e:
            raise StorageError(f"Failed to update {collection}/{doc_id}: {e}")
        if result.matched_count == 0:
            raise DocumentNotFoundError(collection, doc_id)
    
    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        await self._apply(collection, doc_id, {"$inc": {field: Decimal(delta)}})
    
    async def add_to_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        await self._apply(collection, doc_id, {"$addToSet": {field: value}})
    
    async def remove_from_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        await self._apply(collection, doc_id, {"$pull": {field: value}})
    
    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            result = await self._collection(collection).delete_one({"_id": doc_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to delete {collection}/{doc_id}: {e}")
        return result.deleted_count == 1
    
    def watch(
        self,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> ChangeWatch:
        return _MongoWatch(self, collection, filters, on_snapshot, on_error).start()


class _MongoWatch(ChangeWatch):
    """
    Live query backed by a change stream.
    
    The stream is opened before the initial read so no change can slip
    between the first snapshot and the first event. Delete events carry
    no document, so every event triggers a re-query. Results equal to the
    last delivered set are dropped by ChangeWatch, so writes by other users
    do not reach this subscriber.
    """
    
    def __init__(
        self,
        store: MongoDocumentStore,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ):
        super().__init__(collection, filters, on_snapshot, on_error)
        self._store = store
    
    async def _pump(self) -> None:
        mongo_collection = self._store._collection(self.collection)
        async with await mongo_collection.watch() as stream:
            await self._deliver(await self._store.find(self.collection, self.filters))
            async for _change in stream:
                await self._deliver(await self._store.find(self.collection, self.filters))
