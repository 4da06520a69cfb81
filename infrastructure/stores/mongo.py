"""
MongoDB store adapter built on motor.

Maps the DocumentStore contract onto MongoDB:
- list_indexes     -> collection.list_indexes()
- create_index     -> collection.create_index([(field, direction), ...])
- drop_index       -> collection.drop_index([(field, direction), ...])
- index_stats      -> aggregate([{"$indexStats": {}}])
- field_metadata   -> declared schema, falling back to the collection's
                      $jsonSchema validator for field types

MongoDB's createIndexes is a no-op when an index with the same key and
options already exists, which satisfies the idempotent-create contract.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import OperationFailure, PyMongoError

from app.models.base import ExistingIndex, FieldMeta, IndexUsage
from core.exceptions import StoreCreateError, StoreDropError, StoreFetchError
from infrastructure.stores.base import DocumentStore

logger = logging.getLogger(__name__)

# MongoDB server error code for dropIndexes on a missing index
INDEX_NOT_FOUND = 27

# $jsonSchema bsonType -> declared field type
_BSON_TYPES = {
    "array": "array",
    "object": "object",
    "string": "string",
    "int": "number",
    "long": "number",
    "double": "number",
    "decimal": "number",
    "bool": "boolean",
    "date": "date",
    "objectId": "objectid",
}


class MongoStore(DocumentStore):
    """
    Motor-backed document store.

    Args:
        database: Motor database handle; connection setup is the caller's.
        schemas: Optional declared field metadata per collection, as
            FieldMeta or plain dicts (e.g. {"users": {"email": {"index": True}}}).
        use_validators: Derive field types from $jsonSchema validators for
            collections without declared metadata.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        schemas: Optional[Mapping[str, Mapping[str, Any]]] = None,
        use_validators: bool = True,
    ):
        self._db = database
        self._schemas: Dict[str, Dict[str, FieldMeta]] = {
            collection: {
                path: meta if isinstance(meta, FieldMeta) else FieldMeta(**meta)
                for path, meta in fields.items()
            }
            for collection, fields in (schemas or {}).items()
        }
        self._use_validators = use_validators

    async def list_collections(self) -> List[str]:
        try:
            names = await self._db.list_collection_names()
        except PyMongoError as e:
            raise StoreFetchError("Failed to list collections", details={"error": str(e)}) from e
        return sorted(name for name in names if not name.startswith("system."))

    async def list_indexes(self, collection: str) -> List[ExistingIndex]:
        try:
            raw = await self._db[collection].list_indexes().to_list(None)
        except PyMongoError as e:
            raise StoreFetchError(
                "Failed to list indexes",
                details={"collection": collection, "error": str(e)},
            ) from e
        return [ExistingIndex(name=index.get("name"), key=dict(index["key"])) for index in raw]

    async def create_index(self, collection: str, key: Mapping[str, int]) -> None:
        try:
            await self._db[collection].create_index(list(key.items()))
        except PyMongoError as e:
            raise StoreCreateError(
                "Failed to create index",
                details={"collection": collection, "key": dict(key), "error": str(e)},
            ) from e

    async def drop_index(self, collection: str, key: Mapping[str, int]) -> None:
        try:
            await self._db[collection].drop_index(list(key.items()))
        except OperationFailure as e:
            if e.code == INDEX_NOT_FOUND:
                logger.debug(f"Index {dict(key)} already absent on {collection}")
                return
            raise StoreDropError(
                "Failed to drop index",
                details={"collection": collection, "key": dict(key), "error": str(e)},
            ) from e
        except PyMongoError as e:
            raise StoreDropError(
                "Failed to drop index",
                details={"collection": collection, "key": dict(key), "error": str(e)},
            ) from e

    async def index_stats(self, collection: str) -> List[IndexUsage]:
        try:
            raw = await self._db[collection].aggregate([{"$indexStats": {}}]).to_list(None)
        except PyMongoError as e:
            raise StoreFetchError(
                "Failed to read index statistics",
                details={"collection": collection, "error": str(e)},
            ) from e

        usage = []
        for item in raw:
            accesses = item.get("accesses", {})
            usage.append(
                IndexUsage(
                    name=item.get("name"),
                    key=dict(item["key"]),
                    ops=int(accesses.get("ops", 0)),
                    since=accesses.get("since"),
                )
            )
        return usage

    async def field_metadata(self, collection: str) -> Dict[str, FieldMeta]:
        if collection in self._schemas:
            return dict(self._schemas[collection])
        if not self._use_validators:
            return {}

        try:
            infos = await self._db.list_collections(filter={"name": collection}).to_list(None)
        except PyMongoError as e:
            raise StoreFetchError(
                "Failed to read collection options",
                details={"collection": collection, "error": str(e)},
            ) from e

        if not infos:
            return {}
        schema = infos[0].get("options", {}).get("validator", {}).get("$jsonSchema", {})
        return schema_field_meta(schema)


def schema_field_meta(schema: Mapping[str, Any], prefix: str = "") -> Dict[str, FieldMeta]:
    """
    Flatten a $jsonSchema document into path -> FieldMeta.

    Nested object properties produce dotted paths; the object itself is
    reported too so container checks see it.
    """
    meta: Dict[str, FieldMeta] = {}
    for name, definition in schema.get("properties", {}).items():
        path = f"{prefix}{name}"
        bson_type = definition.get("bsonType") or definition.get("type")
        if isinstance(bson_type, list):
            # Nullable fields list ["string", "null"]; the first concrete type wins
            bson_type = next((t for t in bson_type if t != "null"), None)
        meta[path] = FieldMeta(type=_BSON_TYPES.get(bson_type, bson_type))
        if bson_type == "object" and "properties" in definition:
            meta.update(schema_field_meta(definition, prefix=f"{path}."))
    return meta
