"""
Document Store

Abstract document storage used by every entitlement component, plus the
Firestore implementation backed by the async client.

Atomicity is pushed down to the store:
- increment() uses the provider's native field increment
- compare_and_set() runs inside a transaction
- create() fails instead of overwriting an existing document
- transact() wraps a read-modify-write in a transaction
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional

from utils.logger import logger


class StoreUnavailableError(Exception):
    """Raised when the backing document store cannot be reached"""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Document store unavailable during {operation}: {cause}")


class DocumentStore(ABC):
    """Minimal document store interface"""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document data, or None if it does not exist."""
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Update fields of an existing document."""
        pass

    @abstractmethod
    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        """Create a document. Returns False if it already exists."""
        pass

    @abstractmethod
    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Return all documents whose field equals value."""
        pass

    @abstractmethod
    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        amount: int = 1,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Atomically add amount to a numeric field, creating the document if needed."""
        pass

    @abstractmethod
    async def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        updates: Dict[str, Any],
    ) -> bool:
        """
        Apply updates only if the document's field still equals expected.

        Returns True if the updates were applied.
        """
        pass

    @abstractmethod
    async def array_union(self, collection: str, doc_id: str, field: str, values: Iterable[Any]) -> None:
        """Add values to an array field without duplicates, creating the document if needed."""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def transact(
        self,
        collection: str,
        doc_id: str,
        update_fn: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        """
        Read-modify-write one document atomically.

        update_fn receives the current data (None if missing) and returns
        the full replacement document, or None to leave it untouched. It
        may run more than once when the provider retries on contention,
        so it must not have side effects.

        Returns the document as it stands after the transaction.
        """
        pass


@contextmanager
def _translate_errors(operation: str):
    from google.api_core import exceptions as gcp_exceptions

    try:
        yield
    except (gcp_exceptions.ServiceUnavailable, gcp_exceptions.DeadlineExceeded,
            gcp_exceptions.RetryError, gcp_exceptions.InternalServerError) as e:
        logger.error(f"Firestore {operation} failed: {e}")
        raise StoreUnavailableError(operation, e) from e


class FirestoreDocumentStore(DocumentStore):
    """DocumentStore backed by the Firestore async client"""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from firebase_admin import firestore_async
            from entitlements.firebase_app import get_firebase_app

            self._client = firestore_async.client(get_firebase_app())
        return self._client

    def _ref(self, collection: str, doc_id: str):
        return self.client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with _translate_errors(f"get {collection}/{doc_id}"):
            snapshot = await self._ref(collection, doc_id).get()
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        with _translate_errors(f"set {collection}/{doc_id}"):
            await self._ref(collection, doc_id).set(data, merge=merge)

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        with _translate_errors(f"update {collection}/{doc_id}"):
            await self._ref(collection, doc_id).update(data)

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        from google.api_core import exceptions as gcp_exceptions

        try:
            with _translate_errors(f"create {collection}/{doc_id}"):
                await self._ref(collection, doc_id).create(data)
        except gcp_exceptions.AlreadyExists:
            return False
        return True

    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        from firebase_admin import firestore

        results = []
        with _translate_errors(f"query {collection}.{field}"):
            query = self.client.collection(collection).where(
                filter=firestore.FieldFilter(field, "==", value)
            )
            async for snapshot in query.stream():
                results.append(snapshot.to_dict())
        return results

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        amount: int = 1,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        from firebase_admin import firestore

        data = dict(extra or {})
        data[field] = firestore.Increment(amount)
        with _translate_errors(f"increment {collection}/{doc_id}"):
            await self._ref(collection, doc_id).set(data, merge=True)

    async def compare_and_set(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        updates: Dict[str, Any],
    ) -> bool:
        from firebase_admin import firestore

        ref = self._ref(collection, doc_id)

        @firestore.async_transactional
        async def _apply(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            if (snapshot.to_dict() or {}).get(field) != expected:
                return False
            transaction.update(ref, updates)
            return True

        with _translate_errors(f"compare_and_set {collection}/{doc_id}"):
            return await _apply(self.client.transaction())

    async def array_union(self, collection: str, doc_id: str, field: str, values: Iterable[Any]) -> None:
        from firebase_admin import firestore

        with _translate_errors(f"array_union {collection}/{doc_id}"):
            await self._ref(collection, doc_id).set(
                {field: firestore.ArrayUnion(list(values))}, merge=True
            )

    async def delete(self, collection: str, doc_id: str) -> None:
        with _translate_errors(f"delete {collection}/{doc_id}"):
            await self._ref(collection, doc_id).delete()

    async def transact(
        self,
        collection: str,
        doc_id: str,
        update_fn: Callable[[Optional[Dict[str, Any]]], Optional[Dict[str, Any]]],
    ) -> Optional[Dict[str, Any]]:
        from firebase_admin import firestore

        ref = self._ref(collection, doc_id)

        @firestore.async_transactional
        async def _apply(transaction) -> Optional[Dict[str, Any]]:
            snapshot = await ref.get(transaction=transaction)
            current = snapshot.to_dict() if snapshot.exists else None
            updated = update_fn(current)
            if updated is None:
                return current
            transaction.set(ref, updated)
            return updated

        with _translate_errors(f"transact {collection}/{doc_id}"):
            return await _apply(self.client.transaction())


_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Get the process-wide document store"""
    global _store
    if _store is None:
        _store = FirestoreDocumentStore()
    return _store
