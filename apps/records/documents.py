"""
Document store backends.

The gateway only needs get/list/create/update/delete by key plus equality
queries, so any storage that offers those primitives can back it. Record
ids (data['id']) are chosen by tenants and may repeat across tenants; the
storage `key` is the only globally unique identity.
"""
import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from apps.core.exceptions import store_errors
from apps.core.validators import InputValidator
from apps.records.models import Record

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_STORE = 'apps.records.documents.ModelDocumentStore'

# Fields copied out of the document into indexed columns
INDEXED_FIELDS = {'id': 'record_id', 'tenant_id': 'tenant_id', 'company_id': 'company_id'}


@dataclass(frozen=True)
class Document:
    """A stored document and its storage key."""

    key: str
    collection: str
    data: Dict = field(default_factory=dict)

    @property
    def record_id(self):
        return InputValidator.normalize_id(self.data.get('id'))

    @property
    def tenant_id(self):
        return InputValidator.normalize_id(self.data.get('tenant_id'))

    @property
    def company_id(self):
        return InputValidator.normalize_id(self.data.get('company_id'))


class DocumentStore(ABC):
    """Interface of a document store."""

    @abstractmethod
    def get(self, collection: str, key: str) -> Optional[Document]:
        """Fetch one document by storage key (None when missing)."""

    @abstractmethod
    def list(self, collection: str) -> List[Document]:
        """Every document of a collection."""

    @abstractmethod
    def create(self, collection: str, data: Dict) -> Document:
        """Store a new document and return it with its key."""

    @abstractmethod
    def update(self, collection: str, key: str, changes: Dict) -> Optional[Document]:
        """Merge changes into a document (None when missing)."""

    @abstractmethod
    def delete(self, collection: str, key: str) -> bool:
        """Remove a document; returns whether it existed."""

    @abstractmethod
    def query(self, collection: str, **equals) -> List[Document]:
        """Documents whose fields equal every given value."""


class MemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-process document store.

    Used by tests and isolation diagnostics. Documents are copied on the
    way in and out so callers can never mutate stored state in place.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict]] = {}
        self._lock = threading.RLock()

    def _document(self, collection, key, data):
        return Document(key=key, collection=collection, data=copy.deepcopy(data))

    def get(self, collection, key):
        with self._lock:
            data = self._collections.get(collection, {}).get(key)
            return self._document(collection, key, data) if data is not None else None

    def list(self, collection):
        with self._lock:
            return [
                self._document(collection, key, data)
                for key, data in self._collections.get(collection, {}).items()
            ]

    def create(self, collection, data):
        key = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[key] = copy.deepcopy(data)
            return self._document(collection, key, data)

    def update(self, collection, key, changes):
        with self._lock:
            stored = self._collections.get(collection, {}).get(key)
            if stored is None:
                return None
            stored.update(copy.deepcopy(changes))
            return self._document(collection, key, stored)

    def delete(self, collection, key):
        with self._lock:
            return self._collections.get(collection, {}).pop(key, None) is not None

    def query(self, collection, **equals):
        with self._lock:
            return [
                document for document in self.list(collection)
                if all(_matches(document.data.get(name), value) for name, value in equals.items())
            ]


def _matches(stored, expected):
    """Equality that treats ids as strings (UUID objects vs. their text)."""
    if stored is None or expected is None:
        return stored is expected
    return str(stored) == str(expected)


class ModelDocumentStore(DocumentStore):
    """
    Document store backed by the Record model.

    Database connectivity errors surface as StoreUnavailable.
    """

    store_name = 'Document store'

    def _document(self, record: Record) -> Document:
        return Document(key=str(record.id), collection=record.collection, data=copy.deepcopy(record.data))

    def _columns(self, data):
        return {
            column: InputValidator.normalize_id(data.get(name))
            for name, column in INDEXED_FIELDS.items()
        }

    def _lookup(self, collection, key):
        key_uuid = InputValidator.parse_uuid(key)
        if key_uuid is None:
            return None
        return Record.objects.in_collection(collection).filter(id=key_uuid).first()

    def get(self, collection, key):
        with store_errors('get', store=self.store_name):
            record = self._lookup(collection, key)
            return self._document(record) if record else None

    def list(self, collection):
        with store_errors('list', store=self.store_name):
            return [self._document(record) for record in Record.objects.in_collection(collection)]

    def create(self, collection, data):
        with store_errors('create', store=self.store_name):
            record = Record.objects.create(
                collection=collection,
                data=data,
                **self._columns(data)
            )
            return self._document(record)

    def update(self, collection, key, changes):
        with store_errors('update', store=self.store_name):
            record = self._lookup(collection, key)
            if record is None:
                return None
            record.data = {**record.data, **changes}
            for column, value in self._columns(record.data).items():
                setattr(record, column, value)
            record.save()
            return self._document(record)

    def delete(self, collection, key):
        with store_errors('delete', store=self.store_name):
            record = self._lookup(collection, key)
            if record is None:
                return False
            record.hard_delete()
            return True

    def query(self, collection, **equals):
        filters = {}
        for name, value in equals.items():
            column = INDEXED_FIELDS.get(name)
            if column:
                filters[column] = InputValidator.normalize_id(value)
            else:
                filters[f'data__{name}'] = value
        with store_errors('query', store=self.store_name):
            records = Record.objects.in_collection(collection).filter(**filters)
            return [self._document(record) for record in records]


def document_store_class():
    """
    Import the class named by settings.RECORDS_DOCUMENT_STORE.

    Raises:
        ImproperlyConfigured: If the path cannot be imported or is not a DocumentStore
    """
    path = getattr(settings, 'RECORDS_DOCUMENT_STORE', DEFAULT_DOCUMENT_STORE)
    try:
        store_class = import_string(path)
    except ImportError as e:
        raise ImproperlyConfigured(f"RECORDS_DOCUMENT_STORE '{path}' cannot be imported: {e}")
    if not (isinstance(store_class, type) and issubclass(store_class, DocumentStore)):
        raise ImproperlyConfigured(f"RECORDS_DOCUMENT_STORE '{path}' is not a DocumentStore")
    return store_class


def get_document_store() -> DocumentStore:
    """Instantiate the configured document store."""
    return document_store_class()()
