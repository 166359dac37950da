"""Document storage for clickmarket."""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, TypeVar

from .errors import ConflictError, InvalidSchemaVersionError, NotFoundError, ValidationError
from .models import Delivery, DeliveryZone, Invoice, Order, Payment, User
from .utils import parse_ts

SCHEMA_VERSION = 1

# Centralized storage constants
# Can be overridden via CLICKMARKET_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"
DATA_DIR = Path(os.environ.get("CLICKMARKET_DATA_DIR", _default_data_dir))

T = TypeVar("T")


class JsonFile:
    """A single JSON file guarded by an exclusive lock for read-modify-write."""

    def __init__(self, data_dir: Path, name: str):
        self.data_dir = data_dir
        self.path = data_dir / f"{name}.json"
        self._lock_path = data_dir / f".{name}.lock"
        self._name = name
        self._local = threading.local()

    def _ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def lock(self) -> Iterator[None]:
        """
        Acquire an exclusive lock on the file.

        Re-entrant within a thread, so an operation holding the lock may call
        store methods that lock again.
        """
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return

        self._ensure_dir()
        with open(self._lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            self._local.depth = 1
            try:
                yield
            finally:
                self._local.depth = 0
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _empty(self) -> dict[str, Any]:
        raise NotImplementedError

    def load_data(self) -> dict[str, Any]:
        """
        Load the file contents.

        Raises:
            InvalidSchemaVersionError: If schema version is unsupported.
        """
        if not self.path.exists():
            return self._empty()

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)
        return data

    def save_data(self, data: dict[str, Any]) -> None:
        """
        Save the file atomically.

        Uses write-to-temp-then-rename for atomicity.
        """
        self._ensure_dir()

        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{self._name}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


@dataclass
class Page(Generic[T]):
    """One page of a filtered, sorted listing."""

    items: list[T]
    total: int
    page: int
    limit: int | None


class DocumentStore(JsonFile, Generic[T]):
    """
    A collection of documents of one model type.

    Unique fields are sparse: documents where the field is None are not
    checked.
    """

    def __init__(
        self,
        data_dir: Path,
        collection: str,
        entity: str,
        from_dict: Callable[[dict[str, Any]], T],
        unique_fields: tuple[str, ...] = (),
    ):
        super().__init__(data_dir, collection)
        self.collection = collection
        self.entity = entity
        self._from_dict = from_dict
        self.unique_fields = unique_fields

    def _empty(self) -> dict[str, Any]:
        return {"schema_version": SCHEMA_VERSION, "documents": []}

    def _check_unique(self, documents: list[dict[str, Any]], doc: dict[str, Any]) -> None:
        for field_name in self.unique_fields:
            value = doc.get(field_name)
            if value is None:
                continue
            for other in documents:
                if other["id"] != doc["id"] and other.get(field_name) == value:
                    raise ConflictError(self.entity, field_name, str(value))

    def insert(self, doc: T) -> T:
        """
        Add a new document.

        Raises:
            ConflictError: If the id or a unique field is already taken.
        """
        data_doc = doc.to_dict()
        with self.lock():
            data = self.load_data()
            documents = data["documents"]
            if any(d["id"] == data_doc["id"] for d in documents):
                raise ConflictError(self.entity, "id", data_doc["id"])
            self._check_unique(documents, data_doc)
            documents.append(data_doc)
            self.save_data(data)
        return doc

    def update(self, doc: T) -> T:
        """
        Replace an existing document.

        Raises:
            NotFoundError: If the document doesn't exist.
            ConflictError: If a unique field collides with another document.
        """
        data_doc = doc.to_dict()
        with self.lock():
            data = self.load_data()
            documents = data["documents"]
            for i, existing in enumerate(documents):
                if existing["id"] == data_doc["id"]:
                    self._check_unique(documents, data_doc)
                    documents[i] = data_doc
                    self.save_data(data)
                    return doc
        raise NotFoundError(self.entity, data_doc["id"])

    def get(self, doc_id: str) -> T:
        """
        Get a document by ID.

        Raises:
            NotFoundError: If the document doesn't exist.
        """
        for d in self.load_data()["documents"]:
            if d["id"] == doc_id:
                return self._from_dict(d)
        raise NotFoundError(self.entity, doc_id)

    def find_one(self, field_name: str, value: Any) -> T | None:
        """Return the first document whose field equals value, or None."""
        for d in self.load_data()["documents"]:
            if d.get(field_name) == value:
                return self._from_dict(d)
        return None

    def exists(self, field_name: str, value: Any) -> bool:
        return any(d.get(field_name) == value for d in self.load_data()["documents"])

    def all(self) -> list[T]:
        return [self._from_dict(d) for d in self.load_data()["documents"]]

    def list(
        self,
        status: str | None = None,
        customer_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        sort: str = "-created_at",
        page: int = 1,
        limit: int | None = None,
        **filters: Any,
    ) -> Page[T]:
        """
        List documents with filtering, sorting and pagination.

        Args:
            status: Keep only documents with this status.
            customer_id: Keep only documents of this customer.
            date_from: Inclusive lower bound on created_at.
            date_to: Exclusive upper bound on created_at.
            sort: Attribute name to sort on, '-' prefix for descending.
            page: 1-based page number.
            limit: Page size (None returns everything from the first page).
            **filters: Additional exact-match filters on document fields.
        """
        if page < 1:
            raise ValidationError("page", "must be >= 1")
        if limit is not None and limit < 1:
            raise ValidationError("limit", "must be >= 1")

        docs = self.load_data()["documents"]
        if status is not None:
            docs = [d for d in docs if d.get("status") == status]
        if customer_id is not None:
            docs = [d for d in docs if d.get("customer_id") == customer_id]
        for key, value in filters.items():
            if value is not None:
                docs = [d for d in docs if d.get(key) == value]
        if date_from is not None or date_to is not None:
            lower = parse_ts(date_from)
            upper = parse_ts(date_to)
            kept = []
            for d in docs:
                created = parse_ts(d.get("created_at"))
                if created is None:
                    continue
                if lower is not None and created < lower:
                    continue
                if upper is not None and created >= upper:
                    continue
                kept.append(d)
            docs = kept

        items = [self._from_dict(d) for d in docs]

        descending = sort.startswith("-")
        sort_field = sort.lstrip("-+")
        if items and not hasattr(items[0], sort_field):
            raise ValidationError("sort", f"unknown field '{sort_field}'")
        # None sorts last in both directions
        present = [i for i in items if getattr(i, sort_field) is not None]
        missing = [i for i in items if getattr(i, sort_field) is None]
        present.sort(key=lambda i: getattr(i, sort_field), reverse=descending)
        items = present + missing

        total = len(items)
        if limit is not None:
            start = (page - 1) * limit
            items = items[start:start + limit]
        elif page > 1:
            items = []

        return Page(items=items, total=total, page=page, limit=limit)


class CounterStore(JsonFile):
    """Named integer counters with an atomic increment."""

    def __init__(self, data_dir: Path):
        super().__init__(data_dir, "counters")

    def _empty(self) -> dict[str, Any]:
        return {"schema_version": SCHEMA_VERSION, "counters": {}}

    def increment(self, key: str) -> int:
        """Atomically add one to a counter and return the new value."""
        with self.lock():
            data = self.load_data()
            value = data["counters"].get(key, 0) + 1
            data["counters"][key] = value
            self.save_data(data)
        return value

    def current(self, key: str) -> int:
        return self.load_data()["counters"].get(key, 0)


class Database:
    """All collections under one data directory."""

    def __init__(self, data_dir: Path | None = None):
        """
        Initialize Database.

        Args:
            data_dir: Override data directory (for testing).
        """
        self.data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
        self.orders: DocumentStore[Order] = DocumentStore(
            self.data_dir, "orders", "order", Order.from_dict
        )
        self.payments: DocumentStore[Payment] = DocumentStore(
            self.data_dir, "payments", "payment", Payment.from_dict,
            unique_fields=("transaction_reference",),
        )
        self.invoices: DocumentStore[Invoice] = DocumentStore(
            self.data_dir, "invoices", "invoice", Invoice.from_dict,
            unique_fields=("invoice_number",),
        )
        self.deliveries: DocumentStore[Delivery] = DocumentStore(
            self.data_dir, "deliveries", "delivery", Delivery.from_dict,
            unique_fields=("tracking_number",),
        )
        self.users: DocumentStore[User] = DocumentStore(
            self.data_dir, "users", "user", User.from_dict,
            unique_fields=("email",),
        )
        self.zones: DocumentStore[DeliveryZone] = DocumentStore(
            self.data_dir, "zones", "delivery zone", DeliveryZone.from_dict,
            unique_fields=("code",),
        )
        self.counters = CounterStore(self.data_dir)
