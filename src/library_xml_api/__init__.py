"""Library XML API
===============

Persistence and validation layer for a library-management service whose
data lives in flat XML files instead of a database, plus a thin FastAPI
surface over it.

Key capabilities
----------------
- Typed collections (:class:`~library_xml_api.models.Books`, ``Members``,
  ``Borrowings``, ``Users``) mapped to and from one XML document each.
- Validation of every write against XSD schemas and Schematron business
  rules, with every error reported together; DTD validation on demand.
- A cached file store with sliding and absolute expiry, whole-file atomic
  rewrites and cache eviction on save.
- XSLT rendering to HTML and XPath queries over serialized collections.

Minimal quick start
-------------------
>>> from pathlib import Path
>>> from library_xml_api import Settings, build_service, init_data_dir
>>> init_data_dir(Path("Data"))
>>> library = build_service(Settings(data_dir=Path("Data")))
>>> library.list_books()
[]

FastAPI application instance (for ASGI servers like uvicorn):
>>> from library_xml_api.app import app  # noqa: F401

Public surface
--------------
Only a curated subset is exported at the package level; the modules can
be imported explicitly for everything else.
"""

__version__ = "0.3.0"

from typing import Optional

from .codec import XmlCodec
from .config import Settings, init_data_dir
from .errors import (
    ArgumentError,
    ConfigurationError,
    LibraryXMLError,
    MalformedDocumentError,
    QueryError,
    TransformError,
    ValidationError,
)
from .library import LibraryService
from .models import Book, Books, Borrowing, Borrowings, Member, Members, User, Users
from .registry import SchemaRegistry
from .store import CachedFileStore
from .transform import TransformEngine
from .validation import XmlValidator


def build_service(settings: Optional[Settings] = None) -> LibraryService:
    """Wire registry, validator, store and transform engine for one data root."""
    settings = settings or Settings.from_env()
    validator = XmlValidator(SchemaRegistry(settings))
    store = CachedFileStore(settings)
    return LibraryService(store, validator, TransformEngine(settings, validator), settings)


__all__ = [
    "ArgumentError",
    "Book",
    "Books",
    "Borrowing",
    "Borrowings",
    "CachedFileStore",
    "ConfigurationError",
    "LibraryService",
    "LibraryXMLError",
    "MalformedDocumentError",
    "Member",
    "Members",
    "QueryError",
    "SchemaRegistry",
    "Settings",
    "TransformEngine",
    "TransformError",
    "User",
    "Users",
    "ValidationError",
    "XmlCodec",
    "XmlValidator",
    "build_service",
    "init_data_dir",
]
