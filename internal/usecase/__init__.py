"""
Use case package for the MDM core.

Contains the typology registry, schema validation, product and media
use cases and the cross-domain orchestrator.
"""
from .create_article import CreateArticleUseCase
from .create_product import (
    CreateProductUseCase,
    CreateProductInput,
    CreateProductOutput,
)
from .filename_parser import (
    FilenameParser,
    FormatHandler,
    MediaFormatRegistry,
    ParsedFilename,
    StaticFormatHandler,
)
from .ingest_media import IngestMediaUseCase
from .link_resolver import LinkResolver
from .mdm_orchestrator import MdmOrchestrator, PendingSweeper
from .mdm_service import MdmService
from .schema_validator import SchemaValidator, ValidationResult
from .typology_registry import TypologyRegistry
from .update_product import UpdateProductInput, UpdateProductUseCase

__all__ = [
    "CreateArticleUseCase",
    "CreateProductUseCase",
    "CreateProductInput",
    "CreateProductOutput",
    "FilenameParser",
    "FormatHandler",
    "MediaFormatRegistry",
    "ParsedFilename",
    "StaticFormatHandler",
    "IngestMediaUseCase",
    "LinkResolver",
    "MdmOrchestrator",
    "PendingSweeper",
    "MdmService",
    "SchemaValidator",
    "ValidationResult",
    "TypologyRegistry",
    "UpdateProductInput",
    "UpdateProductUseCase",
]
