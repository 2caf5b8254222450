"""
Filename Parser.

Extracts EAN, SKU and tag from an uploaded asset's filename:

    EAN<digits>_SKU<alnum>_<tag...>.<ext>

Tokens are ``_``-separated and the ``EAN``/``SKU`` prefixes are
case-sensitive. The extension is lower-cased and resolved to a format
descriptor through a registry of format handlers, so new media formats
are registrations, not parser branches.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Optional

from internal.domain.errors import DomainValidationError
from internal.domain.media import MediaFormat, MediaKind, ParsedFileKey
from pkg.logger.logger import get_logger


logger = get_logger(__name__)


EAN_TOKEN = re.compile(r"EAN(\d+)")
SKU_TOKEN = re.compile(r"SKU([A-Za-z0-9]+)")
TOKEN_SEPARATOR = "_"


class FormatHandler(ABC):
    """
    Abstract base class for media format handlers.

    A handler claims one or more extensions and describes them.
    """

    @property
    @abstractmethod
    def extensions(self) -> tuple[str, ...]:
        """Lower-cased extensions (without dot) this handler claims."""
        pass

    @abstractmethod
    def describe(self, extension: str) -> MediaFormat:
        """
        Build the format descriptor for an extension.

        Args:
            extension: Lower-cased extension claimed by this handler.

        Returns:
            Format descriptor.
        """
        pass


class StaticFormatHandler(FormatHandler):
    """Handler mapping a set of extensions to one kind and per-extension MIME types."""

    def __init__(self, kind: MediaKind, mime_types: dict[str, str]) -> None:
        """
        Initialize the handler.

        Args:
            kind: Media family of every claimed extension.
            mime_types: Extension to MIME type.
        """
        self._kind = kind
        self._mime_types = {ext.lower(): mime for ext, mime in mime_types.items()}

    @property
    def extensions(self) -> tuple[str, ...]:
        return tuple(self._mime_types)

    def describe(self, extension: str) -> MediaFormat:
        return MediaFormat(
            extension=extension,
            kind=self._kind,
            mime_type=self._mime_types[extension],
        )


def default_format_handlers() -> list[FormatHandler]:
    """Handlers registered by default."""
    return [
        StaticFormatHandler(
            MediaKind.IMAGE,
            {
                "jpg": "image/jpeg",
                "jpeg": "image/jpeg",
                "png": "image/png",
                "webp": "image/webp",
                "gif": "image/gif",
                "tif": "image/tiff",
                "tiff": "image/tiff",
            },
        ),
        StaticFormatHandler(MediaKind.DOCUMENT, {"pdf": "application/pdf"}),
        StaticFormatHandler(MediaKind.VIDEO, {"mp4": "video/mp4", "mov": "video/quicktime"}),
        StaticFormatHandler(MediaKind.MODEL, {"glb": "model/gltf-binary"}),
    ]


class MediaFormatRegistry:
    """Registry of extension to format handler."""

    def __init__(self, handlers: Optional[Iterable[FormatHandler]] = None) -> None:
        """
        Initialize the registry.

        Args:
            handlers: Initial handlers; the default set when omitted.
        """
        self._handlers: dict[str, FormatHandler] = {}
        for handler in default_format_handlers() if handlers is None else handlers:
            self.register(handler)

    def register(self, handler: FormatHandler, replace: bool = False) -> None:
        """
        Register a handler for its extensions.

        Args:
            handler: Handler to register.
            replace: Allow taking over already-registered extensions.

        Raises:
            DomainValidationError: If an extension is taken and replace is False.
        """
        extensions = [ext.lower() for ext in handler.extensions]
        if not replace:
            taken = [ext for ext in extensions if ext in self._handlers]
            if taken:
                raise DomainValidationError(
                    f"Extensions already registered: {', '.join(taken)}"
                )
        for ext in extensions:
            self._handlers[ext] = handler
        logger.debug("Media format handler registered", extensions=extensions)

    def resolve(self, extension: str) -> MediaFormat:
        """
        Resolve an extension to a format descriptor.

        Unknown extensions get a generic descriptor rather than an error.
        """
        extension = extension.lower()
        handler = self._handlers.get(extension)
        if handler is None:
            return MediaFormat(extension=extension, kind=MediaKind.UNKNOWN)
        return handler.describe(extension)

    def is_registered(self, extension: str) -> bool:
        return extension.lower() in self._handlers

    @property
    def extensions(self) -> list[str]:
        return sorted(self._handlers)


@dataclass(frozen=True)
class ParsedFilename:
    """Parse result: identifiers plus the resolved format descriptor."""

    key: ParsedFileKey
    media_format: MediaFormat


class FilenameParser:
    """Parser for the ``EAN<digits>_SKU<alnum>_<tag>.<ext>`` naming contract."""

    def __init__(self, formats: Optional[MediaFormatRegistry] = None) -> None:
        """
        Initialize the parser.

        Args:
            formats: Format registry; the default registry when omitted.
        """
        self._formats = formats or MediaFormatRegistry()

    @property
    def formats(self) -> MediaFormatRegistry:
        return self._formats

    def parse(self, filename: str) -> ParsedFilename:
        """
        Parse a filename.

        Missing EAN or SKU tokens are not errors; the fields stay empty and
        the link policy decides what that means.

        Args:
            filename: Uploaded filename, optionally with directories.

        Returns:
            ParsedFilename with the key and the format descriptor.
        """
        name = PurePosixPath(filename.replace("\\", "/")).name
        stem, dot, extension = name.rpartition(".")
        if not dot or not stem:
            # No extension (or a dotfile such as ".jpg")
            stem, extension = name, ""
        extension = extension.lower()

        eans: list[str] = []
        sku: Optional[str] = None
        tag_tokens: list[str] = []

        for token in stem.split(TOKEN_SEPARATOR):
            if not token:
                continue
            ean_match = EAN_TOKEN.fullmatch(token)
            if ean_match:
                if ean_match.group(1) not in eans:
                    eans.append(ean_match.group(1))
                continue
            sku_match = SKU_TOKEN.fullmatch(token)
            if sku_match and sku is None:
                sku = sku_match.group(1)
                continue
            tag_tokens.append(token)

        key = ParsedFileKey(
            ean=eans[0] if eans else None,
            sku=sku,
            tag=TOKEN_SEPARATOR.join(tag_tokens) or None,
            extension=extension,
            ean_candidates=tuple(eans),
        )
        return ParsedFilename(key=key, media_format=self._formats.resolve(extension))
