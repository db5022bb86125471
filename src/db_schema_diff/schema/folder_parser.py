"""Folder-of-scripts schema source.

Walks a directory tree, reads every ``.sql`` file, and detects the object
each file defines through an ordered pattern table, falling back to
filename conventions (``usp_``, ``fn_``, ``vw_``, ...).

Folder definitions are the trimmed file text verbatim -- they are not
reconstructed the way database-extracted tables are.

Usage:
    from db_schema_diff.schema.folder_parser import parse_folder

    objects = parse_folder("./database/scripts")
    for obj in objects:
        print(obj.type, obj.qualified_name)
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from db_schema_diff.errors import FolderNotFoundError
from db_schema_diff.schema.models import SchemaObject, SchemaObjectType

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "dbo"

_LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)

# Optional [schema]. prefix followed by the mandatory [name]
_QUALIFIED_NAME = r"(?:\[?(\w+)\]?\.)?\[?(\w+)\]?"


@dataclass(frozen=True)
class ObjectPattern:
    """One row of the structural detection table."""

    regex: re.Pattern[str]
    object_type: SchemaObjectType


def _pattern(prefix: str, object_type: SchemaObjectType) -> ObjectPattern:
    return ObjectPattern(
        re.compile(prefix + r"\s+" + _QUALIFIED_NAME, re.IGNORECASE),
        object_type,
    )


# Tried top-to-bottom; first match wins
OBJECT_PATTERNS: list[ObjectPattern] = [
    _pattern(r"CREATE\s+(?:OR\s+ALTER\s+)?PROCEDURE", SchemaObjectType.STORED_PROCEDURE),
    _pattern(r"CREATE\s+(?:OR\s+ALTER\s+)?PROC", SchemaObjectType.STORED_PROCEDURE),
    _pattern(r"CREATE\s+(?:OR\s+ALTER\s+)?FUNCTION", SchemaObjectType.FUNCTION),
    _pattern(r"CREATE\s+(?:OR\s+ALTER\s+)?VIEW", SchemaObjectType.VIEW),
    _pattern(r"CREATE\s+(?:OR\s+ALTER\s+)?TRIGGER", SchemaObjectType.TRIGGER),
    _pattern(r"CREATE\s+TABLE", SchemaObjectType.TABLE),
    _pattern(r"ALTER\s+TABLE", SchemaObjectType.TABLE),
]

# (prefixes, substrings, type) checked in order against the lowercased file stem
FILENAME_HINTS: list[tuple[tuple[str, ...], tuple[str, ...], SchemaObjectType]] = [
    (("sp_", "usp_"), ("_sp",), SchemaObjectType.STORED_PROCEDURE),
    (("fn_", "ufn_"), ("_fn",), SchemaObjectType.FUNCTION),
    (("vw_", "v_"), ("_vw",), SchemaObjectType.VIEW),
    (("tr_",), ("_tr",), SchemaObjectType.TRIGGER),
    (("tbl_",), ("_tbl",), SchemaObjectType.TABLE),
]


def strip_comments(sql: str) -> str:
    """Remove ``--`` line comments and ``/* */`` block comments."""
    return _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", sql))


def infer_type_from_filename(stem: str) -> SchemaObjectType | None:
    """Guess an object type from naming conventions.

    Example:
        >>> infer_type_from_filename("usp_GetUser")
        <SchemaObjectType.STORED_PROCEDURE: 'StoredProcedure'>
        >>> infer_type_from_filename("readme") is None
        True
    """
    lower = stem.lower()
    for prefixes, substrings, object_type in FILENAME_HINTS:
        if lower.startswith(prefixes) or any(s in lower for s in substrings):
            return object_type
    return None


def detect_object(content: str, stem: str) -> tuple[str, str, SchemaObjectType] | None:
    """Detect ``(name, schema, type)`` for one script.

    Structural patterns are tried first on the comment-stripped text; the
    filename heuristics are the fallback.

    Returns:
        Tuple of (name, schema, type), or None if the file is unrecognized.
    """
    text = strip_comments(content)

    for pattern in OBJECT_PATTERNS:
        match = pattern.regex.search(text)
        if match:
            schema = match.group(1) or DEFAULT_SCHEMA
            name = match.group(2) or stem
            return name, schema, pattern.object_type

    object_type = infer_type_from_filename(stem)
    if object_type is not None:
        return stem, DEFAULT_SCHEMA, object_type

    return None


def parse_file(path: Path) -> SchemaObject | None:
    """Parse one ``.sql`` file into a SchemaObject, or None if unrecognized."""
    content = path.read_text(encoding="utf-8-sig", errors="replace")
    detected = detect_object(content, path.stem)
    if detected is None:
        logger.debug("Skipping unrecognized script: %s", path)
        return None

    name, schema, object_type = detected
    return SchemaObject(
        name=name,
        schema=schema,
        type=object_type,
        definition=content.strip(),
    )


def _iter_sql_files(directory: Path):
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            yield from _iter_sql_files(entry)
        elif entry.is_file() and entry.name.lower().endswith(".sql"):
            yield entry


def parse_folder(folder_path: str | Path) -> list[SchemaObject]:
    """Parse every ``.sql`` file under a folder into schema objects.

    Args:
        folder_path: Root directory to walk recursively.

    Returns:
        List of SchemaObject, one per recognized file, in traversal order.

    Raises:
        FolderNotFoundError: If ``folder_path`` does not exist or is not a
            directory.

    Example:
        objects = parse_folder("./sql")
        # [SchemaObject(name='usp_GetUser', schema='dbo', type=..., ...)]
    """
    root = Path(folder_path)
    if not root.exists():
        raise FolderNotFoundError(f"Folder does not exist: {root}")
    if not root.is_dir():
        raise FolderNotFoundError(f"Not a folder: {root}")

    objects: list[SchemaObject] = []
    seen: dict[tuple[str, SchemaObjectType], Path] = {}

    for path in _iter_sql_files(root):
        obj = parse_file(path)
        if obj is None:
            continue

        identity = (obj.key, obj.type)
        if identity in seen:
            logger.warning(
                "Duplicate %s %s in %s (already defined in %s) -- ignoring",
                obj.type.value,
                obj.qualified_name,
                path,
                seen[identity],
            )
            continue
        seen[identity] = path
        objects.append(obj)

    logger.info("Parsed %d object(s) from %s", len(objects), root)
    return objects
