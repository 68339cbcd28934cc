"""
Parse index files into package-version records.

An index file describes one package; every non-blank line is an
independent JSON document for one published version. Later lines are
newer publishes (or yank flips) and must win when upserted, so order is
preserved.
"""

import json
from pathlib import Path
from typing import List, Optional
from pydantic import ValidationError

from schemas.index_entry import PackageVersionCreate
from core.exceptions import MalformedEntryError


def parse(file_contents: bytes, package_name: Optional[str] = None) -> List[PackageVersionCreate]:
    """
    Parse the raw bytes of one index file.

    Args:
        file_contents: Raw file bytes
        package_name: Package the file belongs to (its file name). When
            given, every entry must name the same package (case-insensitive).

    Returns:
        Records in file order

    Raises:
        MalformedEntryError: On the first line that fails to deserialize
    """
    records: List[PackageVersionCreate] = []
    known_name = package_name

    for line_number, raw_line in enumerate(file_contents.splitlines(), start=1):
        if not raw_line.strip():
            continue

        try:
            record = PackageVersionCreate.model_validate_json(raw_line)
        except (ValidationError, ValueError) as e:
            raise MalformedEntryError(
                f"Malformed index entry at line {line_number}",
                line_number=line_number,
                package_name=known_name or _name_hint(raw_line),
                original_exception=e
            )

        if package_name is not None and record.name.lower() != package_name.lower():
            raise MalformedEntryError(
                f"Entry names package '{record.name}' in the index file of '{package_name}'",
                line_number=line_number,
                package_name=package_name,
                context={"entry_name": record.name}
            )

        records.append(record)
        if known_name is None:
            known_name = record.name

    return records


def _name_hint(raw_line: bytes) -> Optional[str]:
    """Best-effort package name from a line that failed validation"""
    try:
        name = json.loads(raw_line).get("name")
    except (ValueError, AttributeError):
        return None
    return name if isinstance(name, str) else None


def parse_index_file(path: Path) -> List[PackageVersionCreate]:
    """Parse an index file from disk; the file name is the package name"""
    path = Path(path)
    return parse(path.read_bytes(), package_name=path.name)
