"""
Archive storage layout and archive URL construction.

Archives are sharded the same way the index shards package files:

    1/{name}                 one-character names
    2/{name}                 two-character names
    3/{n}/{name}             three-character names (first character)
    {na}/{me}/{name}         everything else (first two, next two)

Directory components use the lowercase name; the file keeps the
original spelling: ``{name}-{version}{extension}``.
"""

import json
from pathlib import Path
from typing import Optional

from core.exceptions import RepositoryCorruptError

# Markers understood in download URL templates
TEMPLATE_MARKERS = ("{crate}", "{name}", "{version}", "{prefix}", "{lowerprefix}", "{sha256-checksum}")
DEFAULT_TEMPLATE_SUFFIX = "/{crate}/{version}/download"


def shard_prefix(name: str) -> str:
    """Relative shard directory for a package (without the name itself)"""
    if not name:
        raise ValueError("Package name must not be empty")
    if len(name) == 1:
        return "1"
    if len(name) == 2:
        return "2"
    if len(name) == 3:
        return f"3/{name[0]}"
    return f"{name[0:2]}/{name[2:4]}"


def archive_path(root, name: str, version: str, extension: str = ".crate") -> Path:
    """Deterministic on-disk location of one archive"""
    lower = name.lower()
    return Path(root) / shard_prefix(lower) / lower / f"{name}-{version}{extension}"


def build_archive_url(template: str, name: str, version: str, checksum: Optional[str] = None) -> str:
    """
    Substitute a package version into a download URL template.

    A template without any marker is treated as a base URL and gets
    ``/{crate}/{version}/download`` appended.
    """
    if not any(marker in template for marker in TEMPLATE_MARKERS):
        template = template.rstrip("/") + DEFAULT_TEMPLATE_SUFFIX

    prefix = shard_prefix(name)
    return (
        template
        .replace("{crate}", name)
        .replace("{name}", name)
        .replace("{version}", version)
        .replace("{lowerprefix}", prefix.lower())
        .replace("{prefix}", prefix)
        .replace("{sha256-checksum}", checksum or "")
    )


def read_registry_template(mirror_path) -> str:
    """
    Download URL template from the index's ``config.json`` (``dl`` key).

    Raises:
        RepositoryCorruptError: config.json is missing, unreadable or has no ``dl``
    """
    config_path = Path(mirror_path) / "config.json"
    try:
        config = json.loads(config_path.read_text(encoding="utf-8"))
        template = config["dl"]
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise RepositoryCorruptError(
            "Index config.json has no usable download URL",
            context={"path": str(config_path)},
            original_exception=e
        )
    if not isinstance(template, str) or not template:
        raise RepositoryCorruptError(
            "Index config.json download URL is empty",
            context={"path": str(config_path)}
        )
    return template


def resolve_archive_url_template(configured: Optional[str], mirror_path) -> str:
    """Configured template wins; otherwise ask the index"""
    if configured:
        return configured
    return read_registry_template(mirror_path)
