from __future__ import annotations

from bucket_manager.models import DEFAULT_DELIMITER, Path

ROOT: Path = ()


def descend(path: Path, folder_name: str) -> Path:
    return (*path, folder_name)


def ascend(path: Path) -> Path:
    return path[:-1] if path else ROOT


def to_prefix(path: Path, delimiter: str = DEFAULT_DELIMITER) -> str:
    if not path:
        return ""
    return delimiter.join(path) + delimiter


def from_prefix(prefix: str, delimiter: str = DEFAULT_DELIMITER) -> Path:
    return tuple(seg for seg in (prefix or "").split(delimiter) if seg)


def breadcrumbs(path: Path, root_label: str = "root") -> list[tuple[str, Path]]:
    """(label, path) pairs from the root down to `path`, for a breadcrumb trail."""
    crumbs: list[tuple[str, Path]] = [(root_label, ROOT)]
    for i, segment in enumerate(path):
        crumbs.append((segment, path[: i + 1]))
    return crumbs
