from __future__ import annotations

from typing import Iterable

from bucket_manager.models import DEFAULT_DELIMITER, Entry, EntryKind, ListingPage


def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if prefix and value.startswith(prefix) else value


def project(prefix: str, pages: ListingPage | Iterable[ListingPage], delimiter: str = DEFAULT_DELIMITER) -> list[Entry]:
    """
    Immediate children of `prefix` as folder and file entries.

    Common prefixes become folders named by the segment between `prefix` and the
    delimiter. Keys become files named by the rest of the key after `prefix`. A key equal
    to `prefix` is the folder's own marker object and is skipped, as is any key whose
    remainder ends with the delimiter. Entries are deduplicated by id across pages and
    sorted folders first, then by name.
    """
    if isinstance(pages, ListingPage):
        pages = [pages]

    by_id: dict[str, Entry] = {}
    for page in pages:
        for cp in page.common_prefixes:
            name = _strip_prefix(cp, prefix)
            if name.endswith(delimiter):
                name = name[: -len(delimiter)]
            if name and cp not in by_id:
                by_id[cp] = Entry(id=cp, name=name, kind=EntryKind.FOLDER, last_modified=page.fetched_at)

        for obj in page.objects:
            if obj.key == prefix:
                continue
            name = _strip_prefix(obj.key, prefix)
            if not name or name.endswith(delimiter) or obj.key in by_id:
                continue
            by_id[obj.key] = Entry(
                id=obj.key,
                name=name,
                kind=EntryKind.FILE,
                size=max(0, int(obj.size or 0)),
                last_modified=obj.last_modified or page.fetched_at,
            )

    return sorted(by_id.values(), key=lambda e: (0 if e.is_folder else 1, e.name))


def filter_entries(entries: Iterable[Entry], search: str | None) -> list[Entry]:
    needle = (search or "").strip().lower()
    if not needle:
        return list(entries)
    return [e for e in entries if needle in e.name.lower()]
