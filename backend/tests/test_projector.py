from __future__ import annotations

import datetime as dt

from bucket_manager.models import EntryKind, ListingPage, ObjectRecord
from bucket_manager.services import navigator
from bucket_manager.services.projector import filter_entries, project

T0 = dt.datetime(2024, 1, 15, 12, 0, tzinfo=dt.timezone.utc)


def _page(prefix, prefixes=(), keys=(), token=None):
    return ListingPage(
        prefix=prefix,
        common_prefixes=tuple(prefixes),
        objects=tuple(ObjectRecord(key=k, size=s, last_modified=T0) for k, s in keys),
        next_token=token,
        fetched_at=T0,
    )


def test_docs_listing_yields_folder_then_file():
    entries = project("docs/", _page("docs/", ["docs/photos/"], [("docs/readme.txt", 120)]))
    assert [(e.name, e.kind, e.size) for e in entries] == [
        ("photos", EntryKind.FOLDER, None),
        ("readme.txt", EntryKind.FILE, 120),
    ]
    assert entries[0].id == "docs/photos/"
    assert entries[1].id == "docs/readme.txt"


def test_directory_marker_is_skipped():
    entries = project("docs/", _page("docs/", keys=[("docs/", 0), ("docs/a.txt", 3)]))
    assert [e.id for e in entries] == ["docs/a.txt"]
    assert all(e.id != "docs/" for e in entries)


def test_keys_ending_with_delimiter_are_not_files():
    entries = project("", _page("", keys=[("empty/", 0), ("top.bin", 9)]))
    assert [e.name for e in entries] == ["top.bin"]


def test_root_listing_uses_full_names():
    entries = project("", _page("", ["a/", "b/"], [("z.txt", 1), ("m.txt", 2)]))
    assert [e.name for e in entries] == ["a", "b", "m.txt", "z.txt"]


def test_only_leading_prefix_is_stripped():
    entries = project("x/", _page("x/", ["x/x/"], [("x/notes-x/.txt", 1), ("x/y-x/z", 4)]))
    names = {e.name for e in entries}
    assert "x" in names
    assert "y-x/z" in names


def test_pages_are_merged_and_deduplicated():
    p1 = _page("p/", ["p/a/"], [("p/1.txt", 1)], token="p/1.txt")
    p2 = _page("p/", ["p/a/", "p/b/"], [("p/1.txt", 1), ("p/2.txt", 2)])
    entries = project("p/", [p1, p2])
    assert [e.id for e in entries] == ["p/a/", "p/b/", "p/1.txt", "p/2.txt"]


def test_folders_carry_listing_time():
    (folder,) = project("", _page("", ["docs/"]))
    assert folder.last_modified == T0
    assert folder.size is None


def test_never_emits_prefix_or_empty_file_names():
    prefixes = ["", "a/", "a/b/"]
    keys = ["a/", "a/b/", "a/b/c", "a/file", "a//", "a/b//x", "root"]
    for prefix in prefixes:
        listed = [k for k in keys if k.startswith(prefix)]
        entries = project(prefix, _page(prefix, keys=[(k, 1) for k in listed]))
        for e in entries:
            assert e.id != prefix
            assert e.name
            if e.kind is EntryKind.FILE:
                assert not e.name.endswith("/")


def test_descend_into_folder_matches_folder_id():
    prefix = "docs/2024/"
    entries = project(prefix, _page(prefix, ["docs/2024/jan/", "docs/2024/feb/"]))
    path = navigator.from_prefix(prefix)
    for e in entries:
        assert navigator.to_prefix(navigator.descend(path, e.name)) == e.id


def test_filter_entries_is_case_insensitive():
    entries = project("", _page("", ["Reports/"], [("report.pdf", 1), ("image.png", 2)]))
    assert [e.name for e in filter_entries(entries, "REPORT")] == ["Reports", "report.pdf"]
    assert filter_entries(entries, "  ") == entries
