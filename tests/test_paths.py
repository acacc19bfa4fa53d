from __future__ import annotations

import itertools

import pytest

from devsphere.engine.paths import (
    HOME,
    from_client_cwd,
    is_home,
    normalize_virtual_path,
    resolve,
)

_CWDS = [
    "~", "", "/", "/a", "/a/b", "~/a", "//a//b//", "/a/../..", "/../../x",
    "/a/./b", "a", "../../etc",
]
_TARGETS = [
    "", "~", "..", ".", "sub", "a/b", "../../etc", "/../../", "a/../../../b",
    "//x//y//", "~/docs", "./x", "x/./y/..", "...", "/", "../..", "a//b",
]


def _assert_well_formed(value: str) -> None:
    assert ".." not in value.split("/"), value
    assert "//" not in value, value
    assert value == HOME or (value.startswith("/") and not value.endswith("/")), value


def test_resolve_never_emits_parent_segments_or_double_separators() -> None:
    for cwd, target in itertools.product(_CWDS, _TARGETS):
        _assert_well_formed(resolve(cwd, target))


def test_cd_into_sub_and_back_to_home() -> None:
    cwd = resolve(HOME, "sub")
    assert cwd == "/sub"
    assert resolve(cwd, "..") == HOME


def test_parent_of_home_is_home() -> None:
    assert resolve(HOME, "..") == HOME
    assert resolve("", "..") == HOME


def test_relative_target_appended_to_cwd() -> None:
    assert resolve("/a/b", "c") == "/a/b/c"
    assert resolve("/a", "b/c") == "/a/b/c"


def test_parent_of_nested_cwd() -> None:
    assert resolve("/a/b", "..") == "/a"
    assert resolve("/a", "..") == HOME


def test_absolute_target_is_normalized() -> None:
    assert resolve("/a", "/x//y/") == "/x/y"
    assert resolve("/a", "/") == HOME


def test_home_targets() -> None:
    assert resolve("/deep/path", "~") == HOME
    assert resolve("/deep/path", "~/docs") == "/docs"


def test_empty_target_keeps_cwd() -> None:
    assert resolve("/a", "") == "/a"
    assert resolve(HOME, "") == HOME


def test_escape_attempts_are_clamped_at_root() -> None:
    assert resolve(HOME, "/../../secret") == "/secret"
    assert resolve("/a/b", "../../..") == HOME
    assert resolve(HOME, "a/../../../b") == "/b"


def test_normalize_virtual_path() -> None:
    assert normalize_virtual_path("a//b/./c/..") == "/a/b"
    assert normalize_virtual_path("") == "/"
    assert normalize_virtual_path("///") == "/"
    assert normalize_virtual_path("/x/") == "/x"


def test_is_home() -> None:
    assert is_home("~")
    assert is_home("")
    assert is_home("/")
    assert not is_home("/a")


@pytest.mark.parametrize("raw,expected", [
    (None, HOME),
    ("", HOME),
    ("~", HOME),
    ("/sub", "/sub"),
    ("/../../secret", "/../../secret"),
])
def test_from_client_cwd_keeps_raw_value(raw, expected) -> None:
    assert from_client_cwd(raw) == expected
