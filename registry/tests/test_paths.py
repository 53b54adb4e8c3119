import pytest

from registry.paths import (
    canonicalize,
    common_parent,
    display_name_of,
    identity_of,
    is_within,
    join,
    next_duplicate_path,
    parent_of,
    path_of_identity,
    sanitize_group_name,
)
from registry.status import StatusPrefix, is_tagged, tag, untag


@pytest.mark.parametrize("raw, expected", [
    ("/p/app/", "/p/app"),
    ("/p/app//", "/p/app"),
    ("/p/app", "/p/app"),
    ("/", "/"),
    ("///", "/"),
])
def test_canonicalize(raw, expected):
    assert canonicalize(raw) == expected
    assert canonicalize(canonicalize(raw)) == canonicalize(raw)


def test_identity_ignores_trailing_separator():
    assert identity_of("/p/app/") == identity_of("/p/app")


def test_identity_has_no_separators_and_is_reversible():
    for path in ["/p/app", "/p/my app", "/p/a_b", "/p/a%b", "/tmp/ünï"]:
        node_id = identity_of(path)
        assert "/" not in node_id
        assert path_of_identity(node_id) == path


def test_identity_does_not_collide_on_underscores():
    assert identity_of("/a_2F") != identity_of("/a/")
    assert identity_of("/p/a_b") != identity_of("/p/a/b")


def test_names_and_parents():
    assert display_name_of("/p/app/") == "app"
    assert display_name_of("/") == "/"
    assert parent_of("/p/app") == "/p"
    assert parent_of("/app") == "/"
    assert join("/p/", "app") == "/p/app"


def test_next_duplicate_path_skips_taken_names():
    taken = {"/p/app-1"}
    assert next_duplicate_path("/p/app", taken.__contains__) == "/p/app-2"


def test_next_duplicate_path_continues_numeric_suffix():
    assert next_duplicate_path("/p/app-3", lambda p: False) == "/p/app-4"
    assert next_duplicate_path("/p/app-3", {"/p/app-4"}.__contains__) == "/p/app-5"


def test_sanitize_group_name():
    assert sanitize_group_name("  my   tools\t set ") == "my_tools_set"
    assert sanitize_group_name("   ") == ""


def test_common_parent():
    assert common_parent(["/w/a/x", "/w/b/y"]) == "/w"
    assert common_parent(["/a/x", "/b/y"]) == "/"
    # a selected folder is never the move target
    assert common_parent(["/w/a", "/w/a/sub"]) == "/w"


def test_is_within():
    assert is_within("/a/b/c", "/a/b")
    assert is_within("/a/b", "/a/b")
    assert not is_within("/a/bc", "/a/b")


def test_tag_and_untag():
    assert tag(StatusPrefix.MOVING, "app") == "Moving: app"
    assert untag("Moving: app") == "app"
    assert untag("app") == "app"
    assert untag("Copying: Moving: app") == "app"
    assert is_tagged("Importing: app")
    assert not is_tagged("app")
