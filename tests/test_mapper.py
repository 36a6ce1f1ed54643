from pathlib import Path, PurePosixPath

import pytest

from korasi.core.exceptions import PathError
from korasi.domain.sync.mapper import PathMapper, map_remote_path, resolve_local_source

HOME = Path("/home/user")
WORKSPACE = HOME / "proj"
REMOTE_HOME = PurePosixPath("/home/user")


def make_mapper(root_folder="root", remote_dirs=None):
    existing = set(remote_dirs or ())
    return PathMapper(
        WORKSPACE,
        REMOTE_HOME,
        local_home=HOME,
        root_folder=root_folder,
        is_remote_dir=lambda p: str(p) in existing,
    )


def test_workspace_file_lands_under_root_folder():
    anchor = make_mapper().anchor("output.txt")
    assert anchor.remote_root == PurePosixPath("/home/user/root/output.txt")
    assert anchor.parents == (PurePosixPath("/home/user/root"),)


def test_home_named_source_mirrors_home_without_wrapper():
    anchor = make_mapper().anchor("$HOME/foobar.txt")
    assert anchor.remote_root == PurePosixPath("/home/user/foobar.txt")
    assert anchor.parents == ()


@pytest.mark.parametrize("source", ["~/data/x.csv", "/home/user/data/x.csv", "${HOME}/data/x.csv"])
def test_home_spellings_are_equivalent(source):
    anchor = make_mapper().anchor(source)
    assert anchor.remote_root == PurePosixPath("/home/user/data/x.csv")
    assert anchor.parents == (PurePosixPath("/home/user/data"),)


def test_destination_recreates_relative_structure():
    mapper = make_mapper(remote_dirs={"/home/user/dst"})
    anchor = mapper.anchor("src/abc/test.txt", "dst")
    assert anchor.remote_root == PurePosixPath("/home/user/dst/src/abc/test.txt")
    assert anchor.parents == (
        PurePosixPath("/home/user/dst/src"),
        PurePosixPath("/home/user/dst/src/abc"),
    )


def test_parent_references_are_stripped():
    anchor = make_mapper().anchor("../test.txt")
    assert anchor.remote_root == PurePosixPath("/home/user/root/test.txt")


def test_outside_home_source_drops_its_anchor():
    anchor = make_mapper().anchor("/opt/data/set.bin")
    assert anchor.remote_root == PurePosixPath("/home/user/root/opt/data/set.bin")


def test_missing_destination_is_not_created():
    mapper = make_mapper(remote_dirs=set())
    with pytest.raises(PathError) as exc_info:
        mapper.anchor("output.txt", "missing")
    assert exc_info.value.kind is PathError.Kind.DST_NOT_EXIST
    assert "create it first" in exc_info.value.hint


def test_missing_destination_wins_over_outside_workspace_source():
    mapper = make_mapper(remote_dirs=set())
    with pytest.raises(PathError) as exc_info:
        mapper.anchor("../../elsewhere.txt", "/srv/missing")
    assert exc_info.value.kind is PathError.Kind.DST_NOT_EXIST


def test_outside_home_without_root_folder_fails():
    with pytest.raises(PathError) as exc_info:
        make_mapper(root_folder="").anchor("/opt/data/set.bin")
    assert exc_info.value.kind is PathError.Kind.OUTSIDE_HOME_WITHOUT_ROOT


def test_without_root_folder_workspace_paths_mirror_home():
    anchor = make_mapper(root_folder="").anchor("output.txt")
    assert anchor.remote_root == PurePosixPath("/home/user/proj/output.txt")


def test_workspace_itself_maps_to_default_root():
    anchor = make_mapper().anchor(".")
    assert anchor.remote_root == PurePosixPath("/home/user/root")
    assert anchor.parents == ()
    assert anchor.remote_for(WORKSPACE / "src" / "main.py") == PurePosixPath("/home/user/root/src/main.py")


def test_absolute_destination_is_used_as_is():
    mapper = make_mapper(remote_dirs={"/srv/shared"})
    anchor = mapper.anchor("output.txt", "/srv/shared")
    assert anchor.remote_root == PurePosixPath("/srv/shared/output.txt")
    assert anchor.parents == ()


def test_mapped_paths_stay_below_the_destination():
    mapper = make_mapper(remote_dirs={"/home/user/dst"})
    for source in ["output.txt", "src", "src/abc/test.txt", "../x/y.txt"]:
        remote = mapper.anchor(source, "dst").remote_root
        assert PurePosixPath("/home/user/dst") in remote.parents


def test_resolve_local_source_is_lexical():
    assert resolve_local_source("a/../b", WORKSPACE, HOME) == WORKSPACE / "b"
    assert resolve_local_source("~/x", WORKSPACE, HOME) == HOME / "x"


def test_map_remote_path_shortcut():
    remote = map_remote_path("output.txt", WORKSPACE, REMOTE_HOME, local_home=HOME)
    assert remote == PurePosixPath("/home/user/root/output.txt")
