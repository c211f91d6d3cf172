import logging
import os
import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tree_obfuscator import SegmentCodec, mirror_tree, obfuscate, snapshot_tree


def make_tree(root: Path, files, dirs=()):
    for d in dirs:
        (root / d).mkdir(parents=True, exist_ok=True)
    for f in files:
        p = root / f
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("secret contents of " + f)


def restored_names(snapshot, codec):
    out = {}
    for rel, kind in snapshot.items():
        parts = [codec.untranslate(seg) for seg in rel.split("/")]
        out["/".join(parts)] = kind
    return out


def test_source_dir_passes_through(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["source/a.txt", "source/b/c.txt"])
    out = tmp_path / "out"

    result = obfuscate(root, out, SegmentCodec(rng=random.Random(11)))
    codec = result.codec

    assert (out / "source").is_dir()
    rand_a = codec.forward["a"]
    rand_b = codec.forward["b"]
    rand_c = codec.forward["c"]
    assert len({rand_a, rand_b, rand_c}) == 3
    assert all(len(r) == 1 for r in (rand_a, rand_b, rand_c))
    assert (out / "source" / f"{rand_a}.txt").is_file()
    assert (out / "source" / rand_b / f"{rand_c}.txt").is_file()


def test_files_are_created_empty(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["one.dat", "deep/er/two.bin"])
    out = tmp_path / "out"
    obfuscate(root, out)

    files = [Path(dp) / fn for dp, _, fns in os.walk(out) for fn in fns]
    assert len(files) == 2
    assert all(f.stat().st_size == 0 for f in files)


def test_same_base_in_different_directories(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["left/foo.txt", "right/foo.md"])
    out = tmp_path / "out"
    codec = obfuscate(root, out).codec

    r = codec.forward["foo"]
    assert (out / codec.translate("left") / f"{r}.txt").is_file()
    assert (out / codec.translate("right") / f"{r}.md").is_file()


def test_output_is_isomorphic_to_input(tmp_path):
    root = tmp_path / "root"
    make_tree(
        root,
        ["src/main.c", "src/util/helpers.h", "docs/readme.md", ".hidden", "results/run1.csv", "a/b/c/d/e.txt"],
        dirs=["empty", "a/b/empty2"],
    )
    out = tmp_path / "out"
    codec = obfuscate(root, out).codec

    assert restored_names(snapshot_tree(out), codec) == snapshot_tree(root)


def test_two_runs_use_different_names(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["averyverylongname/anotherlongname.txt"])

    first = obfuscate(root, tmp_path / "out1").codec
    second = obfuscate(root, tmp_path / "out2").codec

    assert first.forward["averyverylongname"] != second.forward["averyverylongname"]
    assert restored_names(snapshot_tree(tmp_path / "out1"), first) == snapshot_tree(root)
    assert restored_names(snapshot_tree(tmp_path / "out2"), second) == snapshot_tree(root)


def test_symlinks_are_deferred_not_followed(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["real/inner.txt"])
    os.symlink("real", root / "alias")
    out = tmp_path / "out"
    out.mkdir()

    codec = SegmentCodec(rng=random.Random(12))
    symlinks = []
    mirror_tree(root, out, codec, symlinks)

    assert symlinks == [root / "alias"]
    assert "alias" not in codec.forward
    assert sorted(p.name for p in out.iterdir()) == [codec.translate("real")]


def test_existing_output_is_rejected(tmp_path):
    root = tmp_path / "root"
    make_tree(root, ["x.txt"])
    out = tmp_path / "out"
    out.mkdir()

    with pytest.raises(SystemExit):
        obfuscate(root, out)
    assert list(out.iterdir()) == []


def test_missing_input_is_rejected(tmp_path):
    with pytest.raises(SystemExit):
        obfuscate(tmp_path / "nope", tmp_path / "out")
    assert not (tmp_path / "out").exists()


def test_input_must_be_a_directory(tmp_path):
    f = tmp_path / "file.txt"
    f.write_text("")
    with pytest.raises(SystemExit):
        obfuscate(f, tmp_path / "out")


def test_special_entries_are_skipped(tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="tree_obfuscator")
    root = tmp_path / "root"
    make_tree(root, ["before/keep.txt", "pipes/after.txt"])
    os.mkfifo(root / "pipes" / "channel")
    out = tmp_path / "out"

    codec = obfuscate(root, out, SegmentCodec(rng=random.Random(13))).codec

    assert "channel" not in codec.forward
    pipes = out / codec.translate("pipes")
    assert [p.name for p in pipes.iterdir()] == [codec.translate("after.txt")]
    assert (out / codec.translate("before") / codec.translate("keep.txt")).is_file()
    assert "Broken entry(?), skipped" in caplog.text
    assert "channel" in caplog.text
