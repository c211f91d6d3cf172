#!/usr/bin/env python3
"""
tree_obfuscator.py

Clone a directory tree while scrubbing every file and directory name.

Features:
- Every path segment is replaced by a random string of the SAME length.
- File extensions (from the last '.') are kept verbatim.
- A segment is always renamed the same way within a run (bijective mapping),
  so the copy has the same number of unique names as the original.
- 'source', 'build' and 'results' pass through unchanged.
- Regular files are created EMPTY; contents are never copied.
- Symbolic links are recreated as RELATIVE links inside the new tree, so the
  result can be archived or moved as a unit. Links leaving the input tree are
  skipped.

Also supports:
- --mapping: write the segment mapping as YAML (or read it with --restore-only).
- --restore-only: rebuild the original names from an obfuscated tree.
- --report: restore into a scratch folder and compare with the input
  (summary.md + differences.json).
"""

import os
import sys
import json
import random
import logging
import argparse
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# 62 symbols: lowercase without 'x', uppercase, digits and ','
ALPHABET = "abcdefghijklmnopqrstuvwyzABCDEFGHIJKLMNOPQRSTUVWXYZ1234567890,"
FIXED_SEGMENTS = ("source", "build", "results")
LONG_EXTENSION_LENGTH = 4

LOG_LEVEL_ENV = "TREE_OBFUSCATOR_LOG_LEVEL"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

# -----------------------------
# Utility: paths & logging
# -----------------------------

def assert_dir_exists(p: Path, label: str):
    if not p.exists() or not p.is_dir():
        raise SystemExit(f"Error: {label} does not exist or is not a directory: {p}")

def assert_not_exists(p: Path, label: str):
    if p.exists() or p.is_symlink():
        raise SystemExit(f"Error: {label} already exists: {p}")

def configure_logging(level: Optional[str] = None) -> None:
    desired_level = getattr(logging, (level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper(), logging.INFO)
    root = logging.getLogger()
    if getattr(configure_logging, "_configured", False):
        root.setLevel(desired_level)
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.setLevel(desired_level)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    configure_logging._configured = True  # type: ignore[attr-defined]

def segments_of(p) -> List[str]:
    """Segments of an absolute path, without the root anchor."""
    parts = Path(p).parts
    if parts and parts[0] == Path(p).anchor:
        return list(parts[1:])
    return list(parts)

def matching_first_segments(a: List[str], b: List[str]) -> int:
    count = 0
    for x, y in zip(a, b):
        if x != y:
            break
        count += 1
    return count

# -----------------------------
# Segment codec
# -----------------------------

def split_extension(name: str) -> Tuple[str, str]:
    """
    Split a segment into (base, extension).
    The extension runs from the LAST '.' to the end, so a dotfile such as
    '.gitignore' has an empty base.
    """
    idx = name.rfind(".")
    if idx < 0:
        return name, ""
    return name[:idx], name[idx:]

def invert_mapping(mapping: Dict[str, str]) -> Dict[str, str]:
    inv: Dict[str, str] = {}
    for k, v in mapping.items():
        if v in inv:
            raise SystemExit(f"Error: non-bijective mapping; duplicate replacement: {v}")
        inv[v] = k
    return inv

class SegmentCodec:
    """
    Bidirectional original <-> random segment mapping for one run.

    Bases are mapped, extensions are reattached on every call: 'foo.txt' and
    'foo.md' share the random base of 'foo'. The mapping only grows.
    """

    def __init__(self, rng: Optional[random.Random] = None, fixed=FIXED_SEGMENTS):
        self.forward: Dict[str, str] = {}
        self.reverse: Dict[str, str] = {}
        self._rng = rng if rng is not None else random.Random()
        for name in fixed:
            self._store(name, name)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, str], rng: Optional[random.Random] = None) -> "SegmentCodec":
        codec = cls(rng=rng, fixed=())
        inverse = invert_mapping(mapping)
        codec.forward.update(mapping)
        codec.reverse.update(inverse)
        return codec

    def _store(self, base: str, replacement: str) -> None:
        self.forward[base] = replacement
        self.reverse[replacement] = base

    def _random_base(self, length: int) -> str:
        while True:
            candidate = "".join(self._rng.choice(ALPHABET) for _ in range(length))
            if candidate not in self.reverse:
                return candidate

    def translate(self, name: str) -> str:
        base, extension = split_extension(name)
        if len(extension) > LONG_EXTENSION_LENGTH:
            logger.warning("long extension %s", extension)

        replacement = self.forward.get(base)
        if replacement is None:
            replacement = self._random_base(len(base))
            self._store(base, replacement)
        return replacement + extension

    def untranslate(self, name: str) -> str:
        base, extension = split_extension(name)
        if base not in self.reverse:
            raise SystemExit(f"Error: segment is not in the mapping: {name}")
        return self.reverse[base] + extension

    @property
    def unique_segments(self) -> int:
        return len(self.forward)

    @property
    def total_characters(self) -> int:
        return sum(len(k) for k in self.forward)

# -----------------------------
# Tree mirroring
# -----------------------------

def mirror_tree(input_dir: Path, output_dir: Path, codec: SegmentCodec, symlinks: List[Path]) -> None:
    """
    Mirror input_dir into output_dir with renamed, empty entries.
    Symlinks are NOT followed; they are appended to `symlinks` for
    relocate_symlinks() once the whole tree exists.
    """
    pending = [(input_dir, output_dir)]
    while pending:
        src_dir, dst_dir = pending.pop()
        logger.debug("Processing %s => %s", src_dir, dst_dir)
        for entry in src_dir.iterdir():
            if entry.is_symlink() and entry.exists():
                symlinks.append(entry)
            elif entry.is_file() and not entry.is_symlink():
                (dst_dir / codec.translate(entry.name)).touch(exist_ok=False)
            elif entry.is_dir() and not entry.is_symlink():
                out_dir = dst_dir / codec.translate(entry.name)
                out_dir.mkdir()
                pending.append((entry, out_dir))
            else:
                # dangling symlinks, fifos, sockets, devices
                logger.warning("Broken entry(?), skipped: %s", entry)

# -----------------------------
# Symlink relocation
# -----------------------------

def relative_link_target(sym_segments: List[str], dest_segments: List[str], common: int, codec: SegmentCodec) -> str:
    """
    Relative target for a link at sym_segments resolving to dest_segments,
    both sharing their first `common` segments.
    """
    dot_dots = len(sym_segments) - common - 1
    parts = [".."] * dot_dots + [codec.translate(seg) for seg in dest_segments[common:]]
    return "/".join(parts) or "."

def relocate_symlinks(symlinks: List[Path], input_root: Path, output_root: Path, codec: SegmentCodec) -> int:
    """
    Recreate every recorded symlink inside output_root as a relative link.

    Links whose target does not share the input root as a common prefix are
    skipped. Returns the number of links created.
    """
    root_segments = segments_of(os.path.abspath(input_root))
    created = 0

    for s in symlinks:
        sym_path = os.path.abspath(s)
        dest_path = os.path.realpath(s)
        logger.debug("Symlink: %s => %s", sym_path, dest_path)

        sym_segments = segments_of(sym_path)
        dest_segments = segments_of(dest_path)

        common = matching_first_segments(dest_segments, sym_segments)
        if common < len(root_segments):
            logger.warning("No common sub-path for %s", s)
            continue
        if common >= len(sym_segments):
            logger.warning("Symlink resolves to itself, skipped: %s", s)
            continue

        working_dir = output_root
        below_root = matching_first_segments(root_segments, sym_segments)
        for seg in sym_segments[below_root:-1]:
            working_dir = working_dir / codec.translate(seg)
        if not working_dir.is_dir():
            logger.error("Missing output directory %s for %s", working_dir, s)
            continue

        target = relative_link_target(sym_segments, dest_segments, common, codec)
        link = working_dir / codec.translate(sym_segments[-1])
        logger.debug("      %s", target)

        try:
            os.symlink(target, link)
        except OSError as e:
            logger.error("Could not create symlink %s -> %s: %s", link, target, e)
            continue

        if not link.is_symlink():
            logger.error("Created entry is not a symlink: %s", link)
            continue
        created += 1

    return created

# -----------------------------
# Forward pipeline
# -----------------------------

class ObfuscationResult:
    def __init__(self, codec: SegmentCodec, symlinks: List[Path], links_created: int):
        self.codec = codec
        self.symlinks = symlinks
        self.links_created = links_created

def obfuscate(input_root: Path, output_root: Path, codec: Optional[SegmentCodec] = None) -> ObfuscationResult:
    """
    Mirror input_root into a fresh output_root with every name scrubbed.
    output_root must not exist yet; it is created here.
    """
    input_root = Path(input_root).resolve()
    output_root = Path(output_root).absolute()
    assert_dir_exists(input_root, "input directory")
    assert_not_exists(output_root, "output directory")
    if codec is None:
        codec = SegmentCodec()

    output_root.mkdir()
    symlinks: List[Path] = []
    mirror_tree(input_root, output_root, codec, symlinks)
    links_created = relocate_symlinks(symlinks, input_root, output_root, codec)
    return ObfuscationResult(codec, symlinks, links_created)

# -----------------------------
# Reverse transformation
# -----------------------------

def untranslate_link_target(target: str, codec: SegmentCodec) -> str:
    parts = []
    for seg in target.split("/"):
        if seg in (".", ".."):
            parts.append(seg)
        else:
            parts.append(codec.untranslate(seg))
    return "/".join(parts)

def restore_tree(obf_root: Path, restored_root: Path, codec: SegmentCodec) -> None:
    """
    Rebuild the original names from an obfuscated tree using the reverse mapping.
    """
    assert_dir_exists(obf_root, "obfuscated directory")
    assert_not_exists(restored_root, "restore destination")
    restored_root.mkdir()

    pending = [(obf_root, restored_root)]
    while pending:
        src_dir, dst_dir = pending.pop()
        for entry in src_dir.iterdir():
            dst_path = dst_dir / codec.untranslate(entry.name)
            if dst_path.exists() or dst_path.is_symlink():
                raise SystemExit(f"Error: reverse name collision detected when creating: {dst_path}")

            if entry.is_symlink():
                os.symlink(untranslate_link_target(os.readlink(entry), codec), dst_path)
            elif entry.is_file():
                dst_path.touch()
            elif entry.is_dir():
                dst_path.mkdir()
                pending.append((entry, dst_path))
            else:
                logger.warning("Broken entry(?), skipped: %s", entry)

# -----------------------------
# Comparison & reporting
# -----------------------------

def snapshot_tree(root: Path) -> Dict[str, str]:
    """Map every entry below root (relative posix path) to dir/file/symlink."""
    entries: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            p = Path(dirpath) / name
            rel = p.relative_to(root).as_posix()
            if p.is_symlink():
                entries[rel] = "symlink"
            elif p.is_dir():
                entries[rel] = "dir"
            else:
                entries[rel] = "file"
    return entries

def compare_trees(orig_root: Path, restored_root: Path) -> dict:
    orig = snapshot_tree(orig_root)
    restored = snapshot_tree(restored_root)

    orig_set = set(orig)
    new_set = set(restored)
    missing = sorted(orig_set - new_set)
    extra = sorted(new_set - orig_set)
    common = sorted(orig_set & new_set)
    matches = [rel for rel in common if orig[rel] == restored[rel]]
    kind_mismatches = [rel for rel in common if orig[rel] != restored[rel]]

    return {
        "stats": {
            "original_entries": len(orig_set),
            "restored_entries": len(new_set),
            "missing": len(missing),
            "extra": len(extra),
            "matches": len(matches),
            "kind_mismatches": len(kind_mismatches),
        },
        "missing": missing,
        "extra": extra,
        "kind_mismatches": kind_mismatches,
        "matches": matches,
    }

def write_report(report_root: Path, comparison: dict) -> None:
    report_root.mkdir(parents=True, exist_ok=True)
    stats = comparison["stats"]

    summary = []
    summary.append("# Comparison Summary\n")
    summary.append(f"- Original entries: {stats['original_entries']}\n")
    summary.append(f"- Restored entries: {stats['restored_entries']}\n")
    summary.append(f"- Missing in restored: {stats['missing']}\n")
    summary.append(f"- Extra in restored: {stats['extra']}\n")
    summary.append(f"- Matches: {stats['matches']}\n")
    summary.append(f"- Kind mismatches: {stats['kind_mismatches']}\n\n")

    if comparison["missing"]:
        summary.append("## Missing Entries in Restored\n")
        summary.extend(f"- {m}\n" for m in comparison["missing"])
        summary.append("\n> Skipped symlinks (targets outside the input) are expected here.\n\n")
    if comparison["extra"]:
        summary.append("## Extra Entries in Restored\n")
        summary.extend(f"- {e}\n" for e in comparison["extra"])
        summary.append("\n")
    if comparison["kind_mismatches"]:
        summary.append("## Kind Mismatches\n")
        summary.extend(f"- {m}\n" for m in comparison["kind_mismatches"])
        summary.append("\n")

    (report_root / "summary.md").write_text("".join(summary), encoding="utf-8", errors="surrogateescape")
    (report_root / "differences.json").write_text(json.dumps(comparison, indent=2), encoding="utf-8", errors="surrogateescape")

# -----------------------------
# YAML writer (mapping)
# -----------------------------

def write_mapping_yaml(mapping_path: Path, mapping: Dict[str, str]) -> None:
    """
    Write YAML dictionary with single-quoted keys/values and proper escaping for single quotes.
    """
    def q(s: str) -> str:
        return "'" + s.replace("'", "''") + "'"
    lines = ["# original_to_random segment mapping\n"]
    for k in mapping:
        lines.append(f"{q(k)}: {q(mapping[k])}\n")
    mapping_path.write_text("".join(lines), encoding="utf-8", errors="surrogateescape")

def _unquote(s: str) -> str:
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        return s[1:-1].replace("''", "'")
    return s

def load_mapping_yaml(mapping_path: Path) -> Dict[str, str]:
    """
    Load YAML dictionary written by write_mapping_yaml().
    Keys may contain ':' (and ','), so quoted keys are split after the closing quote.
    """
    if not mapping_path.exists():
        raise SystemExit(f"Error: mapping file not found: {mapping_path}")
    mapping: Dict[str, str] = {}
    with mapping_path.open("r", encoding="utf-8", errors="surrogateescape") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("'"):
                # closing quote is the first single quote not doubled
                i = 1
                while i < len(line):
                    if line[i] == "'":
                        if line[i + 1:i + 2] == "'":
                            i += 2
                            continue
                        break
                    i += 1
                k, rest = line[:i + 1], line[i + 1:].lstrip()
                if not rest.startswith(":"):
                    continue
                v = rest[1:]
            elif ":" in line:
                k, v = line.split(":", 1)
            else:
                continue
            mapping[_unquote(k)] = _unquote(v)
    if not mapping:
        raise SystemExit(f"Error: mapping file empty or unreadable: {mapping_path}")
    return mapping

# -----------------------------
# CLI Orchestration
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clone a directory tree with every name replaced by a random one of the same length.")
    parser.add_argument("input", type=str, help="Directory to obfuscate (or obfuscated directory with --restore-only).")
    parser.add_argument("output", type=str, help="Destination directory; must not exist.")
    parser.add_argument("--mapping", type=str, default=None, help="Write the segment mapping YAML here (read it with --restore-only).")
    parser.add_argument("--report", type=str, default=None, help="Restore into a scratch folder, compare with the input and write a report here.")
    parser.add_argument("--restore-only", action="store_true", help="Rebuild original names from an obfuscated tree using --mapping.")
    parser.add_argument("--log-level", type=str, default=None, help=f"Logging level (default: ${LOG_LEVEL_ENV} or INFO).")
    return parser

def run_restore(input_path: Path, output_path: Path, mapping_path: Optional[Path]) -> None:
    if mapping_path is None:
        raise SystemExit("Error: --restore-only requires --mapping.")
    assert_dir_exists(input_path, "obfuscated directory")
    assert_not_exists(output_path, "output directory")

    print(f"[RESTORE] Loading mapping from: {mapping_path}")
    codec = SegmentCodec.from_mapping(load_mapping_yaml(mapping_path))
    print(f"[RESTORE] Restoring from: {input_path} -> {output_path}")
    restore_tree(input_path, output_path, codec)
    print(f"[RESTORE] Done. Restored: {output_path}")

def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    input_path = Path(args.input).resolve()
    output_path = Path(args.output).absolute()
    mapping_path = Path(args.mapping).resolve() if args.mapping else None

    print(f"Input: {input_path}")
    print(f"Output: {output_path}")

    if args.restore_only:
        run_restore(input_path, output_path, mapping_path)
        return

    assert_dir_exists(input_path, "input directory")
    assert_not_exists(output_path, "output directory")
    steps = 2 + (mapping_path is not None) + (args.report is not None)

    print(f"[1/{steps}] Mirroring tree and relocating symlinks...")
    result = obfuscate(input_path, output_path)
    codec = result.codec
    step = 2

    if mapping_path is not None:
        print(f"[{step}/{steps}] Writing mapping to: {mapping_path}")
        write_mapping_yaml(mapping_path, codec.forward)
        step += 1

    if args.report is not None:
        report_root = Path(args.report).resolve()
        print(f"[{step}/{steps}] Restoring and comparing -> report at: {report_root}")
        with tempfile.TemporaryDirectory() as scratch:
            restored = Path(scratch) / input_path.name
            restore_tree(output_path, restored, codec)
            write_report(report_root, compare_trees(input_path, restored))
        step += 1

    print(f"[{step}/{steps}] All done!")
    print(f"{codec.unique_segments} unique segments")
    print(f"  ==>  {codec.total_characters} characters")
    print(f"{len(result.symlinks)} symlinks ({result.links_created} recreated)")

if __name__ == "__main__":
    sys.exit(main())
