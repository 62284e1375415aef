"""
Build context staging

Copies a service's build context into a scratch directory, dropping every path
the service's IgnoreRuleSet excludes, and writes the rendered Dockerfile next to
it. The engine only ever sees the staged copy.
"""

import logging
import os
import shutil
from pathlib import Path

from .ignore import IgnoreRuleSet

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8000


def _is_text(data: bytes) -> bool:
    return b"\0" not in data[:BINARY_SNIFF_BYTES]


def _copy_file(src: Path, dst: Path, convert_eol: bool):
    dst.parent.mkdir(parents=True, exist_ok=True)
    if convert_eol:
        data = src.read_bytes()
        if _is_text(data) and b"\r\n" in data:
            dst.write_bytes(data.replace(b"\r\n", b"\n"))
            shutil.copymode(src, dst)
            return
    shutil.copy2(src, dst)


def stage_context(
    context_dir: Path,
    rules: IgnoreRuleSet,
    dest: Path,
    convert_eol: bool = False,
) -> int:
    """
    Copy the non-excluded files of `context_dir` into `dest`.

    Paths are matched relative to `rules.base_dir`, or to the context itself when
    it lies outside that directory. Directory symlinks are recreated as symlinks.
    Returns the number of entries staged.
    """
    context_dir = context_dir.resolve()
    dest.mkdir(parents=True, exist_ok=True)
    prefix = rules.relative(context_dir)
    if prefix is None:
        logger.debug(f"'{context_dir}' lies outside '{rules.base_dir}', matching ignore rules from the context")
        prefix = "."

    def rel_of(path: Path) -> str:
        rel = path.relative_to(context_dir).as_posix()
        return rel if prefix == "." else f"{prefix}/{rel}"

    staged = 0
    skipped = 0

    for root, dirs, files in os.walk(context_dir):
        root_path = Path(root)
        kept_dirs = []
        for d in sorted(dirs):
            src = root_path / d
            rel = rel_of(src)
            if src.is_symlink():
                if rules.is_excluded_rel(rel):
                    skipped += 1
                    continue
                link = dest / src.relative_to(context_dir)
                link.parent.mkdir(parents=True, exist_ok=True)
                os.symlink(os.readlink(src), link, target_is_directory=True)
                logger.debug(f"Kept directory symlink '{rel}'")
                staged += 1
                continue
            if rules.is_excluded_rel(rel) and not rules.may_reinclude_below(rel):
                logger.debug(f"Pruned '{rel}'")
                skipped += 1
                continue
            kept_dirs.append(d)
        dirs[:] = kept_dirs

        for f in sorted(files):
            src = root_path / f
            rel_to_context = src.relative_to(context_dir)
            if rules.is_excluded_rel(rel_of(src)):
                skipped += 1
                continue
            if src.is_symlink() and not src.exists():
                logger.debug(f"Skipping dangling symlink '{rel_to_context}'")
                continue
            _copy_file(src, dest / rel_to_context, convert_eol)
            staged += 1

    logger.debug(f"Staged {staged} file(s) from '{context_dir}' ({skipped} excluded)")
    return staged


def write_dockerfile(dest: Path, relative_name: str, content: str) -> Path:
    """Write a rendered Dockerfile into a staged context; returns its path."""
    target = dest / relative_name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


def rendered_name(dockerfile: str) -> str:
    """'Dockerfile.template' -> 'Dockerfile'; 'sub/Dockerfile.template' -> 'sub/Dockerfile'."""
    if dockerfile.endswith(".template"):
        return dockerfile[: -len(".template")]
    return dockerfile
