"""Virtual working-directory resolution.

A virtual path is the session's logical cwd: either the home marker
``~`` (the workspace root) or a ``/``-rooted path below it such as
``/src/lib``. Resolution is pure string manipulation and never
touches the filesystem; confinement to the real workspace is the
sandbox guard's job.
"""
from __future__ import annotations

import re

HOME = "~"
SEP = "/"

_REPEATED_SEP = re.compile(r"/+")


def normalize_virtual_path(path: str) -> str:
    """Collapse separators, drop ``.`` and clamp ``..`` at the root.

    Returns ``/`` for an empty result. The output never contains
    ``..`` segments, ``//`` or a trailing separator.
    """
    collapsed = _REPEATED_SEP.sub(SEP, path)
    segments: list[str] = []
    for segment in collapsed.split(SEP):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    if not segments:
        return SEP
    return SEP + SEP.join(segments)


def is_home(virtual_cwd: str) -> bool:
    return virtual_cwd in (HOME, "", SEP)


def _strip_home(path: str) -> str:
    if path == HOME:
        return ""
    if path.startswith(HOME + SEP):
        return path[len(HOME):]
    return path


def _finish(path: str) -> str:
    normalized = normalize_virtual_path(_strip_home(path))
    return HOME if normalized == SEP else normalized


def resolve(virtual_cwd: str, target: str) -> str:
    """Resolve a ``cd`` target against a virtual cwd.

    Total: every input produces a valid virtual path.
    """
    if target == "":
        return _finish(virtual_cwd)

    if target == HOME:
        return HOME

    if target.startswith(SEP) or target.startswith(HOME + SEP):
        # Absolute within the workspace; "~/x" is the same as "/x".
        return _finish(target)

    if target == "..":
        base = _finish(virtual_cwd)
        if base == HOME:
            return HOME
        segments = base.split(SEP)[1:-1]
        if not segments:
            return HOME
        return SEP + SEP.join(segments)

    # Relative token, appended wholesale ("a/b" is one token).
    if is_home(virtual_cwd):
        return _finish(SEP + target)
    return _finish(virtual_cwd + SEP + target)


def from_client_cwd(cwd: str | None) -> str:
    """Map a client-supplied cwd to virtual form without normalizing.

    Clients send ``""`` for home. The raw value is kept so escape
    attempts reach the sandbox guard intact.
    """
    if cwd is None or cwd == "" or cwd == HOME:
        return HOME
    return cwd
