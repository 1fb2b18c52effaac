"""
Dockerfile reader

Turns the single-stage Dockerfile subset a pipeline can express (FROM, LABEL,
MAINTAINER, WORKDIR, ENV, COPY and RUN) into the same recipe mapping the YAML
loader produces, so both go through one validation path.

Instructions that only set image metadata (CMD, ENTRYPOINT, EXPOSE, ...) are
skipped with a warning. Instructions that would change how later steps run
(USER, ARG, SHELL, multi-stage FROM, COPY --from, ADD) are rejected.
"""
import json
import logging
import posixpath
import shlex
from typing import Any, Dict, List, Optional, Tuple

from . import constants
from .exceptions import UnsupportedInstructionError

logger = logging.getLogger(__name__)

METADATA_ONLY = {"CMD", "ENTRYPOINT", "EXPOSE", "STOPSIGNAL", "HEALTHCHECK", "VOLUME"}
UNSUPPORTED = {"USER", "ARG", "SHELL", "ONBUILD", "ADD"}


def logical_lines(text: str) -> List[Tuple[int, str]]:
    """
    Join backslash continuations and drop comments and blank lines.
    Returns (first line number, joined line) pairs.
    """
    lines: List[Tuple[int, str]] = []
    buf: List[str] = []
    start = 0
    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not buf and (not stripped or stripped.startswith('#')):
            continue
        # comment lines inside a continuation are dropped too
        if buf and stripped.startswith('#'):
            continue
        if not buf:
            start = lineno
        if stripped.endswith('\\'):
            buf.append(stripped[:-1].strip())
            continue
        buf.append(stripped)
        lines.append((start, " ".join(part for part in buf if part)))
        buf = []
    if buf:
        lines.append((start, " ".join(part for part in buf if part)))
    return lines


def _exec_form(args: str) -> Optional[List[str]]:
    """Parse a JSON array argument (`["a", "b"]`), or None for shell form."""
    if not args.startswith('['):
        return None
    try:
        value = json.loads(args)
    except json.JSONDecodeError:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return value


def _split_flags(args: str) -> Tuple[Dict[str, str], str]:
    """Strip leading `--flag=value` options from an instruction's arguments."""
    flags: Dict[str, str] = {}
    rest = args
    while rest.startswith('--'):
        head, _, rest = rest.partition(' ')
        key, _, value = head[2:].partition('=')
        flags[key] = value
        rest = rest.strip()
    return flags, rest


def _key_values(args: str, lineno: int, instruction: str) -> Dict[str, str]:
    """Parse `k=v k2="v 2"` pairs, or the legacy `key value` form."""
    try:
        tokens = shlex.split(args)
    except ValueError as e:
        raise ValueError(f"line {lineno}: malformed {instruction}: {e}")
    if not tokens:
        raise ValueError(f"line {lineno}: {instruction} needs arguments")
    if '=' not in tokens[0]:
        # legacy form: the first word is the key, the rest is the value
        key, _, value = args.strip().partition(' ')
        return {key: " ".join(shlex.split(value)) if value.strip() else ""}
    pairs = {}
    for token in tokens:
        key, sep, value = token.partition('=')
        if not sep or not key:
            raise ValueError(f"line {lineno}: expected key=value in {instruction}, got '{token}'")
        pairs[key] = value
    return pairs


def parse_dockerfile(text: str, name: str) -> Dict[str, Any]:
    """
    Build a recipe mapping from Dockerfile text.

    The workdir in effect when the first step appears becomes the recipe
    workdir; steps declared under a different WORKDIR carry their own.
    ENV values in effect are attached to every following step.
    """
    base: Optional[str] = None
    labels: Dict[str, str] = {}
    env: Dict[str, str] = {}
    workdir = constants.DEFAULT_WORKDIR
    recipe_workdir: Optional[str] = None
    steps: List[Dict[str, Any]] = []

    def add_step(step: Dict[str, Any]):
        nonlocal recipe_workdir
        if recipe_workdir is None:
            recipe_workdir = workdir
        if workdir != recipe_workdir:
            step['workdir'] = workdir
        if env:
            step['env'] = dict(env)
        steps.append(step)

    for lineno, line in logical_lines(text):
        instruction, _, args = line.partition(' ')
        instruction = instruction.upper()
        args = args.strip()

        if instruction == "FROM":
            if base is not None:
                raise UnsupportedInstructionError(f"line {lineno}: multi-stage builds are not supported")
            flags, args = _split_flags(args)
            if flags:
                logger.warning(f"[Dockerfile] line {lineno}: ignoring FROM flags {sorted(flags)}")
            words = args.split()
            if not words:
                raise ValueError(f"line {lineno}: FROM needs an image")
            if len(words) not in (1, 3) or (len(words) == 3 and words[1].upper() != "AS"):
                raise ValueError(f"line {lineno}: malformed FROM '{args}'")
            base = words[0]
            continue

        if base is None:
            raise ValueError(f"line {lineno}: {instruction} before FROM")

        if instruction == "LABEL":
            labels.update(_key_values(args, lineno, instruction))
        elif instruction == "MAINTAINER":
            labels["maintainer"] = args
        elif instruction == "ENV":
            env.update(_key_values(args, lineno, instruction))
        elif instruction == "WORKDIR":
            if not args:
                raise ValueError(f"line {lineno}: WORKDIR needs a path")
            workdir = posixpath.normpath(posixpath.join(workdir, args))
        elif instruction == "RUN":
            if not args:
                raise ValueError(f"line {lineno}: RUN needs a command")
            exec_args = _exec_form(args)
            add_step({'run': exec_args if exec_args is not None else args})
        elif instruction == "COPY":
            flags, args = _split_flags(args)
            if 'from' in flags:
                raise UnsupportedInstructionError(f"line {lineno}: COPY --from needs a multi-stage build")
            if flags:
                logger.warning(f"[Dockerfile] line {lineno}: ignoring COPY flags {sorted(flags)}")
            paths = _exec_form(args)
            if paths is None:
                paths = shlex.split(args)
            if len(paths) < 2:
                raise ValueError(f"line {lineno}: COPY needs a source and a destination")
            *sources, dest = paths
            for src in sources:
                add_step({'copy': f"{src}:{dest}"})
        elif instruction in METADATA_ONLY:
            logger.warning(f"[Dockerfile] line {lineno}: {instruction} only sets image metadata, skipping")
        elif instruction in UNSUPPORTED:
            raise UnsupportedInstructionError(f"line {lineno}: {instruction} is not supported")
        else:
            raise ValueError(f"line {lineno}: unknown instruction '{instruction}'")

    if base is None:
        raise ValueError("no FROM instruction found")

    logger.debug(f"[Dockerfile] Parsed {len(steps)} steps on base '{base}'.")
    return {
        'name': name,
        'base': base,
        'labels': labels,
        'workdir': recipe_workdir or workdir,
        'steps': steps,
    }
