"""ResponseParser — raw model text → Plan.

Recognised directives (lowercase tags; JSX components such as
``<Command>`` inside file content are never mistaken for them):

    <explanation>…</explanation>        free text (optional)
    <structure>…</structure>            project tree (optional)
    <file path="src/App.tsx">…</file>   one file block
    <package>lodash</package>           one package spec
    <packages>a\\nb, c</packages>        several specs, newline/comma separated
    <command>npm run build</command>    one shell command

Parsing is best-effort. Bad entries (path traversal, truncated file
blocks, unterminated directives) become ``ParseIssue`` records on the
Plan and parsing carries on. Only an empty or non-text payload raises.
"""

from __future__ import annotations

import posixpath
import re

from sandpiper.errors import ParseError
from sandpiper.models.schemas import FileSpec, ParseIssue, Plan
from sandpiper.utils import get_logger

logger = get_logger("apply.parser")

_FILE_OPEN_RE = re.compile(r"""<file\s+path\s*=\s*(["'])(.*?)\1\s*>""", re.IGNORECASE)
_FILE_CLOSE_RE = re.compile(r"</file\s*>", re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"<explanation>(.*?)</explanation>", re.DOTALL)
_STRUCTURE_RE = re.compile(r"<structure>(.*?)</structure>", re.DOTALL)
_PACKAGE_RE = re.compile(r"<(packages?)>(.*?)</\1>", re.DOTALL)
_COMMAND_RE = re.compile(r"<command>(.*?)</command>", re.DOTALL)
_DANGLING_RE = re.compile(r"<(explanation|structure|packages?|command)>")
_ANY_TAG_RE = re.compile(r"<(explanation|structure|packages?|command)>|(?i:<file\s)")
_FENCE_RE = re.compile(r"^```[\w.+-]*[^\n]*\n(.*?)\n?```\s*$", re.DOTALL)
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_SPEC_SPLIT_RE = re.compile(r"[\s,]+")


def normalize_path(raw: str) -> str:
    """Return a project-relative POSIX path, or raise ValueError if unsafe.

    ``/src/a.ts`` and ``./src/a.ts`` both become ``src/a.ts``; any ``..``
    segment is rejected outright rather than resolved.
    """
    path = raw.strip().replace("\\", "/")
    if not path:
        raise ValueError("empty file path")
    if _DRIVE_RE.match(path):
        raise ValueError("absolute drive paths are not allowed")
    if ".." in path.split("/"):
        raise ValueError("path escapes the project root (parent-directory traversal)")
    path = path.lstrip("/")
    normalized = posixpath.normpath(path) if path else ""
    if normalized in ("", "."):
        raise ValueError("file path does not name a file")
    return normalized


def _clean_content(content: str) -> str:
    """Drop one wrapping markdown fence and surrounding blank lines."""
    body = content.strip("\r\n")
    fenced = _FENCE_RE.match(body.strip())
    if fenced:
        body = fenced.group(1)
    body = body.strip("\r\n")
    return body + "\n" if body else ""


class ResponseParser:
    """Converts raw model output into a :class:`Plan`."""

    def parse(self, text: object) -> Plan:
        if not isinstance(text, str):
            raise ParseError(f"Expected text payload, got {type(text).__name__}")
        if not text.strip():
            raise ParseError("Empty response payload")

        plan = Plan()
        outside = self._extract_files(text, plan)

        explanation = _EXPLANATION_RE.search(outside)
        if explanation:
            plan.explanation = explanation.group(1).strip()
        else:
            first_tag = _ANY_TAG_RE.search(text)
            plan.explanation = (text[:first_tag.start()] if first_tag else text).strip()

        structure = _STRUCTURE_RE.search(outside)
        if structure:
            plan.structure = structure.group(1).strip() or None

        seen: set[str] = set()
        for match in _PACKAGE_RE.finditer(outside):
            for spec in _SPEC_SPLIT_RE.split(match.group(2)):
                spec = spec.strip().lstrip("-* ").strip()
                if spec and spec not in seen:
                    seen.add(spec)
                    plan.packages.append(spec)

        for match in _COMMAND_RE.finditer(outside):
            command = match.group(1).strip()
            if command:
                plan.commands.append(command)

        self._record_dangling(outside, plan)

        logger.debug(
            "response_parsed",
            files=len(plan.files),
            packages=len(plan.packages),
            commands=len(plan.commands),
            parse_errors=len(plan.parse_errors),
        )
        return plan

    def _extract_files(self, text: str, plan: Plan) -> str:
        """Pull file blocks into ``plan.files``; return the text outside them."""
        opens = list(_FILE_OPEN_RE.finditer(text))
        index_by_path: dict[str, int] = {}
        outside_parts: list[str] = []
        cursor = 0

        for i, opening in enumerate(opens):
            if opening.start() < cursor:
                continue  # swallowed by the previous block's content
            outside_parts.append(text[cursor:opening.start()])
            raw_path = opening.group(2)
            next_open = opens[i + 1].start() if i + 1 < len(opens) else len(text)
            closing = _FILE_CLOSE_RE.search(text, opening.end())

            if closing is None or closing.start() > next_open:
                plan.parse_errors.append(
                    ParseIssue(item=raw_path, message="unterminated <file> block (truncated output?)")
                )
                cursor = next_open
                continue
            cursor = closing.end()

            try:
                path = normalize_path(raw_path)
            except ValueError as e:
                logger.warning("file_path_rejected", path=raw_path, reason=str(e))
                plan.parse_errors.append(ParseIssue(item=raw_path, message=str(e)))
                continue

            spec = FileSpec(path=path, content=_clean_content(text[opening.end():closing.start()]))
            if path in index_by_path:
                logger.debug("duplicate_file_block", path=path)
                plan.files[index_by_path[path]] = spec
            else:
                index_by_path[path] = len(plan.files)
                plan.files.append(spec)

        outside_parts.append(text[cursor:])
        return "".join(outside_parts)

    def _record_dangling(self, outside: str, plan: Plan) -> None:
        remainder = outside
        for pattern in (_EXPLANATION_RE, _STRUCTURE_RE, _PACKAGE_RE, _COMMAND_RE):
            remainder = pattern.sub("", remainder)
        for match in _DANGLING_RE.finditer(remainder):
            tag = match.group(1)
            snippet = remainder[match.start():match.start() + 60].strip()
            plan.parse_errors.append(ParseIssue(item=snippet, message=f"unterminated <{tag}> directive"))


def parse_ai_response(text: object) -> Plan:
    """Module-level convenience around :class:`ResponseParser`."""
    return ResponseParser().parse(text)
