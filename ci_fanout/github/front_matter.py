"""Front-matter extraction and parsing for issue bodies."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

import yaml

logger = logging.getLogger(__name__)

DELIMITER_RE = re.compile(r"^---[ \t]*$")
KEY_RE = re.compile(r"^(?P<key>[A-Za-z_][\w-]*)\s*:\s*(?P<rest>.*?)\s*$")
ITEM_RE = re.compile(r"^\s+-\s*(?P<value>.*?)\s*$")
INLINE_LIST_RE = re.compile(r"^\[(?P<items>.*)\]$")


class FrontMatterError(ValueError):
    """The candidate block could not be parsed by a front-matter dialect."""


class FrontMatterParser(Protocol):
    name: str

    def parse(self, text: str) -> dict[str, Any]: ...


def extract_front_matter(body: str) -> str | None:
    """Return the text between the first two `---` delimiter lines, if any."""
    collected: list[str] = []
    delimiters = 0
    for line in body.splitlines():
        if DELIMITER_RE.match(line):
            delimiters += 1
            if delimiters == 2:
                break
            continue
        if delimiters == 1:
            collected.append(line)

    if delimiters < 2:
        return None
    block = "\n".join(collected)
    return block if block.strip() else None


class YamlFrontMatterParser:
    """Strict YAML dialect."""

    name = "yaml"

    def parse(self, text: str) -> dict[str, Any]:
        try:
            loaded = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise FrontMatterError(f"invalid YAML front matter: {exc}") from exc
        if not isinstance(loaded, dict):
            raise FrontMatterError("front matter is not a mapping")
        return loaded


class LineListFrontMatterParser:
    """Line-oriented dialect for `key:` followed by indented `- item` lines."""

    name = "line_list"

    def parse(self, text: str) -> dict[str, Any]:
        parsed: dict[str, Any] = {}
        current: str | None = None

        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip() or line.lstrip().startswith("#"):
                continue

            item = ITEM_RE.match(line)
            if item and current is not None:
                parsed[current].append(_unquote(item.group("value")))
                continue

            key = KEY_RE.match(line)
            if key is None:
                raise FrontMatterError(f"unrecognized front matter line {lineno}: {line!r}")

            name = key.group("key")
            rest = key.group("rest")
            if not rest:
                parsed[name] = []
                current = name
                continue

            current = None
            inline = INLINE_LIST_RE.match(rest)
            if inline:
                parsed[name] = [
                    _unquote(part) for part in inline.group("items").split(",") if part.strip()
                ]
            else:
                parsed[name] = _unquote(rest)

        if not parsed:
            raise FrontMatterError("front matter defines no keys")
        return parsed


DEFAULT_PARSERS: tuple[FrontMatterParser, ...] = (
    YamlFrontMatterParser(),
    LineListFrontMatterParser(),
)


def parse_front_matter(
    text: str, parsers: tuple[FrontMatterParser, ...] = DEFAULT_PARSERS
) -> tuple[dict[str, Any], str]:
    """Try each dialect in order; return the parsed mapping and the dialect name."""
    errors: list[str] = []
    for parser in parsers:
        try:
            return parser.parse(text), parser.name
        except FrontMatterError as exc:
            logger.debug("Front matter parser %s failed: %s", parser.name, exc)
            errors.append(f"{parser.name}: {exc}")
    raise FrontMatterError("; ".join(errors) or "no front matter parsers configured")


def _unquote(value: str) -> str:
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {'"', "'"}:
        return stripped[1:-1]
    return stripped
