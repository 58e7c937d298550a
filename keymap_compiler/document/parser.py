"""
Module containing the layout document parser, which reads the Markdown layout format
(YAML frontmatter, layer blocks with tables, categories, key descriptions, tap dances and settings)
into a Layout.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import ClassVar

import yaml
from pydantic import ValidationError as PydanticValidationError

from keymap_compiler.config import ParseConfig
from keymap_compiler.geometry import Position
from keymap_compiler.layout import (
    KEBAB_RE,
    LAYER_ID_RE,
    Category,
    KeyDefinition,
    Layer,
    Layout,
    LayoutMetadata,
    RgbColor,
    TapDance,
)

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Error type for exceptions that happen during layout document parsing."""

    def __init__(self, message: str, line: int, column: int | None = None):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"line {self.line}" if self.column is None else f"line {self.line}, column {self.column}"
        return f"{where}: {self.message}"


class CellSyntaxError(ValueError):
    """Malformed table cell, `offset` is the 0-based character offset of the problem in the cell."""

    def __init__(self, message: str, offset: int):
        self.offset = offset
        super().__init__(message)


KEYCODE_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\(.*\))?")
CELL_COLOR_RE = re.compile(r"#[0-9A-Fa-f]{6}")


def parse_cell(cell: str) -> tuple[str, RgbColor | None, str | None]:
    """
    Split a table cell of the form `KEYCODE[{#RRGGBB}][@category-id]` into its keycode, color
    override and category id. Suffix markers inside the keycode's parentheses belong to the keycode,
    e.g. `LT(@nav, KC_SPC)`.
    """
    depth, end = 0, len(cell)
    for ind, char in enumerate(cell):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise CellSyntaxError("unbalanced ')' in keycode", ind)
        elif depth == 0 and char in "{@":
            end = ind
            break
    if depth > 0:
        raise CellSyntaxError("unbalanced '(' in keycode", cell.index("("))

    keycode = cell[:end].rstrip()
    if not KEYCODE_RE.fullmatch(keycode):
        raise CellSyntaxError(f'malformed keycode "{keycode}"', 0)

    rest, color, category = cell[end:], None, None
    if rest.startswith("{"):
        if (close := rest.find("}")) < 0:
            raise CellSyntaxError("unterminated color suffix, expected {#RRGGBB}", end)
        if not CELL_COLOR_RE.fullmatch(rest[1:close]):
            raise CellSyntaxError(f'malformed color "{rest[1:close]}", expected {{#RRGGBB}}', end + 1)
        color = RgbColor.from_hex(rest[1:close])
        end += close + 1
        rest = rest[close + 1 :]
    if rest.startswith("@"):
        category = rest[1:]
        if not KEBAB_RE.fullmatch(category):
            raise CellSyntaxError(f'malformed category id "{category}", expected @kebab-case-id', end + 1)
    elif rest:
        raise CellSyntaxError(f'unexpected text "{rest}" after keycode', end)
    return keycode, color, category


class ParseState(Enum):
    """Region of the document the parser is currently in."""

    START = auto()
    FRONTMATTER = auto()
    BODY = auto()
    LAYER = auto()
    TABLE_HEADER = auto()
    TABLE_SEPARATOR = auto()
    TABLE = auto()
    CATEGORIES = auto()
    DESCRIPTIONS = auto()
    SETTINGS = auto()
    TAP_DANCES = auto()
    SKIPPED_SECTION = auto()


@dataclass
class _PendingLayer:
    line: int
    name: str
    id: str | None = None
    color: RgbColor | None = None
    category_id: str | None = None
    colors_enabled: bool = True
    n_columns: int = 0
    n_rows: int = 0


@dataclass
class _PendingTapDance:
    line: int
    name: str
    actions: dict[str, str]


class LayoutParser:
    """Line-driven state machine that turns a layout document into a Layout."""

    _layer_header_re: ClassVar[re.Pattern] = re.compile(r"##\s+Layer\s+(\d+):\s+(.+)")
    _property_re: ClassVar[re.Pattern] = re.compile(r"\*\*(.+?)\*\*:\s*(.*)")
    _separator_cell_re: ClassVar[re.Pattern] = re.compile(r":?-+:?")
    _category_re: ClassVar[re.Pattern] = re.compile(
        r"-\s+([a-z][a-z0-9-]*):\s+(.+?)\s+\(#([0-9A-Fa-f]{6})\)(?:\s+-\s+(.+))?"
    )
    _description_re: ClassVar[re.Pattern] = re.compile(r"-\s+(\d+):(\d+):(\d+):\s*(.*)")
    _tap_dance_re: ClassVar[re.Pattern] = re.compile(r"-\s+\*\*(.+?)\*\*:?")
    _tap_dance_action_re: ClassVar[re.Pattern] = re.compile(r"-\s+(single tap|double tap|hold):\s*(.+)", re.IGNORECASE)
    _sections: ClassVar[dict[str, ParseState]] = {
        "categories": ParseState.CATEGORIES,
        "key descriptions": ParseState.DESCRIPTIONS,
        "settings": ParseState.SETTINGS,
        "tap dances": ParseState.TAP_DANCES,
    }

    def __init__(self, config: ParseConfig | None = None):
        self.cfg = config if config is not None else ParseConfig()
        self.state = ParseState.START
        self.metadata: LayoutMetadata | None = None
        self.layers: list[Layer] = []
        self.categories: list[Category] = []
        self.settings: dict[str, str] = {}
        self._tap_dances: list[_PendingTapDance] = []
        self._frontmatter: list[str] = []
        self._frontmatter_line = 0
        self._pending: _PendingLayer | None = None
        self._keys: dict[Position, KeyDefinition] = {}
        self._descriptions: list[tuple[int, int, Position, str]] = []
        self._references: list[tuple[str, int, int | None]] = []

    def parse(self, document: str) -> Layout:
        """Parse the whole document, raising ParseError on the first problem."""
        lines = document.splitlines()
        ind = 0
        while ind < len(lines):
            if self._consume(lines[ind], ind + 1):
                ind += 1
        return self._finish(len(lines))

    def _set_state(self, state: ParseState, line_no: int) -> None:
        logger.debug("line %d: %s -> %s", line_no, self.state.name, state.name)
        self.state = state

    def _consume(self, line: str, line_no: int) -> bool:
        """Process one line in the current state, return False if the line needs to be seen again."""
        stripped = line.strip()
        match self.state:
            case ParseState.START:
                if not stripped:
                    return True
                if stripped != "---":
                    raise ParseError("document must start with a frontmatter block opened by '---'", line_no)
                self._frontmatter_line = line_no
                self._set_state(ParseState.FRONTMATTER, line_no)
            case ParseState.FRONTMATTER:
                # indented "---" lines belong to multi-line YAML values
                if line.rstrip() == "---":
                    self._parse_frontmatter()
                    self._set_state(ParseState.BODY, line_no)
                else:
                    self._frontmatter.append(line)
            case ParseState.TABLE_HEADER | ParseState.TABLE_SEPARATOR | ParseState.TABLE:
                if stripped.startswith("|"):
                    self._parse_table_line(stripped, line, line_no)
                else:
                    self._end_table(line_no)
                    return False
            case _ if stripped.startswith("## "):
                self._parse_heading(stripped, line_no)
            case ParseState.LAYER:
                if stripped.startswith("|"):
                    self._set_state(ParseState.TABLE_HEADER, line_no)
                    return False
                if stripped == "---":
                    self._end_layer()
                    self._set_state(ParseState.BODY, line_no)
                elif stripped:
                    self._parse_layer_property(stripped, line_no)
            case ParseState.CATEGORIES:
                if stripped:
                    self._parse_category(stripped, line_no)
            case ParseState.DESCRIPTIONS:
                if stripped:
                    self._parse_description(stripped, line_no)
            case ParseState.SETTINGS:
                if stripped:
                    if not (m := self._property_re.fullmatch(stripped)):
                        raise ParseError(f'expected a "**Name**: value" setting, got "{stripped}"', line_no)
                    self.settings[m.group(1).strip()] = m.group(2).strip()
            case ParseState.TAP_DANCES:
                if stripped:
                    self._parse_tap_dance_line(stripped, line_no)
            case ParseState.BODY | ParseState.SKIPPED_SECTION:
                if stripped.startswith("|"):
                    raise ParseError("table found outside of a layer block", line_no, line.index("|") + 1)
        return True

    def _parse_frontmatter(self) -> None:
        line = self._frontmatter_line
        try:
            data = yaml.safe_load("\n".join(self._frontmatter))
        except yaml.YAMLError as err:
            mark = getattr(err, "problem_mark", None)
            at = line + 1 + mark.line if mark is not None else line
            raise ParseError(f"invalid YAML in frontmatter: {err}", at) from err
        if not isinstance(data, dict):
            raise ParseError("frontmatter must be a YAML mapping", line)
        try:
            self.metadata = LayoutMetadata.model_validate(data)
        except PydanticValidationError as err:
            raise ParseError(f"invalid frontmatter: {err}", line) from err
        if self.metadata.version not in self.cfg.schema_versions:
            raise ParseError(
                f'unsupported layout version "{self.metadata.version}", supported: {self.cfg.schema_versions}', line
            )
        if len(self.metadata.name) > self.cfg.max_name_length:
            raise ParseError(f"layout name is longer than {self.cfg.max_name_length} characters", line)

    def _parse_heading(self, stripped: str, line_no: int) -> None:
        self._end_layer()
        if m := self._layer_header_re.fullmatch(stripped):
            if (number := int(m.group(1))) != len(self.layers):
                raise ParseError(f"expected layer {len(self.layers)}, found layer {number}", line_no)
            self._pending = _PendingLayer(line=line_no, name=m.group(2).strip())
            self._keys = {}
            self._set_state(ParseState.LAYER, line_no)
        elif (state := self._sections.get(stripped[3:].strip().lower())) is not None:
            self._set_state(state, line_no)
        else:
            logger.debug("skipping unknown section %s at line %d", stripped, line_no)
            self._set_state(ParseState.SKIPPED_SECTION, line_no)

    def _parse_layer_property(self, stripped: str, line_no: int) -> None:
        assert self._pending is not None
        if not (m := self._property_re.fullmatch(stripped)):
            raise ParseError(f'expected a "**Property**: value" line or a table, got "{stripped}"', line_no)
        name, value = m.group(1).strip().lower(), m.group(2).strip()
        column = len(stripped) - len(value) + 1
        match name:
            case "id":
                if not LAYER_ID_RE.fullmatch(value):
                    raise ParseError(
                        f'layer id "{value}" must contain only letters, digits and "-"', line_no, column
                    )
                self._pending.id = value
            case "color":
                try:
                    self._pending.color = RgbColor.from_hex(value)
                except ValueError as err:
                    raise ParseError(str(err), line_no, column) from err
            case "category":
                if not KEBAB_RE.fullmatch(value):
                    raise ParseError(f'malformed category id "{value}"', line_no, column)
                self._pending.category_id = value
                self._references.append((value, line_no, column))
            case "layer colors":
                self._pending.colors_enabled = value.lower() in ("true", "yes", "1")
            case _:
                logger.warning('ignoring unknown layer property "%s" at line %d', m.group(1), line_no)

    @staticmethod
    def _split_row(stripped: str, line: str, line_no: int) -> list[tuple[str, int]]:
        """Split a table row into (cell text, 1-based column of the cell start) pairs."""
        if len(stripped) < 2 or not stripped.endswith("|"):
            raise ParseError("unbalanced table row, rows must start and end with '|'", line_no, len(line))
        offset = line.index("|") + 1
        cells = []
        for raw in stripped[1:-1].split("|"):
            lead = len(raw) - len(raw.lstrip())
            cells.append((raw.strip(), offset + lead + 1))
            offset += len(raw) + 1
        return cells

    def _parse_table_line(self, stripped: str, line: str, line_no: int) -> None:
        assert self._pending is not None
        cells = self._split_row(stripped, line, line_no)
        match self.state:
            case ParseState.TABLE_HEADER:
                self._pending.n_columns = len(cells)
                self._set_state(ParseState.TABLE_SEPARATOR, line_no)
                return
            case ParseState.TABLE_SEPARATOR:
                for text, column in cells:
                    if not self._separator_cell_re.fullmatch(text):
                        raise ParseError("expected a table separator row like |----|", line_no, column)
        if len(cells) != self._pending.n_columns:
            raise ParseError(
                f"table row has {len(cells)} cells but the header declares {self._pending.n_columns}", line_no
            )
        if self.state == ParseState.TABLE_SEPARATOR:
            self._set_state(ParseState.TABLE, line_no)
            return

        row = self._pending.n_rows
        self._pending.n_rows += 1
        for col, (text, column) in enumerate(cells):
            if not text:
                continue
            try:
                keycode, color, category = parse_cell(text)
            except CellSyntaxError as err:
                raise ParseError(str(err), line_no, column + err.offset) from err
            pos = Position(row, col)
            self._keys[pos] = KeyDefinition(
                keycode=keycode,
                position=pos,
                visual_slot=len(self._keys),
                color_override=color,
                category_id=category,
            )
            if category is not None:
                self._references.append((category, line_no, column))

    def _end_table(self, line_no: int) -> None:
        if self.state != ParseState.TABLE:
            raise ParseError("table ended before its header and separator rows", line_no)
        self._end_layer()
        self._set_state(ParseState.BODY, line_no)

    def _end_layer(self) -> None:
        if (pending := self._pending) is None:
            return
        self.layers.append(
            Layer(
                index=len(self.layers),
                name=pending.name,
                id=pending.id,
                default_color=pending.color,
                category_id=pending.category_id,
                colors_enabled=pending.colors_enabled,
                keys=self._keys,
            )
        )
        self._pending, self._keys = None, {}

    def _parse_category(self, stripped: str, line_no: int) -> None:
        if not (m := self._category_re.fullmatch(stripped)):
            raise ParseError(f'expected "- id: Name (#RRGGBB)" category entry, got "{stripped}"', line_no)
        cat_id, name, color, description = m.groups()
        if any(cat.id == cat_id for cat in self.categories):
            raise ParseError(f'category "{cat_id}" is defined more than once', line_no)
        try:
            self.categories.append(Category(id=cat_id, name=name, color=color, description=description))
        except PydanticValidationError as err:
            raise ParseError(f"invalid category: {err}", line_no) from err

    def _parse_description(self, stripped: str, line_no: int) -> None:
        if not (m := self._description_re.fullmatch(stripped)):
            raise ParseError(f'expected "- layer:row:col: text" key description, got "{stripped}"', line_no)
        layer, row, col, text = m.groups()
        self._descriptions.append((line_no, int(layer), Position(int(row), int(col)), text.strip()))

    def _parse_tap_dance_line(self, stripped: str, line_no: int) -> None:
        if m := self._tap_dance_action_re.fullmatch(stripped):
            if not self._tap_dances:
                raise ParseError("tap dance action found before any tap dance name", line_no)
            action = m.group(1).lower().replace(" ", "_")
            pending = self._tap_dances[-1]
            if action in pending.actions:
                raise ParseError(f'tap dance "{pending.name}" defines "{m.group(1)}" more than once', line_no)
            pending.actions[action] = m.group(2).strip()
        elif m := self._tap_dance_re.fullmatch(stripped):
            self._tap_dances.append(_PendingTapDance(line=line_no, name=m.group(1).strip(), actions={}))
        else:
            raise ParseError(
                f'expected "- **name**:" or "- Single Tap/Double Tap/Hold: KEYCODE" entry, got "{stripped}"', line_no
            )

    def _build_tap_dances(self) -> list[TapDance]:
        out: list[TapDance] = []
        for pending in self._tap_dances:
            if "single_tap" not in pending.actions:
                raise ParseError(f'tap dance "{pending.name}" has no Single Tap action', pending.line)
            try:
                tap_dance = TapDance(name=pending.name, **pending.actions)
            except PydanticValidationError as err:
                raise ParseError(f"invalid tap dance: {err}", pending.line) from err
            if any(td.enum_name == tap_dance.enum_name for td in out):
                raise ParseError(f'tap dance "{pending.name}" is defined more than once', pending.line)
            out.append(tap_dance)
        return out

    def _finish(self, n_lines: int) -> Layout:
        match self.state:
            case ParseState.START:
                raise ParseError("document is empty", max(n_lines, 1))
            case ParseState.FRONTMATTER:
                raise ParseError("unterminated frontmatter, missing closing '---'", self._frontmatter_line)
            case ParseState.TABLE_HEADER | ParseState.TABLE_SEPARATOR:
                raise ParseError("table ended before its header and separator rows", n_lines)
        self._end_layer()
        if not self.layers:
            raise ParseError("layout does not define any layers", n_lines)

        cat_ids = {cat.id for cat in self.categories}
        for cat_id, line_no, column in self._references:
            if cat_id not in cat_ids:
                raise ParseError(f'category "{cat_id}" is not defined in the categories block', line_no, column)

        layer_ids = [layer.id for layer in self.layers if layer.id is not None]
        if len(set(layer_ids)) != len(layer_ids):
            raise ParseError("layer ids must be unique", n_lines)

        for line_no, layer_index, pos, text in self._descriptions:
            key = self.layers[layer_index].keys.get(pos) if layer_index < len(self.layers) else None
            if key is None:
                logger.warning("ignoring description for missing key %d:%s at line %d", layer_index, pos, line_no)
                continue
            key.description = text or None

        tap_dances = self._build_tap_dances()

        assert self.metadata is not None
        return Layout(
            metadata=self.metadata,
            layers=self.layers,
            categories=self.categories,
            tap_dances=tap_dances,
            settings=self.settings,
        )


def parse(document: str, config: ParseConfig | None = None) -> Layout:
    """Parse a layout document into a Layout, raising ParseError if it is malformed."""
    return LayoutParser(config).parse(document)
