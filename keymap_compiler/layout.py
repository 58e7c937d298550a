"""
Module with layout data model classes: colors, categories, key definitions, layers, tap dances and
the layout holding them, along with helpers that editors use to mutate a layout in place.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator, model_validator

from keymap_compiler.geometry import BoardGeometry, Position
from keymap_compiler.keycodes import tap_dance_enum, tap_dance_references
from keymap_compiler.mapping import CoordinateMapper

KEBAB_RE = re.compile(r"[a-z][a-z0-9-]*")
# kebab-case names as well as generated UUIDs, which may start with a digit
LAYER_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9-]*")
TAP_DANCE_NAME_RE = re.compile(r"[A-Za-z0-9_]+")
TAG_RE = re.compile(r"[a-z0-9-]+")


@dataclass(frozen=True, slots=True)
class RgbColor:
    """24-bit color, convertible to and from "#RRGGBB" strings."""

    r: int
    g: int
    b: int

    _hex_re: ClassVar[re.Pattern] = re.compile(r"#?([0-9A-Fa-f]{2})([0-9A-Fa-f]{2})([0-9A-Fa-f]{2})")

    def __post_init__(self) -> None:
        for channel in (self.r, self.g, self.b):
            if not 0 <= channel <= 255:
                raise ValueError(f"Color channel value {channel} is outside of 0-255")

    @classmethod
    def from_hex(cls, value: str) -> "RgbColor":
        """Parse a 6-digit hex color, with or without the leading "#", in any case."""
        if not (m := cls._hex_re.fullmatch(value.strip())):
            raise ValueError(f'"{value}" is not a valid #RRGGBB color')
        return cls(*(int(channel, 16) for channel in m.groups()))

    def to_hex(self) -> str:
        """Format as "#RRGGBB" with uppercase digits."""
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    def __str__(self) -> str:
        return self.to_hex()


def _to_color(value):
    if isinstance(value, str):
        return RgbColor.from_hex(value)
    return value


class Category(BaseModel):
    """A named color grouping that can be applied to layers and keys."""

    id: str
    name: str
    color: RgbColor
    description: str | None = None

    @field_validator("color", mode="before")
    @classmethod
    def parse_color(cls, val):
        """Accept "#RRGGBB" strings."""
        return _to_color(val)

    @field_validator("id")
    @classmethod
    def check_id(cls, val: str) -> str:
        """Category ids are kebab-case."""
        assert KEBAB_RE.fullmatch(val), f'Category id "{val}" must be lowercase kebab-case'
        return val

    @field_validator("name")
    @classmethod
    def check_name(cls, val: str) -> str:
        """Category names are short, single line labels."""
        val = val.strip()
        assert val, "Category name cannot be empty"
        assert len(val) <= 50, f'Category name "{val}" is longer than 50 characters'
        return val


class KeyDefinition(BaseModel):
    """Assignment of a keycode to one matrix position on one layer."""

    keycode: str
    position: Position
    visual_slot: int = 0
    light_index: int | None = None
    color_override: RgbColor | None = None
    category_id: str | None = None
    description: str | None = None

    @field_validator("color_override", mode="before")
    @classmethod
    def parse_color(cls, val):
        """Accept "#RRGGBB" strings."""
        return _to_color(val)

    @field_validator("keycode")
    @classmethod
    def check_keycode(cls, val: str) -> str:
        """Keycodes are stripped and non-empty."""
        val = val.strip()
        assert val, "Keycode cannot be empty"
        return val

    @field_validator("description")
    @classmethod
    def strip_description(cls, val: str | None) -> str | None:
        """Blank descriptions are dropped."""
        return val.strip() or None if val is not None else None


class Layer(BaseModel):
    """
    A named set of key assignments. `keys` is kept in matrix position order, which is the order keys
    appear in the layout document, and visual slots are numbered contiguously in that order.
    """

    index: int
    name: str
    id: str | None = None
    default_color: RgbColor | None = None
    category_id: str | None = None
    colors_enabled: bool = True
    keys: dict[Position, KeyDefinition] = {}

    @field_validator("default_color", mode="before")
    @classmethod
    def parse_color(cls, val):
        """Accept "#RRGGBB" strings."""
        return _to_color(val)

    @field_validator("name")
    @classmethod
    def check_name(cls, val: str) -> str:
        """Layer names are stripped and non-empty."""
        val = val.strip()
        assert val, "Layer name cannot be empty"
        return val

    @field_validator("id")
    @classmethod
    def check_id(cls, val: str | None) -> str | None:
        """Layer ids are alphanumeric with dashes."""
        assert val is None or LAYER_ID_RE.fullmatch(
            val
        ), f'Layer id "{val}" must contain only letters, digits and "-", and cannot start with "-"'
        return val

    @model_validator(mode="after")
    def order_keys(self):
        """Check that keys are stored under their own positions, then put them in document order."""
        for pos, key in self.keys.items():
            assert pos == key.position, f"Key {key.keycode} at {key.position} is stored under position {pos}"
        self._renumber()
        return self

    def _renumber(self) -> None:
        self.keys = {pos: self.keys[pos] for pos in sorted(self.keys)}
        for slot, key in enumerate(self.keys.values()):
            key.visual_slot = slot

    def set_key(self, key: KeyDefinition) -> None:
        """Add or replace the key at `key.position`."""
        self.keys[key.position] = key
        self._renumber()

    def remove_key(self, pos: Position) -> KeyDefinition | None:
        """Remove and return the key at the given position, if any."""
        key = self.keys.pop(pos, None)
        self._renumber()
        return key

    def get_key(self, pos: Position) -> KeyDefinition | None:
        """Key at the given position, if any."""
        return self.keys.get(pos)


class TapDance(BaseModel):
    """Keycodes sent by a `TD(name)` key on a single tap, a double tap and a hold."""

    name: str
    single_tap: str
    double_tap: str | None = None
    hold: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, val: str) -> str:
        """Tap dance names become part of C identifiers."""
        assert TAP_DANCE_NAME_RE.fullmatch(val), f'Tap dance name "{val}" must contain only a-z, A-Z, 0-9 and "_"'
        return val

    @field_validator("single_tap", "double_tap", "hold")
    @classmethod
    def check_keycode(cls, val: str | None) -> str | None:
        """Action keycodes are stripped and non-empty."""
        if val is None:
            return None
        val = val.strip()
        assert val, "Tap dance keycode cannot be empty"
        return val

    @property
    def enum_name(self) -> str:
        """Name of the C enum member identifying this tap dance."""
        return tap_dance_enum(self.name)

    def keycodes(self) -> list[str]:
        """Keycodes of the defined actions, single tap first."""
        return [code for code in (self.single_tap, self.double_tap, self.hold) if code is not None]


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class LayoutMetadata(BaseModel):
    """Layout document frontmatter."""

    name: str
    description: str = ""
    author: str = ""
    created: datetime = Field(default_factory=_now)
    modified: datetime = Field(default_factory=_now)
    tags: list[str] = []
    is_template: bool = False
    version: str = "1.0"
    keyboard: str | None = None
    layout_variant: str | None = None
    keymap_name: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, val: str) -> str:
        """Layout names are stripped and non-empty."""
        val = val.strip()
        assert val, "Layout name cannot be empty"
        return val

    @field_validator("tags")
    @classmethod
    def check_tags(cls, val: list[str]) -> list[str]:
        """Tags are lowercase kebab-case words."""
        for tag in val:
            assert TAG_RE.fullmatch(tag), f'Tag "{tag}" must be lowercase, containing only a-z, 0-9 and "-"'
        return val

    @model_validator(mode="after")
    def check_dates(self):
        """Modification time cannot precede creation time, when the two are comparable."""
        if (self.created.tzinfo is None) == (self.modified.tzinfo is None):
            assert self.modified >= self.created, "Modification time cannot precede creation time"
        return self


class Layout(BaseModel):
    """Complete layout: metadata, layers with their keys, categories, tap dances and opaque settings."""

    metadata: LayoutMetadata
    layers: list[Layer]
    categories: list[Category] = []
    tap_dances: list[TapDance] = []

    # settings block entries in document order, interpreted only by the generator
    settings: dict[str, str] = {}

    @model_validator(mode="after")
    def check_structure(self):
        """Check layer numbering and that identifiers are unique and every category reference resolves."""
        assert self.layers, "A layout needs at least the base layer"
        for ind, layer in enumerate(self.layers):
            assert layer.index == ind, f'Layer "{layer.name}" has index {layer.index}, expected {ind}'

        cat_ids = [cat.id for cat in self.categories]
        assert len(set(cat_ids)) == len(cat_ids), "Category ids must be unique"
        layer_ids = [layer.id for layer in self.layers if layer.id is not None]
        assert len(set(layer_ids)) == len(layer_ids), "Layer ids must be unique"
        enums = [td.enum_name for td in self.tap_dances]
        assert len(set(enums)) == len(enums), "Tap dance names must be unique, ignoring case"

        for layer, key, cat_id in self.category_references():
            where = f'key {key.keycode} at {key.position} on layer {layer.index}' if key else f"layer {layer.index}"
            assert cat_id in cat_ids, f'Category "{cat_id}" referenced by {where} is not defined'
        return self

    @classmethod
    def from_geometry(cls, geometry: BoardGeometry, name: str, keycode: str = "KC_TRNS", **metadata) -> "Layout":
        """Synthesize a layout with a single base layer assigning `keycode` to every key of the board."""
        keys = {
            k.position: KeyDefinition(keycode=keycode, position=k.position, light_index=k.light_index)
            for k in geometry.keys
        }
        return cls(
            metadata=LayoutMetadata(name=name, **metadata),
            layers=[Layer(index=0, name="Base", keys=keys)],
        )

    def category_references(self):
        """Yield (layer, key or None, category id) for every category reference in the layout."""
        for layer in self.layers:
            if layer.category_id is not None:
                yield layer, None, layer.category_id
            for key in layer.keys.values():
                if key.category_id is not None:
                    yield layer, key, key.category_id

    def get_layer(self, index: int) -> Layer | None:
        """Layer with the given index, if any."""
        return self.layers[index] if 0 <= index < len(self.layers) else None

    def get_category(self, cat_id: str) -> Category | None:
        """Category with the given id, if any."""
        return next((cat for cat in self.categories if cat.id == cat_id), None)

    def get_tap_dance(self, name: str) -> TapDance | None:
        """Tap dance with the given name, if any."""
        return next((td for td in self.tap_dances if td.name == name), None)

    def layer_ids(self) -> dict[str, int]:
        """Map layer ids to their indices."""
        return {layer.id: layer.index for layer in self.layers if layer.id is not None}

    def add_layer(self, name: str, **kwargs) -> Layer:
        """Append a new empty layer."""
        layer = Layer(index=len(self.layers), name=name, **kwargs)
        if layer.id is not None and layer.id in self.layer_ids():
            raise ValueError(f'Layer id "{layer.id}" is already in use')
        self.layers.append(layer)
        return layer

    def remove_layer(self, index: int) -> Layer:
        """Remove a layer and renumber the ones after it. The base layer cannot be removed."""
        if index == 0:
            raise ValueError("The base layer cannot be removed")
        if self.get_layer(index) is None:
            raise ValueError(f"There is no layer with index {index}")
        layer = self.layers.pop(index)
        for ind, remaining in enumerate(self.layers):
            remaining.index = ind
        return layer

    def add_category(self, category: Category) -> None:
        """Add a category, its id must not be in use yet."""
        if self.get_category(category.id) is not None:
            raise ValueError(f'Category "{category.id}" already exists')
        self.categories.append(category)

    def remove_category(self, cat_id: str) -> Category | None:
        """Remove a category and clear every layer and key reference to it."""
        if (category := self.get_category(cat_id)) is None:
            return None
        self.categories.remove(category)
        for layer in self.layers:
            if layer.category_id == cat_id:
                layer.category_id = None
            for key in layer.keys.values():
                if key.category_id == cat_id:
                    key.category_id = None
        return category

    def add_tap_dance(self, tap_dance: TapDance) -> None:
        """Add a tap dance, its name must not be in use yet."""
        if any(td.enum_name == tap_dance.enum_name for td in self.tap_dances):
            raise ValueError(f'Tap dance "{tap_dance.name}" already exists')
        self.tap_dances.append(tap_dance)

    def tap_dance_references(self):
        """Yield (layer, key, tap dance name) for every `TD(name)` used on a layer."""
        for layer in self.layers:
            for key in layer.keys.values():
                for name in tap_dance_references(key.keycode):
                    yield layer, key, name

    def unused_tap_dances(self) -> list[str]:
        """Names of tap dances that no key refers to."""
        used = {name for _, _, name in self.tap_dance_references()}
        return [td.name for td in self.tap_dances if td.name not in used]

    def bind_lights(self, mapper: CoordinateMapper) -> None:
        """Fill in `light_index` of every key from the board's coordinate mapper."""
        for layer in self.layers:
            for key in layer.keys.values():
                key.light_index = mapper.matrix_to_light(key.position)
