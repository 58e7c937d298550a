"""
Module containing keycode reference lookups used for validation warnings, and helpers that
resolve `@layer-id` and `TD(name)` references inside keycodes.
"""

import logging
import re
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# everything from "@" up to the next argument delimiter, so that malformed ids are reported too
LAYER_REF_RE = re.compile(r"@([^\s,()]*)")
TAP_DANCE_REF_RE = re.compile(r"\bTD\(\s*([^\s,()]*)\s*\)")
LAYER_FN_RE = re.compile(r"(MO|TG|TO|TT|DF|PDF|OSL|LT|LM)\(\s*(\d+)\s*[,)]")
TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class KeycodeLookup(Protocol):
    """Interface of keycode reference databases."""

    def is_known(self, keycode: str) -> bool:
        """Return whether the keycode, including any function arguments, is recognized."""

    def requires_lighting(self, keycode: str) -> bool:
        """Return whether the keycode only makes sense on boards with lighting hardware."""


def keycode_tokens(keycode: str) -> list[str]:
    """Identifiers making up a keycode, e.g. ["LT", "KC_SPC"] for "LT(1, KC_SPC)"."""
    return TOKEN_RE.findall(TAP_DANCE_REF_RE.sub("TD(0)", LAYER_REF_RE.sub("0", keycode)))


class KeycodeTable(BaseModel):
    """Keycode lookup backed by lists of keycode names and name prefixes, typically loaded from YAML."""

    keycodes: set[str] = set()
    prefixes: list[str] = []
    lighting_keycodes: set[str] = set()
    lighting_prefixes: list[str] = []

    @classmethod
    def from_yaml(cls, path: Path) -> "KeycodeTable":
        """Load the table from a YAML mapping with the field names as keys."""
        with open(path, "rb") as f:
            return cls(**yaml.safe_load(f))

    def _known_token(self, token: str) -> bool:
        return token in self.keycodes or token.startswith(tuple(self.prefixes))

    def is_known(self, keycode: str) -> bool:
        return all(self._known_token(token) for token in keycode_tokens(keycode))

    def requires_lighting(self, keycode: str) -> bool:
        return any(
            token in self.lighting_keycodes or token.startswith(tuple(self.lighting_prefixes))
            for token in keycode_tokens(keycode)
        )


def layer_references(keycode: str) -> list[str]:
    """Layer ids referenced in the keycode through `@layer-id`."""
    return LAYER_REF_RE.findall(keycode)


def resolve_layer_references(keycode: str, layer_ids: dict[str, int]) -> str:
    """Substitute `@layer-id` references with layer indices, raising KeyError for unknown ids."""

    def repl(m: re.Match) -> str:
        return str(layer_ids[m.group(1)])

    resolved = LAYER_REF_RE.sub(repl, keycode)
    if resolved != keycode:
        logger.debug("resolved layer references in %s to %s", keycode, resolved)
    return resolved


def tap_dance_enum(name: str) -> str:
    """C enum member of the tap dance with the given name."""
    return f"TD_{name.upper()}"


def tap_dance_references(keycode: str) -> list[str]:
    """Tap dance names referenced in the keycode through `TD(name)`."""
    return TAP_DANCE_REF_RE.findall(keycode)


def resolve_tap_dance_references(keycode: str) -> str:
    """Substitute `TD(name)` references with the enum members of the tap dances."""
    return TAP_DANCE_REF_RE.sub(lambda m: f"TD({tap_dance_enum(m.group(1))})", keycode)


def numeric_layer_targets(keycode: str) -> list[int]:
    """Layer indices targeted by layer functions with literal arguments, e.g. [2] for "MO(2)"."""
    return [int(m.group(2)) for m in LAYER_FN_RE.finditer(keycode)]
