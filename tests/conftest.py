"""Shared fixtures: small board geometries in the three shapes the mapper supports and a sample layout."""

import pytest

from keymap_compiler.boards import BoardDefinition
from keymap_compiler.geometry import BoardGeometry, KeyGeometry, Position, SplitSpec

SAMPLE_DOCUMENT = """\
---
name: Test Layout
author: someone
created: "2024-01-01T00:00:00Z"
modified: "2024-01-02T00:00:00Z"
tags: [test, small]
keymap_name: test
---

# Test Layout

## Layer 0: Base
**ID**: base
**Color**: #101010

| C0 | C1 | C2 |
|----|----|----|
| KC_A{#FF0000} | KC_B@mods | MO(@nav) |
| KC_D | KC_E | KC_F |

## Layer 1: Navigation
**ID**: nav
**Category**: nav-keys

| C0 | C1 | C2 |
|----|----|----|
| KC_LEFT | KC_RGHT |  |

---

## Key Descriptions

- 0:0:0: Letter A

## Categories

- mods: Modifiers (#00FF00)
- nav-keys: Navigation (#0000FF) - arrow keys

## Settings

**Tapping Term**: 200ms
"""


def unibody(lights: bool = True) -> BoardGeometry:
    """2x3 board, keys and lights in row-major order."""
    return BoardGeometry(
        keys=[
            KeyGeometry(Position(row, col), light_index=row * 3 + col if lights else None, x=col, y=row)
            for row in range(2)
            for col in range(3)
        ],
        matrix_rows=2,
        matrix_cols=3,
        has_lighting=lights,
    )


def split(reverse_columns: bool, boundary: int | None) -> BoardGeometry:
    """
    Split board with three keys per half: left half on matrix row 0, right half on matrix row 1.
    The right half is wired from its outer edge when `reverse_columns` is set, i.e. column 0 is the
    rightmost key.
    """
    keys = [KeyGeometry(Position(0, col), light_index=col, x=col, y=0) for col in range(3)]
    for col in range(3):
        x = 7 - col if reverse_columns else 5 + col
        keys.append(KeyGeometry(Position(1, col), light_index=3 + col, x=x, y=0))
    return BoardGeometry(
        keys=keys,
        matrix_rows=2,
        matrix_cols=3,
        split=SplitSpec(reverse_columns=reverse_columns, axis="row", boundary=boundary),
        has_lighting=True,
    )


@pytest.fixture
def unibody_geometry() -> BoardGeometry:
    return unibody()


@pytest.fixture
def split_reversed_geometry() -> BoardGeometry:
    return split(reverse_columns=True, boundary=1)


@pytest.fixture
def split_geometry() -> BoardGeometry:
    # no boundary, halves are told apart by the gap between x=2 and x=5
    return split(reverse_columns=False, boundary=None)


@pytest.fixture
def lighting_board() -> BoardDefinition:
    return BoardDefinition(keyboard="test/board", geometry=unibody(), layout_name="LAYOUT")


@pytest.fixture
def plain_board() -> BoardDefinition:
    return BoardDefinition(keyboard="test/plain", geometry=unibody(lights=False), layout_name="LAYOUT")


@pytest.fixture
def sample_document() -> str:
    return SAMPLE_DOCUMENT
