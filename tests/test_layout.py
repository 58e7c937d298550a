from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from keymap_compiler.document import parse
from keymap_compiler.geometry import Position
from keymap_compiler.layout import Category, KeyDefinition, Layer, Layout, LayoutMetadata, RgbColor, TapDance
from keymap_compiler.mapping import CoordinateMapper


@pytest.mark.parametrize("value", ["#ff8000", "FF8000", " #Ff8000 "])
def test_color_from_hex(value):
    color = RgbColor.from_hex(value)
    assert color == RgbColor(255, 128, 0)
    assert color.to_hex() == "#FF8000"
    assert str(color) == "#FF8000"


@pytest.mark.parametrize("value", ["#fff", "#GGGGGG", "red", "#1234567"])
def test_bad_color(value):
    with pytest.raises(ValueError):
        RgbColor.from_hex(value)


def test_color_range():
    with pytest.raises(ValueError):
        RgbColor(256, 0, 0)


def test_remove_category_clears_references(sample_document):
    layout = parse(sample_document)
    removed = layout.remove_category("nav-keys")
    assert removed is not None and removed.name == "Navigation"
    assert layout.layers[1].category_id is None
    assert layout.remove_category("nav-keys") is None

    layout.remove_category("mods")
    assert all(key.category_id is None for layer in layout.layers for key in layer.keys.values())
    assert not list(layout.category_references())


def test_add_category_duplicate(sample_document):
    layout = parse(sample_document)
    with pytest.raises(ValueError):
        layout.add_category(Category(id="mods", name="Again", color="#000000"))


def test_remove_layer(sample_document):
    layout = parse(sample_document)
    with pytest.raises(ValueError, match="base layer"):
        layout.remove_layer(0)
    with pytest.raises(ValueError):
        layout.remove_layer(5)

    layout.add_layer("Symbols", id="sym")
    assert [layer.index for layer in layout.layers] == [0, 1, 2]
    layout.remove_layer(1)
    assert [(layer.index, layer.name) for layer in layout.layers] == [(0, "Base"), (1, "Symbols")]
    assert layout.layer_ids() == {"base": 0, "sym": 1}


def test_add_layer_duplicate_id(sample_document):
    layout = parse(sample_document)
    with pytest.raises(ValueError, match="already in use"):
        layout.add_layer("Nav again", id="nav")


def test_set_and_remove_key_keeps_slots_contiguous():
    layer = Layer(index=0, name="Base")
    for pos in [Position(1, 0), Position(0, 2), Position(0, 0)]:
        layer.set_key(KeyDefinition(keycode="KC_A", position=pos))
    assert list(layer.keys) == [Position(0, 0), Position(0, 2), Position(1, 0)]
    assert [key.visual_slot for key in layer.keys.values()] == [0, 1, 2]

    assert layer.remove_key(Position(0, 2)).position == Position(0, 2)
    assert layer.remove_key(Position(5, 5)) is None
    assert [key.visual_slot for key in layer.keys.values()] == [0, 1]
    assert layer.get_key(Position(1, 0)).visual_slot == 1


def test_layout_structure_checks():
    metadata = LayoutMetadata(name="Broken")
    with pytest.raises(ValidationError, match="at least the base layer"):
        Layout(metadata=metadata, layers=[])
    with pytest.raises(ValidationError, match="expected 0"):
        Layout(metadata=metadata, layers=[Layer(index=1, name="Base")])
    with pytest.raises(ValidationError, match="not defined"):
        Layout(metadata=metadata, layers=[Layer(index=0, name="Base", category_id="nope")])
    with pytest.raises(ValidationError, match="Layer ids must be unique"):
        Layout(metadata=metadata, layers=[Layer(index=0, name="A", id="x"), Layer(index=1, name="B", id="x")])


def test_metadata_checks():
    with pytest.raises(ValidationError):
        LayoutMetadata(name="  ")
    with pytest.raises(ValidationError):
        LayoutMetadata(name="Tags", tags=["Not Valid"])
    with pytest.raises(ValidationError, match="precede"):
        LayoutMetadata(
            name="Dates",
            created=datetime(2024, 2, 1, tzinfo=timezone.utc),
            modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )


def test_from_geometry(split_reversed_geometry):
    layout = Layout.from_geometry(split_reversed_geometry, "Fresh", keyboard="test/split")
    assert layout.metadata.keyboard == "test/split"
    assert len(layout.layers) == 1
    base = layout.layers[0]
    assert set(base.keys) == set(split_reversed_geometry.positions())
    assert {key.keycode for key in base.keys.values()} == {"KC_TRNS"}
    assert base.keys[Position(1, 2)].light_index == 5


def test_bind_lights(sample_document, unibody_geometry):
    layout = parse(sample_document)
    layout.bind_lights(CoordinateMapper(unibody_geometry))
    assert layout.layers[0].keys[Position(1, 2)].light_index == 5
    assert layout.layers[1].keys[Position(0, 1)].light_index == 1


@pytest.mark.parametrize("layer_id", ["nav", "Nav2", "3f2504e0-4f89-41d3-9a0c-0305e82c3301"])
def test_layer_ids(layer_id):
    assert Layer(index=0, name="Base", id=layer_id).id == layer_id


@pytest.mark.parametrize("layer_id", ["-nav", "nav keys", "nav_keys", ""])
def test_bad_layer_ids(layer_id):
    with pytest.raises(ValidationError, match="Layer id"):
        Layer(index=0, name="Base", id=layer_id)


def test_tap_dances():
    key = KeyDefinition(keycode="TD(esc)", position=Position(0, 0))
    layout = Layout(
        metadata=LayoutMetadata(name="Dances"), layers=[Layer(index=0, name="Base", keys={key.position: key})]
    )
    layout.add_tap_dance(TapDance(name="esc", single_tap="KC_ESC", double_tap="KC_CAPS"))
    layout.add_tap_dance(TapDance(name="spare", single_tap="KC_A", hold="KC_LSFT"))
    with pytest.raises(ValueError, match="already exists"):
        layout.add_tap_dance(TapDance(name="ESC", single_tap="KC_B"))

    assert layout.get_tap_dance("esc").enum_name == "TD_ESC"
    assert layout.get_tap_dance("spare").keycodes() == ["KC_A", "KC_LSFT"]
    assert layout.get_tap_dance("nope") is None
    assert layout.unused_tap_dances() == ["spare"]

    with pytest.raises(ValidationError, match="Tap dance name"):
        TapDance(name="esc-caps", single_tap="KC_ESC")
    with pytest.raises(ValidationError, match="cannot be empty"):
        TapDance(name="esc", single_tap=" ")
    with pytest.raises(ValidationError, match="unique"):
        Layout(
            metadata=LayoutMetadata(name="Dances"),
            layers=[Layer(index=0, name="Base")],
            tap_dances=[TapDance(name="a", single_tap="KC_A"), TapDance(name="A", single_tap="KC_B")],
        )
