import pytest

from keymap_compiler.keycodes import (
    KeycodeTable,
    keycode_tokens,
    layer_references,
    numeric_layer_targets,
    resolve_layer_references,
    resolve_tap_dance_references,
    tap_dance_references,
)


@pytest.fixture
def table(tmp_path) -> KeycodeTable:
    path = tmp_path / "keycodes.yaml"
    path.write_text(
        "keycodes: [KC_A, KC_SPC, LT, MO, QK_BOOT]\n"
        "prefixes: [KC_F]\n"
        "lighting_keycodes: [RGB_TOG]\n"
        "lighting_prefixes: [RM_]\n",
        encoding="utf-8",
    )
    return KeycodeTable.from_yaml(path)


def test_tokens():
    assert keycode_tokens("LT(@nav, KC_SPC)") == ["LT", "KC_SPC"]
    assert keycode_tokens("MO(2)") == ["MO"]


def test_known(table):
    assert table.is_known("KC_A")
    assert table.is_known("KC_F12")
    assert table.is_known("LT(@nav, KC_SPC)")
    assert not table.is_known("KC_NOPE")
    assert not table.is_known("LT(1, KC_NOPE)")


def test_lighting(table):
    assert table.requires_lighting("RGB_TOG")
    assert table.requires_lighting("RM_NEXT")
    assert not table.requires_lighting("KC_A")


def test_layer_references():
    assert layer_references("LT(@nav, KC_SPC)") == ["nav"]
    assert resolve_layer_references("LT(@nav, KC_SPC)", {"nav": 2}) == "LT(2, KC_SPC)"
    assert resolve_layer_references("KC_A", {}) == "KC_A"
    with pytest.raises(KeyError):
        resolve_layer_references("MO(@missing)", {"nav": 1})


def test_numeric_targets():
    assert numeric_layer_targets("MO(3)") == [3]
    assert numeric_layer_targets("LT(1, KC_A)") == [1]
    assert numeric_layer_targets("MT(MOD_LSFT, KC_A)") == []


def test_malformed_layer_references():
    assert layer_references("MO(@Base)") == ["Base"]
    assert layer_references("LT(@, KC_A)") == [""]
    assert layer_references("LT(@3f2504e0-4f89, KC_A)") == ["3f2504e0-4f89"]
    assert resolve_layer_references("LT(@3f2504e0-4f89, KC_A)", {"3f2504e0-4f89": 1}) == "LT(1, KC_A)"


def test_tap_dance_references(table):
    assert tap_dance_references("TD(esc_caps)") == ["esc_caps"]
    assert tap_dance_references("KC_A") == []
    assert resolve_tap_dance_references("TD(esc_caps)") == "TD(TD_ESC_CAPS)"
    assert keycode_tokens("TD(esc_caps)") == ["TD"]
    assert not table.is_known("TD(esc_caps)")
