import pytest

from keymap_compiler.config import GenerateConfig
from keymap_compiler.generate import ConfigMerger
from keymap_compiler.generate.config_merge import BEGIN_MARKER, END_MARKER

BASE = """\
#pragma once

#define DRIVER_LED_TOTAL 54
#define VIAL_KEYBOARD_UID {0x01, 0x02, \\
                           0x03, 0x04}
#define MY_DRIVER_LED_TOTAL_COPY 3
#define MASTER_LEFT
#define TAPPING_TERM 180
"""


@pytest.fixture
def merger() -> ConfigMerger:
    return ConfigMerger(GenerateConfig())


def test_removes_deprecated_with_continuations(merger):
    out = merger.merge(BASE, {})
    assert "DRIVER_LED_TOTAL 54" not in out
    assert "VIAL_KEYBOARD_UID" not in out
    assert "0x03" not in out
    assert "#define MASTER_LEFT" in out


def test_matches_whole_names_only(merger):
    assert merger.is_deprecated("DRIVER_LED_TOTAL")
    assert merger.is_deprecated("VIAL_ANYTHING")
    assert not merger.is_deprecated("MY_DRIVER_LED_TOTAL_COPY")
    assert not merger.is_deprecated("NOT_VIAL_THING")
    assert "#define MY_DRIVER_LED_TOTAL_COPY 3" in merger.merge(BASE, {})


def test_appends_declarations_without_redefining(merger, caplog):
    out = merger.merge(BASE, {"TAPPING_TERM": "200", "RGB_MATRIX_LED_COUNT": "6", "PERMISSIVE_HOLD": ""})
    assert out.count("TAPPING_TERM") == 1
    assert "#define TAPPING_TERM 180" in out
    assert "not overriding" in caplog.text
    block = out[out.index(BEGIN_MARKER) : out.index(END_MARKER)]
    assert "#define RGB_MATRIX_LED_COUNT 6" in block
    assert "#define PERMISSIVE_HOLD\n" in block


def test_banner_and_pragma(merger):
    out = merger.merge("", {"A": "1"})
    lines = out.splitlines()
    assert lines[0] == merger.banner
    assert lines[2] == "#pragma once"
    assert out.count("#pragma once") == 1
    assert merger.merge(BASE, {}).count("#pragma once") == 1
    assert out.endswith("\n")


@pytest.mark.parametrize("base", ["", BASE, "#define FOO 1\n", "// comment only\n"])
def test_idempotent(merger, base):
    declarations = {"RGB_MATRIX_LED_COUNT": "6", "TAPPING_TERM": "200", "RETRO_TAPPING": ""}
    once = merger.merge(base, declarations)
    assert merger.merge(once, declarations) == once
    assert merger.merge(base, declarations) == once


def test_custom_deprecations():
    merger = ConfigMerger(GenerateConfig(deprecated_defines=["OLD"], deprecated_define_patterns=[]))
    out = merger.merge("#define OLD 1\n#define VIAL_X 2\n", {})
    assert "OLD" not in out
    assert "#define VIAL_X 2" in out
