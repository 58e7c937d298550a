"""
Module containing configuration related to parsing layout documents, generating firmware
sources, loading board definitions and running the firmware build.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class ParseConfig(BaseSettings, env_prefix="KEYMAP_COMPILER_", extra="ignore"):
    """Configuration settings used while parsing layout documents."""

    # frontmatter "version" values this parser understands
    schema_versions: list[str] = ["1.0"]

    # maximum length of the layout name in the frontmatter
    max_name_length: int = 100


class GenerateConfig(BaseSettings, env_prefix="KEYMAP_COMPILER_", extra="ignore"):
    """Configuration settings used while validating layouts and generating firmware sources."""

    # color used for lights that resolve to nothing else
    fallback_color: str = "#FFFFFF"

    # keycode emitted for board keys that a layer does not define
    transparent_keycode: str = "KC_TRNS"

    # keycode assigned to every key of a layout synthesized from board geometry
    default_keycode: str = "KC_TRNS"

    # config.h defines that get removed from the base config, matched by exact name
    deprecated_defines: list[str] = [
        "DRIVER_LED_TOTAL",
        "RGBLIGHT_ANIMATIONS",
        "VIAL_KEYBOARD_UID",
        "VIAL_UNLOCK_COMBO_ROWS",
        "VIAL_UNLOCK_COMBO_COLS",
    ]

    # same as above, matched as a full-match regular expression against the define name
    deprecated_define_patterns: list[str] = [r"VIAL_\w+", r"DISABLE_RGB_MATRIX_\w+"]

    # define that receives the total number of addressable lights
    light_count_define: str = "RGB_MATRIX_LED_COUNT"

    # output file names inside the keymap directory
    keymap_file: str = "keymap.c"
    config_file: str = "config.h"
    rules_file: str = "rules.mk"

    # first line of every generated file, must not contain anything run-dependent
    banner: str = "Generated by keymap-compiler. Do not edit, changes will be overwritten."


class BoardConfig(BaseSettings, env_prefix="KEYMAP_COMPILER_", extra="ignore"):
    """Configuration settings used for looking up board definitions."""

    # directories that contain QMK-style "keyboards/<board>/info.json" trees, searched in order
    board_roots: list[Path] = []

    # cache board definitions fetched from the QMK metadata API
    use_local_cache: bool = True

    # allow falling back to the QMK metadata API for boards not found locally
    allow_remote: bool = False


class BuildConfig(BaseSettings, env_prefix="KEYMAP_COMPILER_", extra="ignore"):
    """Configuration settings used for running the external firmware build."""

    # root of the QMK firmware checkout, build command runs in it
    qmk_home: Path | None = None

    # toolchain invocation, "{keyboard}" and "{keymap}" get substituted
    command: list[str] = ["make", "{keyboard}:{keymap}"]

    # firmware file extensions to look for after a successful build, in order of preference
    firmware_extensions: list[str] = [".uf2", ".hex", ".bin"]

    # substrings that mark an output line as an error or a success, checked in that order
    error_markers: list[str] = ["error", "Error", "ERROR", "[ERRORS]"]
    success_markers: list[str] = ["[OK]", "Copying "]


class Config(BaseSettings, env_prefix="KEYMAP_COMPILER_", extra="ignore"):
    """All configuration settings used for this module."""

    parse_config: ParseConfig = ParseConfig()
    generate_config: GenerateConfig = GenerateConfig()
    board_config: BoardConfig = BoardConfig()
    build_config: BuildConfig = BuildConfig()
