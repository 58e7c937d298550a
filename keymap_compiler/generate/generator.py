"""
Module that contains the FirmwareGenerator class which takes a layout and a board definition,
validates them against each other and produces the keymap.c, config.h and rules.mk sources
for the keymap.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from keymap_compiler.boards import BoardDefinition
from keymap_compiler.config import GenerateConfig
from keymap_compiler.generate.config_merge import ConfigMerger
from keymap_compiler.generate.keymap import KeymapMixin
from keymap_compiler.generate.lighting import LightingMixin
from keymap_compiler.generate.tap_dance import TapDanceMixin
from keymap_compiler.generate.validation import LayoutValidator, ValidationFailed, ValidationReport
from keymap_compiler.keycodes import KeycodeLookup
from keymap_compiler.layout import Layout, RgbColor
from keymap_compiler.mapping import CoordinateMapper

logger = logging.getLogger(__name__)

DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|s|sec|min)?")
_DURATION_SCALE = {None: 1, "ms": 1, "s": 1000, "sec": 1000, "min": 60_000}


@dataclass
class Artifacts:
    """Generated firmware sources for one keymap, keyed by file name."""

    keyboard: str
    keymap: str
    files: dict[str, str]
    report: ValidationReport = field(default_factory=ValidationReport)

    def write(self, directory: Path) -> list[Path]:
        """
        Write all files into `directory`. Every file is written to a temporary name first and only
        renamed into place once all of them were written, so a failure leaves no partial output.
        """
        directory.mkdir(parents=True, exist_ok=True)
        staged: list[tuple[Path, Path]] = []
        try:
            for name, content in self.files.items():
                target = directory / name
                tmp = target.with_name(f".{name}.tmp")
                with open(tmp, "w", encoding="utf-8", newline="\n") as f:
                    f.write(content)
                staged.append((tmp, target))
        except OSError:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise
        for tmp, target in staged:
            os.replace(tmp, target)
        logger.debug("wrote %s to %s", ", ".join(self.files), directory)
        return [target for _, target in staged]


def _parse_duration_ms(value: str) -> int:
    if not (m := DURATION_RE.fullmatch(value.strip().lower())):
        raise ValueError(f'"{value}" is not a duration')
    return round(float(m.group(1)) * _DURATION_SCALE[m.group(2)])


def _parse_flag(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "1", "on")


class FirmwareGenerator(KeymapMixin, LightingMixin, TapDanceMixin):
    """Class that validates a layout against a board and generates firmware sources for it."""

    def __init__(
        self,
        layout: Layout,
        board: BoardDefinition,
        config: GenerateConfig | None = None,
        keycodes: KeycodeLookup | None = None,
        base_config: str | None = None,
    ) -> None:
        self.cfg = config if config is not None else GenerateConfig()
        self.layout = layout
        self.board = board
        self.mapper = CoordinateMapper(board.geometry)
        self.keycodes = keycodes
        self.base_config = base_config if base_config is not None else board.base_config
        self.fallback = RgbColor.from_hex(self.cfg.fallback_color)

    @property
    def keymap_name(self) -> str:
        """Name of the keymap directory, "default" unless the layout names one."""
        return self.layout.metadata.keymap_name or "default"

    def validate(self) -> ValidationReport:
        """Validate the layout against the board."""
        return LayoutValidator(self.layout, self.board, self.mapper, self.keycodes).validate()

    def derived_declarations(self) -> dict[str, str]:
        """Defines computed from board facts."""
        geometry = self.board.geometry
        out = {}
        if geometry.has_lighting and geometry.total_lights:
            if (counts := self.board.split_light_counts) is not None:
                out[self.cfg.light_count_define] = str(sum(counts))
                out["RGB_MATRIX_SPLIT"] = f"{{ {counts[0]}, {counts[1]} }}"
            else:
                out[self.cfg.light_count_define] = str(geometry.total_lights)
        if len(self.layout.layers) > 4:
            out["DYNAMIC_KEYMAP_LAYER_COUNT"] = str(len(self.layout.layers))
        return out

    def settings_declarations(self) -> dict[str, str]:
        """Defines for the layout settings this generator understands, others are left alone."""
        settings = self.layout.settings
        lighting = self.board.geometry.has_lighting
        out = {}
        for name, value in settings.items():
            try:
                match name.lower():
                    case "tapping term":
                        out["TAPPING_TERM"] = str(_parse_duration_ms(value))
                    case "quick tap term":
                        out["QUICK_TAP_TERM"] = str(_parse_duration_ms(value))
                    case "permissive hold" if _parse_flag(value):
                        out["PERMISSIVE_HOLD"] = ""
                    case "retro tapping" if _parse_flag(value):
                        out["RETRO_TAPPING"] = ""
                    case "rgb timeout" if lighting:
                        if timeout := _parse_duration_ms(value):
                            out["RGB_MATRIX_TIMEOUT"] = str(timeout)
                    case "rgb brightness" if lighting:
                        percent = min(max(int(value.strip().rstrip("%")), 0), 100)
                        out["RGB_MATRIX_MAXIMUM_BRIGHTNESS"] = str(round(255 * percent / 100))
            except ValueError:
                logger.warning('ignoring setting "%s" with invalid value "%s"', name, value)
        return out

    def keymap_c(self) -> str:
        """Contents of keymap.c."""
        out = [f"// {self.cfg.banner}", "", "#include QMK_KEYBOARD_H", ""]
        if tap_dances := self.tap_dance_lines():
            out += [*tap_dances, ""]
        out += self.keymap_table_lines()
        if lighting := self.lighting_lines():
            out += ["", *lighting]
        return "\n".join(out) + "\n"

    def config_h(self) -> str:
        """Contents of config.h, the base config merged with generated defines."""
        declarations = self.derived_declarations() | self.settings_declarations()
        return ConfigMerger(self.cfg).merge(self.base_config, declarations)

    def rules_mk(self) -> str:
        """Contents of rules.mk, enabling the features the keymap uses."""
        out = [f"# {self.cfg.banner}"]
        if self.board.geometry.has_lighting:
            out.append("RGB_MATRIX_ENABLE = yes")
        if self.layout.tap_dances:
            out.append("TAP_DANCE_ENABLE = yes")
        return "\n".join(out) + "\n"

    def generate(self) -> Artifacts:
        """Validate and generate all sources, raising ValidationFailed if there are hard errors."""
        report = self.validate()
        for warning in report.warnings:
            logger.warning("%s", warning)
        if not report.is_valid:
            raise ValidationFailed(report)
        logger.debug("generating sources for %s:%s", self.board.keyboard, self.keymap_name)
        return Artifacts(
            keyboard=self.board.keyboard,
            keymap=self.keymap_name,
            files={
                self.cfg.keymap_file: self.keymap_c(),
                self.cfg.config_file: self.config_h(),
                self.cfg.rules_file: self.rules_mk(),
            },
            report=report,
        )


def generate(
    layout: Layout,
    board: BoardDefinition,
    base_config: str | None = None,
    config: GenerateConfig | None = None,
    keycodes: KeycodeLookup | None = None,
) -> Artifacts:
    """Validate `layout` against `board` and generate its firmware sources."""
    return FirmwareGenerator(layout, board, config=config, keycodes=keycodes, base_config=base_config).generate()
