"""
Module containing validation of a layout against its target board, run before any firmware
source is generated. Problems are collected rather than raised one at a time so callers can
report all of them at once.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from keymap_compiler.boards import BoardDefinition
from keymap_compiler.geometry import Position
from keymap_compiler.keycodes import KeycodeLookup, layer_references, numeric_layer_targets, tap_dance_references
from keymap_compiler.layout import Layout
from keymap_compiler.mapping import CoordinateMapper

logger = logging.getLogger(__name__)


class ValidationKind(Enum):
    """Kind of problem found during validation."""

    UNMAPPED_POSITION = "unmapped-position"
    DANGLING_CATEGORY = "dangling-category"
    LIGHT_COUNT_MISMATCH = "light-count-mismatch"
    UNKNOWN_KEYCODE = "unknown-keycode"
    UNKNOWN_LAYER_REFERENCE = "unknown-layer-reference"
    KEY_COUNT_MISMATCH = "key-count-mismatch"
    EMPTY_LAYER = "empty-layer"
    UNKNOWN_TAP_DANCE = "unknown-tap-dance"
    UNUSED_TAP_DANCE = "unused-tap-dance"


class Severity(Enum):
    """Errors block generation, warnings do not."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationError:
    """A single validation problem, with enough context to point at the offending cell."""

    kind: ValidationKind
    message: str
    severity: Severity = Severity.ERROR
    layer: int | None = None
    position: Position | None = None
    keycode: str | None = None
    suggestion: str | None = None

    @property
    def is_error(self) -> bool:
        """Whether this problem blocks generation."""
        return self.severity == Severity.ERROR

    def __str__(self) -> str:
        where = ""
        if self.layer is not None:
            where = f"[Layer {self.layer}{' ' + str(self.position) if self.position else ''}] "
        out = f"{where}{self.kind.value}: {self.message}"
        if self.suggestion:
            out += f"\n  -> {self.suggestion}"
        return out


@dataclass
class ValidationReport:
    """Collected errors and warnings of one validation run."""

    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    def add(self, issue: ValidationError) -> None:
        """File the issue under errors or warnings by its severity."""
        (self.errors if issue.is_error else self.warnings).append(issue)

    @property
    def is_valid(self) -> bool:
        """Whether generation can go ahead, warnings do not block it."""
        return not self.errors

    def __str__(self) -> str:
        return "\n".join(str(issue) for issue in self.errors + self.warnings)


class ValidationFailed(Exception):
    """Raised when a layout has validation errors that block generation."""

    def __init__(self, report: ValidationReport):
        self.report = report
        self.errors = report.errors
        super().__init__(f"Layout has {len(report.errors)} validation error(s):\n{report}")


class LayoutValidator:
    """Checks a layout against a board's geometry, lighting facts and optionally a keycode database."""

    def __init__(
        self,
        layout: Layout,
        board: BoardDefinition,
        mapper: CoordinateMapper,
        keycodes: KeycodeLookup | None = None,
    ):
        self.layout = layout
        self.board = board
        self.mapper = mapper
        self.keycodes = keycodes

    def validate(self) -> ValidationReport:
        """Run every check to completion and return the report."""
        report = ValidationReport()
        self._check_layers(report)
        self._check_keys(report)
        self._check_tap_dances(report)
        if self.board.geometry.has_lighting:
            self._check_lights(report)
        logger.debug("validation found %d errors, %d warnings", len(report.errors), len(report.warnings))
        return report

    def _check_layers(self, report: ValidationReport) -> None:
        for layer in self.layout.layers:
            if layer.category_id is not None and self.layout.get_category(layer.category_id) is None:
                report.add(
                    ValidationError(
                        ValidationKind.DANGLING_CATEGORY,
                        f'layer category "{layer.category_id}" is not defined',
                        layer=layer.index,
                        suggestion="add the category or clear the layer's category",
                    )
                )
            if not layer.keys:
                report.add(
                    ValidationError(
                        ValidationKind.EMPTY_LAYER,
                        f'layer "{layer.name}" has no keys, all of its keys will be transparent',
                        severity=Severity.WARNING,
                        layer=layer.index,
                    )
                )
            elif layer.index == 0:
                defined = sum(1 for pos in layer.keys if pos in self.mapper)
                if defined < self.mapper.key_count:
                    report.add(
                        ValidationError(
                            ValidationKind.KEY_COUNT_MISMATCH,
                            f"only {defined} of {self.mapper.key_count} board keys are defined on the base layer",
                            severity=Severity.WARNING,
                            layer=layer.index,
                            suggestion="undefined keys will be transparent",
                        )
                    )

    def _check_keys(self, report: ValidationReport) -> None:  # pylint: disable=too-many-branches
        geometry = self.board.geometry
        for layer in self.layout.layers:
            for pos, key in layer.keys.items():
                ctx = {"layer": layer.index, "position": pos, "keycode": key.keycode}
                if pos not in self.mapper:
                    report.add(
                        ValidationError(
                            ValidationKind.UNMAPPED_POSITION,
                            f"key {key.keycode} is at a position that does not exist on board "
                            f'"{self.board.keyboard}" ({geometry.matrix_rows}x{geometry.matrix_cols} matrix)',
                            suggestion="remove the key or move it to a position used by the board's layout",
                            **ctx,
                        )
                    )
                if key.category_id is not None and self.layout.get_category(key.category_id) is None:
                    report.add(
                        ValidationError(
                            ValidationKind.DANGLING_CATEGORY,
                            f'category "{key.category_id}" of key {key.keycode} is not defined',
                            suggestion="add the category or remove the @category suffix",
                            **ctx,
                        )
                    )
                self._check_layer_references(report, key.keycode, ctx)
                for name in tap_dance_references(key.keycode):
                    if self.layout.get_tap_dance(name) is None:
                        report.add(
                            ValidationError(
                                ValidationKind.UNKNOWN_TAP_DANCE,
                                f'keycode {key.keycode} refers to tap dance "{name}" which is not defined',
                                suggestion="add it to the tap dances block or change the keycode",
                                **ctx,
                            )
                        )
                for target in numeric_layer_targets(key.keycode):
                    if target >= len(self.layout.layers):
                        report.add(
                            ValidationError(
                                ValidationKind.UNKNOWN_LAYER_REFERENCE,
                                f"keycode {key.keycode} targets layer {target} but the layout has "
                                f"{len(self.layout.layers)} layers",
                                severity=Severity.WARNING,
                                **ctx,
                            )
                        )
                if self.keycodes is None:
                    continue
                if not self.keycodes.is_known(key.keycode):
                    report.add(
                        ValidationError(
                            ValidationKind.UNKNOWN_KEYCODE,
                            f"keycode {key.keycode} is not recognized",
                            severity=Severity.WARNING,
                            **ctx,
                        )
                    )
                elif self.keycodes.requires_lighting(key.keycode) and not geometry.has_lighting:
                    report.add(
                        ValidationError(
                            ValidationKind.UNKNOWN_KEYCODE,
                            f"keycode {key.keycode} controls lighting but the board has no lighting hardware",
                            severity=Severity.WARNING,
                            **ctx,
                        )
                    )

    def _check_layer_references(self, report: ValidationReport, keycode: str, ctx: dict) -> None:
        layer_ids = self.layout.layer_ids()
        for ref in layer_references(keycode):
            if ref not in layer_ids:
                report.add(
                    ValidationError(
                        ValidationKind.UNKNOWN_LAYER_REFERENCE,
                        f'keycode {keycode} refers to unknown layer id "@{ref}"',
                        suggestion=f"known layer ids: {', '.join(layer_ids) or 'none'}",
                        **ctx,
                    )
                )

    def _check_tap_dances(self, report: ValidationReport) -> None:
        for tap_dance in self.layout.tap_dances:
            for keycode in tap_dance.keycodes():
                self._check_layer_references(report, keycode, {"keycode": keycode})
        for name in self.layout.unused_tap_dances():
            report.add(
                ValidationError(
                    ValidationKind.UNUSED_TAP_DANCE,
                    f'tap dance "{name}" is defined but never used in any layer',
                    severity=Severity.WARNING,
                )
            )

    def _check_lights(self, report: ValidationReport) -> None:
        geometry = self.board.geometry
        declared, keyed, decorative = geometry.total_lights, geometry.keyed_lights, geometry.decorative_lights
        if declared == keyed:
            return
        if declared == keyed + decorative:
            report.add(
                ValidationError(
                    ValidationKind.LIGHT_COUNT_MISMATCH,
                    f"board declares {declared} lights, {decorative} of them have no key and will show the "
                    "layer color",
                    severity=Severity.WARNING,
                )
            )
            return
        report.add(
            ValidationError(
                ValidationKind.LIGHT_COUNT_MISMATCH,
                f"board declares {declared} lights but describes {keyed} lights under keys and {decorative} "
                "decorative lights",
                suggestion="check rgb_matrix.split_count and rgb_matrix.layout of the board definition",
            )
        )
