"""Module containing generation of the keymap table in keymap.c."""

from itertools import groupby

from keymap_compiler.boards import BoardDefinition
from keymap_compiler.config import GenerateConfig
from keymap_compiler.geometry import Position
from keymap_compiler.keycodes import resolve_layer_references, resolve_tap_dance_references
from keymap_compiler.layout import Layer, Layout
from keymap_compiler.mapping import CoordinateMapper

INDENT = "    "


def emit_keycode(keycode: str, layer_ids: dict[str, int]) -> str:
    """Keycode as written into keymap.c, with layer and tap dance references resolved."""
    return resolve_tap_dance_references(resolve_layer_references(keycode, layer_ids))


class KeymapMixin:
    """Mixin that adds keymap table generation for FirmwareGenerator."""

    # initialized in FirmwareGenerator
    cfg: GenerateConfig
    layout: Layout
    board: BoardDefinition
    mapper: CoordinateMapper

    def layer_keycodes(self, layer: Layer) -> list[str]:
        """Keycodes of the layer in the order the board's layout macro takes its arguments."""
        layer_ids = self.layout.layer_ids()
        out = []
        for pos in self.mapper.emission_order():
            if (key := layer.keys.get(pos)) is None:
                out.append(self.cfg.transparent_keycode)
            else:
                out.append(emit_keycode(key.keycode, layer_ids))
        return out

    def _macro_layer(self, layer: Layer) -> list[str]:
        keycodes = self.layer_keycodes(layer)
        # one source line per physical row
        rows = groupby(zip(self.board.geometry.keys, keycodes), key=lambda pair: round(pair[0].y))
        lines = [", ".join(code for _, code in row) for _, row in rows]
        out = [f"{INDENT}[{layer.index}] = {self.board.layout_name}("]
        out += [f"{INDENT * 2}{line}," for line in lines[:-1]]
        out.append(f"{INDENT * 2}{lines[-1]}")
        out.append(f"{INDENT}),")
        return out

    def _matrix_layer(self, layer: Layer) -> list[str]:
        """Layer as a raw MATRIX_ROWS x MATRIX_COLS initializer, for boards without a layout macro."""
        layer_ids = self.layout.layer_ids()
        geometry = self.board.geometry
        out = [f"{INDENT}[{layer.index}] = {{"]
        for row in range(geometry.matrix_rows):
            codes = []
            for col in range(geometry.matrix_cols):
                pos = Position(row, col)
                if pos not in self.mapper:
                    codes.append("KC_NO")
                elif (key := layer.keys.get(pos)) is None:
                    codes.append(self.cfg.transparent_keycode)
                else:
                    codes.append(emit_keycode(key.keycode, layer_ids))
            out.append(f"{INDENT * 2}{{ {', '.join(codes)} }},")
        out.append(f"{INDENT}}},")
        return out

    def keymap_table_lines(self) -> list[str]:
        """The `keymaps` array, one entry per layer."""
        out = ["const uint16_t PROGMEM keymaps[][MATRIX_ROWS][MATRIX_COLS] = {"]
        for layer in self.layout.layers:
            out.append(f"{INDENT}// Layer {layer.index}: {layer.name}")
            if self.board.layout_name is not None and self.board.geometry.keys:
                out += self._macro_layer(layer)
            else:
                out += self._matrix_layer(layer)
        out.append("};")
        return out
