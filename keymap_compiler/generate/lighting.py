"""Module containing generation of the per-layer light color table and the code that applies it."""

from keymap_compiler.boards import BoardDefinition
from keymap_compiler.colors import build_light_table
from keymap_compiler.layout import Layout, RgbColor
from keymap_compiler.mapping import CoordinateMapper

INDENT = "    "


class LightingMixin:
    """Mixin that adds light color table generation for FirmwareGenerator."""

    # initialized in FirmwareGenerator
    layout: Layout
    board: BoardDefinition
    mapper: CoordinateMapper
    fallback: RgbColor

    def lighting_lines(self) -> list[str]:
        """
        Color table indexed by layer and light index plus the RGB matrix indicator callback using it,
        guarded by RGB_MATRIX_ENABLE. Boards without lighting hardware get nothing.
        """
        n_lights = self.mapper.light_count
        if not self.board.geometry.has_lighting or n_lights == 0:
            return []

        table = build_light_table(self.layout, self.mapper, self.fallback)
        n_layers = len(self.layout.layers)
        out = [
            "#ifdef RGB_MATRIX_ENABLE",
            f"const uint8_t PROGMEM ledmap[{n_layers}][{n_lights}][3] = {{",
        ]
        for layer in self.layout.layers:
            colors = (table[layer.index, light] for light in range(n_lights))
            entries = ", ".join(f"{{{c.r}, {c.g}, {c.b}}}" for c in colors)
            out.append(f"{INDENT}[{layer.index}] = {{ {entries} }},")
        out += [
            "};",
            "",
            "bool rgb_matrix_indicators_advanced_user(uint8_t led_min, uint8_t led_max) {",
            f"{INDENT}uint8_t layer = get_highest_layer(layer_state | default_layer_state);",
            f"{INDENT}if (layer >= {n_layers}) {{",
            f"{INDENT * 2}return false;",
            f"{INDENT}}}",
            f"{INDENT}for (uint8_t i = led_min; i < led_max && i < {n_lights}; i++) {{",
            f"{INDENT * 2}rgb_matrix_set_color(i, pgm_read_byte(&ledmap[layer][i][0]), "
            "pgm_read_byte(&ledmap[layer][i][1]), pgm_read_byte(&ledmap[layer][i][2]));",
            f"{INDENT}}}",
            f"{INDENT}return false;",
            "}",
            "#endif",
        ]
        return out
