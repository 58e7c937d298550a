"""
Module containing color resolution for keys and lights. The color of a key on a layer is the first
available of: the key's own override, its category's color, the layer category's color (if layer
colors are enabled), the layer default color and finally a fallback color.
"""

from keymap_compiler.geometry import Position
from keymap_compiler.layout import Layer, Layout, RgbColor
from keymap_compiler.mapping import CoordinateMapper

WHITE = RgbColor(255, 255, 255)


def resolve_layer_color(layout: Layout, layer: Layer, fallback: RgbColor = WHITE) -> RgbColor:
    """Color of a layer position that has no key-level color."""
    if layer.colors_enabled and layer.category_id is not None:
        if (category := layout.get_category(layer.category_id)) is not None:
            return category.color
    return layer.default_color if layer.default_color is not None else fallback


def resolve_color(layout: Layout, layer_index: int, position: Position, fallback: RgbColor = WHITE) -> RgbColor:
    """
    Resolve the color of the key at `position` on the given layer. Never fails: missing layers, keys
    and dangling category references fall through to the next level of resolution.
    """
    if (layer := layout.get_layer(layer_index)) is None:
        return fallback
    if (key := layer.keys.get(position)) is not None:
        if key.color_override is not None:
            return key.color_override
        if key.category_id is not None and (category := layout.get_category(key.category_id)) is not None:
            return category.color
    return resolve_layer_color(layout, layer, fallback)


def build_light_table(
    layout: Layout, mapper: CoordinateMapper, fallback: RgbColor = WHITE
) -> dict[tuple[int, int], RgbColor]:
    """
    Resolve a color for every (layer index, light index) pair of the board. Lights without a key, or
    whose key is not defined on a layer, get that layer's color.
    """
    table = {}
    for layer in layout.layers:
        layer_color = resolve_layer_color(layout, layer, fallback)
        for light in range(mapper.light_count):
            pos = mapper.light_to_matrix(light)
            if pos is not None and pos in layer.keys:
                table[layer.index, light] = resolve_color(layout, layer.index, pos, fallback)
            else:
                table[layer.index, light] = layer_color
    return table
