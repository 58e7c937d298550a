"""Module containing the serializer that writes a Layout back into the Markdown layout document format."""

import os
from pathlib import Path

import yaml

from keymap_compiler.geometry import Position
from keymap_compiler.layout import KeyDefinition, Layer, Layout, TapDance


class _FrontmatterDumper(yaml.SafeDumper):
    pass


def _str_representer(dumper, in_str):
    if "\n" in in_str:  # use '|' style for multiline strings
        return dumper.represent_scalar("tag:yaml.org,2002:str", in_str, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", in_str)


_FrontmatterDumper.add_representer(str, _str_representer)


def format_cell(key: KeyDefinition) -> str:
    """Format a key as `KEYCODE[{#RRGGBB}][@category-id]`."""
    out = key.keycode
    if key.color_override is not None:
        out += f"{{{key.color_override.to_hex()}}}"
    if key.category_id is not None:
        out += f"@{key.category_id}"
    return out


def _table_row(cells: list[str]) -> str:
    return "| " + " | ".join(cells) + " |"


def _layer_lines(layer: Layer) -> list[str]:
    out = [f"## Layer {layer.index}: {layer.name}"]
    if layer.id is not None:
        out.append(f"**ID**: {layer.id}")
    if layer.default_color is not None:
        out.append(f"**Color**: {layer.default_color.to_hex()}")
    if layer.category_id is not None:
        out.append(f"**Category**: {layer.category_id}")
    if not layer.colors_enabled:
        out.append("**Layer Colors**: false")
    out.append("")

    if not layer.keys:
        return out

    n_rows = max(pos.row for pos in layer.keys) + 1
    n_cols = max(pos.col for pos in layer.keys) + 1
    out.append(_table_row([f"C{col}" for col in range(n_cols)]))
    out.append("|" + "|".join("-" * (len(f"C{col}") + 2) for col in range(n_cols)) + "|")
    for row in range(n_rows):
        out.append(
            _table_row(
                [format_cell(key) if (key := layer.keys.get(Position(row, col))) else "" for col in range(n_cols)]
            )
        )
    out.append("")
    return out


def _tap_dance_lines(tap_dance: TapDance) -> list[str]:
    out = [f"- **{tap_dance.name}**:", f"  - Single Tap: {tap_dance.single_tap}"]
    if tap_dance.double_tap is not None:
        out.append(f"  - Double Tap: {tap_dance.double_tap}")
    if tap_dance.hold is not None:
        out.append(f"  - Hold: {tap_dance.hold}")
    return out


def serialize(layout: Layout) -> str:
    """Write the layout as a Markdown document that `parse` reads back into an equal Layout."""
    frontmatter = yaml.dump(
        layout.metadata.model_dump(mode="json", exclude_none=True),
        Dumper=_FrontmatterDumper,
        sort_keys=False,
        allow_unicode=True,
        width=1000,
    )
    out = ["---", *frontmatter.splitlines(), "---", "", f"# {layout.metadata.name}", ""]

    for layer in layout.layers:
        out += _layer_lines(layer)

    descriptions = [
        f"- {layer.index}:{key.position.row}:{key.position.col}: {key.description}"
        for layer in layout.layers
        for key in layer.keys.values()
        if key.description
    ]
    if descriptions or layout.categories or layout.tap_dances or layout.settings:
        out += ["---", ""]
    if descriptions:
        out += ["## Key Descriptions", "", *descriptions, ""]
    if layout.categories:
        out += ["## Categories", ""]
        for cat in layout.categories:
            line = f"- {cat.id}: {cat.name} ({cat.color.to_hex()})"
            if cat.description:
                line += f" - {cat.description}"
            out.append(line)
        out.append("")
    if layout.tap_dances:
        out += ["## Tap Dances", ""]
        for tap_dance in layout.tap_dances:
            out += _tap_dance_lines(tap_dance)
        out.append("")
    if layout.settings:
        out += ["## Settings", "", *(f"**{name}**: {value}" for name, value in layout.settings.items()), ""]

    return "\n".join(out).rstrip("\n") + "\n"


def write_document(layout: Layout, path: Path) -> None:
    """Serialize the layout to `path`, going through a temporary file so readers never see a partial file."""
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(serialize(layout))
    os.replace(tmp_path, path)
