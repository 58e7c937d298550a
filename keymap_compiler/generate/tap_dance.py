"""Module containing generation of the tap dance enum and action table in keymap.c."""

from keymap_compiler.keycodes import resolve_layer_references
from keymap_compiler.layout import Layout, TapDance

INDENT = "    "


class TapDanceMixin:
    """Mixin that adds tap dance generation for FirmwareGenerator."""

    # initialized in FirmwareGenerator
    layout: Layout

    def _tap_dance_keycodes(self, tap_dance: TapDance) -> str:
        layer_ids = self.layout.layer_ids()
        codes = [tap_dance.single_tap, tap_dance.double_tap or "KC_NO", tap_dance.hold or "KC_NO"]
        return ", ".join(resolve_layer_references(code, layer_ids) for code in codes)

    def tap_dance_lines(self) -> list[str]:
        """
        Enum naming every tap dance, the keycodes of its actions and the `tap_dance_actions` table that
        `TD(...)` keys index into. A held key sends the hold keycode if one is defined, otherwise the
        number of taps picks the single or double tap keycode. Layouts without tap dances get nothing.
        """
        if not self.layout.tap_dances:
            return []

        out = ["enum tap_dance_ids {"]
        out += [f"{INDENT}{td.enum_name}," for td in self.layout.tap_dances]
        out += [
            "};",
            "",
            "typedef struct {",
            f"{INDENT}uint16_t single_tap;",
            f"{INDENT}uint16_t double_tap;",
            f"{INDENT}uint16_t hold;",
            f"{INDENT}uint16_t active;",
            "} tap_dance_keycodes_t;",
            "",
            "static tap_dance_keycodes_t tap_dance_keycodes[] = {",
        ]
        out += [
            f"{INDENT}[{td.enum_name}] = {{ {self._tap_dance_keycodes(td)}, KC_NO }},"
            for td in self.layout.tap_dances
        ]
        out += [
            "};",
            "",
            "void tap_dance_keycodes_finished(tap_dance_state_t *state, void *user_data) {",
            f"{INDENT}tap_dance_keycodes_t *td = (tap_dance_keycodes_t *)user_data;",
            f"{INDENT}if (state->pressed && !state->interrupted && td->hold != KC_NO) {{",
            f"{INDENT * 2}td->active = td->hold;",
            f"{INDENT}}} else if (state->count >= 2 && td->double_tap != KC_NO) {{",
            f"{INDENT * 2}td->active = td->double_tap;",
            f"{INDENT}}} else {{",
            f"{INDENT * 2}td->active = td->single_tap;",
            f"{INDENT}}}",
            f"{INDENT}register_code16(td->active);",
            "}",
            "",
            "void tap_dance_keycodes_reset(tap_dance_state_t *state, void *user_data) {",
            f"{INDENT}tap_dance_keycodes_t *td = (tap_dance_keycodes_t *)user_data;",
            f"{INDENT}unregister_code16(td->active);",
            f"{INDENT}td->active = KC_NO;",
            "}",
            "",
            "tap_dance_action_t tap_dance_actions[] = {",
        ]
        out += [
            f"{INDENT}[{td.enum_name}] = {{ .fn = {{NULL, tap_dance_keycodes_finished, tap_dance_keycodes_reset}}, "
            f".user_data = &tap_dance_keycodes[{td.enum_name}] }},"
            for td in self.layout.tap_dances
        ]
        out.append("};")
        return out
