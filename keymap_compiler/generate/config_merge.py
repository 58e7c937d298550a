"""
Module containing the config.h merger: filters deprecated defines out of a board's base config and
appends generated defines, without redefining anything the base already defines.
"""

import logging
import re
from typing import ClassVar

from keymap_compiler.config import GenerateConfig

logger = logging.getLogger(__name__)

BEGIN_MARKER = "/* BEGIN keymap-compiler generated defines */"
END_MARKER = "/* END keymap-compiler generated defines */"


class ConfigMerger:
    """
    Merges a base config.h with generated `#define`s. The output does not depend on anything but
    its inputs and merging the output again yields the same text, since the generated block and
    banner of a previous run are stripped before merging.
    """

    _define_re: ClassVar[re.Pattern] = re.compile(r"\s*#\s*define\s+(\w+)(.*)")

    def __init__(self, config: GenerateConfig):
        self.cfg = config
        self._patterns = [re.compile(pattern) for pattern in config.deprecated_define_patterns]

    @property
    def banner(self) -> str:
        """Comment line marking the file as generated."""
        return f"// {self.cfg.banner}"

    def is_deprecated(self, name: str) -> bool:
        """Check a define name against the deprecated names and patterns, matching whole names only."""
        return name in self.cfg.deprecated_defines or any(p.fullmatch(name) for p in self._patterns)

    def _strip_generated(self, lines: list[str]) -> list[str]:
        out, in_block = [], False
        for line in lines:
            stripped = line.strip()
            if stripped == BEGIN_MARKER:
                in_block = True
            elif stripped == END_MARKER:
                in_block = False
            elif not in_block and stripped != self.banner:
                out.append(line)
        return out

    def filter_deprecated(self, lines: list[str]) -> tuple[list[str], dict[str, str]]:
        """Drop deprecated defines including their continuation lines, return kept lines and kept defines."""
        kept, defines = [], {}
        dropping = False
        for line in lines:
            if dropping:
                dropping = line.rstrip().endswith("\\")
                continue
            if m := self._define_re.fullmatch(line):
                name = m.group(1)
                if self.is_deprecated(name):
                    logger.warning("removing deprecated define %s from base config", name)
                    dropping = line.rstrip().endswith("\\")
                    continue
                defines[name] = m.group(2).strip()
            kept.append(line)
        return kept, defines

    def merge(self, base: str, declarations: dict[str, str]) -> str:
        """Merge `declarations` (define name to value, value may be empty) into the base config text."""
        kept, present = self.filter_deprecated(self._strip_generated(base.splitlines()))
        body = "\n".join(kept).strip("\n")
        if not re.search(r"^\s*#\s*pragma\s+once\b", body, re.MULTILINE):
            body = "#pragma once" + (f"\n\n{body}" if body else "")

        block = []
        for name, value in declarations.items():
            if name in present:
                if present[name] != value:
                    logger.warning(
                        "base config already defines %s as %r, not overriding it with %r", name, present[name], value
                    )
                continue
            block.append(f"#define {name} {value}".rstrip())

        out = [self.banner, "", body]
        if block:
            out += ["", BEGIN_MARKER, *block, END_MARKER]
        return "\n".join(out) + "\n"
