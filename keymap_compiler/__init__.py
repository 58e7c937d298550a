"""
keymap-compiler: compile Markdown keyboard layout documents into QMK firmware sources
and drive the firmware build.
"""

import logging

logging.basicConfig(format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
