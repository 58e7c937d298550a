"""
Given a Markdown layout document and a QMK board definition (by keyboard name or definition file),
validate the layout, generate QMK keymap sources for it and optionally build the firmware.
"""

import logging
import sys
from argparse import ArgumentParser, FileType, Namespace
from importlib.metadata import version
from pathlib import Path

import yaml

from keymap_compiler import logger
from keymap_compiler.boards import BoardDefinition, BoardError, BoardSource
from keymap_compiler.build import BuildComplete, BuildLog, BuildOrchestrator, BuildProgress, LogLevel
from keymap_compiler.config import Config
from keymap_compiler.document import ParseError, parse, serialize
from keymap_compiler.generate import FirmwareGenerator, ValidationFailed
from keymap_compiler.keycodes import KeycodeTable
from keymap_compiler.layout import Layout


def _load_board(args: Namespace, config: Config) -> BoardDefinition:
    source = BoardSource(config.board_config)
    if (path := Path(args.board)).suffix in (".json", ".yaml", ".yml"):
        return source.load_file(path, args.layout_name)
    return source.load(args.board, args.layout_name)


def _generator(args: Namespace, config: Config) -> FirmwareGenerator:
    layout = parse(args.layout.read(), config.parse_config)
    keycodes = KeycodeTable.from_yaml(args.keycodes) if args.keycodes else None
    return FirmwareGenerator(layout, _load_board(args, config), config=config.generate_config, keycodes=keycodes)


def format_layout(args: Namespace, config: Config) -> int:
    """Parse a layout document and write it back out in normalized form."""
    args.output.write(serialize(parse(args.layout.read(), config.parse_config)))
    return 0


def new_layout(args: Namespace, config: Config) -> int:
    """Write an empty layout for the given board to the output."""
    board = _load_board(args, config)
    layout = Layout.from_geometry(
        board.geometry,
        args.name,
        keycode=config.generate_config.default_keycode,
        keyboard=board.keyboard,
        layout_variant=board.layout_name,
    )
    args.output.write(serialize(layout))
    return 0


def validate(args: Namespace, config: Config) -> int:
    """Print validation errors and warnings, return non-zero if there are errors."""
    report = _generator(args, config).validate()
    for issue in report.errors + report.warnings:
        print(issue)
    print(f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)")
    return 0 if report.is_valid else 1


def generate(args: Namespace, config: Config) -> int:
    """Generate keymap sources into the output directory."""
    artifacts = _generator(args, config).generate()
    for path in artifacts.write(args.output_dir):
        print(path)
    return 0


def build(args: Namespace, config: Config) -> int:
    """Generate sources into the QMK tree and compile the firmware, streaming the build log."""
    if args.qmk_home is not None:
        config.build_config.qmk_home = args.qmk_home
    generator = _generator(args, config)
    if args.keymap:
        generator.layout.metadata.keymap_name = args.keymap
    artifacts = generator.generate()
    with BuildOrchestrator(config.build_config) as orchestrator:
        handle = orchestrator.start_build(artifacts)
        try:
            for message in handle.messages():
                match message:
                    case BuildProgress(status=status, message=text):
                        logger.info("[%s] %s", status.value, text)
                    case BuildLog(level=LogLevel.ERROR, line=line):
                        print(line, file=sys.stderr)
                    case BuildLog(line=line):
                        print(line)
                    case BuildComplete(firmware_path=firmware) if message.success:
                        if firmware is not None:
                            logger.info("firmware: %s", firmware)
                        return 0
                    case BuildComplete(error=error):
                        logger.error("%s", error)
                        return 1
        except KeyboardInterrupt:
            orchestrator.cancel_build(handle)
            logger.error("build cancelled")
    return 1


def dump_config(args: Namespace, config: Config) -> int:
    """Dump the currently active config, either default or parsed from args."""
    yaml.safe_dump(config.model_dump(mode="json"), args.output, sort_keys=False, allow_unicode=True)
    return 0


def main() -> None:
    """Parse the configuration and run the requested command."""
    parser = ArgumentParser(description=__doc__)
    parser.add_argument("-v", "--version", action="version", version=version("keymap-compiler"))
    parser.add_argument("-d", "--debug", action="store_true")
    parser.add_argument(
        "-c",
        "--config",
        help="A YAML file containing settings for parsing, generation and building, "
        "default can be dumped using `dump-config` command and to be modified",
        type=FileType("rt", encoding="utf-8"),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_output(sub: ArgumentParser) -> None:
        sub.add_argument(
            "-o",
            "--output",
            help="Output to path instead of stdout",
            type=FileType("wt", encoding="utf-8"),
            default=sys.stdout,
        )

    def add_board(sub: ArgumentParser) -> None:
        sub.add_argument(
            "-b",
            "--board",
            required=True,
            help='QMK keyboard name including revision, e.g. "crkbd/rev1", or path to a JSON/YAML board definition',
        )
        sub.add_argument(
            "-l", "--layout-name", help='Layout macro of the board to use, e.g. "LAYOUT", the first one by default'
        )

    def add_layout(sub: ArgumentParser) -> None:
        sub.add_argument(
            "layout", help='Markdown layout document (or stdin for "-")', type=FileType("rt", encoding="utf-8")
        )
        sub.add_argument("-k", "--keycodes", help="YAML keycode table used for keycode warnings", type=Path)

    format_p = subparsers.add_parser("format", help="parse a layout document and print it in normalized form")
    format_p.add_argument(
        "layout", help='Markdown layout document (or stdin for "-")', type=FileType("rt", encoding="utf-8")
    )
    add_output(format_p)

    new_p = subparsers.add_parser("new", help="print an empty layout document for a board")
    new_p.add_argument("name", help="Name of the new layout")
    add_board(new_p)
    add_output(new_p)

    validate_p = subparsers.add_parser("validate", help="validate a layout against a board")
    add_layout(validate_p)
    add_board(validate_p)

    generate_p = subparsers.add_parser("generate", help="generate keymap.c, config.h and rules.mk for a layout")
    add_layout(generate_p)
    add_board(generate_p)
    generate_p.add_argument("-o", "--output-dir", help="Directory to write the sources to", type=Path, required=True)

    build_p = subparsers.add_parser("build", help="generate sources into a QMK tree and compile the firmware")
    add_layout(build_p)
    add_board(build_p)
    build_p.add_argument("-q", "--qmk-home", help="Root of the QMK firmware checkout", type=Path)
    build_p.add_argument("--keymap", help="Keymap name inside the QMK tree, overrides keymap_name of the layout")

    dump_p = subparsers.add_parser(
        "dump-config", help="dump default config to stdout that can be passed to -c/--config option"
    )
    add_output(dump_p)

    args = parser.parse_args()

    if args.debug:
        logger.setLevel(logging.DEBUG)

    config = Config.model_validate(yaml.safe_load(args.config)) if args.config else Config()

    try:
        match args.command:
            case "format":
                code = format_layout(args, config)
            case "new":
                code = new_layout(args, config)
            case "validate":
                code = validate(args, config)
            case "generate":
                code = generate(args, config)
            case "build":
                code = build(args, config)
            case "dump-config":
                code = dump_config(args, config)
    except (ParseError, BoardError, ValidationFailed) as err:
        logger.error("%s", err)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
