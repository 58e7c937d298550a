"""
Module containing the board definition source, which looks up QMK-style keyboard definitions
(info.json/keyboard.json plus config.h) in local QMK trees, a local cache or the QMK keyboard
metadata API, and turns them into BoardGeometry along with the facts the config merger needs.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

import yaml
from platformdirs import user_cache_dir
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from keymap_compiler.config import BoardConfig
from keymap_compiler.geometry import BoardGeometry, KeyGeometry, Position, SplitSpec

logger = logging.getLogger(__name__)

QMK_METADATA_URL = "https://keyboards.qmk.fm/v1/keyboards/{keyboard}/info.json"
CACHE_BOARDS_PATH = Path(user_cache_dir("keymap-compiler", False)) / "qmk_boards"
DEFINITION_FILES = ("info.json", "keyboard.json")


class BoardError(Exception):
    """Base error type for board definition lookups."""


class BoardNotFoundError(BoardError):
    """No definition exists for the requested board."""


class BoardInvalidError(BoardError):
    """A definition was found for the board but it cannot be used."""


@dataclass
class BoardDefinition:
    """Everything the compiler needs to know about one board."""

    keyboard: str
    geometry: BoardGeometry
    layout_name: str | None = None

    # contents of the board's config.h, if any
    base_config: str = ""

    # number of lights on each half of a split board, as declared by the board variant
    split_light_counts: tuple[int, int] | None = None


class QmkKey(BaseModel):
    """Model representing each key in QMK's layout definition."""

    matrix: tuple[int, int]
    x: float  # coordinates of top-left corner
    y: float
    w: float = 1.0
    h: float = 1.0
    r: float = 0


class QmkLayout(BaseModel):
    """A named layout macro and its keys."""

    layout: list[QmkKey]


class QmkLight(BaseModel):
    """Entry of rgb_matrix.layout, lights without `matrix` are decorative."""

    matrix: tuple[int, int] | None = None
    x: float = 0
    y: float = 0
    flags: int = 0


class QmkRgbMatrix(BaseModel):
    """Lighting section of a QMK board definition."""

    layout: list[QmkLight] = []
    split_count: tuple[int, int] | None = None


class QmkSplit(BaseModel):
    """Split settings; `matrix_columns_reversed` and `boundary` are extensions of the QMK schema."""

    enabled: bool = False
    matrix_columns_reversed: bool | None = None
    boundary: int | None = None
    axis: Literal["row", "col"] = "row"


class QmkMatrixSize(BaseModel):
    """Matrix dimensions declared by the board."""

    rows: int
    cols: int


class QmkInfo(BaseModel):
    """Subset of QMK's info.json schema that describes geometry, lighting and split facts."""

    keyboard_name: str | None = None
    layouts: dict[str, QmkLayout]
    matrix_size: QmkMatrixSize | None = None
    rgb_matrix: QmkRgbMatrix | None = None
    split: QmkSplit | None = None
    features: dict[str, bool] = {}
    encoder: dict = {}

    def to_board(self, keyboard: str, layout_name: str | None = None, base_config: str = "") -> BoardDefinition:
        """Build a BoardDefinition from the chosen layout macro, the first one if not specified."""
        if not self.layouts:
            raise BoardInvalidError(f'Board "{keyboard}" does not define any layouts')
        if layout_name is None:
            layout_name = next(iter(self.layouts))
        elif layout_name not in self.layouts:
            raise BoardInvalidError(
                f'Could not find layout "{layout_name}" for board "{keyboard}", '
                f"available options are: {list(self.layouts)}"
            )
        qmk_keys = self.layouts[layout_name].layout
        logger.debug("building geometry of %s from layout %s with %d keys", keyboard, layout_name, len(qmk_keys))

        lights: dict[Position, int] = {}
        has_lighting = self.features.get("rgb_matrix", self.rgb_matrix is not None)
        light_count = None
        split_counts = None
        if self.rgb_matrix is not None and has_lighting:
            for ind, light in enumerate(self.rgb_matrix.layout):
                if light.matrix is not None:
                    lights[Position(*light.matrix)] = ind
            split_counts = self.rgb_matrix.split_count
            light_count = sum(split_counts) if split_counts else len(self.rgb_matrix.layout)

        split = None
        if self.split is not None and self.split.enabled:
            if self.split.matrix_columns_reversed is None:
                logger.warning(
                    'split board "%s" does not declare split.matrix_columns_reversed, assuming false', keyboard
                )
            split = SplitSpec(
                reverse_columns=bool(self.split.matrix_columns_reversed),
                axis=self.split.axis,
                boundary=self.split.boundary,
            )

        keys = []
        for k in qmk_keys:
            pos = Position(*k.matrix)
            keys.append(
                KeyGeometry(
                    position=pos, light_index=lights.get(pos), x=k.x, y=k.y, width=k.w, height=k.h, rotation=k.r
                )
            )
        decorative = 0
        if self.rgb_matrix is not None and has_lighting:
            key_positions = {k.position for k in keys}
            decorative = sum(
                1
                for light in self.rgb_matrix.layout
                if light.matrix is None or Position(*light.matrix) not in key_positions
            )

        if self.matrix_size is not None:
            rows, cols = self.matrix_size.rows, self.matrix_size.cols
        else:
            rows = max((k.position.row for k in keys), default=-1) + 1
            cols = max((k.position.col for k in keys), default=-1) + 1
        if split is not None and split.boundary is None and split.axis == "row":
            split.boundary = rows // 2

        try:
            geometry = BoardGeometry(
                keys=keys,
                matrix_rows=rows,
                matrix_cols=cols,
                encoder_count=len(self.encoder.get("rotary", [])),
                split=split,
                has_lighting=bool(has_lighting),
                light_count=light_count,
                decorative_lights=decorative,
            )
        except PydanticValidationError as err:
            raise BoardInvalidError(f'Board "{keyboard}" has an invalid geometry: {err}') from err
        return BoardDefinition(
            keyboard=keyboard,
            geometry=geometry,
            layout_name=layout_name,
            base_config=base_config,
            split_light_counts=split_counts,
        )


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], val)
        else:
            out[key] = val
    return out


@lru_cache(maxsize=128)
def _read_json(path: Path) -> dict:
    with open(path, "rb") as f:
        return json.load(f)


class BoardSource:
    """Looks up board definitions by QMK keyboard name, e.g. "crkbd/rev1"."""

    def __init__(self, config: BoardConfig | None = None):
        self.cfg = config if config is not None else BoardConfig()

    def load(self, keyboard: str, layout_name: str | None = None) -> BoardDefinition:
        """Load the definition from the first source that has it."""
        keyboard = keyboard.strip("/")
        for root in self.cfg.board_roots:
            if (found := self._load_local(Path(root), keyboard)) is not None:
                info, base_config = found
                break
        else:
            info, base_config = self._load_remote(keyboard), ""
        return self._validate(info, keyboard).to_board(keyboard, layout_name, base_config)

    def load_file(self, path: Path, layout_name: str | None = None) -> BoardDefinition:
        """Load a standalone JSON or YAML definition, with an optional config.h next to it."""
        if not path.is_file():
            raise BoardNotFoundError(f'Board definition file "{path}" does not exist')
        try:
            with open(path, "rb") as f:
                info = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as err:
            raise BoardInvalidError(f'Board definition file "{path}" cannot be parsed: {err}') from err
        config_path = path.parent / "config.h"
        base_config = config_path.read_text(encoding="utf-8") if config_path.is_file() else ""
        keyboard = info.get("keyboard_folder", path.parent.name) if isinstance(info, dict) else path.stem
        return self._validate(info, keyboard).to_board(keyboard, layout_name, base_config)

    @staticmethod
    def _validate(info, keyboard: str) -> QmkInfo:
        if not isinstance(info, dict):
            raise BoardInvalidError(f'Board definition of "{keyboard}" must be a mapping')
        try:
            return QmkInfo.model_validate(info)
        except PydanticValidationError as err:
            raise BoardInvalidError(f'Board definition of "{keyboard}" is invalid: {err}') from err

    @staticmethod
    def _load_local(root: Path, keyboard: str) -> tuple[dict, str] | None:
        """
        Merge definition files from every directory on the path to the keyboard, parents first, the same
        way QMK does, and concatenate the config.h files found along the way.
        """
        board_dir = root / "keyboards" / keyboard
        if not board_dir.is_dir():
            return None
        info: dict = {}
        configs = []
        found = False
        current = root / "keyboards"
        for part in Path(keyboard).parts:
            current = current / part
            for name in DEFINITION_FILES:
                if (current / name).is_file():
                    found = True
                    try:
                        info = _deep_merge(info, _read_json(current / name))
                    except json.JSONDecodeError as err:
                        raise BoardInvalidError(f'"{current / name}" is not valid JSON: {err}') from err
            if (current / "config.h").is_file():
                configs.append((current / "config.h").read_text(encoding="utf-8"))
        if not found:
            return None
        logger.debug("found board %s in local tree %s", keyboard, root)
        return info, "\n".join(configs)

    def _load_remote(self, keyboard: str) -> dict:
        cache_path = CACHE_BOARDS_PATH / f"{keyboard.replace('/', '@')}.json"
        if self.cfg.use_local_cache and cache_path.is_file():
            logger.debug("found board %s in local cache", keyboard)
            return _read_json(cache_path)
        if not self.cfg.allow_remote:
            raise BoardNotFoundError(
                f'Board "{keyboard}" was not found in any of the board roots {self.cfg.board_roots}'
            )
        try:
            with urlopen(QMK_METADATA_URL.format(keyboard=keyboard)) as f:
                logger.debug("getting board %s from QMK metadata API", keyboard)
                info = json.load(f)["keyboards"][keyboard]
        except HTTPError as exc:
            raise BoardNotFoundError(
                f'QMK keyboard "{keyboard}" not found, please make sure you specify an existing keyboard '
                "(hint: check from https://config.qmk.fm)"
            ) from exc
        except (URLError, KeyError, json.JSONDecodeError) as exc:
            raise BoardNotFoundError(f'Could not fetch QMK keyboard "{keyboard}": {exc}') from exc
        if self.cfg.use_local_cache:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(cache_path, "w", encoding="utf-8") as f_out:
                json.dump(info, f_out)
        return info
