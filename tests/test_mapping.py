import pytest
from hypothesis import given
from hypothesis import strategies as st

from keymap_compiler.geometry import BoardGeometry, KeyGeometry, Position, SplitSpec
from keymap_compiler.mapping import CoordinateMapper


def assert_bijective(mapper: CoordinateMapper, geometry: BoardGeometry) -> None:
    positions = geometry.positions()
    slots = sorted(mapper.matrix_to_visual(pos) for pos in positions)
    assert slots == list(range(len(positions)))
    for pos in positions:
        assert mapper.visual_to_matrix(mapper.matrix_to_visual(pos)) == pos
        if (light := mapper.matrix_to_light(pos)) is not None:
            assert mapper.light_to_matrix(light) == pos
    for slot in range(mapper.key_count):
        assert mapper.matrix_to_visual(mapper.visual_to_matrix(slot)) == slot


@pytest.mark.parametrize("name", ["unibody_geometry", "split_reversed_geometry", "split_geometry"])
def test_bijective(name, request):
    geometry = request.getfixturevalue(name)
    mapper = CoordinateMapper(geometry)
    assert mapper.key_count == 6
    assert mapper.light_count == 6
    assert_bijective(mapper, geometry)


def test_unibody_reading_order(unibody_geometry):
    mapper = CoordinateMapper(unibody_geometry)
    assert [mapper.visual_to_matrix(slot) for slot in range(6)] == [
        Position(0, 0),
        Position(0, 1),
        Position(0, 2),
        Position(1, 0),
        Position(1, 1),
        Position(1, 2),
    ]
    assert mapper.visual_to_light(4) == 4


def test_split_reversed_columns(split_reversed_geometry):
    mapper = CoordinateMapper(split_reversed_geometry)
    assert split_reversed_geometry.halves == [0, 0, 0, 1, 1, 1]
    assert [mapper.matrix_to_visual(Position(0, col)) for col in range(3)] == [0, 1, 2]
    # right half is wired from the outer edge, so its last matrix column is next to the gap
    assert mapper.matrix_to_visual(Position(1, 2)) == 3
    assert mapper.matrix_to_visual(Position(1, 1)) == 4
    assert mapper.matrix_to_visual(Position(1, 0)) == 5
    # lights stay in wiring order
    assert mapper.matrix_to_light(Position(1, 0)) == 3
    assert mapper.visual_to_light(3) == 5


def test_split_inferred_boundary(split_geometry):
    mapper = CoordinateMapper(split_geometry)
    assert split_geometry.halves == [0, 0, 0, 1, 1, 1]
    assert [mapper.matrix_to_visual(Position(1, col)) for col in range(3)] == [3, 4, 5]


def test_out_of_range_lookups(unibody_geometry):
    mapper = CoordinateMapper(unibody_geometry)
    assert mapper.matrix_to_visual(Position(5, 5)) is None
    assert mapper.visual_to_matrix(6) is None
    assert mapper.visual_to_matrix(-1) is None
    assert mapper.light_to_matrix(100) is None
    assert mapper.visual_to_light(100) is None
    assert Position(5, 5) not in mapper


def test_emission_order_follows_geometry():
    keys = [KeyGeometry(Position(1, 0)), KeyGeometry(Position(0, 0), x=1)]
    mapper = CoordinateMapper(BoardGeometry(keys=keys, matrix_rows=2, matrix_cols=1))
    assert mapper.emission_order() == [Position(1, 0), Position(0, 0)]
    assert mapper.matrix_to_emission(Position(0, 0)) == 1
    assert mapper.matrix_to_visual(Position(0, 0)) == 0


def test_decorative_lights_counted():
    geometry = BoardGeometry(
        keys=[KeyGeometry(Position(0, 0), light_index=0), KeyGeometry(Position(0, 1), light_index=1, x=1)],
        matrix_rows=1,
        matrix_cols=2,
        has_lighting=True,
        light_count=4,
        decorative_lights=2,
    )
    mapper = CoordinateMapper(geometry)
    assert mapper.light_count == 4
    assert mapper.light_to_matrix(3) is None


positions_st = st.sets(st.tuples(st.integers(0, 5), st.integers(0, 7)), min_size=1, max_size=30)


@given(positions_st, st.booleans())
def test_random_unibody_bijective(cells, with_lights):
    keys = [
        KeyGeometry(Position(row, col), light_index=ind if with_lights else None, x=col, y=row)
        for ind, (row, col) in enumerate(sorted(cells))
    ]
    geometry = BoardGeometry(keys=keys, matrix_rows=6, matrix_cols=8, has_lighting=with_lights)
    assert_bijective(CoordinateMapper(geometry), geometry)


@given(positions_st, positions_st, st.booleans())
def test_random_split_bijective(left, right, reverse):
    keys = [KeyGeometry(Position(row, col), x=col, y=row) for row, col in sorted(left)]
    keys += [KeyGeometry(Position(row + 6, col), x=20 + col, y=row) for row, col in sorted(right)]
    geometry = BoardGeometry(
        keys=keys,
        matrix_rows=12,
        matrix_cols=8,
        split=SplitSpec(reverse_columns=reverse, axis="row", boundary=6),
    )
    mapper = CoordinateMapper(geometry)
    assert_bijective(mapper, geometry)
    # every key of the left half comes before the right half keys of the same visual row
    for row, col in left:
        for r_row, r_col in right:
            if row - min(r for r, _ in left) == r_row - min(r for r, _ in right):
                assert mapper.matrix_to_visual(Position(row, col)) < mapper.matrix_to_visual(
                    Position(r_row + 6, r_col)
                )
