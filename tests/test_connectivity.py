from collections import Counter

import pytest

from cubedgrid import (
    ConfigurationError,
    ContractError,
    CubedSphereGrid,
    Direction,
    InProcessWorld,
    Model,
    ProtocolError,
)
from cubedgrid.grid.connectivity import exchange_tag, parse_exchange_tag
from conftest import build_grid, build_irregular_grid, make_box


def relations(patch):
    return [(n.direction, n.neighbor_index) for n in patch.connectivity]


def test_boundary_samples_order():
    # Arrange
    box = make_box(panel=0, a0=2, a1=4, b0=5, b1=8, resolution=10)

    # Act
    samples = CubedSphereGrid.boundary_samples(box)

    # Assert
    assert len(samples) == box.interior_perimeter + 4
    assert samples == [
        (1, 4),
        (2, 4),
        (3, 4),
        (4, 4),
        (4, 5),
        (4, 6),
        (4, 7),
        (4, 8),
        (3, 8),
        (2, 8),
        (1, 8),
        (1, 7),
        (1, 6),
        (1, 5),
    ]


def test_single_patch_panels(comm):
    # Act
    grid = build_grid(comm, base_resolution=10, halo_elements=2)

    # Assert
    assert grid.patch_count == 6
    for patch in grid.patches:
        assert len(patch.connectivity) == 4
        for exterior_neighbor in patch.connectivity:
            assert exterior_neighbor.direction.is_edge
            assert exterior_neighbor.boundary_size == 10

    assert dict(relations(grid.patches[0])) == {
        Direction.RIGHT: 1,
        Direction.TOP: 4,
        Direction.LEFT: 3,
        Direction.BOTTOM: 5,
    }
    assert dict(relations(grid.patches[4])) == {
        Direction.BOTTOM: 0,
        Direction.RIGHT: 1,
        Direction.TOP: 2,
        Direction.LEFT: 3,
    }


def test_single_patch_panels_four_ranks():
    def rank_main(comm):
        grid = build_grid(comm, base_resolution=10, halo_elements=2)
        return {
            patch.patch_index: [(n.direction, n.boundary_size) for n in patch.connectivity]
            for patch in grid.active_patches
        }

    # Act
    results = InProcessWorld(4).run(rank_main, timeout=60)

    # Assert
    owners = {patch_index: rank for rank, owned in enumerate(results) for patch_index in owned}
    assert [owners[n] for n in range(6)] == [0, 1, 2, 3, 0, 1]
    for owned in results:
        for patch_relations in owned.values():
            assert sorted(direction for direction, _ in patch_relations) == sorted(
                d for d in Direction if d.is_edge
            )
            assert all(size == 10 for _, size in patch_relations)


def test_seam_relation_flags(comm):
    grid = build_grid(comm, base_resolution=10, halo_elements=2)

    by_direction = {n.direction: n for n in grid.patches[1].connectivity}
    top = by_direction[Direction.TOP]

    assert top.neighbor_index == 4
    assert top.direction_opposing == Direction.RIGHT
    assert top.flip_coordinate
    assert not top.reverse_direction


def test_split_panels(comm):
    # Act
    grid = build_grid(comm, base_resolution=10, patches_per_panel=2, halo_elements=2)

    # Assert
    assert grid.patch_count == 24
    for patch in grid.patches:
        counts = Counter(n.direction.is_edge for n in patch.connectivity)
        # Each patch touches one cube corner, where no corner relation exists.
        assert counts[True] == 4
        assert counts[False] == 3
        for exterior_neighbor in patch.connectivity:
            expected = 5 if exterior_neighbor.direction.is_edge else 2
            assert exterior_neighbor.boundary_size == expected

    # Bottom-left patch of panel 0: the interior corner is shared with patch 3.
    assert (Direction.TOP_RIGHT, 3) in relations(grid.patches[0])
    assert (Direction.BOTTOM_LEFT, 0) in relations(grid.patches[3])


def test_connectivity_is_symmetric(comm):
    grid = build_irregular_grid(comm)

    descriptors = {
        n.descriptor(patch.patch_index) for patch in grid.patches for n in patch.connectivity
    }
    for patch, direction, neighbor, opposing, size, capacity, send_key, recv_key in descriptors:
        assert (
            neighbor,
            opposing,
            patch,
            direction,
            size,
            capacity,
            recv_key,
            send_key,
        ) in descriptors


def test_irregular_split_builds_diagonals(comm):
    # Act
    grid = build_irregular_grid(comm)

    # Assert
    patch_a, patch_b, patch_c, patch_d = grid.patches[0:4]

    # Above A the neighbour changes from C to D, adding one diagonal to
    # each of them next to the change.
    a_relations = Counter(relations(patch_a))
    assert a_relations[(Direction.TOP, patch_c.patch_index)] == 1
    assert a_relations[(Direction.TOP, patch_d.patch_index)] == 1
    assert a_relations[(Direction.TOP_LEFT, patch_c.patch_index)] == 1
    assert a_relations[(Direction.TOP_RIGHT, patch_d.patch_index)] == 2

    # D sees A through its own corner and through the change A -> B below it.
    d_relations = Counter(relations(patch_d))
    assert d_relations[(Direction.BOTTOM_LEFT, patch_a.patch_index)] == 2
    assert d_relations[(Direction.BOTTOM_RIGHT, patch_b.patch_index)] == 1

    segments = {
        (n.direction, n.neighbor_index): n.boundary_size
        for n in patch_a.connectivity
        if n.direction.is_edge
    }
    assert segments[(Direction.TOP, patch_c.patch_index)] == 3
    assert segments[(Direction.TOP, patch_d.patch_index)] == 2


def test_relations_in_one_direction_start_at_distinct_nodes(comm):
    grid = build_irregular_grid(comm)

    for patch in grid.patches:
        keys = Counter((n.direction, n.recv_key) for n in patch.connectivity)
        assert max(keys.values()) == 1


def test_insufficient_interior_for_diagonal(comm):
    # A 1 x 10 strip split with halo 2 leaves one interior column per patch.
    with pytest.raises(ConfigurationError, match="Insufficient interior"):
        build_grid(comm, base_resolution=10, patches_per_panel=(10, 1), halo_elements=2)


def test_uncovered_boundary(comm):
    # Arrange
    model = Model(halo_elements=2)
    grid = CubedSphereGrid(model, comm, 10)
    grid.add_patch(make_box(0, 0, 10, 0, 10, 10))
    grid.distribute_patches()

    # Act and assert
    with pytest.raises(ConfigurationError, match="not covered"):
        grid.initialize_connectivity()


def test_connectivity_requires_distribution(comm):
    grid = CubedSphereGrid(Model(halo_elements=2), comm, 10)
    grid.generate_patches()

    with pytest.raises(ContractError):
        grid.initialize_connectivity()


def test_tag_space_exceeds_communicator():
    # Six single-patch panels hold one relation per direction: tags 0..47.
    build_grid(InProcessWorld(1, max_tag=47).communicators[0])

    with pytest.raises(ProtocolError, match="need tags up to 47"):
        build_grid(InProcessWorld(1, max_tag=46).communicators[0])


def test_mixed_refinement_levels_fail_cross_check(comm):
    # Arrange: panel 0 at twice the resolution of its neighbours.
    model = Model(halo_elements=2)
    grid = CubedSphereGrid(model, comm, 10)
    grid.add_patch(make_box(0, 0, 20, 0, 20, 20, level=1))
    for panel in range(1, 6):
        grid.add_patch(make_box(panel, 0, 10, 0, 10, 10))
    grid.distribute_patches()

    # Act and assert
    with pytest.raises(ProtocolError):
        grid.initialize_connectivity()


def test_exchange_tag_round_trip():
    relations_per_direction = 3
    for receiver in (0, 7, 95):
        for direction in Direction:
            for ordinal in range(relations_per_direction):
                tag = exchange_tag(receiver, direction, ordinal, relations_per_direction)

                assert parse_exchange_tag(tag, relations_per_direction) == (
                    receiver,
                    direction,
                    ordinal,
                )


def test_exchange_tag_rejects_ordinal_out_of_range():
    with pytest.raises(ProtocolError):
        exchange_tag(0, Direction.TOP, 2, 2)


def test_exchange_tags_are_unique(comm):
    # Arrange
    grid = build_irregular_grid(comm)
    relations = [(patch, n) for patch in grid.patches for n in patch.connectivity]

    # Act
    recv_tags = [n.recv_tag for _, n in relations]

    # Assert
    assert len(set(recv_tags)) == len(recv_tags)
    # Patch A holds two TOP_RIGHT relations to patch D.
    assert max(parse_exchange_tag(tag, 2)[2] for tag in recv_tags) == 1
    assert max(recv_tags) < grid.patch_count * 8 * 2
    for patch, n in relations:
        reciprocal = [
            m
            for m in grid.patches[n.neighbor_index].connectivity
            if m.neighbor_index == patch.patch_index
            and m.direction == n.direction_opposing
            and m.recv_key == n.send_key
        ]
        assert len(reciprocal) == 1
        assert n.send_tag == reciprocal[0].recv_tag
