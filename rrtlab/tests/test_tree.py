import math

from rrtlab.algorithms.tree import TreeStore


def test_root_and_add():
    tree = TreeStore((0, 0))
    assert len(tree) == 1
    assert tree.root.parent is None and tree.root.cost == 0.0

    a = tree.add((3, 4), 0)
    b = tree.add((3, 10), a.id)
    assert (a.id, b.id) == (1, 2)
    assert a.cost == 5.0
    assert b.cost == 11.0
    assert tree[0].children == [1]
    assert tree[1].children == [2]
    assert list(tree.edges()) == [(0, 1), (1, 2)]
    assert tree.backtrace(2) == [2, 1, 0]
    assert tree.check_invariants() == []


def test_nearest_keeps_first_on_tie():
    tree = TreeStore((0, 0))
    tree.add((10, 0), 0)
    tree.add((-10, 0), 0)
    assert tree.nearest((0, 5)).id == 0
    assert tree.nearest((0, 20)).id == 0
    # nodes 1 and 2 are equidistant from the query, the first one scanned wins
    tree2 = TreeStore((0, 50))
    tree2.add((10, 0), 0)
    tree2.add((-10, 0), 0)
    assert tree2.nearest((0, -20)).id == 1


def test_within_is_inclusive_and_ordered():
    tree = TreeStore((0, 0))
    tree.add((10, 0), 0)
    tree.add((20, 0), 1)
    tree.add((5, 0), 0)
    assert tree.within((0, 0), 10) == [0, 1, 3]
    assert tree.within((100, 100), 1) == []


def test_reparent_moves_child_and_updates_subtree():
    tree = TreeStore((0, 0))
    a = tree.add((0, 30), 0)
    b = tree.add((30, 30), a.id)
    c = tree.add((30, 40), b.id)
    shortcut = tree.add((20, 20), 0)

    new_cost = shortcut.cost + math.hypot(10, 10)
    tree.reparent(b.id, shortcut.id, new_cost)

    assert tree[a.id].children == []
    assert tree[shortcut.id].children == [b.id]
    assert tree[b.id].parent == shortcut.id
    assert math.isclose(tree[b.id].cost, new_cost)
    assert math.isclose(tree[c.id].cost, new_cost + 10)
    assert tree.check_invariants() == []


def test_cost_propagation_handles_deep_chains():
    tree = TreeStore((0, 0))
    depth = 3000
    for i in range(1, depth + 1):
        tree.add((float(i), 0.0), i - 1)
    hub = tree.add((0.0, 1.0), 0)

    tree.reparent(1, hub.id, hub.cost + math.sqrt(2))

    assert math.isclose(tree[depth].cost, 1 + math.sqrt(2) + (depth - 1))
    assert tree.check_invariants() == []


def test_check_invariants_reports_corruption():
    tree = TreeStore((0, 0))
    tree.add((3, 4), 0)
    tree[1].cost = 99.0
    problems = tree.check_invariants()
    assert problems and "cost" in problems[0]

    tree[1].cost = 5.0
    tree[0].children.clear()
    assert any("missing" in p for p in tree.check_invariants())
