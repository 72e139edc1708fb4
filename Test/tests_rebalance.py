from hash_ring import HashRing
from rebalance import RebalancePlanner


def make_ring():
    ring = HashRing(virtual_nodes=64, seed=2025)
    for nid in ['cache-a', 'cache-b', 'cache-c']:
        ring.add_node(nid)
    return ring


def test_plan_on_join():
    keys = [f'Q-{i}' for i in range(500)]
    ring = make_ring()
    ring_before = ring.clone()
    ring.add_node('cache-d')

    planner = RebalancePlanner()
    plan = planner.plan_moved(keys, ring_before, ring)
    assert plan
    assert all(to == 'cache-d' for (_, to) in plan.values())
    assert planner.unexpected_moves(plan, added={'cache-d'}) == {}

    stats = planner.stats(plan)
    assert stats['moved_count'] == float(len(plan))
    assert stats['by_to'] == {'cache-d': len(plan)}
    assert sum(stats['by_from'].values()) == len(plan)


def test_plan_on_leave():
    keys = [f'Q-{i}' for i in range(500)]
    ring = make_ring()
    ring_before = ring.clone()
    ring.remove_node('cache-b')

    planner = RebalancePlanner()
    plan = planner.plan_moved(keys, ring_before, ring)
    assert all(frm == 'cache-b' for (frm, _) in plan.values())
    assert planner.unexpected_moves(plan, removed={'cache-b'}) == {}
    # every key cache-b owned moved somewhere else
    owned = [k for k in keys if ring_before.resolve(k) == 'cache-b']
    assert sorted(plan) == sorted(owned)


def test_plan_unchanged_ring_is_empty():
    ring = make_ring()
    planner = RebalancePlanner()
    assert planner.plan_moved(['a', 'b', 'c'], ring, ring.clone()) == {}
    assert planner.stats({}) == {'moved_count': 0.0, 'by_to': {}, 'by_from': {}}


def test_plan_from_empty_ring():
    empty = HashRing(virtual_nodes=4)
    ring = make_ring()
    planner = RebalancePlanner()
    plan = planner.plan_moved(['a', 'b'], empty, ring)
    assert set(plan) == {'a', 'b'}
    assert all(frm is None for (frm, _) in plan.values())
    assert planner.stats(plan)['by_from'] == {}


def test_unexpected_moves_flags_stray_keys():
    planner = RebalancePlanner()
    plan = {'k1': ('cache-b', 'cache-a'), 'k2': ('cache-a', 'cache-c')}
    assert planner.unexpected_moves(plan, removed={'cache-b'}) == {'k2': ('cache-a', 'cache-c')}
