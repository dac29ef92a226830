import csv
import json

import pytest
import simpy

from exor_sim.config import SimulationConfig
from exor_sim.core.enums import ForwardingPolicy
from exor_sim.core.simulator import ExORSimulator
from exor_sim.topologies import build_chain, build_grid, build_random_mesh, build_triangle
from exor_sim.utils.metrics import (
    compare_policies,
    save_metrics_to_csv,
    save_metrics_to_json,
    transmissions_per_delivery,
)


def create_simulator(policy=ForwardingPolicy.UNCONDITIONAL, **kwargs):
    """
    Create a simulator with a fresh environment

    Args:
        policy: Forwarding policy of every node
        kwargs: Extra SimulationConfig fields

    Returns:
        ExORSimulator instance
    """
    config = SimulationConfig(policy=policy, **kwargs)
    return ExORSimulator(simpy.Environment(), config)


def create_bidirectional_chain(sim, length=4):
    """Build a perfect two-way chain 0 - 1 - ... - length-1"""
    for node_id in range(length):
        sim.add_node(node_id)
    for node_id in range(length - 1):
        sim.add_bidirectional_link(node_id, node_id + 1, 1.0)
    return 0, length - 1


def test_add_node_and_link_validation():
    sim = create_simulator()
    sim.add_node("A")
    sim.add_node("B")

    with pytest.raises(ValueError):
        sim.add_node("A")
    with pytest.raises(ValueError):
        sim.add_link("A", "Z", 0.5)
    with pytest.raises(ValueError):
        sim.add_link("A", "A", 0.5)
    with pytest.raises(ValueError):
        sim.add_link("A", "B", 2.0)

    link = sim.add_link("A", "B", 0.25)
    assert sim.links[("A", "B")] is link
    assert sim.graph["A"]["B"]["etx"] == pytest.approx(4.0)
    assert not sim.graph.has_edge("B", "A")


def test_config_validation():
    with pytest.raises(ValueError):
        SimulationConfig(batch_size=0)
    with pytest.raises(ValueError):
        SimulationConfig(max_rounds=-1)
    with pytest.raises(ValueError):
        SimulationConfig(send_interval=0)
    with pytest.raises(ValueError):
        SimulationConfig(policy="flooding")

    config = SimulationConfig(policy="best-holder")
    assert config.policy is ForwardingPolicy.BEST_HOLDER
    assert config.to_dict()["policy"] == "BEST_HOLDER"


def test_compute_forward_list_orders_by_etx_to_destination():
    sim = create_simulator()
    source, destination = create_bidirectional_chain(sim, 4)

    assert sim.compute_forward_list(source, destination) == [3, 2, 1]


def test_compute_forward_list_on_triangle():
    sim = create_simulator()
    source, destination = build_triangle(sim)

    assert sim.compute_forward_list(source, destination) == [2, 1]


def test_compute_forward_list_rejects_unreachable_destination():
    sim = create_simulator()
    sim.add_node(0)
    sim.add_node(1)
    sim.add_link(0, 1, 0.0)

    with pytest.raises(ValueError):
        sim.compute_forward_list(0, 1)
    with pytest.raises(ValueError):
        sim.compute_forward_list(0, 0)


def test_create_batch_rejects_unknown_forwarders():
    sim = create_simulator()
    build_chain(sim, 3)

    with pytest.raises(ValueError):
        sim.create_batch(0, 2, forward_list=[1, 7, 2])


def test_chain_run_delivers_every_packet():
    sim = create_simulator(batch_size=5, max_rounds=5, settle_rounds=1)
    source, destination = build_chain(sim, 3)
    sim.create_batch(source, destination, forward_list=[1, 2])

    metrics = sim.run()

    assert metrics["delivered"] == [0, 1, 2, 3, 4]
    assert metrics["delivery_ratio"] == 1.0
    assert metrics["link_losses"] == 0
    assert metrics["destination_batch_map"] == {seq: 1 for seq in range(5)}


def test_chain_run_with_dead_link_delivers_nothing():
    sim = create_simulator(batch_size=3, max_rounds=3, settle_rounds=0)
    for node_id in range(3):
        sim.add_node(node_id)
    sim.add_link(0, 1, 0.0)
    sim.add_link(1, 2, 1.0)
    sim.create_batch(0, 2, forward_list=[1, 2])

    metrics = sim.run()

    assert metrics["delivered"] == []
    assert metrics["delivery_ratio"] == 0.0
    assert metrics["rounds"] == 3
    assert metrics["link_delivery_ratio"] == {(0, 1): 0.0}


def test_best_holder_policy_saves_transmissions():
    results = {}
    for policy in ForwardingPolicy:
        sim = create_simulator(policy, batch_size=3, max_rounds=10, settle_rounds=1)
        source, destination = create_bidirectional_chain(sim, 4)
        sim.create_batch(source, destination)
        results[policy] = sim.run()

    unconditional = results[ForwardingPolicy.UNCONDITIONAL]
    best_holder = results[ForwardingPolicy.BEST_HOLDER]
    assert unconditional["delivered"] == best_holder["delivered"] == [0, 1, 2]
    assert unconditional["rounds"] == best_holder["rounds"] == 3
    assert unconditional["transmissions"] == 18
    assert best_holder["transmissions"] == 12


def test_run_stops_at_max_rounds_without_settling():
    sim = create_simulator(batch_size=2, max_rounds=4, settle_rounds=0)
    source, destination = build_chain(sim, 3)
    sim.create_batch(source, destination, forward_list=[1, 2])

    rounds = []
    sim.register_hook("flush_round", lambda round_num, sent, now: rounds.append((round_num, sent)))
    metrics = sim.run()

    assert rounds == [(1, 2), (2, 2), (3, 2), (4, 2)]
    assert metrics["rounds"] == 4


def test_hooks_report_transmissions_and_losses():
    sim = create_simulator(batch_size=4, max_rounds=2, settle_rounds=0)
    source, destination = build_chain(sim, 3, probability=1.0)
    sim.create_batch(source, destination, forward_list=[1, 2])

    events = {"packet_transmitted": 0, "packet_delivered": 0, "packet_lost": 0}
    for event_type in events:
        sim.register_hook(event_type, lambda *args, e=event_type: events.__setitem__(e, events[e] + 1))
    ended = []
    sim.register_hook("sim_end", ended.append)

    metrics = sim.run()

    assert events["packet_transmitted"] == metrics["transmissions"]
    assert events["packet_delivered"] == metrics["link_attempts"]
    assert events["packet_lost"] == 0
    assert ended == [metrics]

    with pytest.raises(ValueError):
        sim.register_hook("unknown", print)


def test_same_seed_reproduces_run():
    def run_once(seed):
        sim = create_simulator(seed=seed, batch_size=20)
        source, destination = build_triangle(sim)
        sim.create_batch(source, destination)
        return sim.run()

    first = run_once(3)
    second = run_once(3)

    assert first["delivered"] == second["delivered"]
    assert first["transmissions"] == second["transmissions"]
    assert first["link_delivery_ratio"] == second["link_delivery_ratio"]


def test_reset_allows_independent_runs():
    sim = create_simulator(seed=5, batch_size=20)
    source, destination = build_triangle(sim)
    batch = sim.create_batch(source, destination)
    first = dict(sim.run(batch))

    sim.reset()
    assert all(node.packets == [] for node in sim.nodes.values())
    assert sim.env.now == 0
    second = sim.run(batch)

    assert first["delivered"] == second["delivered"]
    assert first["transmissions"] == second["transmissions"]


def test_second_batch_reports_its_own_counters():
    sim = create_simulator(batch_size=3, max_rounds=2, settle_rounds=0)
    source, destination = build_chain(sim, 3)

    sim.create_batch(source, destination, forward_list=[1, 2])
    first = dict(sim.run())
    sim.create_batch(source, destination, forward_list=[1, 2])
    second = sim.run()

    for metrics in (first, second):
        assert metrics["transmissions"] == 9
        assert metrics["link_attempts"] == 9
        assert metrics["node_stats"][0]["transmissions"] == 3
        assert metrics["node_stats"][1]["transmissions"] == 6
        assert metrics["delivered"] == [0, 1, 2]
    assert second["batch_id"] == 1


def test_reset_seed_does_not_touch_shared_config():
    config = SimulationConfig(seed=1, batch_size=5)
    first = ExORSimulator(simpy.Environment(), config)
    second = ExORSimulator(simpy.Environment(), config)
    for sim in (first, second):
        source, destination = build_triangle(sim)
        sim.create_batch(source, destination)

    first.reset(seed=9)

    assert config.seed == 1
    assert second.seed == 1
    assert first.seed == 9
    assert first.run()["seed"] == 9
    assert second.run()["seed"] == 1

    first.reset()
    assert first.seed == 1


def test_rate_estimate_is_observed_at_relay():
    sim = create_simulator(batch_size=10, send_interval=0.01, max_rounds=1)
    source, destination = build_chain(sim, 3)
    sim.create_batch(source, destination, forward_list=[1, 2])

    metrics = sim.run()

    rate = metrics["node_stats"][1]["transmission_rate"]
    assert 0 < rate < 100
    assert metrics["node_stats"][0]["buffered"] == 0


def test_grid_and_random_topologies_run():
    sim = create_simulator(ForwardingPolicy.BEST_HOLDER, batch_size=10)
    source, destination = build_grid(sim, size=3)
    batch = sim.create_batch(source, destination)
    assert batch.forward_list[0] == destination
    assert source not in batch.forward_list
    metrics = sim.run()
    assert metrics["delivery_ratio"] > 0

    sim = create_simulator(batch_size=5)
    source, destination = build_random_mesh(sim, num_nodes=12, radius=0.6)
    sim.create_batch(source, destination)
    assert 0.0 <= sim.run()["delivery_ratio"] <= 1.0


def test_run_without_batch_fails():
    sim = create_simulator()
    build_chain(sim, 2)

    with pytest.raises(ValueError):
        sim.run()


def test_metrics_export(tmp_path):
    def creator(policy):
        sim = create_simulator(policy, batch_size=3, max_rounds=5, settle_rounds=1)
        source, destination = build_chain(sim, 3)
        sim.create_batch(source, destination, forward_list=[1, 2])
        return sim

    comparison = compare_policies(creator, output_dir=str(tmp_path))

    assert comparison["policies"] == ["UNCONDITIONAL", "BEST_HOLDER"]
    assert comparison["delivery_ratio"] == [1.0, 1.0]

    with open(tmp_path / "best_holder_metrics.json") as f:
        saved = json.load(f)
    assert saved["link_delivery_ratio"] == {"0->1": 1.0, "1->2": 1.0}
    assert saved["delivered"] == [0, 1, 2]

    with open(tmp_path / "policy_comparison.csv", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "Policy"
    assert [row[0] for row in rows[1:]] == ["UNCONDITIONAL", "BEST_HOLDER"]

    save_metrics_to_json(comparison["metrics"][0], str(tmp_path / "nested" / "m.json"))
    save_metrics_to_csv(comparison["metrics"], str(tmp_path / "nested" / "m.csv"))
    assert (tmp_path / "nested" / "m.json").exists()
    assert transmissions_per_delivery(comparison["metrics"][0]) > 0
    assert transmissions_per_delivery({"delivered": [], "transmissions": 4}) == float("inf")
