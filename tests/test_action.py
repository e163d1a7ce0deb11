import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import logging

import numpy as np
import pytest

from simtruth.action import AdmissionOutcome, ParticleListAction
from simtruth.config import ParticleListConfig
from simtruth.errors import LogicError
from simtruth.events import PrimaryInfo, Step, StepPoint, TrackEnd, TrackInfo
from simtruth.particle import NO_GENERATED_PARTICLE_INDEX, NO_PARTICLE_ID
from simtruth.particle_list import ParticleStatus
from simtruth.truth import GeneratedParticle, MCTruth, MCTruthHandle


def pt(z=0.0, t=0.0, process=None, x=0.0):
    return StepPoint(position=(x, 0.0, z), time=t, momentum=(0.0, 0.0, 1.0), energy=1.0, process=process)


def one_truth(label="generator", n=2, origin=1):
    return [MCTruthHandle(label, [MCTruth(origin=origin, particles=[GeneratedParticle(11) for _ in range(n)])])]


def primary(tid, idx=0, truth=0, process="primary", pdg=11):
    return TrackInfo(track_id=tid, parent_id=0, pdg=pdg, kinetic_energy=1.0,
                     primary=PrimaryInfo(truth, idx, process))


def secondary(tid, parent, process="eIoni", ke=1.0, pdg=11):
    return TrackInfo(track_id=tid, parent_id=parent, pdg=pdg, creator_process=process, kinetic_energy=ke)


def run_track(action, track, n_steps=3, step_process="eIoni", end_process="eIoni"):
    outcome = action.pre_tracking_action(track)
    for i in range(n_steps):
        post_proc = end_process if i == n_steps - 1 else step_process
        action.stepping_action(Step(pre=pt(z=i, t=i), post=pt(z=i + 1, t=i + 1, process=post_proc)))
    action.post_tracking_action(TrackEnd(pt(z=n_steps, t=n_steps, process=end_process), weight=1.0))
    return outcome


def test_shower_daughter_is_dropped_and_recorded_under_ancestor():
    action = ParticleListAction(ParticleListConfig(keep_em_shower_daughters=False))
    action.begin_of_event_action(one_truth())
    assert run_track(action, primary(1)) is AdmissionOutcome.RETAINED
    assert run_track(action, secondary(2, 1, process="phot")) is AdmissionOutcome.DROPPED_PROCESS

    assert action.target_id(1) == 1
    assert action.target_id(2) == -1
    products = action.end_of_event_action()
    assert products.track_ids == [1]
    assert products.ancestry == {1: [2]}
    assert products.not_stored_counts == {"phot": 1}
    assert products.dropped_particles is None


def test_all_daughters_kept_without_suppression():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    assert run_track(action, secondary(2, 1, process="phot")) is AdmissionOutcome.RETAINED

    products = action.end_of_event_action()
    assert products.track_ids == [1, 2]
    assert products.particle_by_id(1).daughters == [2]
    assert products.particle_by_id(2).mother == 1
    assert products.ancestry == {}

    gen = [a.generated_particle_index for a in products.associations]
    assert gen == [0, NO_GENERATED_PARTICLE_INDEX]
    assert all(a.truth_index == 0 for a in products.associations)
    assert products.associations[0].particle is products.particles[0]


def test_full_trajectory_has_start_and_every_post_step():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1), n_steps=4)
    p = action.current_particle
    assert p is None  # slot cleared at track end

    products = action.end_of_event_action()
    traj = products.particles[0].trajectory
    assert len(traj) == 5
    assert traj.process_at(0) == "Start"
    np.testing.assert_allclose(traj.positions[:, 2], [0, 1, 2, 3, 4])
    assert products.particles[0].end_process == "eIoni"
    assert products.particles[0].weight == 1.0


def test_without_trajectory_storage_only_start_and_end_are_kept():
    action = ParticleListAction(ParticleListConfig(store_trajectories=False))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1), n_steps=5)
    run_track(action, secondary(2, 1), n_steps=2)

    products = action.end_of_event_action()
    for p in products.particles:
        assert p.n_trajectory_points == 2
    np.testing.assert_allclose(products.particles[0].trajectory.positions[:, 2], [0.0, 5.0])


def test_track_id_offset_is_persistent_and_monotonic():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    action.end_of_event_action()
    assert action.track_id_offset == 2

    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1))
    products = action.end_of_event_action()
    assert products.track_ids == [3, 4]
    assert products.particle_by_id(4).mother == 3
    assert action.track_id_offset == 5

    # nothing retained: offset untouched
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1))
    action.stepping_action(Step(pre=pt(0.0), post=pt(1.0, process="eIoni")))
    action.post_tracking_action(TrackEnd(pt(1.0, process=None)))
    assert action.end_of_event_action().track_ids == []
    assert action.track_id_offset == 5

    action.reset_track_id_offset()
    assert action.track_id_offset == 0


def test_track_id_offset_counts_dropped_list_ids():
    cfg = ParticleListConfig(keep_em_shower_daughters=False, store_dropped_mc_particles=True)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1, process="Decay"))
    assert run_track(action, secondary(7, 2, process="conv")) is AdmissionOutcome.DROPPED_PROCESS

    products = action.end_of_event_action()
    assert products.track_ids == [1, 2]
    assert action.track_id_offset == 8


def test_energy_cut_drops_track_and_files_it_under_parent():
    action = ParticleListAction(ParticleListConfig(energy_cut=0.01))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    assert action.pre_tracking_action(secondary(2, 1, ke=0.005)) is AdmissionOutcome.DROPPED_ENERGY_CUT
    assert action.current_particle is None
    assert action.target_id(2) == -1

    products = action.end_of_event_action()
    assert products.track_ids == [1]
    assert products.ancestry == {1: [2]}


def test_energy_cut_threshold_and_pdg_zero_pass():
    action = ParticleListAction(ParticleListConfig(energy_cut=0.01))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    assert run_track(action, secondary(2, 1, ke=0.01)) is AdmissionOutcome.RETAINED
    assert run_track(action, secondary(3, 1, ke=1e-6, pdg=0)) is AdmissionOutcome.RETAINED
    assert action.end_of_event_action().track_ids == [1, 2, 3]


def test_descendant_of_dropped_track_is_reparented_to_retained_ancestor():
    action = ParticleListAction(ParticleListConfig(keep_em_shower_daughters=False))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1, process="conv"))
    assert run_track(action, secondary(3, 2, process="Decay")) is AdmissionOutcome.RETAINED
    # daughter of a dropped track created by an excluded process
    run_track(action, secondary(4, 2, process="compt"))

    products = action.end_of_event_action()
    assert products.track_ids == [1, 3]
    assert products.particle_by_id(3).mother == 1
    assert products.particle_by_id(1).daughters == [3]
    assert products.ancestry == {1: [2, 4]}
    assert action.target_id(4) == -1


def test_dropped_grandchild_is_filed_under_ultimate_ancestor():
    action = ParticleListAction(ParticleListConfig(keep_em_shower_daughters=False))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1, process="conv"))
    run_track(action, secondary(3, 2, process="Decay"))
    # 3 is retained but carries a substitution entry (3 -> 2 -> 1)
    run_track(action, secondary(4, 3, process="phot"))

    products = action.end_of_event_action()
    assert products.track_ids == [1, 3]
    assert products.ancestry == {1: [2, 4]}
    assert action.target_id(4) == -1


def test_reparenting_walks_past_retained_track_with_substituted_parent():
    action = ParticleListAction(ParticleListConfig(keep_em_shower_daughters=False))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1, process="conv"))
    assert run_track(action, secondary(3, 2, process="Decay")) is AdmissionOutcome.RETAINED
    assert run_track(action, secondary(4, 3, process="conv")) is AdmissionOutcome.DROPPED_PROCESS
    assert run_track(action, secondary(5, 4, process="Decay")) is AdmissionOutcome.RETAINED

    products = action.end_of_event_action()
    assert products.track_ids == [1, 3, 5]
    assert products.particle_by_id(3).mother == 1
    assert products.particle_by_id(5).mother == 1
    assert products.particle_by_id(1).daughters == [3, 5]
    assert products.ancestry == {1: [2, 4]}


def test_unresolvable_parent_raises_logic_error(caplog):
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    with caplog.at_level(logging.WARNING):
        with pytest.raises(LogicError):
            action.pre_tracking_action(secondary(5, 4))
    assert "Can't find parent id 4" in caplog.text


def test_dropped_track_without_retained_ancestor_targets_sentinel():
    action = ParticleListAction(ParticleListConfig(energy_cut=0.5))
    action.begin_of_event_action(one_truth())
    assert action.pre_tracking_action(secondary(7, 6, ke=0.1)) is AdmissionOutcome.DROPPED_ENERGY_CUT
    assert action.target_id(7) == NO_PARTICLE_ID
    assert action.target_id(99) == NO_PARTICLE_ID


@pytest.mark.parametrize(
    "label, expected_process, canonical",
    [
        ("primary", "primary", True),
        ("primaryBackground", "primaryBackground", False),
        ("decay", "primary", True),
    ],
)
def test_primary_process_label_normalization(label, expected_process, canonical):
    cfg = ParticleListConfig(keep_only_primary_full_trajectories=True)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1, process=label), n_steps=4)
    run_track(action, secondary(2, 1), n_steps=4)

    products = action.end_of_event_action()
    p1, p2 = products.particles
    assert p1.process == expected_process
    assert p1.mother == 0
    expected_points = 5 if canonical else 2
    assert p1.n_trajectory_points == expected_points
    assert p2.n_trajectory_points == expected_points


def test_generator_allow_list_limits_full_trajectories():
    handles = [
        MCTruthHandle("generator", [MCTruth(origin=1, particles=[GeneratedParticle(13)])]),
        MCTruthHandle("cosmics", [MCTruth(origin=2, particles=[GeneratedParticle(13)])]),
    ]
    action = ParticleListAction(ParticleListConfig(keep_gen_trajectories=("generator",)))
    action.begin_of_event_action(handles)
    run_track(action, primary(1, truth=0), n_steps=4)
    run_track(action, primary(2, truth=1), n_steps=4)

    products = action.end_of_event_action()
    assert products.particle_by_id(1).n_trajectory_points == 5
    assert products.particle_by_id(2).n_trajectory_points == 2
    assert [a.truth_index for a in products.associations] == [0, 1]


def test_optical_photon_step_time_is_corrected():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1, pdg=0))
    step = Step(
        pre=pt(0.0, t=0.0),
        post=pt(3.0, t=1.0, process="OpAbsorption"),
        pdg=0,
        step_length=3.0,
        delta_time=1.0,
        velocity=2.0,
    )
    action.stepping_action(step)
    traj = action.current_particle.trajectory
    assert traj.positions[1, 3] == pytest.approx(1.5)


def test_optical_photon_time_within_tolerance_is_untouched():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1, pdg=0))
    step = Step(pre=pt(0.0), post=pt(3.0, t=1.0, process="OpAbsorption"),
                pdg=0, step_length=3.0, delta_time=1.0, velocity=3.0 + 5e-5)
    action.stepping_action(step)
    assert action.current_particle.trajectory.positions[1, 3] == pytest.approx(1.0)


def test_step_limiter_points_are_skipped():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1))
    action.stepping_action(Step(pre=pt(0.0), post=pt(1.0, process="StepLimiter")))
    action.stepping_action(Step(pre=pt(1.0), post=pt(2.0, process="msc")))
    traj = action.current_particle.trajectory
    assert len(traj) == 2
    assert traj.processes == {0: "Start", 1: "msc"}


def test_step_without_defining_process_is_ignored():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1))
    action.stepping_action(Step(pre=pt(0.0), post=pt(1.0, process=None)))
    assert action.current_particle.n_trajectory_points == 0


def test_degenerate_end_erases_record():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1), end_process=None)
    assert action.store.particles.status(2) is ParticleStatus.REMOVED
    assert action.end_of_event_action().track_ids == [1]


def test_degenerate_end_archives_into_dropped_list():
    cfg = ParticleListConfig(store_trajectories=False, store_dropped_mc_particles=True)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1), end_process=None)

    dropped = action.yield_dropped_list()
    assert 2 not in action.store.particles
    assert dropped.known_particle(2)
    assert dropped.status(2) is ParticleStatus.PENDING_TRANSFER
    assert dropped[2].n_trajectory_points == 0

    # a later daughter still resolves its mother through the archived record
    assert run_track(action, secondary(3, 2)) is AdmissionOutcome.RETAINED
    products = action.end_of_event_action()
    assert products.particle_by_id(3).mother == 2
    assert products.dropped_particles == []


def test_degenerate_end_leaves_excluded_track_in_dropped_list():
    cfg = ParticleListConfig(keep_em_shower_daughters=False, store_dropped_mc_particles=True)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    assert run_track(action, secondary(2, 1, process="conv"), end_process=None) is AdmissionOutcome.DROPPED_PROCESS

    assert 2 in action.dropped_list
    assert action.dropped_list[2].n_trajectory_points > 0
    products = action.end_of_event_action()
    assert products.track_ids == [1]
    assert [p.track_id for p in products.dropped_particles] == [2]


def test_excluded_tracks_are_kept_as_lite_records():
    cfg = ParticleListConfig(keep_em_shower_daughters=False, store_dropped_mc_particles=True)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth(origin=4))
    run_track(action, primary(1))
    assert run_track(action, secondary(2, 1, process="eBrem"), n_steps=3) is AdmissionOutcome.DROPPED_PROCESS

    products = action.end_of_event_action()
    assert products.track_ids == [1]
    assert products.ancestry == {1: [2]}
    [lite] = products.dropped_particles
    assert lite.track_id == 2
    assert lite.mother == 1
    assert lite.process == "eBrem"
    assert lite.end_process == "eIoni"
    assert lite.origin == 4
    np.testing.assert_allclose(lite.start_position, [0.0, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(lite.end_position, [0.0, 0.0, 3.0, 3.0])


def test_dropped_list_requires_configuration():
    action = ParticleListAction()
    with pytest.raises(RuntimeError):
        action.yield_dropped_list()


def test_nonzero_proper_time_finalizes_at_creation():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    track = secondary(2, 1)
    track.proper_time = 1.0
    assert action.pre_tracking_action(track) is AdmissionOutcome.FINALIZED_AT_CREATION
    assert action.current_particle is None
    assert 2 not in action.store.particles
    assert action.end_of_event_action().track_ids == [1]


def test_retained_particle_without_points_is_a_logic_error():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1))
    action.post_tracking_action(TrackEnd(pt(1.0, process="eIoni")))
    with pytest.raises(LogicError):
        action.end_of_event_action()


def test_unfinished_primary_has_no_generated_index():
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    action.pre_tracking_action(primary(1))
    action.stepping_action(Step(pre=pt(0.0), post=pt(1.0, process="eIoni")))
    with pytest.raises(LogicError, match="Failed to match primary particle 1"):
        action.end_of_event_action()


def test_particles_without_truth_record_are_discarded(caplog):
    action = ParticleListAction()
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1, truth=5))
    with caplog.at_level(logging.WARNING):
        products = action.end_of_event_action()
    assert products.track_ids == []
    assert "matched no truth record" in caplog.text


def test_sparsification_keeps_tagged_and_endpoints():
    cfg = ParticleListConfig(sparsify_trajectories=True, sparsify_margin=0.015)
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1), n_steps=10, step_process="Transportation", end_process="Transportation")
    run_track(action, primary(2, idx=1), n_steps=10, step_process="Transportation", end_process="eIoni")

    products = action.end_of_event_action()
    p1, p2 = products.particles
    np.testing.assert_allclose(p1.trajectory.positions[:, 2], [0.0, 10.0])
    assert p1.trajectory.processes == {0: "Start"}
    assert p2.n_trajectory_points == 2
    assert p2.trajectory.processes == {0: "Start", 1: "eIoni"}


def test_sparsification_keep_second_to_last_and_transportation():
    cfg = ParticleListConfig(
        sparsify_trajectories=True, keep_second_to_last=True, keep_transportation=True,
    )
    action = ParticleListAction(cfg)
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1), n_steps=6, step_process="Transportation")
    products = action.end_of_event_action()
    # every Transportation point is tagged and therefore protected
    assert products.particles[0].n_trajectory_points == 7

    action = ParticleListAction(ParticleListConfig(sparsify_trajectories=True, keep_second_to_last=True))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1), n_steps=6, step_process="Transportation")
    products = action.end_of_event_action()
    np.testing.assert_allclose(products.particles[0].trajectory.positions[:, 2], [0.0, 5.0, 6.0])


def test_begin_of_event_resets_per_event_state():
    action = ParticleListAction(ParticleListConfig(keep_em_shower_daughters=False))
    action.begin_of_event_action(one_truth())
    run_track(action, primary(1))
    run_track(action, secondary(2, 1, process="phot"))
    stats = action.get_statistics()
    assert stats["retained"] == 1
    assert stats["dropped_tracks"] == 1
    assert stats["truth_records"] == 1

    action.begin_of_event_action(one_truth())
    stats = action.get_statistics()
    assert stats["retained"] == 0
    assert stats["dropped_tracks"] == 0
    assert action.not_stored_counts == {}
