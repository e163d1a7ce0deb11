import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import logging

import pytest

from simtruth.genealogy import GenealogyStore
from simtruth.particle import NO_PARTICLE_ID, MCParticle
from simtruth.particle_list import ParticleList, ParticleStatus


def particle(tid, mother=0):
    return MCParticle(track_id=tid, pdg=11, process="primary" if mother == 0 else "eIoni", mother=mother, mass=0.000511)


def test_particle_list_lifecycle():
    plist = ParticleList()
    plist.add(particle(1))
    plist.add(particle(4, mother=1))
    assert list(plist) == [1, 4]
    assert plist.status(1) is ParticleStatus.ACTIVE
    assert plist.mother_of(4) == 1
    assert plist.highest_id() == 4

    with pytest.raises(KeyError):
        plist.add(particle(1))

    plist.mark_done(1)
    assert plist.status(1) is ParticleStatus.PENDING_TRANSFER

    taken = plist.take(1)
    assert taken.track_id == 1
    assert plist.status(1) is ParticleStatus.REMOVED
    assert not plist.known_particle(1)
    with pytest.raises(KeyError):
        plist.take(1)

    assert plist.erase(4) is not None
    assert plist.erase(4) is None
    assert len(plist) == 0
    assert plist.highest_id() is None
    assert plist.status(99) is None


def test_iteration_is_a_snapshot():
    plist = ParticleList()
    for tid in (1, 2, 3):
        plist.add(particle(tid))
    for tid in plist:
        plist.erase(tid)
    assert len(plist) == 0


def test_archive_keeps_id_known_without_trajectory():
    plist = ParticleList()
    p = particle(5, mother=1)
    p.add_trajectory_point([0, 0, 0, 0], [0, 0, 1, 1], "Start")
    plist.archive(p)
    assert plist.known_particle(5)
    assert plist.status(5) is ParticleStatus.PENDING_TRANSFER
    assert plist[5].n_trajectory_points == 0
    assert p.n_trajectory_points == 1


def test_parentage_walk_without_entry_is_sentinel():
    store = GenealogyStore()
    assert store.get_parentage(3) == NO_PARTICLE_ID


def test_parentage_walk_goes_to_end_of_chain():
    store = GenealogyStore()
    store.particles.add(particle(1))
    store.particles.add(particle(3, mother=1))
    store.parent_ids.update({2: 1, 3: 2, 4: 3, 5: 4})
    assert store.get_parentage(2) == 1
    # retained 3 is walked past because it has its own entry
    assert store.get_parentage(5) == 1


def test_parentage_walk_end_must_be_known():
    store = GenealogyStore()
    store.particles.add(particle(3, mother=1))
    store.parent_ids.update({5: 4, 4: 3, 3: 2})
    # chain ends at 2, which is not retained
    assert store.get_parentage(5) == NO_PARTICLE_ID


def test_parentage_walk_accepts_extra_known_ids():
    store = GenealogyStore()
    store.parent_ids.update({3: 2})
    dropped = ParticleList()
    dropped.add(particle(2, mother=1))
    assert store.get_parentage(3) == NO_PARTICLE_ID
    assert store.get_parentage(3, also_known=dropped) == 2


def test_parentage_walk_is_cycle_safe(caplog):
    store = GenealogyStore()
    store.parent_ids.update({1: 2, 2: 1})
    with caplog.at_level(logging.ERROR):
        assert store.get_parentage(1) == NO_PARTICLE_ID
    assert "Cycle" in caplog.text


def test_record_dropped_files_under_ancestor():
    store = GenealogyStore()
    store.particles.add(particle(1))
    assert store.record_dropped(2, 1) == 1
    assert store.record_dropped(3, 2) == 1
    assert store.target_ids[2] == -1
    assert store.target_ids[3] == -1

    # orphan chain with no retained ancestor
    assert store.record_dropped(9, 8) == NO_PARTICLE_ID
    assert store.target_ids[9] == NO_PARTICLE_ID

    assert store.ancestry_map() == {1: [2, 3], NO_PARTICLE_ID: [9]}

    store.clear()
    assert store.ancestry_map() == {}
    assert len(store.particles) == 0
