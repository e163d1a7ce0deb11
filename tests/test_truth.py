import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from simtruth.config import ParticleListConfig
from simtruth.truth import GeneratedParticle, GeneratorKeepMap, MCTruth, MCTruthHandle, iter_truths, primary_info


def handles():
    return [
        MCTruthHandle("generator", [
            MCTruth(origin=1, particles=[GeneratedParticle(13), GeneratedParticle(11, process="primaryBackground")]),
        ]),
        MCTruthHandle("cosmics", [MCTruth(origin=2), MCTruth(origin=2, particles=[GeneratedParticle(2212)])]),
    ]


def test_flat_truth_index_spans_handles():
    assert [(n, h.label, t.origin) for n, h, t in iter_truths(handles())] == [
        (0, "generator", 1), (1, "cosmics", 2), (2, "cosmics", 2),
    ]


def test_primary_info_uses_flat_index():
    info = primary_info(handles(), 0, 1)
    assert (info.truth_index, info.particle_index, info.process) == (0, 1, "primaryBackground")
    assert primary_info(handles(), 2, 0).process == "primary"


@pytest.mark.parametrize("truth_index, particle_index", [(0, 2), (0, -1), (1, 0), (3, 0)])
def test_primary_info_rejects_missing_indices(truth_index, particle_index):
    with pytest.raises(IndexError):
        primary_info(handles(), truth_index, particle_index)


def test_generator_keep_map_allow_list(caplog):
    keep = GeneratorKeepMap.build(handles(), ParticleListConfig(keep_gen_trajectories=("cosmics",)))
    assert len(keep) == 3
    assert [keep.storable(n) for n in range(3)] == [False, True, True]
    assert keep.label(0) == "generator"
    assert keep.storable(7) is False

    absent = GeneratorKeepMap.build(handles(), ParticleListConfig(keep_gen_trajectories=("radio",)))
    assert absent.n_storable == 0
    assert "none of these generators" in caplog.text
