__all__ = [
    "LogicError",
    "ParticleListConfig", "load_config", "dump_config",
    "StepPoint", "PrimaryInfo", "TrackInfo", "Step", "TrackEnd",
    "GeneratedParticle", "MCTruth", "MCTruthHandle", "GeneratorKeepMap",
    "NO_PARTICLE_ID", "NO_GENERATED_PARTICLE_INDEX",
    "Trajectory", "MCParticle", "ParticleLite",
    "ParticleList", "ParticleStatus",
    "GenealogyStore",
    "ParticleListAction", "AdmissionOutcome",
    "EventProducts", "TruthAssociation", "finalize_event", "update_daughter_information",
    "genealogy_graph", "dangling_references", "event_statistics",
    "replay_file", "replay_records", "products_to_frames",
]

# Errors & configuration
from .errors import LogicError
from .config import ParticleListConfig, load_config, dump_config

# Engine callback payloads & truth records
from .events import StepPoint, PrimaryInfo, TrackInfo, Step, TrackEnd
from .truth import GeneratedParticle, MCTruth, MCTruthHandle, GeneratorKeepMap

# Particle records & storage
from .particle import NO_PARTICLE_ID, NO_GENERATED_PARTICLE_INDEX, Trajectory, MCParticle, ParticleLite
from .particle_list import ParticleList, ParticleStatus
from .genealogy import GenealogyStore

# Event action & finalization
from .action import ParticleListAction, AdmissionOutcome
from .finalization import EventProducts, TruthAssociation, finalize_event, update_daughter_information

# Lineage analysis
from .lineage import genealogy_graph, dangling_references, event_statistics

# Replay (plotting imported lazily by callers)
from .replay import replay_file, replay_records, products_to_frames
