"""Ratchet Validation Toolkit.

A library for validating nonequilibrium particle simulations against
scientific invariants. Given any simulator that satisfies a small
capability protocol -- configure(options), advance(steps), field and
entropy-production readouts, perturb(request) -- the toolkit sweeps it
over parameter grids and seeds, tracks perturbation recovery, decodes
coarse logical bits from partially observed fields, and checks the
resulting summaries for the orderings and bounds the physics demands:
entropy production that grows with drive strength, thermodynamic
uncertainty ratios above one, clock currents that vanish without drive.

Modules:
    base          -- SimulatorHandle / SimulatorFactory protocols, MoveKind, snapshots
    rng           -- xorshift32 stream for reproducible observation masks
    statistics    -- mean / variance / percentile / CI / Spearman / TUR helpers
    graph         -- union-find connected components of the bond graph
    decoder       -- partial-observation decoding of quadrant bits
    monitor       -- perturbation / recovery state machine and deadline scoring
    validation    -- monotonicity, TUR, budget and CI invariants
    config        -- default options, parameter files, key=value overrides
    output_schema -- raw JSONL and summary CSV persistence and validation
    sweep         -- SweepOrchestrator: points x seeds -> records -> summaries -> checks
"""

from ratchetkit.base import (
    DiagnosticSnapshot,
    MoveKind,
    PerturbationRequest,
    SimulatorFactory,
    SimulatorHandle,
    base_meta_divergence,
    read_snapshot,
)
from ratchetkit.rng import XorShift32
from ratchetkit.graph import ComponentStats, UnionFind, graph_stats
from ratchetkit.decoder import PartialObservationDecoder, logical_bits_from_field, estimate_error_rate
from ratchetkit.monitor import DeadlineTracker, MonitorState, RecoveryMonitor, missed_deadline
from ratchetkit.validation import (
    CorrelationFallback,
    InvariantViolation,
    MonotonicityCheck,
    check_budget_sums,
    check_ci_contains,
    check_monotonic,
    check_tur_bounds,
)
from ratchetkit.config import ConfigurationError, RunOptions, merge_config
from ratchetkit.output_schema import NumpyEncoder, validate_record, validate_summary_row
from ratchetkit.sweep import (
    DecoderPlan,
    ParameterPoint,
    PerturbationPlan,
    RunRecord,
    SweepConfig,
    SweepOrchestrator,
    SweepResult,
    SweepSummary,
    points_for,
    tur_summary_check,
)

__version__ = "0.1.0"

__all__ = [
    "DiagnosticSnapshot",
    "MoveKind",
    "PerturbationRequest",
    "SimulatorFactory",
    "SimulatorHandle",
    "base_meta_divergence",
    "read_snapshot",
    "XorShift32",
    "ComponentStats",
    "UnionFind",
    "graph_stats",
    "PartialObservationDecoder",
    "logical_bits_from_field",
    "estimate_error_rate",
    "DeadlineTracker",
    "MonitorState",
    "RecoveryMonitor",
    "missed_deadline",
    "CorrelationFallback",
    "InvariantViolation",
    "MonotonicityCheck",
    "check_budget_sums",
    "check_ci_contains",
    "check_monotonic",
    "check_tur_bounds",
    "ConfigurationError",
    "RunOptions",
    "merge_config",
    "NumpyEncoder",
    "validate_record",
    "validate_summary_row",
    "DecoderPlan",
    "ParameterPoint",
    "PerturbationPlan",
    "RunRecord",
    "SweepConfig",
    "SweepOrchestrator",
    "SweepResult",
    "SweepSummary",
    "points_for",
    "tur_summary_check",
]
