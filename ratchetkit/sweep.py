"""Parameter sweeps over an external simulator, with invariant checks.

A sweep is a list of parameter points times a list of seeds. For every
(point, seed) pair the orchestrator:

    1. builds a fresh handle from the factory and configures it with the
       base options overlaid by the point's options;
    2. advances it in chunks of min(sample_every, max_chunk) steps, and on
       every sample_every boundary reads EP and clock counters, the bond
       graph's component statistics when a bond threshold is set, and the
       divergence metric, which feeds the RecoveryMonitor (and may inject
       the scheduled perturbation);
    3. after the last chunk reads the final snapshot and derives
           ep_rate        = EP total / steps
           ep_window_rate = EP gained over the last sampling window / its length
           clock_drift    = net clock counter / steps
       plus the decoding error rate and bond-graph component statistics
       when configured;
    4. runs any per-run structural checks, then drops the handle.

After all seeds of a point, the RunRecords are reduced into a
SweepSummary. After all points, the raw JSONL and summary CSV are
written once, and the monotonicity / correlation / summary checks run.
The first failing check raises InvariantViolation and ends the sweep.
A failing per-run check writes the records and summaries gathered so
far (the failing run included) before the exception propagates.

Execution is strictly sequential: one run finishes before the next
starts. All accumulated state lives in a SweepAccumulator owned by the
orchestrator for the duration of run().
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

import numpy as np

from ratchetkit.base import (
    REPAIR_MOVES,
    MoveKind,
    PerturbationRequest,
    SimulatorFactory,
    SimulatorHandle,
    base_meta_divergence,
    read_snapshot,
)
from ratchetkit.config import ConfigurationError
from ratchetkit.decoder import PartialObservationDecoder, split_layers
from ratchetkit.graph import graph_stats
from ratchetkit.monitor import RecoveryMonitor, missed_deadline
from ratchetkit.output_schema import write_csv, write_jsonl
from ratchetkit.statistics import (
    Z_95,
    ci_half_width,
    mean,
    mean_std,
    median,
    percentile,
    relative_variance,
    tur_ratio,
    variance,
)
from ratchetkit.validation import (
    InvariantViolation,
    MonotonicityCheck,
    check_budget_sums,
    check_monotonic,
    check_tur_bounds,
)

logger = logging.getLogger(__name__)

MAX_CHUNK = 50_000


def chunk_size(sample_every: int, steps: int, cap: int = MAX_CHUNK) -> int:
    """Steps per advance() call: bounded by the sampling interval and cap."""
    if sample_every > 0:
        return max(1, min(sample_every, cap))
    return max(1, min(steps or 1, cap))


@dataclass(frozen=True)
class ParameterPoint:
    """One point of the sweep: a label, its scalar value, its options."""

    label: str
    value: float
    options: Mapping[str, float] = field(default_factory=dict)


def points_for(parameter: str, values: Sequence[float], aliases: Sequence[str] = ()) -> list[ParameterPoint]:
    """Points that set ``parameter`` (and any alias keys) to each value.

    Example:
        points_for("muHigh", [0.2, 0.4], aliases=["muLow"])
        # -> muHigh=muLow=0.2, then muHigh=muLow=0.4
    """
    keys = (parameter, *aliases)
    return [
        ParameterPoint(
            label=f"{parameter}={v:g}",
            value=float(v),
            options={k: v for k in keys},
        )
        for v in values
    ]


@dataclass(frozen=True)
class PerturbationPlan:
    """When and how to perturb each run, and how to time its recovery."""

    step: int
    target: str = "metaS"
    layer: int = 0
    fraction: float = 0.3
    mode: str = "randomize"
    seed_offset: int = 7
    floor: float = 0.5
    tolerance: float = 0.10
    deadline: int | None = None
    region: Mapping[str, float | str] | None = None

    def request(self, seed: int) -> PerturbationRequest:
        return PerturbationRequest(
            target=self.target,
            layer=self.layer,
            fraction=self.fraction,
            mode=self.mode,
            seed=seed * 1000 + self.seed_offset,
            region=self.region,
        )


@dataclass(frozen=True)
class DecoderPlan:
    """End-of-run decoding benchmark of one meta layer against the base."""

    frac: float = 0.5
    trials: int = 20
    seed_offset: int = 7000
    grid_key: str = "gridSize"
    threshold_key: str = "lS"
    layer: int = 0
    fractions: tuple[float, ...] | None = None
    curve_seed_offset: int = 5000


@dataclass
class RunRecord:
    """Derived scalars of one (point, seed) run.

    recovery_steps is None when the sweep has no perturbation plan,
    otherwise a non-negative int or math.inf (never recovered, or never
    perturbed -- see ``perturbed``).
    """

    sweep: str
    point: str
    value: float
    seed: int
    steps: int
    particle_count: int
    ep_exact_total: float = 0.0
    ep_naive_total: float = 0.0
    ep_rate: float = 0.0
    ep_naive_rate: float = 0.0
    ep_window_rate: float = 0.0
    ep_clock: float = 0.0
    ep_repair: float = 0.0
    clock_q: int = 0
    clock_fwd: int = 0
    clock_bwd: int = 0
    clock_drift: float = 0.0
    perturbed: bool | None = None
    recovery_steps: float | None = None
    missed_deadline: bool | None = None
    baseline: float | None = None
    final_divergence: float | None = None
    error_rate: float | None = None
    error_curve: dict[float, float] | None = None
    edge_count: int | None = None
    component_count: int | None = None
    largest_component_size: int | None = None
    component_sizes_sum: int | None = None
    samples: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


RUN_RECORD_FIELDS = frozenset(f.name for f in dataclasses.fields(RunRecord))

DEFAULT_SUMMARY_FIELDS = ("ep_rate", "ep_window_rate", "clock_drift")


@dataclass(frozen=True)
class FieldSummary:
    n: int
    mean: float | None
    std: float | None
    median: float | None
    percentile: float | None
    ci_half_width: float | None


def summarize_values(values, p: float = 0.95, z: float = Z_95) -> FieldSummary:
    m, s = mean_std(values)
    n = sum(1 for v in values if v is not None and math.isfinite(v))
    return FieldSummary(
        n=n,
        mean=m,
        std=s,
        median=median(values),
        percentile=percentile(values, p),
        ci_half_width=ci_half_width(s, n, z),
    )


_SCALAR_SUMMARY_COLUMNS = (
    "mean_q",
    "var_q",
    "rel_var",
    "mean_sigma",
    "tur_ratio",
    "recovery_mean",
    "recovery_median",
    "recovery_p",
    "recovery_success_frac",
    "perturbed_frac",
    "deadline_miss_frac",
)


def _pct_label(p: float) -> str:
    return f"p{round(p * 100):g}"


@dataclass
class SweepSummary:
    """Aggregate of one parameter point over its seeds."""

    point: str
    value: float
    n_runs: int
    fields: dict[str, FieldSummary] = field(default_factory=dict)
    mean_q: float | None = None
    var_q: float | None = None
    rel_var: float | None = None
    mean_sigma: float | None = None
    tur_ratio: float | None = None
    recovery_mean: float | None = None
    recovery_median: float | None = None
    recovery_p: float | None = None
    recovery_success_frac: float | None = None
    perturbed_frac: float | None = None
    deadline_miss_frac: float | None = None

    def quantity(self, name: str):
        """Look up a summary quantity by name.

        "ep_rate" gives the mean of a reduced field, "ep_rate.std" (or
        .median, .percentile, .ci_half_width, .n) a specific statistic,
        and any scalar column name ("tur_ratio", "mean_sigma", "value",
        ...) the attribute itself.
        """
        if "." in name:
            field_name, stat = name.split(".", 1)
            return getattr(self.fields[field_name], stat)
        if name in self.fields:
            return self.fields[name].mean
        if name == "value" or name in _SCALAR_SUMMARY_COLUMNS:
            return getattr(self, name)
        raise KeyError(f"unknown summary quantity '{name}'")

    def to_row(self, p: float = 0.95) -> dict:
        row = {"point": self.point, "value": self.value, "n_runs": self.n_runs}
        pct = _pct_label(p)
        for name, fs in self.fields.items():
            row[f"{name}_mean"] = fs.mean
            row[f"{name}_std"] = fs.std
            row[f"{name}_median"] = fs.median
            row[f"{name}_{pct}"] = fs.percentile
            row[f"{name}_ci"] = fs.ci_half_width
        for col in _SCALAR_SUMMARY_COLUMNS:
            row[col] = getattr(self, col)
        return row


def summary_header(summary_fields: Sequence[str], p: float = 0.95) -> list[str]:
    header = ["point", "value", "n_runs"]
    pct = _pct_label(p)
    for name in summary_fields:
        header += [f"{name}_mean", f"{name}_std", f"{name}_median", f"{name}_{pct}", f"{name}_ci"]
    header += list(_SCALAR_SUMMARY_COLUMNS)
    return header


def summarize_point(
    point: ParameterPoint,
    records: Sequence[RunRecord],
    summary_fields: Sequence[str] = DEFAULT_SUMMARY_FIELDS,
    p: float = 0.95,
    z: float = Z_95,
) -> SweepSummary:
    """Reduce the runs of one parameter point into a SweepSummary."""
    summary = SweepSummary(point=point.label, value=point.value, n_runs=len(records))
    for name in summary_fields:
        summary.fields[name] = summarize_values([getattr(r, name) for r in records], p, z)

    qs = [r.clock_q for r in records]
    summary.mean_q = mean(qs)
    summary.var_q = variance(qs, summary.mean_q)
    summary.mean_sigma = mean([r.ep_exact_total for r in records])
    summary.rel_var = relative_variance(summary.mean_q, summary.var_q)
    summary.tur_ratio = tur_ratio(summary.mean_q, summary.var_q, summary.mean_sigma)

    monitored = [r for r in records if r.perturbed is not None]
    if monitored:
        perturbed = [r for r in monitored if r.perturbed]
        summary.perturbed_frac = len(perturbed) / len(monitored)
        recoveries = [r.recovery_steps for r in perturbed]
        recovered = [x for x in recoveries if math.isfinite(x)]
        summary.recovery_mean = mean(recovered)
        summary.recovery_median = median(recovered)
        summary.recovery_p = percentile(recovered, p)
        if perturbed:
            summary.recovery_success_frac = len(recovered) / len(perturbed)
        flags = [r.missed_deadline for r in perturbed if r.missed_deadline is not None]
        if flags:
            summary.deadline_miss_frac = sum(flags) / len(flags)
    return summary


RunCheck = Callable[[SimulatorHandle, RunRecord], None]
SummaryCheck = Callable[[Sequence[SweepSummary]], "dict | None"]


@dataclass
class SweepConfig:
    """Everything that defines one sweep invocation.

    Args:
        name: Sweep name; prefixes the output files.
        points: Ordered parameter points. Monotonicity checks follow
            this order.
        seeds: Seeds run at every point.
        steps: Step budget of every run.
        sample_every: Sampling interval in steps (0 = sample nothing
            between construction and the final readout).
        base_options: Simulator options shared by all points.
        particle_count: Particles per run.
        max_chunk: Hard cap on steps per advance() call.
        bond_threshold: Bond threshold for component statistics; None
            skips the bond graph.
        perturbation: Optional perturbation / recovery plan.
        decoder: Optional end-of-run decoding benchmark.
        divergence: Scalar divergence metric read at each sample.
        summary_fields: RunRecord fields reduced into each summary.
        percentile: Percentile reported per field.
        z: Normal quantile of the confidence interval.
        monotonicity: Ordering checks over the summaries.
        run_checks: Structural checks called with (handle, record)
            after each run.
        summary_checks: Checks called with the full summary list.
        output_dir: Directory for the raw and summary files; None skips
            writing.
    """

    name: str
    points: Sequence[ParameterPoint]
    seeds: Sequence[int]
    steps: int
    sample_every: int
    base_options: Mapping[str, float] = field(default_factory=dict)
    particle_count: int = 50
    max_chunk: int = MAX_CHUNK
    bond_threshold: int | None = None
    perturbation: PerturbationPlan | None = None
    decoder: DecoderPlan | None = None
    divergence: Callable[[SimulatorHandle], float] = base_meta_divergence
    summary_fields: Sequence[str] = DEFAULT_SUMMARY_FIELDS
    percentile: float = 0.95
    z: float = Z_95
    monotonicity: Sequence[MonotonicityCheck] = ()
    run_checks: Sequence[RunCheck] = ()
    summary_checks: Sequence[SummaryCheck] = ()
    output_dir: Path | None = Path(".tmp") / "sweeps"

    def __post_init__(self):
        if not self.points:
            raise ConfigurationError("sweep needs at least one parameter point")
        if not self.seeds:
            raise ConfigurationError("sweep needs at least one seed")
        if self.steps < 0:
            raise ConfigurationError(f"steps must be >= 0, got {self.steps}")
        if self.sample_every < 0:
            raise ConfigurationError(f"sample_every must be >= 0, got {self.sample_every}")
        if self.max_chunk <= 0:
            raise ConfigurationError(f"max_chunk must be > 0, got {self.max_chunk}")
        unknown = [f for f in self.summary_fields if f not in RUN_RECORD_FIELDS]
        if unknown:
            raise ConfigurationError(f"unknown summary fields: {unknown}")
        if self.perturbation is not None:
            if self.sample_every <= 0:
                raise ConfigurationError("a perturbation plan needs sample_every > 0")
            if self.perturbation.step > self.steps:
                logger.warning(
                    "perturbation step %d lies beyond the %d-step horizon",
                    self.perturbation.step, self.steps,
                )


class SweepAccumulator:
    """Raw records and summaries of the current sweep, written once."""

    def __init__(self, name: str):
        self.name = name
        self.records: list[RunRecord] = []
        self.summaries: list[SweepSummary] = []

    def add_run(self, record: RunRecord) -> None:
        self.records.append(record)

    def add_summary(self, summary: SweepSummary) -> None:
        self.summaries.append(summary)

    def write(self, output_dir: str | Path, summary_fields: Sequence[str],
              p: float = 0.95) -> tuple[Path, Path]:
        output_dir = Path(output_dir)
        raw_path = write_jsonl(
            output_dir / f"{self.name}_raw.jsonl",
            (r.to_dict() for r in self.records),
        )
        summary_path = write_csv(
            output_dir / f"{self.name}_summary.csv",
            summary_header(summary_fields, p),
            (s.to_row(p) for s in self.summaries),
        )
        logger.info("wrote %s and %s", raw_path, summary_path)
        return raw_path, summary_path


@dataclass
class SweepResult:
    records: list[RunRecord]
    summaries: list[SweepSummary]
    checks: list[dict]
    raw_path: Path | None = None
    summary_path: Path | None = None


class SweepOrchestrator:
    """Drives a sweep end to end.

    Args:
        factory: SimulatorFactory, called as factory(particle_count, seed).
        config: SweepConfig.

    Example:
        config = SweepConfig(
            name="clock_tur",
            points=points_for("muHigh", [0.2, 0.4, 0.6], aliases=["muLow"]),
            seeds=range(1, 11),
            steps=1_000_000,
            sample_every=100_000,
            monotonicity=[MonotonicityCheck("mean_sigma")],
            summary_checks=[tur_summary_check()],
        )
        result = SweepOrchestrator(my_factory, config).run()
    """

    def __init__(self, factory: SimulatorFactory, config: SweepConfig):
        self.factory = factory
        self.config = config

    def run(self) -> SweepResult:
        cfg = self.config
        acc = SweepAccumulator(cfg.name)
        try:
            for point in cfg.points:
                runs = []
                for seed in cfg.seeds:
                    record, handle = self._execute(point, seed)
                    acc.add_run(record)
                    runs.append(record)
                    self._check_run(handle, record)
                summary = summarize_point(point, runs, cfg.summary_fields, cfg.percentile, cfg.z)
                acc.add_summary(summary)
                logger.info(
                    "%s %s | mean_sigma %s | mean_q %s | R %s",
                    cfg.name, point.label, _fmt(summary.mean_sigma),
                    _fmt(summary.mean_q), _fmt(summary.tur_ratio),
                )
        except InvariantViolation:
            # a failed run check still leaves the runs so far on disk
            if cfg.output_dir is not None:
                acc.write(cfg.output_dir, cfg.summary_fields, cfg.percentile)
            raise

        raw_path = summary_path = None
        if cfg.output_dir is not None:
            raw_path, summary_path = acc.write(cfg.output_dir, cfg.summary_fields, cfg.percentile)

        checks = validate_sweep(acc.summaries, cfg)
        return SweepResult(
            records=acc.records,
            summaries=acc.summaries,
            checks=checks,
            raw_path=raw_path,
            summary_path=summary_path,
        )

    def run_one(self, point: ParameterPoint, seed: int) -> RunRecord:
        """Execute one (point, seed) run, check it, and return its RunRecord."""
        record, handle = self._execute(point, seed)
        self._check_run(handle, record)
        return record

    def _check_run(self, handle: SimulatorHandle, record: RunRecord) -> None:
        for check in self.config.run_checks:
            check(handle, record)

    def _execute(self, point: ParameterPoint, seed: int) -> tuple[RunRecord, SimulatorHandle]:
        cfg = self.config
        options = {**cfg.base_options, **point.options}
        handle = self.factory(cfg.particle_count, seed)
        handle.configure(options)

        monitor = None
        if cfg.perturbation is not None:
            request = cfg.perturbation.request(seed)
            monitor = RecoveryMonitor(
                cfg.perturbation.step,
                lambda: handle.perturb(request),
                floor=cfg.perturbation.floor,
                tolerance=cfg.perturbation.tolerance,
            )
        track_divergence = cfg.perturbation is not None or cfg.decoder is not None

        chunk = chunk_size(cfg.sample_every, cfg.steps, cfg.max_chunk)
        total = 0
        last_ep = float(handle.ep_exact_total())
        last_step = 0
        window_rate = 0.0
        samples = []
        while total < cfg.steps:
            n = min(chunk, cfg.steps - total)
            handle.advance(n)
            total += n
            if cfg.sample_every <= 0 or total % cfg.sample_every != 0:
                continue
            ep = float(handle.ep_exact_total())
            window_rate = (ep - last_ep) / (total - last_step)
            last_ep, last_step = ep, total
            sample = {
                "step": total,
                "ep_exact": ep,
                "ep_window_rate": window_rate,
                "clock_q": int(handle.clock_counters()[0]),
            }
            if cfg.bond_threshold is not None:
                stats = graph_stats(cfg.particle_count, handle.bonds(cfg.bond_threshold))
                sample["component_count"] = stats.component_count
                sample["largest_component_size"] = stats.largest_component_size
            if track_divergence:
                divergence = cfg.divergence(handle)
                sample["divergence"] = divergence
                if monitor is not None:
                    monitor.observe(total, divergence)
            samples.append(sample)

        snap = read_snapshot(handle, total)
        if total > last_step:
            window_rate = (snap.ep_exact - last_ep) / (total - last_step)

        record = RunRecord(
            sweep=cfg.name,
            point=point.label,
            value=point.value,
            seed=seed,
            steps=total,
            particle_count=cfg.particle_count,
            ep_exact_total=snap.ep_exact,
            ep_naive_total=snap.ep_naive,
            ep_rate=snap.ep_exact / total if total > 0 else 0.0,
            ep_naive_rate=snap.ep_naive / total if total > 0 else 0.0,
            ep_window_rate=window_rate,
            ep_clock=snap.ep_for(MoveKind.CLOCK),
            ep_repair=snap.ep_for(*REPAIR_MOVES),
            clock_q=snap.clock_q,
            clock_fwd=snap.clock_fwd,
            clock_bwd=snap.clock_bwd,
            clock_drift=snap.clock_q / total if total > 0 else 0.0,
            samples=samples,
        )

        if track_divergence:
            record.final_divergence = cfg.divergence(handle)

        if monitor is not None:
            outcome = monitor.finish()
            record.perturbed = outcome.perturbed
            record.recovery_steps = outcome.recovery_steps
            record.baseline = outcome.baseline
            if outcome.perturbed and cfg.perturbation.deadline is not None:
                record.missed_deadline = missed_deadline(
                    outcome.recovery_steps, cfg.perturbation.deadline
                )

        if cfg.decoder is not None:
            self._decode(handle, options, seed, record)

        if cfg.bond_threshold is not None:
            stats = graph_stats(cfg.particle_count, handle.bonds(cfg.bond_threshold))
            record.edge_count = stats.edge_count
            record.component_count = stats.component_count
            record.largest_component_size = stats.largest_component_size
            record.component_sizes_sum = sum(stats.component_sizes)

        logger.info(
            "%s %s seed %d | ep_rate %s | drift %s | recovery %s | err %s",
            cfg.name, point.label, seed, _fmt(record.ep_rate), _fmt(record.clock_drift),
            record.recovery_steps, _fmt(record.error_rate),
        )
        return record, handle

    def _decode(self, handle: SimulatorHandle, options: Mapping[str, float],
                seed: int, record: RunRecord) -> None:
        plan = self.config.decoder
        if plan.grid_key not in options:
            raise ConfigurationError(f"decoder needs option '{plan.grid_key}'")
        decoder = PartialObservationDecoder(
            int(options[plan.grid_key]),
            float(options.get(plan.threshold_key, 1.0)),
            trials=plan.trials,
        )
        base = np.asarray(handle.spatial_field(), dtype=np.float64).ravel()
        layers = split_layers(handle.meta_field(), base.size)
        if plan.layer >= len(layers):
            logger.warning("no meta layer %d to decode; error rate left empty", plan.layer)
            return
        meta = layers[plan.layer]
        base_bits = decoder.decode(base)
        record.error_rate = decoder.estimate(base_bits, meta, seed + plan.seed_offset, plan.frac)
        if plan.fractions:
            record.error_curve = decoder.curve(
                base_bits, meta, seed + plan.curve_seed_offset, plan.fractions
            )


def validate_sweep(summaries: Sequence[SweepSummary], config: SweepConfig) -> list[dict]:
    """Run the configured monotonicity and summary checks in order."""
    results = []
    for check in config.monotonicity:
        result = check_monotonic(summaries, check)
        logger.info(
            "%s %s: %d/%d%s", config.name, check.field, result["count"], result["possible"],
            f" (spearman {result['correlation']:.3f})" if result["used_fallback"] else "",
        )
        results.append(result)
    for check in config.summary_checks:
        result = check(summaries)
        if result is not None:
            results.append(result)
    return results


def tur_summary_check(min_ratio: float = 0.6, min_median: float = 1.0) -> SummaryCheck:
    """Summary check requiring TUR ratios above the given bounds."""

    def check(summaries: Sequence[SweepSummary]) -> dict:
        return check_tur_bounds(
            [s.tur_ratio for s in summaries], min_ratio, min_median,
            labels=[s.point for s in summaries],
        )

    return check


def budget_run_check(field_name: str, interfaces: int, cells: int, r_count: int,
                     budget: int) -> RunCheck:
    """Run check that the named auxiliary token field respects its budget."""

    def check(handle: SimulatorHandle, record: RunRecord) -> None:
        check_budget_sums(handle.auxiliary_field(field_name), interfaces, cells, r_count, budget)

    return check


def _fmt(value, digits: int = 4) -> str:
    if value is None or not math.isfinite(value):
        return "n/a"
    return f"{value:.{digits}g}"
