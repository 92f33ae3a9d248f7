"""
Performance metrics collection for MapReduce jobs.
"""

import json
import os
import time
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional

import psutil

MAP_COUNTERS = ('lines_read', 'lines_skipped', 'records_filtered', 'pairs_emitted')
REDUCE_COUNTERS = ('pairs_shuffled', 'keys_reduced', 'rows_written')


@dataclass
class JobMetrics:
    """Metrics for a single MapReduce job execution."""

    job_id: str
    backend: str
    start_time: float
    num_map_tasks: int = 0
    num_reduce_tasks: int = 0
    input_size_bytes: int = 0
    end_time: float = 0.0
    map_phase_start: float = 0.0
    map_phase_end: float = 0.0
    reduce_phase_start: float = 0.0
    reduce_phase_end: float = 0.0
    output_size_bytes: int = 0
    lines_read: int = 0
    lines_skipped: int = 0
    records_filtered: int = 0
    pairs_emitted: int = 0
    pairs_shuffled: int = 0
    keys_reduced: int = 0
    rows_written: int = 0
    peak_rss_bytes: int = 0

    @property
    def total_time_seconds(self) -> float:
        """Total job execution time in seconds."""
        return self.end_time - self.start_time

    @property
    def map_phase_time_seconds(self) -> float:
        """Map phase execution time in seconds."""
        return self.map_phase_end - self.map_phase_start

    @property
    def reduce_phase_time_seconds(self) -> float:
        """Reduce phase execution time in seconds."""
        return self.reduce_phase_end - self.reduce_phase_start

    def to_dict(self) -> dict:
        """Convert metrics to dictionary."""
        data = asdict(self)
        data['total_time_seconds'] = self.total_time_seconds
        return data

    def save_to_file(self, filepath: str):
        """Save metrics to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


class MetricsCollector:
    """Collects and manages metrics for MapReduce jobs."""

    def __init__(self):
        self.job_metrics: Dict[str, JobMetrics] = {}
        self.process = psutil.Process()

    def start_job(self, job_id: str, backend: str, num_reduce_tasks: int):
        """Initialize metrics tracking for a new job."""
        self.job_metrics[job_id] = JobMetrics(
            job_id=job_id,
            backend=backend,
            start_time=time.time(),
            num_reduce_tasks=num_reduce_tasks,
        )

    def start_map_phase(self, job_id: str, input_files: Iterable[str], num_map_tasks: int):
        metrics = self.job_metrics[job_id]
        metrics.map_phase_start = time.time()
        metrics.num_map_tasks = num_map_tasks
        metrics.input_size_bytes = sum(os.path.getsize(f) for f in input_files if os.path.exists(f))

    def record_map_task(self, job_id: str, counters: dict):
        metrics = self.job_metrics[job_id]
        for name in MAP_COUNTERS:
            setattr(metrics, name, getattr(metrics, name) + counters.get(name, 0))
        self._sample_memory(metrics)

    def end_map_phase(self, job_id: str):
        """Mark the end of the map phase."""
        self.job_metrics[job_id].map_phase_end = time.time()

    def start_reduce_phase(self, job_id: str):
        self.job_metrics[job_id].reduce_phase_start = time.time()

    def record_reduce_task(self, job_id: str, counters: dict):
        metrics = self.job_metrics[job_id]
        for name in REDUCE_COUNTERS:
            setattr(metrics, name, getattr(metrics, name) + counters.get(name, 0))
        self._sample_memory(metrics)

    def end_job(self, job_id: str, output_files: Iterable[str] = ()):
        """Mark job completion and calculate output size."""
        metrics = self.job_metrics[job_id]
        now = time.time()
        if metrics.reduce_phase_start and not metrics.reduce_phase_end:
            metrics.reduce_phase_end = now
        metrics.end_time = now
        metrics.output_size_bytes = sum(os.path.getsize(f) for f in output_files if os.path.exists(f))
        self._sample_memory(metrics)

    def get_metrics(self, job_id: str) -> Optional[JobMetrics]:
        """Retrieve metrics for a specific job."""
        return self.job_metrics.get(job_id)

    def _sample_memory(self, metrics: JobMetrics):
        metrics.peak_rss_bytes = max(metrics.peak_rss_bytes, self.process.memory_info().rss)
