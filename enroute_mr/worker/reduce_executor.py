"""
Reduce Task Executor
Executes reduce tasks by merging every map task's output for one partition,
grouping by key, applying the reducer, and writing one part file
"""

import logging
import os
import time
from typing import Iterable, List

from enroute_mr.common.formats import OutputFormat
from enroute_mr.common.mapreduce import Emission, Reducer
from enroute_mr.worker.shuffle import Shuffler

logger = logging.getLogger(__name__)


def part_file_name(partition_id: int, extension: str = ".csv") -> str:
    return f"part-{partition_id:05d}{extension}"


class ReduceExecutor:
    """Executes a single reduce task"""

    def __init__(self, task_id: int, partition_id: int, sources: Iterable[List[Emission]],
                 reducer: Reducer, output_format: OutputFormat, output_path: str, job_id: str):
        """
        Initialize the reduce executor

        Args:
            task_id: Unique ID for this reduce task
            partition_id: Partition ID this reduce task is responsible for
            sources: One list of (key, value) pairs per map task output; may be
                     a generator that fetches each list lazily
            reducer: Job reducer
            output_format: Job output format
            output_path: Directory where the part file is written
            job_id: Unique job identifier
        """
        self.task_id = task_id
        self.partition_id = partition_id
        self.sources = sources
        self.reducer = reducer
        self.output_format = output_format
        self.output_path = output_path
        self.job_id = job_id

    def execute(self) -> dict:
        """
        Execute the reduce task

        Returns:
            Dictionary with 'success', 'execution_time_ms', 'error_message',
            'stage', 'counters' and 'output_file'
        """
        start_time = time.time()
        stage = "shuffle"
        counters = {'pairs_shuffled': 0, 'keys_reduced': 0, 'rows_written': 0}

        try:
            logger.info(f"Reduce task {self.task_id}: Grouping partition {self.partition_id}")
            shuffler = self._read_and_group()
            counters['pairs_shuffled'] = shuffler.pairs_seen
            logger.info(f"Reduce task {self.task_id}: Grouped {len(shuffler)} unique keys")

            # No reduction starts until every source has been merged
            stage = "reduce"
            aggregates = []
            for key, values in shuffler.release():
                aggregates.append(self.reducer.reduce(key, values))
            counters['keys_reduced'] = len(aggregates)

            stage = "output"
            output_file = self._write_output(aggregates)
            counters['rows_written'] = len(aggregates)

            execution_time = int((time.time() - start_time) * 1000)
            logger.info(f"Reduce task {self.task_id}: Completed in {execution_time}ms")
            return {
                'success': True,
                'execution_time_ms': execution_time,
                'error_message': '',
                'stage': '',
                'counters': counters,
                'output_file': output_file,
            }

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Reduce task {self.task_id} failed during {stage}: {e}")
            return {
                'success': False,
                'execution_time_ms': execution_time,
                'error_message': f"{type(e).__name__}: {e}",
                'stage': stage,
                'counters': counters,
                'output_file': '',
            }

    def _read_and_group(self) -> Shuffler:
        shuffler = Shuffler()
        for pairs in self.sources:
            shuffler.extend(pairs)
        return shuffler

    def _write_output(self, aggregates: list) -> str:
        """
        Write the aggregates of this partition

        Returns:
            Path of the part file
        """
        os.makedirs(self.output_path, exist_ok=True)
        output_file = os.path.join(
            self.output_path, part_file_name(self.partition_id, self.output_format.extension)
        )

        with open(output_file, 'w', encoding='utf-8', newline='') as f:
            self.output_format.write(aggregates, f)

        logger.info(f"Reduce task {self.task_id}: Wrote {len(aggregates)} rows to {output_file}")
        return output_file
