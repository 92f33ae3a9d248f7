"""
Map Task Executor
Executes map tasks by reading an input split through the job's input format,
applying the mapper, and partitioning emissions by key for the reduce tasks
"""

import logging
import os
import pickle
import time
import zlib
from collections import defaultdict
from typing import Dict, Hashable, Iterator, List, Optional

from enroute_mr.common.formats import InputFormat
from enroute_mr.common.mapreduce import Emission, Mapper

logger = logging.getLogger(__name__)


def partition_for(key: Hashable, num_partitions: int) -> int:
    """
    Reduce partition owning a key.

    Uses crc32 of the key's repr instead of hash() so every worker process
    agrees regardless of PYTHONHASHSEED.
    """
    return zlib.crc32(repr(key).encode("utf-8")) % num_partitions


def intermediate_file_name(job_id: str, task_id: int, partition_id: int) -> str:
    return f"{job_id}_map_{task_id}_part_{partition_id}.pickle"


class MapExecutor:
    """Executes a single map task"""

    def __init__(self, task_id: int, input_path: str, start_offset: int,
                 end_offset: Optional[int], num_reduce_tasks: int, mapper: Mapper,
                 input_format: InputFormat, job_id: str, batch_size: int = 1000,
                 intermediate_dir: Optional[str] = None):
        """
        Initialize the map executor

        Args:
            task_id: Unique ID for this map task
            input_path: Path to input file
            start_offset: Byte offset where this task should start reading
            end_offset: Byte offset where this task should stop reading (None for EOF)
            num_reduce_tasks: Number of reduce tasks (for partitioning)
            mapper: Job mapper
            input_format: Job input format
            job_id: Unique job identifier
            batch_size: Records requested from the reader per call
            intermediate_dir: Where to pickle partitions; kept in memory when None
        """
        self.task_id = task_id
        self.input_path = input_path
        self.start_offset = start_offset
        self.end_offset = end_offset
        self.num_reduce_tasks = num_reduce_tasks
        self.mapper = mapper
        self.input_format = input_format
        self.job_id = job_id
        self.batch_size = batch_size
        self.intermediate_dir = intermediate_dir

    def execute(self) -> dict:
        """
        Execute the map task

        Returns:
            Dictionary with 'success', 'execution_time_ms', 'error_message',
            'stage' and 'counters', plus 'partitions' (in memory) or
            'intermediate_files' (partition_id -> file name)
        """
        start_time = time.time()
        stage = "input"
        counters = {'lines_read': 0, 'lines_skipped': 0, 'records_filtered': 0, 'pairs_emitted': 0}

        try:
            logger.info(f"Map task {self.task_id}: Reading {self.input_path} "
                        f"[{self.start_offset}, {self.end_offset if self.end_offset is not None else 'EOF'})")
            reader = self.input_format.open(self._read_input_split())

            partitions: Dict[int, List[Emission]] = defaultdict(list)
            while True:
                stage = "input"
                batch = reader.read(self.batch_size)
                if not batch:
                    break

                stage = "map"
                for record in batch:
                    emission = self.mapper.map(record)
                    if emission is None:
                        counters['records_filtered'] += 1
                        continue
                    key, value = emission
                    partitions[partition_for(key, self.num_reduce_tasks)].append((key, value))
                    counters['pairs_emitted'] += 1

            counters['lines_read'] = reader.lines_read
            counters['lines_skipped'] = reader.skipped
            if reader.skipped:
                logger.debug(f"Map task {self.task_id}: Skipped {reader.skipped} malformed lines")
            logger.info(f"Map task {self.task_id}: Generated {counters['pairs_emitted']} intermediate pairs")

            result = {
                'success': True,
                'error_message': '',
                'stage': '',
                'counters': counters,
            }

            if self.intermediate_dir is None:
                result['partitions'] = dict(partitions)
            else:
                stage = "shuffle"
                result['intermediate_files'] = self._write_intermediate_files(partitions)

            result['execution_time_ms'] = int((time.time() - start_time) * 1000)
            logger.info(f"Map task {self.task_id}: Completed in {result['execution_time_ms']}ms")
            return result

        except Exception as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Map task {self.task_id} failed during {stage}: {e}")
            return {
                'success': False,
                'execution_time_ms': execution_time,
                'error_message': f"{type(e).__name__}: {e}",
                'stage': stage,
                'counters': counters,
            }

    def _read_input_split(self) -> Iterator[str]:
        """
        Yield the lines of the assigned byte range.

        A line belongs to the split containing its first byte, so a split
        starting mid-line skips ahead to the next line start.
        """
        with open(self.input_path, 'rb') as f:
            if self.start_offset > 0:
                f.seek(self.start_offset - 1)
                f.readline()

            while True:
                if self.end_offset is not None and f.tell() >= self.end_offset:
                    break
                line = f.readline()
                if not line:
                    break
                yield line.decode('utf-8', errors='replace')

    def _write_intermediate_files(self, partitions: Dict[int, List[Emission]]) -> Dict[int, str]:
        """
        Pickle each non-empty partition to the intermediate directory

        Returns:
            Mapping of partition_id to file name (relative to intermediate_dir)
        """
        os.makedirs(self.intermediate_dir, exist_ok=True)

        files = {}
        for partition_id, pairs in sorted(partitions.items()):
            if not pairs:
                continue
            name = intermediate_file_name(self.job_id, self.task_id, partition_id)
            with open(os.path.join(self.intermediate_dir, name), 'wb') as f:
                pickle.dump(pairs, f)
            files[partition_id] = name

        logger.info(f"Map task {self.task_id}: Wrote {len(files)} intermediate files")
        return files
