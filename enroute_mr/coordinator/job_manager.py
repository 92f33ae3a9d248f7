"""
Job Manager
Handles job state, input split generation and progress tracking for every
backend
"""

import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class JobStatus(Enum):
    """Status of a MapReduce job"""
    PENDING = "pending"
    MAP_PHASE = "map_phase"
    SHUFFLE_PHASE = "shuffle_phase"
    REDUCE_PHASE = "reduce_phase"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(Enum):
    """Status of individual map or reduce tasks"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MapTask:
    """Represents a single map task over one byte range of one file"""
    task_id: int
    input_path: str
    start_offset: int
    end_offset: int
    status: TaskStatus = TaskStatus.PENDING
    assigned_worker: Optional[str] = None
    # partition_id -> intermediate file name on assigned_worker
    intermediate_files: Dict[int, str] = field(default_factory=dict)


@dataclass
class ReduceTask:
    """Represents a single reduce task"""
    task_id: int
    partition_id: int
    shuffle_locations: List[Tuple[str, str]] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    assigned_worker: Optional[str] = None
    output_file: str = ""


@dataclass
class Job:
    """Represents a complete MapReduce job"""
    job_id: str
    input_path: str
    output_path: str
    num_map_tasks: int
    num_reduce_tasks: int
    backend: str = "local"
    status: JobStatus = JobStatus.PENDING
    input_files: List[str] = field(default_factory=list)
    map_tasks: List[MapTask] = field(default_factory=list)
    reduce_tasks: List[ReduceTask] = field(default_factory=list)
    error_message: str = ""
    start_time: float = 0.0
    end_time: float = 0.0


def list_input_files(input_path: str) -> List[str]:
    """
    Expand an input location into the files to read

    Args:
        input_path: A file, or a directory whose visible regular files are read

    Raises:
        FileNotFoundError: If the location doesn't exist or holds no files
    """
    if os.path.isfile(input_path):
        return [input_path]
    if not os.path.isdir(input_path):
        raise FileNotFoundError(f"Input path not found: {input_path}")

    files = sorted(
        os.path.join(input_path, name)
        for name in os.listdir(input_path)
        if not name.startswith(('.', '_')) and os.path.isfile(os.path.join(input_path, name))
    )
    if not files:
        raise FileNotFoundError(f"No input files in directory: {input_path}")
    return files


class JobManager:
    """Manages MapReduce jobs and their lifecycle"""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}
        self.lock = threading.Lock()

    def create_job(self, job_id: str, input_path: str, output_path: str,
                   num_map_tasks: int, num_reduce_tasks: int, backend: str = "local") -> Job:
        """Create a new job"""
        with self.lock:
            job = Job(
                job_id=job_id,
                input_path=input_path,
                output_path=output_path,
                num_map_tasks=num_map_tasks,
                num_reduce_tasks=num_reduce_tasks,
                backend=backend,
                start_time=time.time()
            )
            self.jobs[job.job_id] = job
            return job

    def generate_map_tasks(self, job: Job) -> List[MapTask]:
        """Split every input file into up to num_map_tasks byte ranges"""
        job.input_files = list_input_files(job.input_path)

        map_tasks = []
        for input_file in job.input_files:
            file_size = os.path.getsize(input_file)
            num_splits = max(1, min(job.num_map_tasks, file_size))
            chunk_size = file_size // num_splits

            for i in range(num_splits):
                start = i * chunk_size
                end = file_size if i == num_splits - 1 else (i + 1) * chunk_size
                map_tasks.append(MapTask(
                    task_id=len(map_tasks),
                    input_path=input_file,
                    start_offset=start,
                    end_offset=end
                ))

        job.map_tasks = map_tasks
        job.status = JobStatus.MAP_PHASE
        return map_tasks

    def generate_reduce_tasks(self, job: Job) -> List[ReduceTask]:
        """
        Create R reduce tasks once every map task has completed

        Raises:
            RuntimeError: If any map task has not completed (shuffle barrier)
        """
        with self.lock:
            pending = [t.task_id for t in job.map_tasks if t.status != TaskStatus.COMPLETED]
            if pending:
                raise RuntimeError(f"Cannot start reduce phase, map tasks not completed: {pending}")

            reduce_tasks = []
            for partition_id in range(job.num_reduce_tasks):
                # Every map task's file for this partition, in map task order
                locations = [
                    (t.assigned_worker, t.intermediate_files[partition_id])
                    for t in job.map_tasks
                    if partition_id in t.intermediate_files
                ]
                reduce_tasks.append(ReduceTask(
                    task_id=partition_id,
                    partition_id=partition_id,
                    shuffle_locations=locations
                ))

            job.reduce_tasks = reduce_tasks
            job.status = JobStatus.REDUCE_PHASE
            return reduce_tasks

    def assign_map_task(self, job_id: str, task_id: int, worker: str):
        with self.lock:
            task = self.jobs[job_id].map_tasks[task_id]
            task.status = TaskStatus.ASSIGNED
            task.assigned_worker = worker

    def assign_reduce_task(self, job_id: str, task_id: int, worker: str):
        with self.lock:
            task = self.jobs[job_id].reduce_tasks[task_id]
            task.status = TaskStatus.ASSIGNED
            task.assigned_worker = worker

    def mark_map_task_completed(self, job_id: str, task_id: int,
                                intermediate_files: Optional[Dict[int, str]] = None):
        """Mark map task as completed"""
        with self.lock:
            job = self.jobs.get(job_id)
            if job and task_id < len(job.map_tasks):
                task = job.map_tasks[task_id]
                task.status = TaskStatus.COMPLETED
                task.intermediate_files = dict(intermediate_files or {})

                # Check if all map tasks completed
                if all(t.status == TaskStatus.COMPLETED for t in job.map_tasks):
                    job.status = JobStatus.SHUFFLE_PHASE

    def mark_reduce_task_completed(self, job_id: str, task_id: int, output_file: str = ""):
        """Mark reduce task as completed"""
        with self.lock:
            job = self.jobs.get(job_id)
            if job and task_id < len(job.reduce_tasks):
                job.reduce_tasks[task_id].status = TaskStatus.COMPLETED
                job.reduce_tasks[task_id].output_file = output_file

    def mark_job_completed(self, job_id: str):
        with self.lock:
            job = self.jobs[job_id]
            job.status = JobStatus.COMPLETED
            job.end_time = time.time()

    def mark_job_failed(self, job_id: str, error_message: str):
        with self.lock:
            job = self.jobs.get(job_id)
            if job:
                job.status = JobStatus.FAILED
                job.error_message = error_message
                job.end_time = time.time()
                for task in job.map_tasks + job.reduce_tasks:
                    if task.status == TaskStatus.ASSIGNED:
                        task.status = TaskStatus.FAILED

    def get_job_status(self, job_id: str) -> Optional[Dict]:
        """Get current job status with progress"""
        with self.lock:
            job = self.jobs.get(job_id)
            if not job:
                return None

            map_completed = sum(1 for t in job.map_tasks if t.status == TaskStatus.COMPLETED)
            reduce_completed = sum(1 for t in job.reduce_tasks if t.status == TaskStatus.COMPLETED)
            # Reduce tasks exist only after the barrier; count them up front
            total_tasks = len(job.map_tasks) + job.num_reduce_tasks
            completed_tasks = map_completed + reduce_completed

            progress = int((completed_tasks / total_tasks * 100)) if total_tasks > 0 else 0

            return {
                'status': job.status.value,
                'progress': progress,
                'map_completed': map_completed,
                'map_total': len(job.map_tasks),
                'reduce_completed': reduce_completed,
                'reduce_total': job.num_reduce_tasks,
                'error_message': job.error_message,
            }
