"""
Job executor
Drives input splitting, the map phase, the shuffle barrier and the reduce
phase on a local or distributed backend. Both backends accept the same
mapper, reducer and format objects and return the same JobHandle; workers
of the distributed backend load those objects from the job module.
"""

import logging
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import closing
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import grpc

from enroute_mr.common.config import BackendConfig
from enroute_mr.common.errors import ConfigurationError, EnrouteError, StageError
from enroute_mr.common.formats import InputFormat, OutputFormat
from enroute_mr.common.grpc_client import WorkerServiceStub, get_worker_stub, worker_pb2
from enroute_mr.common.mapreduce import Mapper, Reducer
from enroute_mr.coordinator.job_manager import Job, JobManager, JobStatus
from enroute_mr.coordinator.metrics import JobMetrics, MetricsCollector
from enroute_mr.worker.function_loader import job_reference
from enroute_mr.worker.map_executor import MapExecutor, intermediate_file_name
from enroute_mr.worker.reduce_executor import ReduceExecutor

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "_SUCCESS"


@dataclass
class JobHandle:
    """Result of a completed run"""
    job_id: str
    backend: str
    output_path: str
    output_files: List[str] = field(default_factory=list)
    metrics: Optional[JobMetrics] = None
    status: str = JobStatus.COMPLETED.value

    def to_dataframe(self):
        """Load the output into a pandas DataFrame"""
        from enroute_mr.client.results import load_results
        return load_results(self.output_path)


class Backend(ABC):
    """Execution strategy: how map and reduce tasks get run"""

    name = ""

    def __init__(self, config: BackendConfig, job_manager: JobManager, metrics: MetricsCollector,
                 job_module: Optional[str] = None):
        self.config = config
        self.job_module = job_module
        self.job_manager = job_manager
        self.metrics = metrics

    def execute(self, job: Job, mapper: Mapper, reducer: Reducer, input_format: InputFormat,
                output_format: OutputFormat, staging_path: str) -> List[str]:
        """
        Run every task of a job, writing part files to staging_path

        Returns:
            Paths of the part files, in partition order

        Raises:
            StageError: On the first failed task
        """
        try:
            map_tasks = self.job_manager.generate_map_tasks(job)
        except OSError as e:
            raise StageError("input", f"{e}; check the input location") from e

        self.metrics.start_map_phase(job.job_id, job.input_files, len(map_tasks))
        logger.info(f"Job {job.job_id}: map phase, {len(map_tasks)} tasks over {len(job.input_files)} files")
        self.run_map_phase(job, mapper, input_format)
        self.metrics.end_map_phase(job.job_id)

        # Shuffle barrier: reduce tasks exist only once every map task completed
        try:
            reduce_tasks = self.job_manager.generate_reduce_tasks(job)
        except RuntimeError as e:
            raise StageError("shuffle", str(e)) from e
        self.metrics.start_reduce_phase(job.job_id)
        logger.info(f"Job {job.job_id}: reduce phase, {len(reduce_tasks)} tasks")
        return self.run_reduce_phase(job, reducer, output_format, staging_path)

    @abstractmethod
    def run_map_phase(self, job: Job, mapper: Mapper, input_format: InputFormat):
        """Run every map task; return only after all of them completed"""

    @abstractmethod
    def run_reduce_phase(self, job: Job, reducer: Reducer, output_format: OutputFormat,
                         staging_path: str) -> List[str]:
        """Run every reduce task and return the part files"""

    def cleanup(self, job: Job):
        """Release intermediate data once the job is done or failed"""

    def _check_result(self, job: Job, result: dict, kind: str, task_id: int, where: str = ""):
        if result['success']:
            return
        stage = result.get('stage') or kind
        location = f" on {where}" if where else ""
        raise StageError(stage, f"{kind} task {task_id}{location} of job {job.job_id} failed: "
                                f"{result['error_message']}")


class LocalBackend(Backend):
    """Runs every task in-process, intermediate partitions held in memory"""

    name = "local"
    worker_name = "local"

    def __init__(self, config: BackendConfig, job_manager: JobManager, metrics: MetricsCollector,
                 job_module: Optional[str] = None):
        super().__init__(config, job_manager, metrics, job_module)
        self._intermediate: Dict[str, list] = {}

    def run_map_phase(self, job: Job, mapper: Mapper, input_format: InputFormat):
        for task in job.map_tasks:
            self.job_manager.assign_map_task(job.job_id, task.task_id, self.worker_name)
            result = MapExecutor(
                task_id=task.task_id,
                input_path=task.input_path,
                start_offset=task.start_offset,
                end_offset=task.end_offset,
                num_reduce_tasks=job.num_reduce_tasks,
                mapper=mapper,
                input_format=input_format,
                job_id=job.job_id,
                batch_size=self.config.batch_size,
            ).execute()
            self._check_result(job, result, "map", task.task_id)

            names = {}
            for partition_id, pairs in result['partitions'].items():
                name = intermediate_file_name(job.job_id, task.task_id, partition_id)
                self._intermediate[name] = pairs
                names[partition_id] = name
            self.job_manager.mark_map_task_completed(job.job_id, task.task_id, names)
            self.metrics.record_map_task(job.job_id, result['counters'])

    def run_reduce_phase(self, job: Job, reducer: Reducer, output_format: OutputFormat,
                         staging_path: str) -> List[str]:
        output_files = []
        for task in job.reduce_tasks:
            self.job_manager.assign_reduce_task(job.job_id, task.task_id, self.worker_name)
            sources = (self._intermediate.pop(name) for _, name in task.shuffle_locations)
            result = ReduceExecutor(
                task_id=task.task_id,
                partition_id=task.partition_id,
                sources=sources,
                reducer=reducer,
                output_format=output_format,
                output_path=staging_path,
                job_id=job.job_id,
            ).execute()
            self._check_result(job, result, "reduce", task.task_id)

            self.job_manager.mark_reduce_task_completed(job.job_id, task.task_id, result['output_file'])
            self.metrics.record_reduce_task(job.job_id, result['counters'])
            output_files.append(result['output_file'])
        return output_files

    def cleanup(self, job: Job):
        self._intermediate.clear()


class DistributedBackend(Backend):
    """Dispatches tasks to gRPC workers; reducers pull partitions from map workers"""

    name = "distributed"

    def __init__(self, config: BackendConfig, job_manager: JobManager, metrics: MetricsCollector,
                 job_module: Optional[str] = None):
        super().__init__(config, job_manager, metrics, job_module)
        self.stubs: Dict[str, WorkerServiceStub] = {}

    def connect(self):
        """
        Open a channel to every configured worker

        Raises:
            StageError: If a worker is unreachable
        """
        timeout = min(10.0, self.config.rpc_timeout)
        for address in self.config.workers:
            if address in self.stubs:
                continue
            try:
                stub = get_worker_stub(address, timeout=timeout)
            except ConnectionError as e:
                raise StageError("backend", f"{e}; check that a worker is running there "
                                            f"(enroute-mr worker --port PORT)") from e
            self.stubs[address] = stub
            status = self._call(address, "Heartbeat", worker_pb2.HeartbeatRequest())
            logger.info(f"Worker {address} ({status.worker_id}) is {status.status}, "
                        f"cpu {status.cpu_percent}%")

    def execute(self, job, mapper, reducer, input_format, output_format, staging_path):
        self.connect()
        return super().execute(job, mapper, reducer, input_format, output_format, staging_path)

    def run_map_phase(self, job: Job, mapper: Mapper, input_format: InputFormat):
        requests = []
        for i, task in enumerate(job.map_tasks):
            worker = self.config.workers[i % len(self.config.workers)]
            self.job_manager.assign_map_task(job.job_id, task.task_id, worker)
            requests.append((task, worker, worker_pb2.MapTaskRequest(
                job_id=job.job_id,
                task_id=task.task_id,
                job=self.job_module,
                input_path=os.path.abspath(task.input_path),
                start_offset=task.start_offset,
                end_offset=task.end_offset,
                num_reduce_tasks=job.num_reduce_tasks,
                batch_size=self.config.batch_size,
            )))

        with closing(self._dispatch("RunMapTask", requests)) as results:
            for task, worker, response in results:
                result = _response_dict(response)
                self._check_result(job, result, "map", task.task_id, worker)
                self.job_manager.mark_map_task_completed(job.job_id, task.task_id,
                                                         dict(response.intermediate_files))
                self.metrics.record_map_task(job.job_id, result['counters'])

    def run_reduce_phase(self, job: Job, reducer: Reducer, output_format: OutputFormat,
                         staging_path: str) -> List[str]:
        requests = []
        for i, task in enumerate(job.reduce_tasks):
            worker = self.config.workers[i % len(self.config.workers)]
            self.job_manager.assign_reduce_task(job.job_id, task.task_id, worker)
            requests.append((task, worker, worker_pb2.ReduceTaskRequest(
                job_id=job.job_id,
                task_id=task.task_id,
                partition_id=task.partition_id,
                job=self.job_module,
                shuffle_locations=[
                    worker_pb2.ShuffleLocation(worker_address=address, file_name=name)
                    for address, name in task.shuffle_locations
                ],
                output_path=os.path.abspath(staging_path),
                rpc_timeout=self.config.rpc_timeout,
            )))

        output_files = {}
        with closing(self._dispatch("RunReduceTask", requests)) as results:
            for task, worker, response in results:
                result = _response_dict(response)
                self._check_result(job, result, "reduce", task.task_id, worker)
                self.job_manager.mark_reduce_task_completed(job.job_id, task.task_id, response.output_file)
                self.metrics.record_reduce_task(job.job_id, result['counters'])
                output_files[task.partition_id] = response.output_file
        return [output_files[p] for p in sorted(output_files)]

    def cleanup(self, job: Job):
        for address in list(self.stubs):
            try:
                self.stubs[address].CleanupJob(worker_pb2.CleanupRequest(job_id=job.job_id),
                                               timeout=self.config.rpc_timeout)
            except grpc.RpcError as e:
                logger.warning(f"Cleanup of job {job.job_id} on {address} failed: {e.details()}")
            self.stubs.pop(address).close()

    def _dispatch(self, method: str, requests):
        """
        Send requests concurrently and yield (task, worker, result) as they finish.

        The first failure stops the iteration; the pool then waits for calls
        already in flight before the error propagates.
        """
        with ThreadPoolExecutor(max_workers=len(self.config.workers)) as pool:
            futures = {
                pool.submit(self._call, worker, method, request): (task, worker)
                for task, worker, request in requests
            }
            try:
                for future in as_completed(futures):
                    task, worker = futures[future]
                    yield task, worker, future.result()
            finally:
                for future in futures:
                    future.cancel()

    def _call(self, address: str, method: str, request):
        try:
            return getattr(self.stubs[address], method)(request, timeout=self.config.rpc_timeout)
        except grpc.RpcError as e:
            raise StageError("backend", f"{method} on worker {address} failed: "
                                        f"{e.code().name} {e.details()}") from e


def _response_dict(response) -> dict:
    return {
        'success': response.success,
        'error_message': response.error_message,
        'stage': response.stage,
        'counters': dict(response.counters),
    }


BACKENDS = {
    LocalBackend.name: LocalBackend,
    DistributedBackend.name: DistributedBackend,
}


def _check_job_components(mapper, reducer, input_format, output_format):
    for name, value, expected in (('mapper', mapper, Mapper), ('reducer', reducer, Reducer),
                                  ('input_format', input_format, InputFormat),
                                  ('output_format', output_format, OutputFormat)):
        if not isinstance(value, expected):
            raise StageError("config", f"{name} must be a {expected.__name__} instance, "
                                       f"got {type(value).__name__}")


def run(input_location: str, output_location: str, mapper: Mapper, reducer: Reducer,
        input_format: InputFormat, output_format: OutputFormat,
        backend_config: Optional[BackendConfig] = None, job: Optional[str] = None) -> JobHandle:
    """
    Run one MapReduce job to completion.

    Output is written to a staging directory next to output_location and
    renamed into place only after every reduce task succeeded, so a failed
    run leaves nothing behind.

    Args:
        input_location: Input file, or directory of input files
        output_location: Output directory; must not exist yet
        mapper, reducer: Job logic
        input_format, output_format: Record parsing and serialization
        backend_config: Execution strategy (default: local)
        job: Module path or file that distributed workers load the components
             from (default: the module defining the mapper's class)

    Returns:
        JobHandle describing the output

    Raises:
        StageError: If any stage fails; stage names the failed stage
    """
    config = backend_config or BackendConfig()
    try:
        config.validate()
    except ConfigurationError as e:
        raise StageError("config", str(e)) from e
    _check_job_components(mapper, reducer, input_format, output_format)

    job_module = None
    if config.backend == DistributedBackend.name:
        try:
            job_module = job_reference({'mapper': mapper, 'reducer': reducer,
                                        'input_format': input_format,
                                        'output_format': output_format}, job)
        except LookupError as e:
            raise StageError("config", str(e)) from e

    output_location = output_location.rstrip(os.sep) or output_location
    if os.path.exists(output_location):
        raise StageError("output", f"Output path already exists: {output_location}; "
                                   f"remove it or choose another location")

    job_id = uuid.uuid4().hex[:12]
    staging_path = f"{output_location}._tmp-{job_id}"
    job_manager = JobManager()
    metrics = MetricsCollector()
    backend = BACKENDS[config.backend](config, job_manager, metrics, job_module)

    job = job_manager.create_job(job_id, input_location, output_location,
                                 config.num_map_tasks, config.num_reduce_tasks, backend=backend.name)
    metrics.start_job(job_id, backend.name, config.num_reduce_tasks)
    logger.info(f"Job {job_id}: {input_location} -> {output_location} on {backend.name} backend")

    try:
        staged_files = backend.execute(job, mapper, reducer, input_format, output_format, staging_path)

        try:
            os.makedirs(staging_path, exist_ok=True)
            with open(os.path.join(staging_path, SUCCESS_MARKER), 'w'):
                pass
            parent = os.path.dirname(os.path.abspath(output_location))
            os.makedirs(parent, exist_ok=True)
            os.rename(staging_path, output_location)
        except OSError as e:
            raise StageError("output", f"Could not publish output to {output_location}: {e}") from e

    except EnrouteError as e:
        job_manager.mark_job_failed(job_id, str(e))
        shutil.rmtree(staging_path, ignore_errors=True)
        logger.error(f"Job {job_id} failed: {e}")
        raise
    except Exception as e:
        job_manager.mark_job_failed(job_id, str(e))
        shutil.rmtree(staging_path, ignore_errors=True)
        logger.error(f"Job {job_id} failed: {e}")
        raise StageError("backend", f"Unexpected {type(e).__name__}: {e}") from e
    finally:
        backend.cleanup(job)

    output_files = [os.path.join(output_location, os.path.basename(f)) for f in staged_files]
    job_manager.mark_job_completed(job_id)
    metrics.end_job(job_id, output_files)
    logger.info(f"Job {job_id} completed: {len(output_files)} part files in {output_location}")

    return JobHandle(
        job_id=job_id,
        backend=backend.name,
        output_path=output_location,
        output_files=output_files,
        metrics=metrics.get_metrics(job_id),
    )
