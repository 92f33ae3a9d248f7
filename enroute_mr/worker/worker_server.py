"""
Worker server for the distributed backend.
Executes map and reduce tasks sent by the coordinator and serves its
intermediate partitions to reducers on other workers.
"""

import logging
import os
import pickle
import shutil
import tempfile
import threading
import time
import uuid
from concurrent import futures
from typing import Dict, Iterator, Optional

import grpc
import psutil

from enroute_mr.common.grpc_client import get_worker_stub, worker_pb2, worker_pb2_grpc
from enroute_mr.worker.function_loader import FunctionLoader
from enroute_mr.worker.map_executor import MapExecutor
from enroute_mr.worker.reduce_executor import ReduceExecutor

logger = logging.getLogger(__name__)

# Exceptions FunctionLoader raises for a job that can't be used
JOB_LOAD_ERRORS = (ImportError, FileNotFoundError, AttributeError, TypeError, SyntaxError)


class WorkerServer:
    """Worker server that owns a scratch directory and a gRPC endpoint."""

    def __init__(self, scratch_dir: Optional[str] = None, max_workers: int = 4,
                 worker_id: Optional[str] = None):
        self.worker_id = worker_id or str(uuid.uuid4())
        self.scratch_dir = scratch_dir or os.path.join(tempfile.gettempdir(), f"enroute-worker-{self.worker_id}")
        self.max_workers = max_workers
        self.port = None
        self.process = psutil.Process()

        # Track running tasks
        self.tasks: Dict[str, Dict] = {}
        self.tasks_lock = threading.Lock()

        # Loaded jobs, by module path or file
        self.loaders: Dict[str, FunctionLoader] = {}
        self.loaders_lock = threading.Lock()

        self.server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
        self.servicer = WorkerServicer(self)
        worker_pb2_grpc.add_WorkerServiceServicer_to_server(self.servicer, self.server)

    def start(self, port: int = 50052, host: str = '[::]') -> int:
        """
        Start serving

        Args:
            port: Port to bind, 0 picks a free one
            host: Interface to bind

        Returns:
            The bound port
        """
        os.makedirs(self.scratch_dir, exist_ok=True)
        self.port = self.server.add_insecure_port(f'{host}:{port}')
        if not self.port:
            raise RuntimeError(f"Could not bind worker to {host}:{port}")
        self.server.start()
        logger.info(f"Worker {self.worker_id} started on {host}:{self.port}, scratch dir {self.scratch_dir}")
        return self.port

    def stop(self, grace: Optional[float] = None):
        self.server.stop(grace).wait()
        logger.info(f"Worker {self.worker_id} stopped")

    def wait_for_termination(self):
        self.server.wait_for_termination()

    def job_dir(self, job_id: str) -> str:
        return os.path.join(self.scratch_dir, os.path.basename(job_id))

    def load_job(self, job: str) -> FunctionLoader:
        """Load a job once and reuse it for every later task"""
        with self.loaders_lock:
            loader = self.loaders.get(job)
            if loader is None:
                loader = FunctionLoader(job)
                loader.load_module()
                self.loaders[job] = loader
                logger.info(f"Worker {self.worker_id} loaded job {job}")
            return loader

    def set_task_status(self, task_key: str, status: str, **info):
        with self.tasks_lock:
            task = self.tasks.setdefault(task_key, {})
            task['status'] = status
            task.update(info)

    def get_task_status(self, task_key: str) -> Optional[Dict]:
        """Get status of a specific task."""
        with self.tasks_lock:
            task = self.tasks.get(task_key)
            return dict(task) if task else None

    def running_tasks(self) -> int:
        with self.tasks_lock:
            return sum(1 for t in self.tasks.values() if t['status'] == 'RUNNING')


class WorkerServicer(worker_pb2_grpc.WorkerServiceServicer):
    """Implementation of the worker gRPC service."""

    def __init__(self, worker_server: WorkerServer):
        self.worker = worker_server

    def RunMapTask(self, request, context):
        """Run one map task and keep its partitions in the scratch directory."""
        task_key = f"{request.job_id}_map_{request.task_id}"
        self.worker.set_task_status(task_key, 'RUNNING', type='MAP', job_id=request.job_id)

        try:
            loader = self.worker.load_job(request.job)
            mapper, input_format = loader.get_mapper(), loader.get_input_format()
        except JOB_LOAD_ERRORS as e:
            self.worker.set_task_status(task_key, 'FAILED')
            return worker_pb2.MapTaskResponse(**self._job_load_failure(request.job, e))

        result = MapExecutor(
            task_id=request.task_id,
            input_path=request.input_path,
            start_offset=request.start_offset,
            end_offset=request.end_offset,
            num_reduce_tasks=request.num_reduce_tasks,
            mapper=mapper,
            input_format=input_format,
            job_id=request.job_id,
            batch_size=request.batch_size or 1000,
            intermediate_dir=self.worker.job_dir(request.job_id),
        ).execute()

        self.worker.set_task_status(task_key, 'COMPLETED' if result['success'] else 'FAILED')
        return worker_pb2.MapTaskResponse(
            success=result['success'],
            error_message=result['error_message'],
            stage=result['stage'],
            execution_time_ms=result['execution_time_ms'],
            counters=result['counters'],
            intermediate_files=result.get('intermediate_files', {}),
            worker_id=self.worker.worker_id,
        )

    def RunReduceTask(self, request, context):
        """Fetch one partition from every map worker, reduce it and write a part file."""
        task_key = f"{request.job_id}_reduce_{request.task_id}"
        self.worker.set_task_status(task_key, 'RUNNING', type='REDUCE', job_id=request.job_id)

        try:
            loader = self.worker.load_job(request.job)
            reducer, output_format = loader.get_reducer(), loader.get_output_format()
        except JOB_LOAD_ERRORS as e:
            self.worker.set_task_status(task_key, 'FAILED')
            return worker_pb2.ReduceTaskResponse(**self._job_load_failure(request.job, e))

        sources = self._fetch_partitions(request.job_id, request.shuffle_locations,
                                         request.rpc_timeout or 60.0)
        result = ReduceExecutor(
            task_id=request.task_id,
            partition_id=request.partition_id,
            sources=sources,
            reducer=reducer,
            output_format=output_format,
            output_path=request.output_path,
            job_id=request.job_id,
        ).execute()

        self.worker.set_task_status(task_key, 'COMPLETED' if result['success'] else 'FAILED')
        return worker_pb2.ReduceTaskResponse(
            success=result['success'],
            error_message=result['error_message'],
            stage=result['stage'],
            execution_time_ms=result['execution_time_ms'],
            counters=result['counters'],
            output_file=result['output_file'],
            worker_id=self.worker.worker_id,
        )

    def FetchIntermediateFile(self, request, context):
        """Serve one intermediate partition file written by a map task on this worker."""
        file_name = request.file_name
        if not file_name or os.path.basename(file_name) != file_name:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Invalid file name: {file_name}")

        path = os.path.join(self.worker.job_dir(request.job_id), file_name)
        if not os.path.exists(path):
            context.abort(grpc.StatusCode.NOT_FOUND, f"Intermediate file not found: {file_name}")

        with open(path, 'rb') as f:
            return worker_pb2.FetchResponse(file_data=f.read())

    def CleanupJob(self, request, context):
        """Remove a job's intermediate files and task entries."""
        job_id = request.job_id
        shutil.rmtree(self.worker.job_dir(job_id), ignore_errors=True)
        with self.worker.tasks_lock:
            for key in [k for k, t in self.worker.tasks.items() if t.get('job_id') == job_id]:
                del self.worker.tasks[key]
        logger.info(f"Cleaned up intermediate files for job {job_id}")
        return worker_pb2.CleanupResponse(acknowledged=True)

    def Heartbeat(self, request, context):
        """Report liveness and load."""
        running = self.worker.running_tasks()
        return worker_pb2.HeartbeatResponse(
            worker_id=self.worker.worker_id,
            status='BUSY' if running else 'IDLE',
            running_tasks=running,
            available_slots=max(0, self.worker.max_workers - running),
            cpu_percent=psutil.cpu_percent(interval=None),
            memory_rss=self.worker.process.memory_info().rss,
        )

    def _job_load_failure(self, job: str, error: Exception) -> dict:
        logger.error(f"Worker {self.worker.worker_id} could not load job {job}: {error}")
        return {
            'success': False,
            'error_message': f"Could not load job {job} on worker: {type(error).__name__}: {error}",
            'stage': 'config',
            'worker_id': self.worker.worker_id,
        }

    def _fetch_partitions(self, job_id: str, shuffle_locations, timeout: float) -> Iterator[list]:
        # Lazy so fetch failures surface inside the reduce task's shuffle stage
        for location in shuffle_locations:
            yield self._fetch_file_via_grpc(location.worker_address, job_id, location.file_name, timeout)

    @staticmethod
    def _fetch_file_via_grpc(worker_address: str, job_id: str, file_name: str, timeout: float) -> list:
        """Fetch and unpickle a single intermediate file from a (possibly remote) worker."""
        try:
            with get_worker_stub(worker_address, timeout=timeout) as stub:
                response = stub.FetchIntermediateFile(
                    worker_pb2.FetchRequest(job_id=job_id, file_name=file_name), timeout=timeout
                )
        except grpc.RpcError as e:
            logger.error(f"gRPC error fetching file {file_name} from {worker_address}: {e.details()}")
            raise RuntimeError(f"Shuffle failure from {worker_address}: {e.details()}")

        if not response.file_data:
            raise RuntimeError(f"Fetch failed: Empty data received for {file_name} from {worker_address}")
        return pickle.loads(response.file_data)


def serve(port: int = 50052, scratch_dir: Optional[str] = None, max_workers: int = 4,
          worker_id: Optional[str] = None):
    """Start a worker and block until interrupted"""
    worker = WorkerServer(scratch_dir=scratch_dir, max_workers=max_workers, worker_id=worker_id)
    worker.start(port)
    try:
        while True:
            time.sleep(86400)
    except KeyboardInterrupt:
        worker.stop(0)


def main():
    """Start the worker process from environment settings"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    serve(
        port=int(os.environ.get('WORKER_PORT', 50052)),
        scratch_dir=os.environ.get('WORKER_SCRATCH_DIR') or None,
        max_workers=int(os.environ.get('WORKER_MAX_TASKS', 4)),
        worker_id=os.environ.get('WORKER_ID') or None,
    )


if __name__ == '__main__':
    main()
