"""
gRPC Utilities
Message and service definitions for coordinator-worker communication, and a
helper for creating worker stubs.

worker_pb2 and worker_pb2_grpc are compiled from worker.proto by
grpcio-tools when this module is imported.
"""

import grpc

worker_pb2, worker_pb2_grpc = grpc.protos_and_services("enroute_mr/common/worker.proto")

CHANNEL_OPTIONS = [
    ('grpc.max_send_message_length', 100 * 1024 * 1024),
    ('grpc.max_receive_message_length', 100 * 1024 * 1024),
]


class WorkerServiceStub(worker_pb2_grpc.WorkerServiceStub):
    """Generated WorkerService stub that owns its channel"""

    def __init__(self, channel: grpc.Channel):
        super().__init__(channel)
        self.channel = channel

    def close(self):
        self.channel.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def get_worker_stub(worker_host: str, timeout: float = 10) -> WorkerServiceStub:
    """
    Create a WorkerService stub for coordinator-worker communication

    Args:
        worker_host: Host address in format 'host:port' (e.g., 'worker-1:50052')
        timeout: Connection timeout in seconds (default: 10)

    Returns:
        WorkerServiceStub: stub owning its channel (close() when done)

    Raises:
        ConnectionError: If the worker is not reachable within timeout
    """
    channel = grpc.insecure_channel(worker_host, options=CHANNEL_OPTIONS)
    try:
        # Wait for channel to be ready
        grpc.channel_ready_future(channel).result(timeout=timeout)
    except grpc.FutureTimeoutError:
        channel.close()
        raise ConnectionError(f"Failed to connect to worker at {worker_host} within {timeout}s")
    return WorkerServiceStub(channel)
