"""Map and reduce task execution plus the gRPC worker server."""
