"""Shared configuration, errors, formats and RPC helpers."""
