"""Shared helpers: delegate invocation, metadata, paths and logging."""
