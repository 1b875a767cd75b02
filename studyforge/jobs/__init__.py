"""Chunked generation jobs."""
