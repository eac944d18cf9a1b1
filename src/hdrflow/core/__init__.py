"""Core error types and video analysis."""
