"""Workload-analysis prompts and request builders for the dashboard."""
