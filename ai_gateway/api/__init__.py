"""FastAPI application for the AI Gateway."""
