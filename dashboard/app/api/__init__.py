"""API endpoints package for the dashboard."""
