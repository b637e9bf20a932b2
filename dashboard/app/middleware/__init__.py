"""Middleware package for the dashboard."""
