"""Standalone scheduled jobs."""
