"""Conveyor — recurring background job pipelines over a persisted work queue."""
