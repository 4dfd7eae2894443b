"""Persistence layer: engine, models, repositories."""
