"""Scheduler health monitoring — models, persistence, state engine, and orchestration."""
