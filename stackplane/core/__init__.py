"""Core — models, services, persistence; no CLI or UI concerns."""
