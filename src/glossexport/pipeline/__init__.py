"""Export pipeline: stage wrapper and orchestrator."""
