"""Resumable asset-generation and rendering job orchestrator."""
