"""Integration tests for souschef.

These tests require a running JanusGraph server with ConfiguredGraphFactory
and the HTTP script endpoint enabled.

Run with: JANUSGRAPH_URL=http://localhost:8182 pytest tests/integration/ -v -m integration
Skip with: pytest -m "not integration"
"""
