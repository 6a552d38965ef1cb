"""
Test suite for obs-tools task management system.

This package contains:
- Unit tests for core functionality
- Integration tests for complete workflows
- Golden tests for collectors with fixtures
- Mocked tests that work without external dependencies
"""