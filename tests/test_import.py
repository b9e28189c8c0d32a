"""
Unit tests for Chhaya package import.

These tests verify that:
1. The package can be imported without errors
2. The package exposes version metadata and its public entry points

"""

# ──────────────────────────────────────────────────────────────
# Tests
# ──────────────────────────────────────────────────────────────

def test_import_and_version():
    """Ensure the package loads and __version__ attribute exists."""
    import chhaya
    assert hasattr(chhaya, "__version__")
    assert isinstance(chhaya.__version__, str)


def test_public_api():
    import chhaya
    for name in ("CellTable", "ProjectionRequest", "MemoryPool", "projection", "project", "ProjectionConfigError"):
        assert hasattr(chhaya, name)
