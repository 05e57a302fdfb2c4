"""
Test suite for the component runner.

Test structure:
- unit/ - Unit tests (fast, isolated)
- integration/ - Whole-pipeline and CLI tests (fake transpilers, subprocesses)
- fixtures/ - Generated module sources and fake transpilers

Run tests:
    pytest                    # All tests
    pytest tests/unit         # Unit tests only
    pytest tests/integration  # Integration tests only
    pytest -k "rewriter"      # Tests matching name

The external transpiler is never needed: fixtures stand in for it.
"""
