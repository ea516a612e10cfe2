import pytest

from flowgraph.observability import clear_trace_context


@pytest.fixture(autouse=True)
def _reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()
