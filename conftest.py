"""
Pytest configuration: report tests under their docstring summary.

Each test's first docstring line replaces its node id in reports, so a
failure reads "Decode rejects str input; only raw bytes are accepted."
rather than a method name.
"""


def _docstring_summary(function):
    docstring = function.__doc__
    if not docstring:
        return None
    return next(
        (line.strip() for line in docstring.strip().splitlines() if line.strip()),
        None,
    )


def pytest_collection_modifyitems(items):
    """Use docstring summaries as human-readable test names."""
    for item in items:
        summary = _docstring_summary(item.function)
        if not summary:
            continue
        if hasattr(item, "callspec"):
            # Keep the parameter id of parametrized tests
            start = item.nodeid.find("[")
            summary += item.nodeid[start:] if start != -1 else ""
        item._nodeid = summary
