import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--stress-test",
        action="store_true",
        default=False,
        help="Run stress tests (slow randomized rule compilation checks).",
    )
    parser.addoption(
        "--stress-rules",
        type=int,
        default=25,
        help="Random rule count for compiler stress tests.",
    )
    parser.addoption(
        "--stress-words",
        type=int,
        default=100,
        help="Random word count for compiler stress tests.",
    )
    parser.addoption(
        "--stress-max-len",
        type=int,
        default=8,
        help="Max word length for compiler stress tests.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "stress: long-running randomized rule compilation tests",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--stress-test"):
        return
    skip_stress = pytest.mark.skip(
        reason="use --stress-test to run stress tests"
    )
    for item in items:
        if "stress" in item.keywords:
            item.add_marker(skip_stress)
