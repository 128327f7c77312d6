"""Pytest configuration for telemetry emitter tests."""
import pytest


@pytest.fixture(autouse=True)
def patch_home(tmp_path, monkeypatch):
    """Patch HOME and clear TELEMETRY_* variables for all tests.

    This keeps the default FileStorage location inside a temporary directory
    and makes EmitterConfig.from_env() independent of the caller's shell.
    """
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in (
        "TELEMETRY_COLLECTOR_URL",
        "TELEMETRY_NAMESPACE",
        "TELEMETRY_INSTANCE_ID",
        "TELEMETRY_API_VERSION",
        "TELEMETRY_ENVIRONMENT",
        "TELEMETRY_BASE64",
        "TELEMETRY_DO_NOT_TRACK",
        "TELEMETRY_DURABLE_STORAGE",
        "TELEMETRY_QUEUE_DIR",
        "TELEMETRY_PAGE_UNLOAD_TIMER_MS",
    ):
        monkeypatch.delenv(name, raising=False)
