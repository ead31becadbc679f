from __future__ import annotations

from collections.abc import Callable

import github_write_mcp.tools as tools
import pytest
from github_write_mcp.runtime import Runtime


@pytest.fixture
def install_runtime(monkeypatch: pytest.MonkeyPatch) -> Callable[[Runtime], Runtime]:
    """Make `tools.initialize_runtime_from_env` return the given runtime."""

    def _install(runtime: Runtime) -> Runtime:
        monkeypatch.setattr(tools, "initialize_runtime_from_env", lambda: runtime)
        return runtime

    return _install
