"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.mock import MockHost
from hostconverge.adapters.registry import CollaboratorRegistry


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def example_manifest(project_root: Path) -> Path:
    """The bundled GitLab development-VM manifest."""
    return project_root / "examples" / "gitlab-vagrant" / "provision.yml"


@pytest.fixture
def host() -> MockHost:
    """An empty in-memory host."""
    return MockHost()


@pytest.fixture
def registry(host: MockHost) -> CollaboratorRegistry:
    """Mock collaborators backed by ``host``."""
    return CollaboratorRegistry.mock(host)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's HC_* settings out of the tests."""
    for name in ("HC_STATE_DIR", "HC_LOG_FILE", "HC_LOG_FILE_LEVEL", "HC_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
