from pathlib import Path

import pytest

from nucleusflow.config import ConfigBuilder

DEFAULT_TEMPLATE = "<h1>{{ title }}</h1>\n{{ body }}\n"


def make_project(root: Path, template: str = DEFAULT_TEMPLATE) -> Path:
    """Create a minimal content/templates triple under ``root``."""
    (root / "content").mkdir(parents=True, exist_ok=True)
    (root / "templates").mkdir(parents=True, exist_ok=True)
    (root / "templates" / "default.html").write_text(template, encoding="utf-8")
    return root


def builder_for(root: Path) -> ConfigBuilder:
    return (
        ConfigBuilder()
        .with_override("content_dir", root / "content")
        .with_override("template_dir", root / "templates")
        .with_override("output_dir", root / "public")
        .with_override("rate_limit", 10000)
    )


@pytest.fixture
def project(tmp_path):
    return make_project(tmp_path)
