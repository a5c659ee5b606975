import os
from datetime import timedelta
from pathlib import Path

import pytest

from nucleusflow.config import (
    Config,
    ConfigBuilder,
    ConfigHandle,
    Profile,
    find_config_file,
)
from nucleusflow.errors import ErrorKind, ProcessingError

from conftest import builder_for


def bump_mtime(path: Path, seconds: int = 10) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime + seconds, stat.st_mtime + seconds))


def test_build_minimal_project(project):
    config = builder_for(project).build()
    assert config.content_dir == project / "content"
    assert config.profile == Profile.DEVELOPMENT
    # development overlay
    assert config.output.pretty_print is True
    assert config.output.minify is False
    assert config.template.cache_templates is False
    assert config.content.extensions == frozenset({"md", "markdown"})


def test_build_rejects_missing_content_dir(tmp_path):
    (tmp_path / "templates").mkdir()
    builder = (
        ConfigBuilder()
        .with_override("content_dir", tmp_path / "missing")
        .with_override("template_dir", tmp_path / "templates")
        .with_override("output_dir", tmp_path / "public")
    )
    with pytest.raises(ProcessingError) as excinfo:
        builder.build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert "content directory does not exist" in str(excinfo.value)


def test_build_rejects_missing_template_dir(tmp_path):
    (tmp_path / "content").mkdir()
    builder = ConfigBuilder().with_override("content_dir", tmp_path / "content").with_override(
        "template_dir", tmp_path / "nope"
    )
    with pytest.raises(ProcessingError) as excinfo:
        builder.build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION


@pytest.mark.parametrize(
    "key,value",
    [
        ("max_cache_size", 0),
        ("max_concurrent_ops", -1),
        ("rate_limit", 0),
        ("content.max_content_size", 0),
        ("template.cache_ttl", 0),
    ],
)
def test_build_rejects_non_positive_limits(project, key, value):
    with pytest.raises(ProcessingError) as excinfo:
        builder_for(project).with_override(key, value).build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert key in str(excinfo.value)


def test_build_rejects_bad_values(project):
    with pytest.raises(ProcessingError) as excinfo:
        builder_for(project).with_override("content.sanitize", "maybe").build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION

    with pytest.raises(ProcessingError):
        builder_for(project).with_override("content.toc_max_level", 9).build()

    with pytest.raises(ProcessingError):
        builder_for(project).with_override("bogus.key", 1).build()


def test_unknown_profile_rejected(project):
    with pytest.raises(ProcessingError) as excinfo:
        builder_for(project).with_profile("preview").build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert "unknown profile" in str(excinfo.value)


def test_undefined_custom_profile_instance_rejected(project):
    with pytest.raises(ProcessingError) as excinfo:
        builder_for(project).with_profile(Profile.custom("nope")).build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert "unknown profile 'custom:nope'" in str(excinfo.value)


def test_production_overlay_and_explicit_override(project):
    config = builder_for(project).with_profile("production").build()
    assert config.profile == Profile.PRODUCTION
    assert config.output.minify is True
    assert config.template.strict_mode is True

    config = (
        builder_for(project)
        .with_profile(Profile.PRODUCTION)
        .with_override("output.minify", False)
        .build()
    )
    assert config.output.minify is False
    assert config.template.strict_mode is True


def test_config_file_yaml(project):
    config_file = project / "nucleusflow.yaml"
    config_file.write_text(
        "content_dir: content\n"
        "template_dir: templates\n"
        "output_dir: public\n"
        "profile: staging\n"
        "site_name: Demo\n"
        "content:\n"
        "  toc: true\n"
        "  allowed_html_tags: [p, a]\n"
        "  smart_quotes: true\n"
        "template:\n"
        "  cache_ttl: 30s\n"
        "custom:\n"
        "  analytics: off\n",
        encoding="utf-8",
    )
    config = ConfigBuilder().with_file(config_file).build()
    assert config.content_dir == project / "content"
    assert config.profile == Profile.STAGING
    assert config.output.minify is True
    assert config.content.toc is True
    assert config.content.allowed_html_tags == frozenset({"p", "a"})
    assert config.content.options == {"smart_quotes": True}
    assert config.template.cache_ttl == timedelta(seconds=30)
    assert config.custom["site_name"] == "Demo"
    assert config.custom["analytics"] is False
    assert config.source_path == config_file
    assert config.source_mtime is not None


def test_config_file_toml(project):
    config_file = project / "nucleusflow.toml"
    config_file.write_text(
        'content_dir = "content"\n'
        'template_dir = "templates"\n'
        'output_dir = "public"\n'
        "max_concurrent_ops = 2\n"
        "[output]\n"
        "pretty_print = false\n"
        "indent_size = 4\n",
        encoding="utf-8",
    )
    config = ConfigBuilder().with_file(config_file).build()
    assert config.max_concurrent_ops == 2
    assert config.output.pretty_print is False
    assert config.output.options == {"indent_size": 4}


def test_config_file_custom_profile(project):
    config_file = project / "nucleusflow.yaml"
    config_file.write_text(
        "content_dir: content\n"
        "template_dir: templates\n"
        "profile: preview\n"
        "profiles:\n"
        "  preview:\n"
        "    output:\n"
        "      minify: true\n"
        "    template.strict_mode: true\n",
        encoding="utf-8",
    )
    config = ConfigBuilder().with_file(config_file).build()
    assert config.profile == Profile.custom("preview")
    assert str(config.profile) == "custom:preview"
    assert config.output.minify is True
    assert config.template.strict_mode is True


def test_custom_profile_paths_resolve_against_config_file(project, monkeypatch, tmp_path_factory):
    (project / "drafts").mkdir()
    config_file = project / "nucleusflow.yaml"
    config_file.write_text(
        "template_dir: templates\n"
        "profile: preview\n"
        "profiles:\n"
        "  preview:\n"
        "    content_dir: drafts\n"
        "    output_dir: preview-site\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path_factory.mktemp("elsewhere"))
    config = ConfigBuilder().with_file(config_file).build()
    assert config.content_dir == project / "drafts"
    assert config.output_dir == project / "preview-site"


def test_config_file_parse_error_is_serialization(project):
    config_file = project / "nucleusflow.yaml"
    config_file.write_text("content_dir: [unclosed\n", encoding="utf-8")
    with pytest.raises(ProcessingError) as excinfo:
        ConfigBuilder().with_file(config_file).build()
    assert excinfo.value.kind is ErrorKind.SERIALIZATION


def test_config_file_size_limit(project):
    config_file = project / "nucleusflow.yaml"
    config_file.write_text("content_dir: content\n" + "# padding\n" * 50, encoding="utf-8")
    with pytest.raises(ProcessingError) as excinfo:
        ConfigBuilder().with_file(config_file).with_max_file_size(64).build()
    assert excinfo.value.kind is ErrorKind.CONFIGURATION


def test_env_overrides(project, monkeypatch):
    monkeypatch.setenv("NUCLEUS_CONTENT__SANITIZE", "false")
    monkeypatch.setenv("NUCLEUS_MAX_CACHE_SIZE", "12")
    monkeypatch.setenv("NUCLEUS_TEMPLATE__STRICT_MODE", "yes")
    config = builder_for(project).with_env_prefix("NUCLEUS").build()
    assert config.content.sanitize is False
    assert config.max_cache_size == 12
    assert config.template.strict_mode is True


def test_explicit_override_beats_env(project, monkeypatch):
    monkeypatch.setenv("NUCLEUS_MAX_CACHE_SIZE", "12")
    config = builder_for(project).with_env_prefix("NUCLEUS").with_override("max_cache_size", 99).build()
    assert config.max_cache_size == 99


def test_builder_is_immutable(project):
    base = builder_for(project)
    prod = base.with_profile("production")
    assert base.profile is None
    assert prod.profile == "production"


def test_get_and_set_custom(project):
    config = builder_for(project).with_override("custom.retries", "3").build()
    assert config.get_custom("retries", int) == 3
    assert config.get_custom("missing", default="x") == "x"

    updated = config.set_custom("flag", True)
    assert updated.get_custom("flag", bool) is True
    assert "flag" not in config.custom

    with pytest.raises(ProcessingError) as excinfo:
        config.set_custom("bad", "x").get_custom("bad", int)
    assert excinfo.value.kind is ErrorKind.CONFIGURATION

    with pytest.raises(ProcessingError):
        config.set_custom("obj", object())


def test_to_dict_round_trip(project):
    config = builder_for(project).build()
    data = config.to_dict()
    assert data["profile"] == "development"
    assert data["file_permissions"] == "644"
    assert data["content"]["extensions"] == ["markdown", "md"]
    assert data["template"]["cache_ttl"] == 300


def test_profile_parse():
    assert Profile.parse("PRODUCTION") == Profile.PRODUCTION
    assert Profile.parse("custom:beta", {"beta"}) == Profile.custom("beta")
    with pytest.raises(ValueError):
        Profile.parse("beta")


def test_find_config_file(tmp_path):
    assert find_config_file(tmp_path) is None
    (tmp_path / "nucleusflow.toml").write_text("", encoding="utf-8")
    assert find_config_file(tmp_path) == tmp_path / "nucleusflow.toml"


def write_config(project: Path, template: str = "default") -> Path:
    config_file = project / "nucleusflow.yaml"
    config_file.write_text(
        "content_dir: content\n"
        "template_dir: templates\n"
        "output_dir: public\n"
        f"template:\n  default_template: {template}\n",
        encoding="utf-8",
    )
    return config_file


def test_needs_reload_tracks_mtime(project):
    config_file = write_config(project)
    config = ConfigBuilder().with_file(config_file).build()
    assert config.needs_reload() is False
    bump_mtime(config_file)
    assert config.needs_reload() is True
    assert Config().needs_reload() is False


def test_handle_reload_if_needed(project):
    config_file = write_config(project)
    handle = ConfigBuilder().with_file(config_file).with_auto_reload().build_shared()
    assert handle.reload_if_needed(force=True) is False

    write_config(project, template="post")
    bump_mtime(config_file)
    assert handle.needs_reload() is True
    assert handle.reload_if_needed(force=True) is True
    assert handle.current.template.default_template == "post"
    assert handle.reload_if_needed(force=True) is False


def test_handle_reload_failure_keeps_previous(project):
    config_file = write_config(project)
    handle = ConfigBuilder().with_file(config_file).build_shared()
    config_file.write_text("content_dir: missing\n", encoding="utf-8")
    bump_mtime(config_file)
    with pytest.raises(ProcessingError) as excinfo:
        handle.reload_if_needed(force=True)
    assert excinfo.value.kind is ErrorKind.CONFIGURATION
    assert handle.current.content_dir == project / "content"


def test_handle_respects_auto_reload_and_interval(project):
    config_file = write_config(project)
    now = [100.0]
    builder = ConfigBuilder().with_file(config_file)

    manual = ConfigHandle(builder.build(), builder, clock=lambda: now[0])
    bump_mtime(config_file)
    assert manual.reload_if_needed() is False

    auto_builder = builder.with_auto_reload().with_reload_interval("5s")
    write_config(project, template="post")
    handle = ConfigHandle(auto_builder.build(), auto_builder, clock=lambda: now[0])
    write_config(project, template="page")
    bump_mtime(config_file, 20)
    now[0] = 102.0
    assert handle.reload_if_needed() is False
    now[0] = 106.0
    assert handle.reload_if_needed() is True
    assert handle.current.template.default_template == "page"


def test_handle_swap_validates(project, tmp_path):
    handle = builder_for(project).build_shared()
    with pytest.raises(ProcessingError):
        handle.swap(Config(content_dir=tmp_path / "nope"))
    with handle.read() as config:
        assert config.content_dir == project / "content"
