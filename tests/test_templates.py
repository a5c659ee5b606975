import os
from datetime import date

import pytest

from nucleusflow.config import TemplateConfig
from nucleusflow.errors import ErrorKind, ProcessingError
from nucleusflow.models import ProcessingOptions
from nucleusflow.templates import JinjaRenderer


@pytest.fixture
def template_dir(tmp_path):
    path = tmp_path / "templates"
    path.mkdir()
    return path


def write(template_dir, name, text):
    target = template_dir / name
    target.write_text(text, encoding="utf-8")
    return target


def test_render_named_template(template_dir):
    write(template_dir, "page.html", "<h1>{{ title }}</h1>{{ body }}")
    renderer = JinjaRenderer(template_dir)
    html = renderer.render("page", {"title": "A & B", "body": "<p>raw</p>"})
    # plain strings are escaped, Markup bodies come from the content stage
    assert html == "<h1>A &amp; B</h1>&lt;p&gt;raw&lt;/p&gt;"


def test_template_suffix_lookup(template_dir):
    write(template_dir, "post.jinja", "post")
    write(template_dir, "legacy.hbs", "legacy")
    renderer = JinjaRenderer(template_dir)
    assert renderer.render("post", {}) == "post"
    assert renderer.render("legacy", {}) == "legacy"
    assert renderer.render("post.jinja", {}) == "post"


def test_strict_mode_reports_undefined_location(template_dir):
    write(template_dir, "page.html", "line1\n<p>{{ missing }}</p>")
    renderer = JinjaRenderer(template_dir, TemplateConfig(strict_mode=True))
    with pytest.raises(ProcessingError) as excinfo:
        renderer.render("page", {})
    err = excinfo.value
    assert err.kind is ErrorKind.TEMPLATE_PROCESSING
    assert err.validation is not None
    assert err.validation.line == 2
    assert err.validation.column == 7
    assert err.validation.template_name == "page.html"
    assert "missing" in err.validation.details


def test_strict_mode_in_render_string():
    renderer = JinjaRenderer(".", TemplateConfig(strict_mode=True))
    with pytest.raises(ProcessingError) as excinfo:
        renderer.render_string("line1\n<p>{{ missing }}</p>", {})
    assert excinfo.value.validation.line == 2
    assert excinfo.value.validation.column == 7


def test_lenient_mode_renders_empty(template_dir):
    write(template_dir, "page.html", "<p>{{ missing }}</p><p>{{ missing.deeper }}</p>")
    renderer = JinjaRenderer(template_dir)
    assert renderer.render("page", {}) == "<p></p><p></p>"


def test_options_override_strictness(template_dir):
    write(template_dir, "page.html", "<p>{{ missing }}</p>")
    renderer = JinjaRenderer(template_dir)
    with pytest.raises(ProcessingError):
        renderer.render("page", {}, ProcessingOptions(strict_mode=True))
    assert renderer.render("page", {}, ProcessingOptions(strict_mode=False)) == "<p></p>"


def test_bundled_helpers_as_functions_and_filters():
    renderer = JinjaRenderer(".")
    assert renderer.helpers == ["date_format", "slugify", "uppercase"]
    html = renderer.render_string(
        "{{ uppercase(title) }}|{{ title | slugify }}|{{ date_format(day, '%d %b %Y') }}|{{ date_format(day) }}",
        {"title": "Hello World", "day": date(2024, 1, 15)},
    )
    assert html == "HELLO WORLD|hello-world|15 Jan 2024|2024-01-15"


def test_helper_failure_is_plugin_error():
    renderer = JinjaRenderer(".")
    with pytest.raises(ProcessingError) as excinfo:
        renderer.render_string("{{ uppercase() }}", {})
    assert excinfo.value.kind is ErrorKind.PLUGIN
    assert excinfo.value.plugin_name == "uppercase"

    with pytest.raises(ProcessingError) as excinfo:
        renderer.render_string("{{ date_format(3) }}", {})
    assert excinfo.value.plugin_name == "date_format"


def test_custom_helper_sees_context():
    class SiteLink:
        name = "site_link"

        def execute(self, args, context):
            return f"{context['base']}/{args[0]}"

    renderer = JinjaRenderer(".").with_helper("site_link", SiteLink())
    assert renderer.render_string("{{ site_link('about') }}", {"base": "/docs"}) == "/docs/about"
    assert "site_link" in renderer.helpers


def test_partials(template_dir):
    write(template_dir, "page.html", "<main>{{ body }}</main>{% include 'footer' %}")
    renderer = JinjaRenderer(template_dir).with_partial("footer", "<footer>{{ title }}</footer>")
    assert renderer.partials == ["footer"]
    assert renderer.render("page", {"title": "T", "body": "b"}) == "<main>b</main><footer>T</footer>"


def test_partial_syntax_error_rejected():
    with pytest.raises(ProcessingError) as excinfo:
        JinjaRenderer(".").with_partial("broken", "{% if %}")
    assert excinfo.value.kind is ErrorKind.TEMPLATE_PROCESSING


def test_syntax_error_carries_line(template_dir):
    write(template_dir, "page.html", "ok\n{{ a b }}\n")
    with pytest.raises(ProcessingError) as excinfo:
        JinjaRenderer(template_dir).render("page", {})
    assert excinfo.value.kind is ErrorKind.TEMPLATE_PROCESSING
    assert excinfo.value.validation.line == 2


def test_missing_template(template_dir):
    with pytest.raises(ProcessingError) as excinfo:
        JinjaRenderer(template_dir).render("nope", {})
    assert excinfo.value.kind is ErrorKind.TEMPLATE_PROCESSING
    assert "Template not found" in str(excinfo.value)


def test_template_cache_and_disk_changes(template_dir):
    target = write(template_dir, "page.html", "v1")
    renderer = JinjaRenderer(template_dir, TemplateConfig(cache_templates=True))
    assert renderer.render("page", {}) == "v1"
    assert renderer.cached_templates() == [("page", False)]

    target.write_text("v2", encoding="utf-8")
    stat = target.stat()
    os.utime(target, (stat.st_atime + 10, stat.st_mtime + 10))
    assert renderer.render("page", {}) == "v2"

    renderer.clear_cache()
    assert renderer.cached_templates() == []


def test_cache_disabled(template_dir):
    write(template_dir, "page.html", "x")
    renderer = JinjaRenderer(template_dir, TemplateConfig(cache_templates=False))
    renderer.render("page", {})
    assert renderer.cached_templates() == []

    cached = JinjaRenderer(template_dir, TemplateConfig(cache_templates=True))
    cached.render("page", {}, ProcessingOptions(cache_enabled=False))
    assert cached.cached_templates() == []
