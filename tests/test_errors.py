import errno
import json
from pathlib import Path

import yaml

from nucleusflow.errors import (
    ContentError,
    ContentErrorKind,
    ErrorKind,
    ProcessingError,
    ValidationError,
    format_error_chain,
)


def test_os_error_with_filename_becomes_file_operation():
    exc = OSError(errno.ENOENT, "No such file or directory", "post.md")
    err = ProcessingError.from_exception(exc)
    assert err.kind is ErrorKind.FILE_OPERATION
    assert err.path == Path("post.md")
    assert err.source is exc
    assert err.__cause__ is exc


def test_os_error_without_filename_becomes_io():
    err = ProcessingError.from_exception(OSError("disk on fire"))
    assert err.kind is ErrorKind.IO
    assert err.path is None


def test_serialization_errors():
    assert ProcessingError.from_exception(yaml.YAMLError("bad")).kind is ErrorKind.SERIALIZATION
    try:
        json.loads("{")
    except json.JSONDecodeError as exc:
        assert ProcessingError.from_exception(exc).kind is ErrorKind.SERIALIZATION


def test_validation_error_is_preserved():
    validation = ValidationError("Undefined variable", line=3, column=5, template_name="page.html")
    assert str(validation) == "page.html:3:5: Undefined variable"
    err = ProcessingError.from_exception(validation, path=Path("post.md"))
    assert err.kind is ErrorKind.TEMPLATE_PROCESSING
    assert err.validation is validation
    assert err.validation.line == 3
    assert err.path == Path("post.md")


def test_content_error_conversion():
    cause = OSError("denied")
    content = ContentError.read_error(Path("a.md"), cause)
    assert content.kind is ContentErrorKind.READ
    err = ProcessingError.from_exception(content)
    assert err.kind is ErrorKind.CONTENT_PROCESSING
    assert err.path == Path("a.md")
    assert err.source is content


def test_unknown_exception_is_internal():
    err = ProcessingError.from_exception(RuntimeError("boom"), path=Path("x.md"))
    assert err.kind is ErrorKind.INTERNAL
    assert "RuntimeError: boom" in err.details


def test_processing_error_passes_through_and_fills_path():
    original = ProcessingError.output_generation("too big")
    err = ProcessingError.from_exception(original, path=Path("x.md"))
    assert err is original
    assert err.path == Path("x.md")
    assert "(x.md)" in str(err)

    other = ProcessingError.from_exception(err, path=Path("y.md"))
    assert other.path == Path("x.md")


def test_plugin_error_names_plugin():
    err = ProcessingError.plugin("uppercase", "expects 1 argument(s), got 0")
    assert err.kind is ErrorKind.PLUGIN
    assert err.plugin_name == "uppercase"
    assert "'uppercase'" in str(err)


def test_format_error_chain():
    inner = OSError("permission denied")
    content = ContentError.write_error(Path("out.html"), inner)
    err = content.to_processing_error()
    chain = format_error_chain(err)
    parts = chain.split(" -> ")
    assert len(parts) == 3
    assert parts[0].startswith("Failed to process content")
    assert parts[-1] == "permission denied"
