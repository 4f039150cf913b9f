"""Tests for buildpack detection and Dockerfile rendering."""

import pytest

from cli.core.buildpacks import (
    BUILDPACKS,
    detect,
    get_buildpack,
    has_custom_build_file,
)
from cli.core.exceptions import BuildError


@pytest.mark.parametrize(
    "files, expected",
    [
        (["package.json", "index.js"], "nodejs"),
        (["requirements.txt", "app.py"], "python"),
        (["pyproject.toml"], "python"),
        (["go.mod", "main.go"], "go"),
        (["Gemfile", "config.ru"], "ruby"),
        (["Cargo.toml", "src"], "rust"),
        (["pom.xml"], "java"),
        (["build.gradle.kts"], "java"),
        (["composer.json"], "php"),
        (["index.php"], "php"),
        (["mix.exs"], "elixir"),
        (["index.html", "style.css"], "static"),
    ],
)
def test_detect(files, expected):
    bp = detect(files)
    assert bp is not None
    assert bp.name == expected


def test_detection_order_prefers_earlier_buildpack():
    # A node app that also ships an index.html is still node.
    assert detect(["index.html", "package.json"]).name == "nodejs"
    assert detect(["requirements.txt", "go.mod"]).name == "python"


def test_no_match():
    assert detect(["README.md", "LICENSE"]) is None
    assert detect([]) is None


def test_registry_order():
    assert [bp.name for bp in BUILDPACKS] == [
        "nodejs", "python", "go", "ruby", "rust", "java", "php", "elixir", "static",
    ]


def test_custom_build_file_is_not_a_buildpack():
    assert has_custom_build_file(["Dockerfile", "package.json"])
    assert not has_custom_build_file(["dockerfile.txt"])
    assert detect(["Dockerfile"]) is None


@pytest.mark.parametrize(
    "name, port",
    [
        ("nodejs", 3000),
        ("python", 8000),
        ("go", 8080),
        ("ruby", 3000),
        ("rust", 8080),
        ("java", 8080),
        ("elixir", 4000),
    ],
)
def test_default_exposed_port(name, port):
    assert f"EXPOSE {port}\n" in get_buildpack(name).render({})


def test_port_from_env_vars():
    rendered = get_buildpack("nodejs").render({"PORT": "5050", "OTHER": "x"})
    assert "EXPOSE 5050\n" in rendered
    assert "EXPOSE 3000" not in rendered


@pytest.mark.parametrize("port", ["", "  "])
def test_blank_port_falls_back_to_default(port):
    rendered = get_buildpack("nodejs").render({"PORT": port})
    assert "EXPOSE 3000\n" in rendered
    assert "EXPOSE \n" not in rendered


def test_port_whitespace_is_trimmed():
    assert "EXPOSE 5050\n" in get_buildpack("go").render({"PORT": " 5050 "})


@pytest.mark.parametrize("port", ["3000\nRUN rm -rf /", "abc", "0", "70000", "-1"])
def test_non_numeric_port_is_rejected(port):
    with pytest.raises(BuildError, match="PORT must be a port number"):
        get_buildpack("python").render({"PORT": port})


def test_other_env_values_are_not_written():
    rendered = get_buildpack("nodejs").render({"SECRET": "x\nRUN curl evil"})
    assert "evil" not in rendered


@pytest.mark.parametrize("name", ["php", "static"])
def test_web_server_buildpacks_serve_on_80(name):
    assert "EXPOSE 80\n" in get_buildpack(name).render({"PORT": "9999"})


def test_render_is_pure():
    bp = get_buildpack("python")
    assert bp.render({"PORT": "8001"}) == bp.render({"PORT": "8001"})
    assert bp.render() == bp.render({})


def test_static_template():
    rendered = get_buildpack("static").render({})
    assert rendered.startswith("FROM nginx:alpine\n")
    assert "COPY . /usr/share/nginx/html" in rendered


def test_get_unknown_buildpack():
    assert get_buildpack("cobol") is None
