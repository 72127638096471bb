"""Tests for the Jinja2 template engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from ghostctl.templates import TemplateEngine

UNIT_CONTEXT = {
    "name": "blog-example-com",
    "directory": "/var/www/blog",
    "user": "ghost",
    "environment": "production",
    "exec_start": "/usr/local/bin/ghostctl run",
}


def test_builtin_systemd_template_renders() -> None:
    """The packaged unit template renders every field."""
    engine = TemplateEngine.with_overrides(None)

    rendered = engine.render_to_string("systemd/ghost.service.j2", UNIT_CONTEXT)

    assert "Description=Ghost systemd service for blog: blog-example-com" in rendered
    assert "WorkingDirectory=/var/www/blog" in rendered
    assert "User=ghost" in rendered
    assert 'Environment="NODE_ENV=production"' in rendered
    assert "ExecStart=/usr/local/bin/ghostctl run" in rendered


def test_builtin_nginx_template_renders() -> None:
    """The packaged site template proxies to the configured upstream."""
    engine = TemplateEngine.with_overrides(None)

    rendered = engine.render_to_string(
        "nginx/site.conf.j2",
        {
            "server_name": "blog.example.com",
            "webroot": "/var/www/blog/system/nginx-root",
            "location": "/",
            "upstream_host": "127.0.0.1",
            "upstream_port": 2368,
        },
    )

    assert "server_name blog.example.com;" in rendered
    assert "proxy_pass http://127.0.0.1:2368;" in rendered


def test_missing_variable_is_an_error() -> None:
    """Templates use strict undefined handling."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("systemd/ghost.service.j2", {"name": "blog"})


def test_override_directory_shadows_builtin(tmp_path: Path) -> None:
    """Templates in the override directory win over the packaged ones."""
    override = tmp_path / "templates" / "systemd"
    override.mkdir(parents=True)
    (override / "ghost.service.j2").write_text("custom {{ name }}\n")

    engine = TemplateEngine.with_overrides(tmp_path / "templates")

    assert engine.render_to_string("systemd/ghost.service.j2", {"name": "x"}) == "custom x\n"
    params = engine.render_to_string(
        "nginx/ssl-params.conf.j2", {"dhparam": "/etc/nginx/snippets/dhparam.pem"}
    )
    assert "ssl_dhparam /etc/nginx/snippets/dhparam.pem;" in params


def test_missing_override_directory_falls_back(tmp_path: Path) -> None:
    """A configured but absent override directory is ignored."""
    engine = TemplateEngine.with_overrides(tmp_path / "does-not-exist")

    rendered = engine.render_to_string("systemd/ghost.service.j2", UNIT_CONTEXT)

    assert "User=ghost" in rendered


def test_render_to_path_reports_changes(tmp_path: Path) -> None:
    """Writing identical content a second time is a no-op."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "out" / "ghost_blog.service"

    assert engine.render_to_path("systemd/ghost.service.j2", destination, UNIT_CONTEXT) is True
    assert engine.render_to_path("systemd/ghost.service.j2", destination, UNIT_CONTEXT) is False
    assert destination.stat().st_mode & 0o777 == 0o644
    assert "WorkingDirectory=/var/www/blog" in destination.read_text()
