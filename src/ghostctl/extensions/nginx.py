"""Nginx extension: reverse proxy and Let's Encrypt TLS through acme.sh."""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import ParseResult, urlparse

from .. import shell
from ..errors import ProcessError, SystemRequirementError
from ..extension import Extension
from ..instance import Instance
from ..providers.nginx import NginxProvider
from ..tasks.migrations import Migration
from ..tasks.models import RunContext, Step, TaskHandle
from ..tls import reusable_certificate

if TYPE_CHECKING:
    from ..system import System

LOGGER = logging.getLogger(__name__)

ACME_ALREADY_ISSUED = 2
DH_PARAM_BITS = "2048"


def provider_for(system: System) -> NginxProvider:
    """Build a provider from the ``nginx`` settings of *system*."""
    settings = system.settings.nginx
    return NginxProvider(
        sites_available=settings.sites_available,
        sites_enabled=settings.sites_enabled,
        snippets_dir=settings.snippets_dir,
        nginx_bin=settings.nginx_bin,
    )


def _parsed_url(instance: Instance) -> ParseResult:
    return urlparse(str(instance.config.get("url", "")))


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


async def domain_resolves(host: str) -> bool:
    """Return True when *host* has at least one DNS record."""
    loop = asyncio.get_running_loop()
    try:
        await loop.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError):
        return False
    return True


class NginxExtension(Extension):
    """Contributes the ``nginx`` and ``ssl`` steps."""

    extension_id = "nginx"

    @property
    def provider(self) -> NginxProvider:
        """Return the nginx wrapper."""
        return provider_for(self.system)

    def setup(self) -> Sequence[Step]:
        """Return the ``nginx`` and ``ssl`` steps."""
        return [
            Step(
                id="nginx",
                name="Nginx",
                task=self._setup_nginx,
                enabled=self._enabled,
                skip=self._skip_nginx,
                optional=True,
            ),
            Step(
                id="ssl",
                name="SSL",
                task=self._setup_ssl,
                enabled=self._enabled,
                skip=self._skip_ssl,
                optional=True,
                depends_on=("nginx",),
            ),
        ]

    def migrations(self) -> Sequence[Migration]:
        """Restore the shared ssl-params snippet for instances with SSL."""
        return [
            Migration(
                title="Adding nginx ssl-params snippet",
                task=self._restore_ssl_params,
                before="1.0.0",
                skip=self._skip_ssl_params,
            )
        ]

    # nginx -------------------------------------------------------------
    def _enabled(self, ctx: RunContext) -> bool:
        return not ctx.local

    async def _skip_nginx(self, ctx: RunContext) -> bool | str:
        if not self.provider.is_installed():
            return "Nginx is not installed"
        parsed = _parsed_url(ctx.instance)
        if parsed.port:
            return "Your url contains a port"
        if self.provider.site_exists(parsed.hostname or ""):
            return "Nginx configuration already found for this url"
        return False

    def _site_context(self, instance: Instance, parsed: ParseResult) -> dict[str, object]:
        config = instance.config
        return {
            "server_name": parsed.hostname,
            "webroot": str(self._webroot(instance)),
            "location": parsed.path or "/",
            "upstream_host": config.get("server.host", "127.0.0.1"),
            "upstream_port": config.get("server.port", 2368),
        }

    def _webroot(self, instance: Instance) -> Path:
        return instance.dir / "system" / "nginx-root"

    async def _setup_nginx(self, ctx: RunContext, handle: TaskHandle) -> None:
        instance = ctx.instance
        parsed = _parsed_url(instance)
        host = parsed.hostname or ""
        self._webroot(instance).mkdir(parents=True, exist_ok=True)
        contents = self.system.templates.render_to_string(
            "nginx/site.conf.j2", self._site_context(instance, parsed)
        )
        provider = self.provider
        await self.template(
            instance, contents, "nginx config", provider.site_name(host), provider.sites_available
        )
        await provider.activate(host)

    # ssl ---------------------------------------------------------------
    async def _skip_ssl(self, ctx: RunContext) -> bool | str:
        parsed = _parsed_url(ctx.instance)
        host = parsed.hostname or ""
        if parsed.scheme != "https":
            return "Your url is not https"
        if parsed.port:
            return "Your url contains a port"
        if _is_ip_address(host):
            return "SSL certs cannot be generated for IP addresses"
        if self.provider.site_exists(host, ssl=True):
            return "SSL has already been set up"
        if not self.provider.site_exists(host):
            return "Nginx config file does not exist"
        return False

    async def _setup_ssl(self, ctx: RunContext, handle: TaskHandle) -> None:
        instance = ctx.instance
        parsed = _parsed_url(instance)
        host = parsed.hostname or ""

        email = ctx.argv.get("sslemail")
        if not email and ctx.ui.allow_prompt:
            email = ctx.ui.prompt("Enter your email (for SSL certificate)", default="")
        if not email:
            handle.skip("SSL email must be provided via the --sslemail option")
        if not await domain_resolves(host):
            handle.skip("Your domain isn't set up correctly; set up DNS records and try again")

        acme = self.system.settings.acme
        if not acme.bin.exists():
            raise SystemRequirementError(
                f"acme.sh was not found at {acme.bin}.",
                help=(
                    "Install acme.sh into the configured acme home "
                    "and run `ghostctl setup ssl` again."
                ),
            )

        fullchain = acme.home / host / "fullchain.cer"
        privkey = acme.home / host / f"{host}.key"
        if reusable_certificate(fullchain, host) is None:
            await self._issue_certificate(host, str(email), self._webroot(instance))
        else:
            ctx.ui.log_verbose(f"Reusing the existing certificate for {host}.")

        provider = self.provider
        ssl_params = provider.snippets_dir / "ssl-params.conf"
        await self._ensure_dhparam(provider)
        if not ssl_params.exists():
            await self._write_ssl_params(instance, provider)

        context = self._site_context(instance, parsed)
        context.update(
            {"fullchain": str(fullchain), "privkey": str(privkey), "ssl_params": str(ssl_params)}
        )
        contents = self.system.templates.render_to_string("nginx/site-ssl.conf.j2", context)
        await self.template(
            instance,
            contents,
            "ssl config",
            provider.site_name(host, ssl=True),
            provider.sites_available,
        )
        await provider.activate(host, ssl=True)

    async def _issue_certificate(self, host: str, email: str, webroot: Path) -> None:
        acme = self.system.settings.acme
        result = await shell.run(
            [
                str(acme.bin),
                "--issue",
                "--home",
                str(acme.home),
                "--domain",
                host,
                "--webroot",
                str(webroot),
                "--reloadcmd",
                f"{self.system.settings.nginx.nginx_bin} -s reload",
                "--accountemail",
                email,
            ],
            elevated=True,
            check=False,
        )
        if result.returncode in (0, ACME_ALREADY_ISSUED):
            return
        output = f"{result.stdout}\n{result.stderr}"
        if "Verify error" in output:
            raise SystemRequirementError(
                "Your domain name is not pointing to the correct IP address of your server.",
                help="Update the DNS records and run `ghostctl setup ssl` again.",
            )
        raise shell.command_error(result)

    def _dhparam_path(self, provider: NginxProvider) -> Path:
        return provider.snippets_dir / "dhparam.pem"

    async def _ensure_dhparam(self, provider: NginxProvider) -> None:
        dhparam = self._dhparam_path(provider)
        if dhparam.exists():
            return
        await shell.run(
            ["openssl", "dhparam", "-dsaparam", "-out", str(dhparam), DH_PARAM_BITS],
            elevated=True,
        )

    async def _write_ssl_params(self, instance: Instance, provider: NginxProvider) -> None:
        contents = self.system.templates.render_to_string(
            "nginx/ssl-params.conf.j2", {"dhparam": str(self._dhparam_path(provider))}
        )
        await self.template(
            instance, contents, "ssl parameters", "ssl-params.conf", provider.snippets_dir
        )

    # migration ---------------------------------------------------------
    async def _skip_ssl_params(self, ctx: RunContext) -> bool | str:
        host = _parsed_url(ctx.instance).hostname or ""
        provider = self.provider
        if not provider.site_exists(host, ssl=True):
            return "SSL is not set up"
        if (provider.snippets_dir / "ssl-params.conf").exists():
            return "ssl-params snippet already present"
        return False

    async def _restore_ssl_params(self, ctx: RunContext, handle: TaskHandle) -> None:
        provider = self.provider
        await self._ensure_dhparam(provider)
        await self._write_ssl_params(ctx.instance, provider)
        await provider.reload()

    # uninstall ---------------------------------------------------------
    async def uninstall(self, instance: Instance) -> None:
        """Remove the instance's sites and certificate, then reload nginx."""
        host = _parsed_url(instance).hostname
        if not host:
            return
        provider = self.provider
        removed = False
        for ssl in (False, True):
            enabled = provider.enabled_path(host, ssl=ssl)
            if provider.site_exists(host, ssl=ssl) or enabled.is_symlink():
                await provider.remove(host, ssl=ssl)
                removed = True
        acme = self.system.settings.acme
        if acme.bin.exists() and (acme.home / host).exists():
            try:
                await shell.run(
                    [str(acme.bin), "--remove", "--home", str(acme.home), "--domain", host],
                    elevated=True,
                )
            except ProcessError as exc:
                self.ui.log(f"Could not remove the certificate for {host}: {exc.message}", "yellow")
        if removed and provider.is_installed():
            await provider.reload()


__all__ = ["NginxExtension", "domain_resolves"]
