"""
TLS certificate provisioning.

Handles:
- Domain collection and root-domain reduction
- Standard (SAN) and wildcard (Cloudflare DNS-01) strategies
- Driving the acme.sh client
- Pointing the panel environment at the installed certificate
"""

from pathlib import Path
from dataclasses import dataclass
from typing import Optional, Dict, List
from enum import Enum
import logging

import requests

from .config import AppContext, ACME_INSTALL_URL, HTTP_TIMEOUT, PANEL_PORT
from .envfile import EnvFile
from .errors import Attempt, CertificateError, CommandError, attempt
from .haproxy import configure_haproxy
from .system import PackageInstaller
from . import console, system

logger = logging.getLogger(__name__)

# acme.sh exit status for "certificate still valid, renewal skipped"
ACME_SKIPPED = 2


class CertStrategy(Enum):
    """How the certificate covers the requested domains."""
    STANDARD = "standard"
    WILDCARD = "wildcard"


class SSLState(Enum):
    """Progress of one provisioning run."""
    NEEDS_DOMAINS = "needs_domains"
    NEEDS_STRATEGY = "needs_strategy"
    STANDARD = "standard"
    WILDCARD = "wildcard"
    ISSUED = "issued"
    INSTALLED = "installed"
    CONFIGURED = "configured"


class DomainSet:
    """Ordered hostnames; the first one is the primary domain."""

    def __init__(self, domains: List[str]):
        self.domains = [d.strip() for d in domains if d and d.strip()]
        if not self.domains:
            raise ValueError("Domain cannot be empty.")

    @classmethod
    def parse(cls, text: str) -> "DomainSet":
        return cls(text.split(","))

    @property
    def primary(self) -> str:
        return self.domains[0]

    def __iter__(self):
        return iter(self.domains)

    def __len__(self) -> int:
        return len(self.domains)

    @staticmethod
    def root_domain(domain: str) -> str:
        """
        Last two dot-separated labels of ``domain``.

        Multi-label public suffixes such as ``co.uk`` are not recognised:
        ``foo.example.co.uk`` reduces to ``co.uk``.
        """
        return ".".join(domain.split(".")[-2:])

    def root_domains(self) -> List[str]:
        """Unique root domains in first-seen order."""
        roots = []
        for domain in self.domains:
            root = self.root_domain(domain)
            if root not in roots:
                roots.append(root)
        return roots

    def wildcard_names(self) -> List[str]:
        """``*.root`` and ``root`` for every unique root domain."""
        names = []
        for root in self.root_domains():
            names.extend([f"*.{root}", root])
        return names


@dataclass
class CloudflareCredentials:
    """Credentials for the DNS-01 challenge: an API token or a global key."""
    token: str = ""
    account_id: str = ""
    key: str = ""
    email: str = ""

    def environment(self) -> Dict[str, str]:
        """Variables acme.sh's ``dns_cf`` hook reads."""
        if self.token:
            env = {"CF_Token": self.token}
            if self.account_id:
                env["CF_Account_ID"] = self.account_id
            return env
        if self.key and self.email:
            return {"CF_Key": self.key, "CF_Email": self.email}
        raise CertificateError("Cloudflare credentials not properly configured")

    @classmethod
    def prompt(cls) -> "CloudflareCredentials":
        console.banner("Cloudflare DNS API Setup")
        console.detail("For wildcard SSL certificates, we need your Cloudflare API credentials.")
        console.detail("You can get these from: https://dash.cloudflare.com/profile/api-tokens")
        console.warning("Choose your authentication method:")
        console.console.print("1. API Token (Recommended - more secure)")
        console.console.print("2. Global API Key (Legacy method)")

        while True:
            choice = console.ask("Choose option (1 or 2)")
            if choice == "1":
                console.success("Using API Token method")
                token = console.ask_required(
                    "Enter your Cloudflare API Token", "API Token cannot be empty. Please try again."
                )
                account_id = console.ask(
                    "Enter your Cloudflare Account ID (optional, press Enter to skip)"
                )
                credentials = cls(token=token, account_id=account_id)
                break
            if choice == "2":
                console.warning("Using Global API Key method")
                email = console.ask_required(
                    "Enter your Cloudflare email", "Email cannot be empty. Please try again."
                )
                key = console.ask_required(
                    "Enter your Cloudflare Global API Key", "API Key cannot be empty. Please try again."
                )
                credentials = cls(key=key, email=email)
                break
            console.error("Please choose 1 or 2.")

        console.success("Cloudflare credentials configured successfully!")
        return credentials


class AcmeClient:
    """Thin wrapper around the acme.sh command line."""

    def __init__(self, home: Optional[Path] = None):
        self.path = (home or Path.home()) / ".acme.sh" / "acme.sh"

    def is_installed(self) -> bool:
        return self.path.is_file()

    def install(self, email: str):
        console.info("Installing acme.sh")
        try:
            response = requests.get(ACME_INSTALL_URL, timeout=HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise CertificateError(f"Failed to fetch the acme.sh installer: {e}") from e
        system.run(["sh", "-s", f"email={email}"], input=response.text, capture=False)

    @staticmethod
    def _domain_args(names: List[str]) -> List[str]:
        args = []
        for name in names:
            args.extend(["-d", name])
        return args

    def remove(self, name: str) -> Attempt:
        """Forget any existing certificate for ``name``; failure is tolerated."""
        return attempt(system.run, [str(self.path), "--remove", "-d", name, "--ecc"])

    def issue(self, names: List[str], dns: Optional[str] = None, env: Optional[Dict[str, str]] = None):
        """Issue one certificate covering ``names``; standalone HTTP unless ``dns`` is given."""
        cmd = [str(self.path), "--issue"]
        cmd += ["--dns", dns] if dns else ["--standalone"]
        cmd += ["--force"] + self._domain_args(names)

        result = system.run(cmd, check=False, capture=False, env=env)
        if result.returncode == ACME_SKIPPED:
            logger.info("Certificate is still valid, acme.sh skipped issuance")
        elif result.returncode != 0:
            raise CertificateError(
                f"acme.sh --issue failed with exit code {result.returncode}",
                exit_code=result.returncode,
            )

    def install_cert(self, names: List[str], cert_file: Path, key_file: Path):
        cmd = [str(self.path), "--install-cert"] + self._domain_args(names) + [
            "--fullchain-file", str(cert_file),
            "--key-file", str(key_file),
        ]
        try:
            system.run(cmd, capture=False)
        except CommandError as e:
            raise CertificateError("acme.sh --install-cert failed") from e


class SSLManager:
    """
    Walks one certificate provisioning run from domain collection to a
    configured panel environment.
    """

    def __init__(
        self,
        ctx: AppContext,
        installer: PackageInstaller,
        acme: Optional[AcmeClient] = None
    ):
        self.ctx = ctx
        self.installer = installer
        self.acme = acme or AcmeClient()
        self.state = SSLState.NEEDS_DOMAINS
        self.domains: Optional[DomainSet] = None
        self.strategy: Optional[CertStrategy] = None
        self.credentials: Optional[CloudflareCredentials] = None
        self.primary: Optional[str] = None

    @property
    def cert_file(self) -> Path:
        return self.ctx.certs_dir / f"{self.primary}.cer"

    @property
    def key_file(self) -> Path:
        return self.ctx.certs_dir / f"{self.primary}.cer.key"

    def set_domains(self, domains: DomainSet):
        self.domains = domains
        self.primary = domains.primary
        self.state = SSLState.NEEDS_STRATEGY

    def prompt_for_domains(self):
        console.banner("SSL Certificate Setup")
        while True:
            answer = console.ask(
                "Enter domain(s) for SSL certificate "
                "(comma separated for multiple domains/subdomains)"
            )
            try:
                self.set_domains(DomainSet.parse(answer))
                return
            except ValueError:
                console.error("Domain cannot be empty. Please try again.")

    def set_strategy(
        self,
        strategy: CertStrategy,
        credentials: Optional[CloudflareCredentials] = None
    ):
        if strategy == CertStrategy.WILDCARD:
            self.credentials = credentials or CloudflareCredentials.prompt()
            self.state = SSLState.WILDCARD
        else:
            self.state = SSLState.STANDARD
        self.strategy = strategy

    def prompt_for_strategy(self):
        console.banner("Wildcard SSL Option")
        console.warning("Do you want to generate a wildcard+SAN SSL certificate?")
        console.detail(
            "Wildcard+SAN certificate covers ALL domains you entered AND all their subdomains."
        )
        console.detail("This requires Cloudflare DNS API credentials.")
        while True:
            answer = console.ask("Generate wildcard SSL certificates? (y/n)").lower()
            if answer.startswith("y"):
                self.set_strategy(CertStrategy.WILDCARD)
                return
            if answer.startswith("n"):
                console.success("Using standard SSL certificates with SAN for multiple domains.")
                self.set_strategy(CertStrategy.STANDARD)
                return
            console.error("Please answer yes (y) or no (n).")

    def install_dependencies(self):
        console.info("Installing SSL dependencies...")
        self.installer.install("haproxy")
        self.installer.install("socat")
        if not self.acme.is_installed():
            self.acme.install(f"admin@{self.primary}")

    def issue(self):
        """Issue and install the certificate for the chosen strategy."""
        if self.state not in (SSLState.STANDARD, SSLState.WILDCARD):
            raise CertificateError("Domains and certificate strategy must be chosen first")

        self.ctx.certs_dir.mkdir(parents=True, exist_ok=True)
        if self.strategy == CertStrategy.WILDCARD:
            self._issue_wildcard()
        else:
            self._issue_standard()

        for path in self.ctx.certs_dir.iterdir():
            if path.is_file():
                path.chmod(0o600)
        self.state = SSLState.INSTALLED

    def _remove_existing(self, names: List[str]):
        console.warning("Removing any existing certificates to prevent conflicts...")
        for name in names:
            outcome = self.acme.remove(name)
            if not outcome.ok:
                logger.debug(f"No certificate removed for {name}: {outcome.error}")

    def _issue_standard(self):
        names = list(self.domains)
        console.info(f"Generating standard SSL certificates for {self.primary}...")
        self._remove_existing(names)

        console.info("Issuing certificate...")
        self.acme.issue(names)
        self.state = SSLState.ISSUED

        console.info("Installing certificate...")
        self.acme.install_cert(names, self.cert_file, self.key_file)

    def _issue_wildcard(self):
        env = self.credentials.environment()
        roots = self.domains.root_domains()
        names = self.domains.wildcard_names()
        self.primary = roots[0]

        console.info("Certificate will cover:")
        for root in roots:
            console.success(f"  - *.{root} (wildcard for all subdomains)")
            console.success(f"  - {root} (root domain)")
        self._remove_existing(names)

        console.info("Issuing single wildcard+SAN certificate for all domains...")
        try:
            self.acme.issue(names, dns="dns_cf", env=env)
        except CertificateError:
            console.error("Failed to issue wildcard+SAN certificate. Check the Cloudflare "
                          "credentials and that the domains belong to that account.")
            raise
        self.state = SSLState.ISSUED

        console.info("Installing wildcard+SAN certificate...")
        self.acme.install_cert([f"*.{self.primary}"], self.cert_file, self.key_file)
        console.success(f"Certificate files: {self.cert_file}, {self.key_file}")

    def configure(self):
        """Point the panel at the certificate and route it through HAProxy."""
        console.info("Configuring SSL in the panel environment...")
        EnvFile(self.ctx.env_file).update({
            "UVICORN_PORT": str(PANEL_PORT),
            "UVICORN_HOST": '"127.0.0.1"',
            "UVICORN_SSL_CERTFILE": f'"{self.cert_file}"',
            "UVICORN_SSL_KEYFILE": f'"{self.key_file}"',
            "XRAY_SUBSCRIPTION_URL_PREFIX": f"https://{self.primary}",
        })
        configure_haproxy(self.ctx, self.primary)
        self.state = SSLState.CONFIGURED

    def run(
        self,
        domains: Optional[DomainSet] = None,
        strategy: Optional[CertStrategy] = None
    ) -> str:
        """Full provisioning run; returns the domain the certificate is named after."""
        if domains is None:
            self.prompt_for_domains()
        else:
            self.set_domains(domains)

        if strategy is None:
            self.prompt_for_strategy()
        else:
            self.set_strategy(strategy)

        self.install_dependencies()
        self.issue()
        self.configure()
        return self.primary
