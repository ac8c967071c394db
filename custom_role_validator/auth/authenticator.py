"""
Authentication module — certificate, client-secret, and delegated device-code auth.
Uses MSAL for token acquisition against the Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AUTHORITY_HOST, AuthConfig

logger = logging.getLogger("custom_role_validator.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class Authenticator:
    """
    Handles MSAL-based authentication for ARM and Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication (CI, and the test principal)
      - Delegated interactive authentication (device code flow)

    One MSAL application is kept per Authenticator so tokens for further
    scopes come from its cache.
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._app = None
        self._account: Optional[dict] = None

    async def acquire_token(self, scope: str) -> str:
        """Acquire an access token for one resource scope."""
        if self.config.mode == "certificate":
            return self._acquire_certificate_token(scope)
        elif self.config.mode == "secret":
            return self._acquire_secret_token(scope)
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token(scope)
        raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    # ── App-only credentials ────────────────────────────────────────────────

    def _acquire_certificate_token(self, scope: str) -> str:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        if self._app is None:
            logger.info("Authenticating with certificate-based app credentials...")
            private_key_pem, thumbprint = self._load_certificate(
                cert_config.certificate_path, cert_config.certificate_password
            )
            self._app = msal.ConfidentialClientApplication(
                client_id=cert_config.client_id,
                authority=f"{AUTHORITY_HOST}/{cert_config.tenant_id}",
                client_credential={
                    "thumbprint": thumbprint,
                    "private_key": private_key_pem,
                },
            )

        result = self._app.acquire_token_for_client(scopes=[scope])
        return self._extract_token(result, "Certificate auth")

    def _acquire_secret_token(self, scope: str) -> str:
        """Acquire token using a client secret."""
        secret_config = self.config.secret
        if not secret_config:
            raise AuthenticationError("Client secret auth config not provided.")

        if self._app is None:
            secret = secret_config.client_secret or os.environ.get("RBAC_CLIENT_SECRET", "")
            if not secret:
                raise AuthenticationError(
                    f"No client secret for {secret_config.client_id}. "
                    "Set it in the config file or RBAC_CLIENT_SECRET."
                )
            logger.info(f"Authenticating as client {secret_config.client_id} with a client secret...")
            self._app = msal.ConfidentialClientApplication(
                client_id=secret_config.client_id,
                authority=f"{AUTHORITY_HOST}/{secret_config.tenant_id}",
                client_credential=secret,
            )

        result = self._app.acquire_token_for_client(scopes=[scope])
        return self._extract_token(result, "Client secret auth")

    @staticmethod
    def _load_certificate(cert_path: str, password: str) -> tuple[str, str]:
        """Load a base64-encoded PFX; return (private key PEM, SHA1 thumbprint)."""
        if not password:
            password = os.environ.get("RBAC_CERT_PASSWORD", "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        try:
            with open(cert_path, "r") as f:
                cert_base64 = f.read().strip()

            cert_bytes = base64.b64decode(cert_base64)
            password_bytes = password.encode("utf-8") if password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )
            if private_key is None or certificate is None:
                raise ValueError("PFX does not contain both a private key and a certificate")

            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")
            thumbprint = certificate.fingerprint(SHA1()).hex()
            logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        except FileNotFoundError:
            raise AuthenticationError(f"Certificate file not found: {cert_path}.")
        except Exception as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        return private_key_pem, thumbprint

    # ── Delegated ───────────────────────────────────────────────────────────

    def _acquire_delegated_token(self, scope: str) -> str:
        """Acquire token using delegated (device code) flow, silently when cached."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=f"{AUTHORITY_HOST}/{deleg_config.tenant_id}",
            )

        if self._account:
            result = self._app.acquire_token_silent([scope], account=self._account)
            if result and "access_token" in result:
                return result["access_token"]

        logger.info("Initiating device code authentication flow...")
        flow = self._app.initiate_device_flow(scopes=[scope])
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = self._app.acquire_token_by_device_flow(flow)
        token = self._extract_token(result, "Delegated auth")
        accounts = self._app.get_accounts()
        self._account = accounts[0] if accounts else None
        return token

    # ── Helpers ─────────────────────────────────────────────────────────────

    @staticmethod
    def _extract_token(result: Optional[dict], label: str) -> str:
        result = result or {}
        if "access_token" in result:
            logger.info(f"{label} successful.")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"{label} failed: {error}")
