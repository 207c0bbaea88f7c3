import base64
import hashlib
import logging
import threading
import time
from typing import Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .config import Credentials, DEFAULT_JWT_TOKEN_TTL
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "RS256"


class KeyPairAuthManager:
    """Issues RS256 bearer tokens for key-pair authentication.

    The signed token is cached until it expires. Refreshes are single-flight:
    threads that find the token expired while another thread is signing wait
    for that refresh and reuse its token.
    """

    def __init__(self, credentials: Credentials, jwt_token_ttl: int = DEFAULT_JWT_TOKEN_TTL):
        if jwt_token_ttl <= 0:
            raise ValueError(f"jwt_token_ttl must be positive, got {jwt_token_ttl}")

        self.credentials = credentials
        self.jwt_token_ttl = min(jwt_token_ttl, DEFAULT_JWT_TOKEN_TTL)
        self._lock = threading.Lock()

        self._token: Optional[str] = None
        # start with an expired value to force creation
        self._expires_at = 0
        self._private_key: Optional[RSAPrivateKey] = None
        self._fingerprint: Optional[str] = credentials.public_key_fingerprint

    @property
    def expires_at(self) -> int:
        return self._expires_at

    def get_token(self) -> str:
        """Return a valid token, signing a new one when the cached one expired."""
        if self._token is not None and time.time() < self._expires_at:
            return self._token

        with self._lock:
            now = int(time.time())
            if self._token is not None and now < self._expires_at:
                return self._token

            expires_at = now + self.jwt_token_ttl
            qualified_user = self._qualified_user()
            payload = {
                "iss": f"{qualified_user}.{self.public_key_fingerprint}",
                "sub": qualified_user,
                "iat": now,
                "exp": expires_at,
            }
            token = jwt.encode(payload, self._load_private_key(), algorithm=JWT_ALGORITHM)

            self._token = token
            self._expires_at = expires_at
            logger.debug(f"Signed new auth token for {qualified_user}, expires at {expires_at}")
            return token

    @property
    def public_key_fingerprint(self) -> str:
        """SHA-256 fingerprint of the DER encoded public key, computed once."""
        if self._fingerprint is None:
            public_der = self._load_private_key().public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            digest = hashlib.sha256(public_der).digest()
            self._fingerprint = "SHA256:" + base64.b64encode(digest).decode("ascii")
        return self._fingerprint

    def _qualified_user(self) -> str:
        account = self.credentials.account.upper()
        if self.credentials.organization:
            account = f"{self.credentials.organization.upper()}-{account}"
        return f"{account}.{self.credentials.user.upper()}"

    def _load_private_key(self) -> RSAPrivateKey:
        if self._private_key is not None:
            return self._private_key

        pem = self.credentials.private_key
        if isinstance(pem, str):
            pem = pem.encode("utf-8")
        try:
            key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid private key: {e}") from e
        if not isinstance(key, RSAPrivateKey):
            raise ConfigError(f"Private key must be an RSA key, got {type(key).__name__}")

        self._private_key = key
        return key
