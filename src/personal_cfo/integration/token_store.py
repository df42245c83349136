import json
import os
from dataclasses import dataclass
from time import time

from personal_cfo.logger import get_logger

logger = get_logger(__name__)

TOKEN_KEY = "access_token"
TOKEN_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class CookiePolicy:
    name: str = TOKEN_KEY
    max_age: int = TOKEN_MAX_AGE_SECONDS
    secure: bool = True
    samesite: str = "strict"


COOKIE_POLICY = CookiePolicy()


class TokenStore:
    """Holds the bearer token with the same lifetime as the ``access_token`` cookie."""

    def __init__(self, token: str | None = None, *, policy: CookiePolicy = COOKIE_POLICY) -> None:
        self.policy = policy
        self._token: str | None = None
        self._expires_at = 0.0
        if token:
            self.set(token)

    def get(self) -> str | None:
        if self._token and time() >= self._expires_at:
            logger.info("[AUTH] Stored token expired.")
            self.clear()
        return self._token

    def set(self, token: str) -> None:
        self._token = token
        self._expires_at = time() + self.policy.max_age

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0

    @property
    def expires_at(self) -> float:
        return self._expires_at


class FileTokenStore(TokenStore):
    """Token store persisted as JSON, for scripts that outlive one process."""

    def __init__(self, data_path: str, *, policy: CookiePolicy = COOKIE_POLICY) -> None:
        super().__init__(policy=policy)
        self.data_path = data_path
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("[AUTH] Could not read token file %s: %s", self.data_path, exc)
            return
        token = payload.get(self.policy.name)
        expires_at = float(payload.get("expires_at", 0.0))
        if token and expires_at > time():
            self._token = token
            self._expires_at = expires_at

    def save(self) -> None:
        directory = os.path.dirname(self.data_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.data_path, "w", encoding="utf-8") as handle:
            json.dump({self.policy.name: self._token, "expires_at": self._expires_at}, handle)

    def set(self, token: str) -> None:
        super().set(token)
        self.save()

    def clear(self) -> None:
        super().clear()
        if os.path.exists(self.data_path):
            os.remove(self.data_path)
