"""Google reCAPTCHA v3 verification.

Learn: Only pass/fail matters to the rest of the app. The verifier is
disabled (everything passes, nothing is required) unless both the site
key and the secret key are configured; a half-configured pair is logged
and treated as disabled rather than locking everyone out.
"""

from typing import Optional

import httpx
import structlog

from coditime import __version__
from coditime.config import Settings

logger = structlog.get_logger()

VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class RecaptchaError(Exception):
    """Raised when Google can't be reached or answers garbage."""


class RecaptchaVerifier:
    def __init__(
        self,
        *,
        secret_key: str = "",
        site_key: str = "",
        require_on_registration: bool = True,
        require_on_login: bool = True,
        require_on_password_reset: bool = True,
        min_score: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.enabled = bool(secret_key and site_key)
        if not self.enabled:
            if secret_key or site_key:
                logger.warning(
                    "recaptcha.disabled",
                    reason="secret key missing" if site_key else "site key missing",
                )
            else:
                logger.info("recaptcha.disabled", reason="not configured")
        self.secret_key = secret_key
        self.site_key = site_key
        self._require_on_registration = require_on_registration
        self._require_on_login = require_on_login
        self._require_on_password_reset = require_on_password_reset
        self.min_score = min_score
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings) -> "RecaptchaVerifier":
        return cls(
            secret_key=config.recaptcha_secret_key,
            site_key=config.recaptcha_site_key,
            require_on_registration=config.recaptcha_require_on_registration,
            require_on_login=config.recaptcha_require_on_login,
            require_on_password_reset=config.recaptcha_require_on_password_reset,
            min_score=config.recaptcha_min_score,
        )

    @property
    def require_on_registration(self) -> bool:
        return self.enabled and self._require_on_registration

    @property
    def require_on_login(self) -> bool:
        return self.enabled and self._require_on_login

    def public_config(self) -> Optional[dict]:
        """What the frontend needs to render the widget (no secret)."""
        if not self.enabled:
            return None
        return {
            "site_key": self.site_key,
            "require_on_registration": self._require_on_registration,
            "require_on_login": self._require_on_login,
            "require_on_password_reset": self._require_on_password_reset,
        }

    async def verify(self, response: str, remote_ip: Optional[str] = None) -> bool:
        """True if Google accepts the token with a high enough score."""
        if not self.enabled:
            return True

        form = {"secret": self.secret_key, "response": response}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=10.0,
                headers={"User-Agent": f"coditime/{__version__}"},
            ) as client:
                r = await client.post(VERIFY_URL, data=form)
                r.raise_for_status()
                body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RecaptchaError(f"reCAPTCHA verification failed: {e}") from e

        if not body.get("success"):
            logger.info("recaptcha.rejected", error_codes=body.get("error-codes", []))
            return False
        score = body.get("score")
        if score is None:
            logger.warning("recaptcha.no_score")
            return False
        return float(score) > self.min_score
