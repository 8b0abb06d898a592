"""hCaptcha verification for anonymous write endpoints (order creation)."""
import logging

import httpx

from atelier.core.config import settings

log = logging.getLogger("atelier.captcha")


class CaptchaNotConfigured(Exception):
    pass


class CaptchaVerifier:
    def __init__(
        self,
        secret: str,
        verify_url: str = "https://hcaptcha.com/siteverify",
        allow_unconfigured: bool = False,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret = secret
        self.verify_url = verify_url
        self.allow_unconfigured = allow_unconfigured
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def verify(self, token: str, remote_ip: str | None = None) -> bool:
        if not self.secret:
            if self.allow_unconfigured:
                log.warning("HCAPTCHA_SECRET_KEY not set; skipping captcha check (development)")
                return True
            raise CaptchaNotConfigured("HCAPTCHA_SECRET_KEY is not set")
        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip
        try:
            r = self._client.post(self.verify_url, data=data)
            r.raise_for_status()
            return bool(r.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            log.error("Captcha verification request failed: %s", e)
            return False


_verifier: CaptchaVerifier | None = None


def get_captcha_verifier() -> CaptchaVerifier:
    global _verifier
    if _verifier is None:
        _verifier = CaptchaVerifier(
            settings.hcaptcha_secret_key,
            verify_url=settings.hcaptcha_verify_url,
            allow_unconfigured=settings.environment.strip().lower() == "development",
        )
    return _verifier
