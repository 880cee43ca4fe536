from typing import List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
import logging
import structlog

from eapproval.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


class _BrevoRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


class EmailSender:
    """
    Brevo REST API client.

    ``send`` never raises: it returns True when Brevo accepted the message and
    False otherwise. Network errors and 5xx responses are retried up to three
    times with exponential back-off; 4xx responses are not.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.BREVO_API_KEY
        self.sender_email = sender_email or settings.EMAIL_FROM_ADDRESS
        self.sender_name = sender_name or settings.APP_NAME
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(_BrevoRetryableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        before_sleep=before_sleep_log(_std_logger, logging.WARNING),
        reraise=False,
    )
    async def _post(self, payload: dict, to_emails: List[str]) -> bool:
        headers = {
            "accept": "application/json",
            "api-key": self.api_key,
            "content-type": "application/json",
        }
        try:
            response = await self._get_client().post(BREVO_API_URL, headers=headers, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.warning("email_network_error_retrying", error=str(exc), to=to_emails)
            raise _BrevoRetryableError(str(exc)) from exc

        if response.status_code in (201, 202):
            logger.info("email_sent_brevo", to=to_emails, message_id=response.json().get("messageId"))
            return True

        if response.status_code >= 500:
            logger.warning("email_brevo_5xx_retrying", status_code=response.status_code, to=to_emails)
            raise _BrevoRetryableError(f"Brevo returned {response.status_code}")

        logger.error(
            "email_failed_brevo",
            status_code=response.status_code,
            response=response.text[:500],
            to=to_emails,
        )
        return False

    async def send(self, to_emails: List[str], subject: str, html_content: str) -> bool:
        if not self.enabled:
            logger.warning("brevo_api_key_missing", message="Email sending skipped")
            return False
        if not to_emails:
            logger.warning("email_no_recipients")
            return False

        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [{"email": email} for email in to_emails],
            "subject": subject,
            "htmlContent": html_content,
        }
        try:
            return await self._post(payload, to_emails)
        except Exception as exc:  # tenacity.RetryError once attempts run out
            logger.error("email_all_retries_exhausted", error=str(exc), to=to_emails, subject=subject)
            return False
