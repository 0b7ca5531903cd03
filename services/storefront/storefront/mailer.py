"""
Storefront Service — メール送信トランスポート

EmailTransport が送信経路の抽象。EMAIL_BACKEND で実装を切り替える。

  smtp      SMTP サーバ経由 (smtplib をスレッドで実行)
  sendgrid  SendGrid v3 Web API (httpx)
  console   ログに出力するだけ（ローカル開発用）

send() は失敗時に例外を投げる。例外を結果に変換するのは NotificationDispatcher の役割。
"""

import asyncio
import logging
import smtplib
import uuid
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import httpx
from pydantic import BaseModel

from .config import Settings

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com"


class OutgoingEmail(BaseModel):
    to: str
    subject: str
    body: str
    html_body: str | None = None
    from_name: str
    from_address: str


class EmailTransport(ABC):
    @abstractmethod
    async def send(self, message: OutgoingEmail) -> str:
        """メッセージを送信し、メッセージ ID を返す。"""

    @abstractmethod
    async def verify(self) -> bool:
        """送信経路に接続できるかを確認する。"""

    async def aclose(self) -> None:
        return None


class SMTPTransport(EmailTransport):
    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            client.ehlo()
            if self.use_tls:
                client.starttls()
                client.ehlo()
            if self.username:
                client.login(self.username, self.password)
        except Exception:
            client.close()
            raise
        return client

    def _send_sync(self, message: OutgoingEmail) -> str:
        msg = EmailMessage()
        msg["From"] = formataddr((message.from_name, message.from_address))
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid(domain=message.from_address.partition("@")[2] or None)
        msg.set_content(message.body)
        if message.html_body:
            msg.add_alternative(message.html_body, subtype="html")

        client = self._connect()
        try:
            client.send_message(msg)
        finally:
            client.quit()
        return msg["Message-ID"]

    def _verify_sync(self) -> None:
        self._connect().quit()

    async def send(self, message: OutgoingEmail) -> str:
        return await asyncio.to_thread(self._send_sync, message)

    async def verify(self) -> bool:
        try:
            await asyncio.to_thread(self._verify_sync)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("Email authentication failed (check EMAIL_USER / EMAIL_PASSWORD): %s", exc)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email connection failed: %s", exc)
            return False
        return True


class SendGridTransport(EmailTransport):
    def __init__(
        self,
        api_key: str,
        base_url: str = SENDGRID_API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def send(self, message: OutgoingEmail) -> str:
        content = [{"type": "text/plain", "value": message.body}]
        if message.html_body:
            content.append({"type": "text/html", "value": message.html_body})
        resp = await self.client.post(
            "/v3/mail/send",
            json={
                "personalizations": [{"to": [{"email": message.to}]}],
                "from": {"email": message.from_address, "name": message.from_name},
                "subject": message.subject,
                "content": content,
            },
        )
        resp.raise_for_status()
        return resp.headers.get("X-Message-Id") or str(uuid.uuid4())

    async def verify(self) -> bool:
        try:
            resp = await self.client.get("/v3/scopes")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Email connection failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        await self.client.aclose()


class ConsoleTransport(EmailTransport):
    async def send(self, message: OutgoingEmail) -> str:
        message_id = f"<{uuid.uuid4()}@console>"
        logger.info("Email to=%s subject=%r id=%s\n%s", message.to, message.subject, message_id, message.body)
        return message_id

    async def verify(self) -> bool:
        return True


def build_transport(settings: Settings) -> EmailTransport:
    if settings.email_backend == "smtp":
        return SMTPTransport(
            settings.email_host,
            settings.email_port,
            settings.email_user,
            settings.email_password,
            use_tls=settings.email_use_tls,
        )
    if settings.email_backend == "sendgrid":
        return SendGridTransport(settings.sendgrid_api_key)
    if settings.email_backend == "console":
        return ConsoleTransport()
    raise ValueError(f"Unknown EMAIL_BACKEND: {settings.email_backend}")
