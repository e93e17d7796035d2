"""Outgoing e-mail, sent over SMTP or posted as JSON to a mail gateway."""

from __future__ import annotations

import json
import smtplib
import urllib.error
import urllib.request
from dataclasses import dataclass, field


@dataclass
class Email:
    subject: str = ""
    body: str = ""
    sender: str = ""
    to: list[str] = field(default_factory=list)

    def build(self) -> bytes:
        """Render the raw message with From, To and Subject headers."""
        message = (
            f"From: {self.sender}\r\n"
            f"To: [{' '.join(self.to)}]\r\n"
            f"Subject: {self.subject}\r\n"
            f"\r\n{self.body}\r\n"
        )
        return message.encode("utf-8")

    def to_json(self) -> bytes:
        payload = {
            "subject": self.subject,
            "body": self.body,
            "from": self.sender,
            "to": None if self.to is None else list(self.to),
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class SmtpSender:
    host: str
    port: str
    user: str
    password: str = field(repr=False)

    def send(self, email: Email) -> None:
        """Deliver the message, upgrading to TLS when the server offers it."""
        with smtplib.SMTP(self.host, int(self.port)) as client:
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls()
                client.ehlo()
            client.sendmail(email.sender, email.to, email.build())


@dataclass
class HttpSender:
    host: str
    port: str
    endpoint: str

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.endpoint}"

    def send(self, email: Email) -> None:
        """POST the message as JSON; only transport failures raise."""
        request = urllib.request.Request(
            self.url,
            data=email.to_json(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request) as response:
                response.read()
        except urllib.error.HTTPError as exc:
            exc.close()