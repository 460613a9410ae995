"""
notify/messages.py -- Render account emails from Jinja2 templates.

Each render_* function returns a Message value (to, subject, html body) and
does no I/O, so templates can be tested without a mail server. Autoescaping
is on: display names are user input and end up inside HTML.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from auth.models import Account
from core.config import get_settings

_settings = get_settings()

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)

SUPPORT_EMAIL = "support@cybershield.com"


@dataclass(frozen=True)
class Message:
    to: str
    subject: str
    body: str  # HTML


def _humanize(seconds: int) -> str:
    """3600 -> '1 hour', 900 -> '15 minutes', 86400 -> '24 hours'."""
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, seconds // 60)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def _validity(seconds: int, expires_at: datetime) -> str:
    return f"{_humanize(seconds)} (until {expires_at.strftime('%Y-%m-%d %H:%M')} UTC)"


def render_welcome(account: Account) -> Message:
    body = _env.get_template("welcome.html").render(name=account.name, support_email=SUPPORT_EMAIL)
    return Message(to=account.email, subject="Welcome to CyberShield!", body=body)


def render_verify_otp(account: Account, code: str, expires_at: datetime) -> Message:
    body = _env.get_template("verify_email.html").render(
        name=account.name,
        otp=code,
        validity=_validity(_settings.verify_otp_ttl_seconds, expires_at),
    )
    return Message(to=account.email, subject="Verify your CyberShield account", body=body)


def render_reset_otp(account: Account, code: str, expires_at: datetime) -> Message:
    body = _env.get_template("reset_password.html").render(
        name=account.name,
        otp=code,
        validity=_validity(_settings.reset_otp_ttl_seconds, expires_at),
    )
    return Message(to=account.email, subject="Your CyberShield password reset code", body=body)
