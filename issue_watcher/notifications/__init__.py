"""Report email rendering and delivery."""

from .email_client import EmailClient, SendResult
from .renderer import build_subject, render_no_relevant, render_report

__all__ = ["EmailClient", "SendResult", "build_subject", "render_no_relevant", "render_report"]
