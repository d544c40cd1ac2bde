# mailer.py
# Outbound RFP emails. Every send gets a SentDispatch row whose message_id and
# reference_id are fixed before the provider is called; replies are matched
# against those two keys.

import html as html_lib
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import requests

from . import models
from .config import Settings
from .exceptions import MailDeliveryError
from .storage import JsonStore

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridMailer:
    def __init__(self, api_key: str, from_email: str, from_name: str, timeout: float = 15.0):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None,
             headers: Optional[Dict[str, str]] = None, reply_to: Optional[str] = None,
             from_name: Optional[str] = None) -> Optional[str]:
        content = []
        if text:
            content.append({"type": "text/plain", "value": text})
        content.append({"type": "text/html", "value": html})
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": from_name or self.from_name},
            "subject": subject,
            "content": content,
            "headers": headers or {},
        }
        if reply_to:
            payload["reply_to"] = {"email": reply_to}
        try:
            resp = requests.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MailDeliveryError(f"SendGrid request failed: {e}") from e
        if resp.status_code >= 400:
            raise MailDeliveryError(f"SendGrid returned {resp.status_code}: {resp.text[:300]}")
        return resp.headers.get("X-Message-Id")


class ConsoleMailer:
    """Logs instead of sending. Used when no SendGrid key is configured."""

    def __init__(self, from_email: str, from_name: str):
        self.from_email = from_email
        self.from_name = from_name

    def send(self, to, subject, html, text=None, headers=None, reply_to=None, from_name=None):
        logger.info("[console mail] to=%s subject=%r reply_to=%s headers=%s", to, subject, reply_to, headers)
        return f"console-{uuid.uuid4().hex[:12]}"


def build_mailer(settings: Settings):
    if settings.sendgrid_api_key:
        return SendGridMailer(settings.sendgrid_api_key, settings.mail_from, settings.mail_from_name,
                              timeout=settings.mail_timeout_seconds)
    logger.warning("SENDGRID_API_KEY not set; outbound RFP emails are only logged.")
    return ConsoleMailer(settings.mail_from, settings.mail_from_name)


def render_html(text: str, reference_id: str, brand: str, sender_email: Optional[str] = None) -> str:
    body = html_lib.escape(text or "").replace("\n", "<br/>")
    sent_by = f" by {html_lib.escape(sender_email)}" if sender_email else ""
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"/></head>
<body style="margin:0;padding:0;font-family:Arial,sans-serif;background:#f4f4f4;">
  <table width="600" cellpadding="0" cellspacing="0" align="center" style="background:#fff;">
    <tr><td style="background:#4f46e5;padding:30px;text-align:center;color:#fff;"><h1 style="margin:0;font-size:22px;">{html_lib.escape(brand)}</h1></td></tr>
    <tr><td style="padding:30px;color:#333;font-size:15px;line-height:1.5;">
      {body}
      <p style="margin-top:20px;color:#555;font-size:13px;">Reference ID: <code>{reference_id}</code></p>
    </td></tr>
    <tr><td style="background:#fafafa;padding:18px;text-align:center;color:#6b7280;font-size:12px;">
      Sent via {html_lib.escape(brand)}{sent_by} &copy; {datetime.now().year}
    </td></tr>
  </table>
</body>
</html>"""


def rfp_email_text(rfp: models.RFP) -> str:
    lines = [rfp.title, ""]
    if rfp.description_raw:
        lines += [rfp.description_raw, ""]
    for item in rfp.requirements.items:
        qty = f"{item.qty:g} x " if item.qty is not None else ""
        specs = ", ".join(f"{k}: {v}" for k, v in item.specs.items())
        lines.append(f"- {qty}{item.name}" + (f" ({specs})" if specs else ""))
    terms = [
        ("Budget (USD)", rfp.budget_usd),
        ("Delivery within (days)", rfp.delivery_days),
        ("Payment terms", rfp.payment_terms),
        ("Warranty (months)", rfp.warranty_months),
    ]
    lines.append("")
    for label, value in terms:
        if value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        lines.append(f"{label}: {value}")
    return "\n".join(lines).strip()


class RfpDispatcher:
    def __init__(self, store: JsonStore, mailer, settings: Settings):
        self.store = store
        self.mailer = mailer
        self.settings = settings

    def new_keys(self, rfp_id: Optional[str]):
        reference_id = f"rfp-{rfp_id or 'unknown'}-sent-{uuid.uuid4().hex[:12]}"
        domain = self.settings.reply_domain or self.settings.mail_from.split("@")[-1]
        message_id = f"<rfp-{uuid.uuid4()}@{domain}>"
        return reference_id, message_id

    def reply_address(self, reference_id: str, sender_email: Optional[str] = None) -> str:
        if self.settings.reply_domain:
            return f"rfp+{reference_id}@{self.settings.reply_domain}"
        return sender_email or self.settings.mail_from

    def dispatch(self, rfp: models.RFP, vendor: models.Vendor, subject: Optional[str] = None,
                 text: Optional[str] = None, html: Optional[str] = None,
                 sender_name: Optional[str] = None, sender_email: Optional[str] = None) -> models.SentDispatch:
        reference_id, message_id = self.new_keys(rfp.id)
        sent = self.store.insert("sent_rfps", models.SentDispatch(
            rfp_id=rfp.id,
            vendor_id=vendor.id,
            reference_id=reference_id,
            message_id=message_id,
        ))

        text = text or rfp_email_text(rfp)
        subject = f"{subject or 'RFP: ' + rfp.title} [REF:{reference_id}]"
        reply_to = self.reply_address(reference_id, sender_email)
        headers = {
            "Message-ID": message_id,
            "X-Reference-ID": reference_id,
            "X-Mailer": self.settings.mail_from_name,
        }
        try:
            provider_id = self.mailer.send(
                to=vendor.contact_email,
                subject=subject,
                html=html or render_html(text, reference_id, self.settings.mail_from_name, sender_email),
                text=text,
                headers=headers,
                reply_to=reply_to,
                from_name=sender_name,
            )
        except MailDeliveryError as e:
            logger.error("Send of %s to %s failed: %s", reference_id, vendor.contact_email, e)
            try:
                self.store.update("sent_rfps", sent.id, status=models.DispatchStatus.FAILED)
            except Exception:
                logger.exception("Could not mark dispatch %s FAILED", sent.id)
            raise

        logger.info("Sent %s to %s (provider id %s)", reference_id, vendor.contact_email, provider_id)
        return self.store.update(
            "sent_rfps", sent.id,
            status=models.DispatchStatus.SENT,
            sent_at=models.utcnow(),
            reply_to=reply_to,
        )

    def dispatch_many(self, rfp: models.RFP, vendors: List[models.Vendor], **kwargs) -> models.DispatchSummary:
        summary = models.DispatchSummary(total=len(vendors))
        for vendor in vendors:
            try:
                sent = self.dispatch(rfp, vendor, **kwargs)
                summary.sent.append(models.DispatchOutcome(
                    vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.contact_email,
                    status=sent.status.value, reference_id=sent.reference_id, message_id=sent.message_id,
                ))
            except MailDeliveryError as e:
                summary.failed.append(models.DispatchOutcome(
                    vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.contact_email,
                    status=models.DispatchStatus.FAILED.value, error=str(e),
                ))
        return summary
