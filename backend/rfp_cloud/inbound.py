# inbound.py
# Inbound webhook pipeline: normalize whatever the mail provider posted into
# one InboundEmail, correlate it, store the proposal, move attachments, and
# leave LLM enrichment for later.

import logging
import uuid
from email import message_from_bytes, message_from_string, policy
from email.parser import HeaderParser
from email.utils import getaddresses, parseaddr
from typing import Dict, List, Optional, Union

from . import models
from .attachments import AttachmentRelocator
from .correlator import MailCorrelator
from .exceptions import InboundPayloadError
from .proposal_parser import ProposalEnricher
from .reply_extractor import extract_latest
from .storage import JsonStore

logger = logging.getLogger(__name__)

RAW_EMAIL_FIELD = "email"

Fields = Dict[str, List[str]]


def _first(fields: Fields, *names: str) -> Optional[str]:
    for name in names:
        values = fields.get(name)
        if values and values[0]:
            return values[0]
    return None


def _addresses(values: List[str]) -> List[str]:
    return [addr for _, addr in getaddresses(values) if addr]


def _header_map(items) -> Dict[str, str]:
    headers = {}
    for name, value in items:
        headers.setdefault(name.lower(), str(value))
    return headers


def _attachment_name(filename: Optional[str]) -> str:
    return filename or f"attachment-{uuid.uuid4()}"


def from_raw_message(raw: Union[str, bytes]) -> models.InboundEmail:
    """Parse a full RFC-822 message (SendGrid "raw" mode)."""
    try:
        if isinstance(raw, bytes):
            msg = message_from_bytes(raw, policy=policy.default)
        else:
            msg = message_from_string(raw, policy=policy.default)

        from_name, from_address = parseaddr(str(msg.get("From", "")))
        to_list = _addresses([str(v) for v in msg.get_all("To", []) + msg.get_all("Cc", [])])

        text_part = msg.get_body(preferencelist=("plain",))
        html_part = msg.get_body(preferencelist=("html",))
        attachments = []
        for part in msg.iter_attachments():
            payload = part.get_payload(decode=True)
            if payload is None:
                continue
            attachments.append(models.InboundAttachment(
                filename=_attachment_name(part.get_filename()),
                content=payload,
                content_type=part.get_content_type(),
            ))

        return models.InboundEmail(
            from_address=from_address or None,
            from_name=from_name or None,
            to_list=to_list,
            subject=str(msg.get("Subject", "")),
            body_text=text_part.get_content() if text_part is not None else "",
            body_html=html_part.get_content() if html_part is not None else "",
            message_id=str(msg["Message-ID"]).strip() if msg["Message-ID"] else None,
            headers=_header_map(msg.items()),
            attachments=attachments,
        )
    except (LookupError, ValueError, TypeError) as e:
        raise InboundPayloadError(f"Could not parse raw email: {e}") from e


def from_form_fields(fields: Fields, files: List[models.InboundAttachment]) -> models.InboundEmail:
    """Build an InboundEmail from discrete webhook fields (SendGrid/Mailgun style)."""
    headers: Dict[str, str] = {}
    raw_headers = _first(fields, "headers", "message-headers")
    if raw_headers:
        headers = _header_map(HeaderParser(policy=policy.default).parsestr(raw_headers).items())
    for name in ("In-Reply-To", "References", "Message-Id", "Message-ID"):
        value = _first(fields, name, name.lower())
        if value:
            headers[name.lower()] = value

    from_name, from_address = parseaddr(_first(fields, "from", "sender", "From") or headers.get("from", ""))
    to_values = fields.get("to") or fields.get("recipient") or fields.get("To") or []
    if not to_values and headers.get("to"):
        to_values = [headers["to"]]

    return models.InboundEmail(
        from_address=from_address or None,
        from_name=from_name or None,
        to_list=_addresses(to_values),
        subject=_first(fields, "subject", "Subject") or headers.get("subject", ""),
        body_text=_first(fields, "text", "body-plain", "stripped-text") or "",
        body_html=_first(fields, "html", "body-html") or "",
        message_id=headers.get("message-id"),
        headers=headers,
        attachments=list(files),
    )


def normalize_payload(fields: Fields, files: List[models.InboundAttachment]) -> models.InboundEmail:
    raw = _first(fields, RAW_EMAIL_FIELD)
    if raw:
        email = from_raw_message(raw)
        if files:
            email = email.model_copy(update={"attachments": email.attachments + list(files)})
        return email
    return from_form_fields(fields, files)


class InboundPipeline:
    def __init__(self, store: JsonStore, correlator: MailCorrelator,
                 relocator: AttachmentRelocator, enricher: ProposalEnricher):
        self.store = store
        self.correlator = correlator
        self.relocator = relocator
        self.enricher = enricher

    def receive(self, email: models.InboundEmail) -> models.Proposal:
        """
        Store the inbound email as a proposal. Only correlation and the
        proposal insert can fail this call; attachment upload and the
        dispatch status update are best-effort.
        """
        correlation = self.correlator.correlate(email)
        matched = correlation.matched_dispatch

        proposal = self.store.insert("proposals", models.Proposal(
            rfp_id=correlation.rfp_id,
            vendor_id=correlation.vendor_id,
            sent_rfp_reference=matched.reference_id if matched else None,
            raw_email_body=email.body,
        ))
        logger.info("Created proposal %s (rfp %s, vendor %s, via %s)",
                    proposal.id, proposal.rfp_id, proposal.vendor_id, correlation.method)

        if email.attachments:
            meta = self.relocator.relocate_all(email.attachments)
            if meta:
                try:
                    proposal = self.store.update("proposals", proposal.id, attachments_meta=meta)
                except Exception:
                    logger.exception("Could not record attachments for proposal %s", proposal.id)

        if matched is not None:
            self.mark_delivered(matched)
        return proposal

    def mark_delivered(self, dispatch: models.SentDispatch) -> None:
        try:
            self.store.update("sent_rfps", dispatch.id, status=models.DispatchStatus.DELIVERED)
        except Exception:
            logger.warning("Failed to update SentRFP %s status", dispatch.id, exc_info=True)

    def enrich(self, proposal_id: str, body: str) -> bool:
        return self.enricher.enrich(proposal_id, extract_latest(body))
