# correlator.py
# Work out which outbound RFP send an inbound email answers.
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Iterator, Optional

from . import models
from .storage import JsonStore

logger = logging.getLogger(__name__)

UNKNOWN_VENDOR_EMAIL = "unknown@unknown.com"
UNKNOWN_VENDOR_NAME = "Unknown Vendor"
UNMATCHED_RFP_TITLE = "Unmatched Inbound Proposals"
SYSTEM_USER_EMAIL = "system@rfp-cloud.local"
AUTO_VENDOR_NOTE = "Auto-created from inbound email"

_RECIPIENT_TOKEN = re.compile(r"rfp\+([^@>\s]+)@", re.IGNORECASE)
_SUBJECT_REF = re.compile(r"\[REF:([^\]]+)\]", re.IGNORECASE)
_MESSAGE_ID = re.compile(r"<[^<>\s]+>")


@dataclass
class Correlation:
    rfp_id: str
    vendor_id: str
    matched_dispatch: Optional[models.SentDispatch] = None
    method: str = "fallback"


def token_from_recipients(recipients) -> Optional[str]:
    m = _RECIPIENT_TOKEN.search(", ".join(recipients or []))
    return m.group(1) if m else None


def ref_from_subject(subject: Optional[str]) -> Optional[str]:
    if not subject:
        return None
    m = _SUBJECT_REF.search(subject)
    return m.group(1).strip() if m else None


def message_ids(value: Optional[str]) -> Iterator[str]:
    """Yield each ``<id>`` in a header value; a bare id gets brackets added."""
    if not value:
        return
    found = _MESSAGE_ID.findall(value)
    if found:
        yield from found
    elif value.strip():
        yield f"<{value.strip().strip('<>')}>"


def ensure_system_user(store: JsonStore) -> models.User:
    user, created = store.get_or_create(
        "users",
        {"email": SYSTEM_USER_EMAIL},
        lambda: models.User(email=SYSTEM_USER_EMAIL, username="system", name="System User"),
    )
    if created:
        logger.info("Created system user %s", user.id)
    return user


class MailCorrelator:
    """
    Resolves an inbound email to (rfp, vendor, dispatch). Tries, in order:
    reply headers, the message's own Message-ID, an rfp+token recipient or
    [REF:token] subject, the sender's latest dispatch, then placeholders.
    """

    def __init__(self, store: JsonStore):
        self.store = store

    def correlate(self, email: models.InboundEmail) -> Correlation:
        matched, method = self.match_dispatch(email)
        if matched is not None:
            logger.info("Inbound mail matched dispatch %s via %s", matched.reference_id, method)
            return Correlation(matched.rfp_id, matched.vendor_id, matched, method)

        vendor = self._fallback_vendor(email)
        rfp = self._fallback_rfp()
        logger.info("Inbound mail unmatched; filed under vendor %s, rfp %s", vendor.id, rfp.id)
        return Correlation(rfp.id, vendor.id, None, "fallback")

    def match_dispatch(self, email: models.InboundEmail):
        for header in ("in-reply-to", "references"):
            for mid in message_ids(email.header(header)):
                hit = self._by_message_id(mid)
                if hit:
                    return hit, header

        for mid in message_ids(email.message_id):
            hit = self._by_message_id(mid)
            if hit:
                return hit, "message-id"

        token = token_from_recipients(email.to_list) or ref_from_subject(email.subject)
        if token:
            hit = self.store.find_first("sent_rfps", reference_id=token)
            if hit:
                return hit, "reference-token"

        if email.from_address:
            vendor = self.store.find_first("vendors", contact_email=email.from_address)
            if vendor:
                # Not scoped by RFP or status: an old DELIVERED send can match again.
                recent = self.store.find_latest("sent_rfps", vendor_id=vendor.id)
                if recent:
                    return recent, "sender"

        return None, None

    def _by_message_id(self, mid: str) -> Optional[models.SentDispatch]:
        return self.store.find_first("sent_rfps", message_id=mid)

    def _fallback_vendor(self, email: models.InboundEmail) -> models.Vendor:
        address = email.from_address
        if address:
            name = email.from_name or address.split("@")[0]
            vendor, created = self.store.get_or_create(
                "vendors",
                {"contact_email": address},
                lambda: models.Vendor(name=name, contact_email=address, notes=AUTO_VENDOR_NOTE),
            )
            if created:
                logger.info("Auto-created vendor %s for %s", vendor.id, address)
            return vendor

        vendor, _ = self.store.get_or_create(
            "vendors",
            {"contact_email": UNKNOWN_VENDOR_EMAIL},
            lambda: models.Vendor(
                name=UNKNOWN_VENDOR_NAME,
                contact_email=UNKNOWN_VENDOR_EMAIL,
                notes="Placeholder for unmatched inbound emails",
            ),
        )
        return vendor

    def _fallback_rfp(self) -> models.RFP:
        def make():
            owner = ensure_system_user(self.store)
            return models.RFP(
                title=UNMATCHED_RFP_TITLE,
                description_raw="Container for proposals that could not be matched to an existing RFP",
                reference_token=f"fallback-{secrets.token_hex(8)}",
                created_by_id=owner.id,
            )

        rfp, _ = self.store.get_or_create("rfps", {"title": UNMATCHED_RFP_TITLE}, make)
        return rfp
