from concurrent.futures import ThreadPoolExecutor

from rfp_cloud import models
from rfp_cloud.correlator import (
    AUTO_VENDOR_NOTE,
    SYSTEM_USER_EMAIL,
    UNKNOWN_VENDOR_EMAIL,
    UNMATCHED_RFP_TITLE,
    MailCorrelator,
    message_ids,
    ref_from_subject,
    token_from_recipients,
)


def _email(**kwargs):
    return models.InboundEmail(**kwargs)


def test_in_reply_to_beats_subject_token(store, rfp, vendor, dispatch):
    other = store.insert("sent_rfps", models.SentDispatch(
        rfp_id=rfp.id, vendor_id=vendor.id,
        reference_id="other-ref", message_id="<other@reply.test>",
    ))
    email = _email(
        from_address="someone@else.test",
        subject=f"Re: RFP [REF:{other.reference_id}]",
        headers={"in-reply-to": dispatch.message_id},
    )

    result = MailCorrelator(store).correlate(email)

    assert result.matched_dispatch.id == dispatch.id
    assert result.method == "in-reply-to"
    assert (result.rfp_id, result.vendor_id) == (rfp.id, vendor.id)


def test_references_header_is_searched(store, dispatch):
    email = _email(headers={"references": f"<unknown@x.test> {dispatch.message_id}"})
    result = MailCorrelator(store).correlate(email)
    assert result.matched_dispatch.id == dispatch.id
    assert result.method == "references"


def test_bare_in_reply_to_gets_brackets(store, dispatch):
    email = _email(headers={"in-reply-to": "rfp-1111@reply.test"})
    assert MailCorrelator(store).correlate(email).matched_dispatch.id == dispatch.id


def test_own_message_id_is_tried_second(store, dispatch):
    email = _email(message_id=dispatch.message_id)
    result = MailCorrelator(store).correlate(email)
    assert result.matched_dispatch.id == dispatch.id
    assert result.method == "message-id"


def test_plus_address_token(store, dispatch):
    email = _email(to_list=[f"RFP+{dispatch.reference_id}@reply.test"], from_address="x@y.test")
    result = MailCorrelator(store).correlate(email)
    assert result.matched_dispatch.id == dispatch.id
    assert result.method == "reference-token"


def test_subject_ref_token(store, dispatch):
    email = _email(subject=f"Re: Laptops [ref:{dispatch.reference_id}]")
    assert MailCorrelator(store).correlate(email).matched_dispatch.id == dispatch.id


def test_sender_falls_back_to_latest_dispatch(store, rfp, vendor, dispatch):
    newer = store.insert("sent_rfps", models.SentDispatch(
        rfp_id=rfp.id, vendor_id=vendor.id,
        reference_id="newer-ref", message_id="<newer@reply.test>",
        status=models.DispatchStatus.DELIVERED,
    ))
    email = _email(from_address="SALES@acme.test", subject="our offer")
    result = MailCorrelator(store).correlate(email)
    assert result.matched_dispatch.id == newer.id
    assert result.method == "sender"


def test_unknown_sender_gets_auto_vendor_and_unmatched_rfp(store):
    email = _email(from_address="new@vendor.test", from_name="New Vendor Ltd")
    result = MailCorrelator(store).correlate(email)

    vendor = store.get("vendors", result.vendor_id)
    rfp = store.get("rfps", result.rfp_id)
    assert result.matched_dispatch is None
    assert vendor.name == "New Vendor Ltd"
    assert vendor.contact_email == "new@vendor.test"
    assert vendor.notes == AUTO_VENDOR_NOTE
    assert rfp.title == UNMATCHED_RFP_TITLE
    assert store.get("users", rfp.created_by_id).email == SYSTEM_USER_EMAIL


def test_auto_vendor_name_from_local_part(store):
    result = MailCorrelator(store).correlate(_email(from_address="quotes@supplier.test"))
    assert store.get("vendors", result.vendor_id).name == "quotes"


def test_empty_payload_resolves_to_sentinels_once(store):
    correlator = MailCorrelator(store)
    first = correlator.correlate(_email())
    second = correlator.correlate(_email(subject="garbage"))

    assert first.rfp_id and first.vendor_id
    assert (first.rfp_id, first.vendor_id) == (second.rfp_id, second.vendor_id)
    assert store.get("vendors", first.vendor_id).contact_email == UNKNOWN_VENDOR_EMAIL
    assert len(store.find_all("vendors")) == 1
    assert len(store.find_all("rfps", title=UNMATCHED_RFP_TITLE)) == 1
    assert len(store.find_all("users", email=SYSTEM_USER_EMAIL)) == 1


def test_concurrent_unmatched_mail_creates_sentinels_once(store):
    correlator = MailCorrelator(store)
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: correlator.correlate(_email()), range(64)))

    assert len({(r.rfp_id, r.vendor_id) for r in results}) == 1
    assert len(store.find_all("vendors")) == 1
    assert len(store.find_all("rfps", title=UNMATCHED_RFP_TITLE)) == 1
    assert len(store.find_all("users", email=SYSTEM_USER_EMAIL)) == 1


def test_token_helpers():
    assert token_from_recipients(["Bids <rfp+abc-123@reply.test>"]) == "abc-123"
    assert token_from_recipients(["sales@acme.test"]) is None
    assert ref_from_subject("Re: thing [REF: xyz ]") == "xyz"
    assert ref_from_subject(None) is None
    assert list(message_ids("<a@b> <c@d>")) == ["<a@b>", "<c@d>"]
    assert list(message_ids(None)) == []
