import threading

from rfp_cloud import models
from rfp_cloud.storage import JsonStore


def test_insert_get_update_roundtrip_through_files(tmp_path, store, vendor):
    store.update("vendors", vendor.id, phone="555-0100")
    reopened = JsonStore(store.data_dir)
    assert reopened.get("vendors", vendor.id).phone == "555-0100"


def test_email_lookups_ignore_case(store, vendor):
    assert store.find_first("vendors", contact_email="Sales@ACME.test").id == vendor.id
    assert store.find_first("vendors", name="acme co") is None


def test_find_latest(store, rfp, vendor):
    rows = [
        store.insert("sent_rfps", models.SentDispatch(
            rfp_id=rfp.id, vendor_id=vendor.id, reference_id=f"r{i}", message_id=f"<m{i}@x>"))
        for i in range(3)
    ]
    assert store.find_latest("sent_rfps", vendor_id=vendor.id).id == rows[-1].id
    assert store.find_latest("sent_rfps", vendor_id="nobody") is None


def test_get_or_create_is_idempotent_under_threads(store):
    results = []

    def worker():
        vendor, _ = store.get_or_create(
            "vendors", {"contact_email": "unknown@unknown.com"},
            lambda: models.Vendor(name="Unknown Vendor", contact_email="unknown@unknown.com"))
        results.append(vendor.id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(results)) == 1
    assert len(store.find_all("vendors")) == 1


def test_update_where_respects_predicate(store, rfp, vendor):
    p = store.insert("proposals", models.Proposal(rfp_id=rfp.id, vendor_id=vendor.id))
    assert store.update_where("proposals", p.id, lambda cur: cur.price_usd is None, price_usd=5).price_usd == 5
    assert store.update_where("proposals", p.id, lambda cur: cur.price_usd is None, price_usd=7) is None
    assert store.get("proposals", p.id).price_usd == 5


def test_corrupt_file_reads_as_empty(store):
    store.files["rfps"].write_text("{not json")
    assert store.find_all("rfps") == []
