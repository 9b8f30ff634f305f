# Overview: Threaded races against a file-backed database for the billing safeguards.

"""
Concurrency tests.

Each worker thread pushes its own app context and therefore gets its own
database session, the way concurrent requests do.
"""
import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta

from cafe_billing import create_app
from cafe_billing.extensions import db
from cafe_billing.models import DeviceSession, Order
from cafe_billing.services import (
    bill_service,
    device_service,
    device_session_service,
    order_service,
    payment_service,
)
from cafe_billing.validation import BillingError, ConflictError, InvalidStateError, OverpaymentError


T0 = datetime(2026, 10, 18, 18, 0, 0)


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            device = device_service.create_device(name="PS5 #1", device_type="playstation", number="PS-01")
            self.device_id = device.id

            bill = bill_service.create_bill(bill_type="cafe", customer_name="Table 9")
            self.bill_id = bill.id

            order = order_service.create_order(
                items=[{"name": "Tea", "price_cents": 500, "quantity": 3}],
                bill_id=self.bill_id,
                now=T0,
            )
            self.order_number = order.order_number

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run(self, worker, args_list):
        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_end_session_writes_cost_once(self):
        with self.app.app_context():
            session = device_session_service.start_session(self.device_id, "playstation", 1, now=T0)
            session_id = session.id

        results = []
        lock = threading.Lock()

        def worker(minutes):
            with self.app.app_context():
                try:
                    ended = device_session_service.end_session(session_id, now=T0 + timedelta(minutes=minutes))
                    with lock:
                        results.append(("ok", ended.final_cost_cents))
                except InvalidStateError:
                    with lock:
                        results.append(("rejected", None))
                except Exception as exc:
                    with lock:
                        results.append(("error", repr(exc)))
                finally:
                    db.session.remove()

        self._run(worker, [(60,), (120,)])

        winners = [cost for outcome, cost in results if outcome == "ok"]
        self.assertEqual(len(winners), 1, results)
        self.assertEqual(sorted(outcome for outcome, _ in results), ["ok", "rejected"])

        with self.app.app_context():
            stored = db.session.get(DeviceSession, session_id)
            self.assertEqual(stored.status, "completed")
            self.assertEqual(stored.final_cost_cents, winners[0])
            self.assertTrue(all(s.ended_at is not None for s in stored.segments))

    def test_concurrent_start_claims_device_once(self):
        results = []
        lock = threading.Lock()

        def worker(minutes):
            with self.app.app_context():
                try:
                    device_session_service.start_session(
                        self.device_id, "playstation", 1, now=T0 + timedelta(minutes=minutes)
                    )
                    with lock:
                        results.append("ok")
                except ConflictError:
                    with lock:
                        results.append("conflict")
                except Exception as exc:
                    with lock:
                        results.append(repr(exc))
                finally:
                    db.session.remove()

        self._run(worker, [(n,) for n in range(4)])

        self.assertEqual(results.count("ok"), 1, results)
        self.assertEqual(results.count("conflict"), 3, results)

        with self.app.app_context():
            active = (
                db.session.query(DeviceSession)
                .filter_by(device_id=self.device_id, status="active")
                .count()
            )
            self.assertEqual(active, 1)

    def test_concurrent_partial_payments_never_overpay_quantity(self):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    payment_service.add_partial_payment(
                        self.bill_id,
                        self.order_number,
                        [{"item_name": "Tea", "quantity": 2}],
                        "cash",
                        now=T0,
                    )
                    with lock:
                        results.append("ok")
                except OverpaymentError:
                    with lock:
                        results.append("overpayment")
                except BillingError as exc:
                    with lock:
                        results.append(f"rejected: {exc.message}")
                except Exception as exc:
                    with lock:
                        results.append(repr(exc))
                finally:
                    db.session.remove()

        self._run(worker, [() for _ in range(3)])

        self.assertEqual(results.count("ok"), 1, results)

        with self.app.app_context():
            paid = payment_service.get_paid_quantity_for_item(self.order_number, "Tea")
            order = db.session.query(Order).filter_by(order_number=self.order_number).one()
            self.assertLessEqual(paid, order.item_named("Tea").quantity)
            bill = bill_service.get_bill(self.bill_id)
            self.assertEqual(bill.paid_cents, 1000)
            self.assertEqual(bill.remaining_cents, bill.total_cents - bill.paid_cents)

    def test_document_sequence_concurrency(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    bill = bill_service.create_bill()
                    with lock:
                        created.append(bill.bill_number)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run(worker, [() for _ in range(10)])

        self.assertFalse(errors)
        self.assertEqual(len(created), 10)
        self.assertEqual(len(created), len(set(created)))


if __name__ == "__main__":
    unittest.main()
