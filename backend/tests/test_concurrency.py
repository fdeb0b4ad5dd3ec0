"""
Concurrency tests against a file-backed SQLite database.

Verifies:
- Suppliers registered in parallel all receive distinct SUP ids
- Parallel lot allocations never draw more than the supply on hand
- Parallel completions of one supply record leave exactly one completed payment
"""

import threading
from decimal import Decimal

import pytest

from teasupply import create_app
from teasupply.errors import ConcurrentModification, ConflictError, InsufficientSupply
from teasupply.extensions import db
from teasupply.models import InventoryLot, Payment, SupplyRecord
from teasupply.services import payment_service, stock_service, supplier_service, supply_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'BCRYPT_ROUNDS': 4,
        'MAIL_ENABLED': False,
        'SUPPLIER_SWEEP_ENABLED': False,
        'STORAGE_TIMEOUT_SECONDS': 30,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_parallel(app, target, args_list):
    results = []
    lock = threading.Lock()

    def worker(*args):
        with app.app_context():
            try:
                outcome = target(*args)
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def _seed_supplier(app, quantity):
    with app.app_context():
        supplier, _ = supplier_service.create_supplier(
            {"name": "Seed Supplier", "email": "seed@example.com", "phone": "0770000000"},
            password="Password123!",
        )
        record = supply_service.create_supply_record(supplier.id, quantity, "50")
        return supplier.id, record.id


def test_supplier_ids_are_distinct(file_app):
    def register(i):
        supplier, _ = supplier_service.create_supplier(
            {"name": f"Supplier {i}", "email": f"s{i}@example.com", "phone": f"07100000{i:02d}"},
            password="Password123!",
        )
        return supplier.supplier_id

    results = _run_parallel(file_app, register, [(i,) for i in range(10)])

    errors = [r for r in results if isinstance(r, Exception)]
    assert not errors
    assert len(set(results)) == 10
    assert all(r.startswith("SUP") and len(r) == 9 for r in results)


def test_parallel_lots_never_overdraw(file_app):
    _, record_id = _seed_supplier(file_app, "100")

    results = _run_parallel(
        file_app,
        lambda: stock_service.create_inventory_lot("60").id,
        [() for _ in range(4)],
    )

    created = [r for r in results if isinstance(r, int)]
    failures = [r for r in results if not isinstance(r, int)]
    assert len(created) == 1
    assert all(isinstance(f, (InsufficientSupply, ConcurrentModification)) for f in failures)

    with file_app.app_context():
        record = db.session.get(SupplyRecord, record_id)
        allocated = sum(lot.allocated_quantity for lot in db.session.query(InventoryLot).all())
        assert record.remaining_quantity_kg >= 0
        assert record.remaining_quantity_kg + allocated == Decimal("100.00")


def test_one_completed_payment_per_record(file_app):
    _, record_id = _seed_supplier(file_app, "10")

    results = _run_parallel(
        file_app,
        lambda: payment_service.record_direct_payment(record_id).payment_id,
        [() for _ in range(5)],
    )

    completed = [r for r in results if isinstance(r, str)]
    failures = [r for r in results if not isinstance(r, str)]
    assert len(completed) == 1
    assert all(isinstance(f, (ConflictError, ConcurrentModification)) for f in failures)

    with file_app.app_context():
        assert db.session.query(Payment).filter_by(payment_status="completed").count() == 1
        assert db.session.get(SupplyRecord, record_id).payment_status == "paid"
