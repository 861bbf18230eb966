# Overview: Service-layer operations for bill serial numbers.

from __future__ import annotations

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import BillSequence, BILL_MODELS
from ..validation import ValidationError
from .concurrency import keyed_lock, run_with_retry


SERIAL_LOCK = "bill-serial"

# Raised when two processes race on the counter row or on serial_no itself
SERIAL_RETRY_EXCEPTIONS = (IntegrityError,)


def _bill_model(variant: str):
    model = BILL_MODELS.get(variant)
    if model is None:
        raise ValidationError(f"Unknown bill variant: {variant}", code="INVALID_VARIANT")
    return model


def max_existing_serial(variant: str) -> int:
    model = _bill_model(variant)
    return int(db.session.query(func.coalesce(func.max(model.serial_no), 0)).scalar() or 0)


def _ensure_sequence_row(variant: str) -> None:
    """
    Create the counter row on first use.

    Another process can win the creation race; the unique constraint then
    raises IntegrityError, which callers retry via SERIAL_RETRY_EXCEPTIONS.
    """
    exists = db.session.query(BillSequence.id).filter_by(variant=variant).scalar()
    if exists:
        return
    db.session.add(BillSequence(variant=variant, last_serial=0))
    db.session.flush()


def next_serial(variant: str) -> int:
    """
    Allocate the next bill number for a variant.

    Returns max(existing serial_no, last allocated) + 1, or 1 for the first
    bill. The counter row is bumped with one atomic UPDATE, so the value is
    fixed into the caller's DB transaction. Callers that insert the bill must
    hold serial_lock(variant) until they commit; the unique constraint on
    serial_no backs this up across processes.

    Does NOT commit.
    """
    _bill_model(variant)
    with keyed_lock(SERIAL_LOCK, variant):
        _ensure_sequence_row(variant)
        floor = max_existing_serial(variant)

        stmt = (
            update(BillSequence)
            .where(BillSequence.variant == variant)
            .values(
                last_serial=case(
                    (BillSequence.last_serial < floor, floor),
                    else_=BillSequence.last_serial,
                ) + 1
            )
        )
        db.session.execute(stmt)
        db.session.flush()

        return int(
            db.session.query(BillSequence.last_serial).filter_by(variant=variant).scalar()
        )


def reserve_serial(variant: str) -> int:
    """Allocate and commit a serial without creating a bill."""
    def _op() -> int:
        with serial_lock(variant):
            serial = next_serial(variant)
            db.session.commit()
            return serial

    return run_with_retry(_op, retry_on=SERIAL_RETRY_EXCEPTIONS)


def peek_next_serial(variant: str) -> int:
    """Preview of the number the next bill will get. Reserves nothing."""
    _bill_model(variant)
    last = db.session.query(BillSequence.last_serial).filter_by(variant=variant).scalar() or 0
    return max(int(last), max_existing_serial(variant)) + 1


def serial_lock(variant: str):
    """Hold across next_serial() + bill insert + commit."""
    return keyed_lock(SERIAL_LOCK, variant)
