# Overview: Service-layer operations for JSON imports; runs in a background worker.

"""
Vendor Data Import Service

WHY: Vendors moving from another system bring their GST slabs, customers,
challans, bills and payments as one JSON document. Imports can be large, so
the HTTP request only records an ImportJob and answers 202; a Celery
worker does the inserts and records the outcome on the job for polling.

PHASES (each committed in batches of IMPORT_BATCH_SIZE):
1. gst_slabs  - skipped when the slab name exists
2. customers  - skipped when the mobile number exists
3. challans   - matched to customers by customer_mobile; totals recomputed from items
4. bills      - matched by customer_mobile; pending/status re-derived from totals
5. payments   - historical rows; no bill adjustments, no snapshots

A row that fails is recorded in the summary and skipped; a failure of the
phase itself (database down) fails the job.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

from celery import shared_task
from flask import current_app

from ..errors import BillingError, NotFound, ValidationError
from ..extensions import db
from ..models import Bill, BillItem, Challan, ChallanItem, Customer, GstSlab, ImportJob, Payment
from ..money import ZERO, round2, to_decimal
from billing.time_utils import parse_date, today, utcnow
from .bill_service import settle_bill
from .challan_service import price_line
from .invoice_sequence_service import get_settings
from .payment_service import VALID_METHODS, VALID_SUB_TYPES
from .statuses import (
    BILL_PENDING,
    CHALLAN_UNPAID,
    PAYMENT_COMPLETED,
    VALID_BILL_STATUSES,
    VALID_CHALLAN_STATUSES,
    VALID_PAYMENT_STATUSES,
    VALID_PAYMENT_TYPES,
)
from .tenant_service import require_vendor


# =============================================================================
# JOB STATUS (CONSTANTS)
# =============================================================================

JOB_ACCEPTED = "accepted"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

IMPORT_TASK_NAME = "billing.run_import"

ENTITIES = ["gst_slabs", "customers", "challans", "bills", "payments"]

DEFAULT_BATCH_SIZE = 100


def _empty_summary() -> dict:
    return {entity: {"inserted": 0, "skipped": 0, "errors": []} for entity in ENTITIES}


def _batch_size() -> int:
    return int(current_app.config.get("IMPORT_BATCH_SIZE") or DEFAULT_BATCH_SIZE)


def _skip(summary: dict, entity: str, key: Any, error: str | None = None) -> None:
    summary[entity]["skipped"] += 1
    if error:
        summary[entity]["errors"].append({"key": key, "error": error})


def _count_insert(summary: dict, entity: str, batch_size: int) -> None:
    summary[entity]["inserted"] += 1
    if summary[entity]["inserted"] % batch_size == 0:
        db.session.commit()
        current_app.logger.info("Import %s: %d inserted", entity, summary[entity]["inserted"])


def _customer_map(vendor_id: int) -> dict[str, int]:
    rows = db.session.query(Customer.mobile_number, Customer.id).filter(Customer.created_by == vendor_id).all()
    return {mobile: customer_id for mobile, customer_id in rows}


def _rows(data: dict, key: str) -> list:
    rows = data.get(key) or []
    if not isinstance(rows, list):
        raise ValidationError(f"{key} must be a list")
    return rows


# =============================================================================
# PHASES
# =============================================================================

def _import_gst_slabs(vendor_id: int, data: dict, summary: dict, batch_size: int) -> None:
    existing = {
        name for (name,) in db.session.query(GstSlab.slab_name).filter(GstSlab.vendor_id == vendor_id).all()
    }
    for raw in _rows(data, "gst_slabs"):
        name = str(raw.get("slab_name") or "").strip() if isinstance(raw, dict) else ""
        if not name or raw.get("rate") is None:
            _skip(summary, "gst_slabs", name or None)
            continue
        if name in existing:
            _skip(summary, "gst_slabs", name)
            continue
        try:
            rate = to_decimal(raw["rate"], "rate")
        except ValidationError as exc:
            _skip(summary, "gst_slabs", name, exc.message)
            continue
        db.session.add(GstSlab(
            vendor_id=vendor_id,
            slab_name=name,
            rate=rate,
            priority=int(raw.get("priority") or 0),
            active=bool(raw.get("active", True)),
        ))
        existing.add(name)
        _count_insert(summary, "gst_slabs", batch_size)
    db.session.commit()


def _import_customers(vendor_id: int, data: dict, summary: dict, batch_size: int) -> None:
    existing = set(_customer_map(vendor_id))
    for raw in _rows(data, "customers"):
        if not isinstance(raw, dict):
            _skip(summary, "customers", None, "customer must be an object")
            continue
        name = str(raw.get("customer_name") or "").strip()
        mobile = str(raw.get("mobile_number") or "").strip()
        if not name or not mobile:
            _skip(summary, "customers", mobile or None)
            continue
        if mobile in existing:
            _skip(summary, "customers", mobile)
            continue
        db.session.add(Customer(
            created_by=vendor_id,
            customer_name=name,
            business_name=raw.get("business_name"),
            mobile_number=mobile,
            gst_number=raw.get("gst_number"),
        ))
        existing.add(mobile)
        _count_insert(summary, "customers", batch_size)
    db.session.commit()


def _import_challans(vendor_id: int, data: dict, summary: dict, batch_size: int) -> None:
    customers = _customer_map(vendor_id)
    existing = {
        number for (number,) in db.session.query(Challan.challan_number).filter(Challan.vendor_id == vendor_id).all()
    }
    for raw in _rows(data, "challans"):
        number = raw.get("challan_number") if isinstance(raw, dict) else None
        if not number or not raw.get("customer_mobile"):
            _skip(summary, "challans", number)
            continue
        if number in existing:
            _skip(summary, "challans", number)
            continue
        customer_id = customers.get(str(raw["customer_mobile"]).strip())
        if not customer_id:
            _skip(summary, "challans", number, "Customer not found")
            continue

        try:
            items = []
            for position, item in enumerate(raw.get("items") or []):
                line = price_line(item.get("qty"), item.get("price_per_unit"), item.get("gst_percent") or 0)
                items.append(ChallanItem(
                    position=position,
                    product_id=item.get("product_id"),
                    product_name=str(item.get("product_name") or "Item").strip(),
                    size=item.get("size"),
                    qty=line.qty,
                    price_per_unit=line.price_per_unit,
                    amount=line.amount,
                    gst_percent=line.gst_percent,
                    gst_amount=line.gst_amount,
                    total_with_gst=line.total_with_gst,
                ))
            status = raw.get("status") or CHALLAN_UNPAID
            if status not in VALID_CHALLAN_STATUSES:
                raise ValidationError(f"Invalid status: {status}")
            challan_date = parse_date(raw.get("challan_date")) or today()
        except (BillingError, ValueError, AttributeError) as exc:
            _skip(summary, "challans", number, str(exc))
            continue

        subtotal = sum((i.amount for i in items), ZERO)
        gst_total = sum((i.gst_amount for i in items), ZERO)
        challan = Challan(
            vendor_id=vendor_id,
            customer_id=customer_id,
            challan_number=str(number),
            challan_date=challan_date,
            subtotal=subtotal,
            gst_total=gst_total,
            total_without_gst=subtotal,
            total_with_gst=subtotal + gst_total,
            status=status,
            note=raw.get("note"),
        )
        challan.items = items
        db.session.add(challan)
        existing.add(number)
        _count_insert(summary, "challans", batch_size)
    db.session.commit()


def _import_bills(vendor_id: int, data: dict, summary: dict, batch_size: int) -> None:
    customers = _customer_map(vendor_id)
    existing = {
        number for (number,) in db.session.query(Bill.bill_number).filter(Bill.vendor_id == vendor_id).all()
    }
    settings = get_settings(vendor_id, lock=True)
    used = set(int(n) for n in (settings.used_numbers or []))

    for raw in _rows(data, "bills"):
        number = raw.get("bill_number") if isinstance(raw, dict) else None
        if not number or not raw.get("customer_mobile"):
            _skip(summary, "bills", number)
            continue
        if number in existing:
            _skip(summary, "bills", number)
            continue
        customer_id = customers.get(str(raw["customer_mobile"]).strip())
        if not customer_id:
            _skip(summary, "bills", number, "Customer not found")
            continue

        try:
            invoice_count = int(raw["invoice_count"]) if raw.get("invoice_count") not in (None, "") else None
            if invoice_count is not None and invoice_count in used:
                raise ValidationError(f"Invoice number {invoice_count} is already used")
            status = raw.get("status") or BILL_PENDING
            if status not in VALID_BILL_STATUSES:
                raise ValidationError(f"Invalid status: {status}")
            items = [
                BillItem(
                    position=position,
                    description=str(item.get("description") or "Item"),
                    qty=to_decimal(item.get("qty"), "qty"),
                    rate=to_decimal(item.get("rate"), "rate"),
                    amount=round2(item.get("amount")),
                    gst_percent=to_decimal(item.get("gst_percent"), "gst_percent"),
                    total_with_gst=round2(item.get("total_with_gst") or item.get("amount")),
                )
                for position, item in enumerate(raw.get("items") or [])
            ]
            subtotal = round2(raw.get("subtotal"))
            bill = Bill(
                vendor_id=vendor_id,
                customer_id=customer_id,
                bill_number=str(number),
                invoice_prefix=raw.get("invoice_prefix") or settings.prefix,
                custom_invoice_prefix=raw.get("custom_invoice_prefix"),
                invoice_count=invoice_count,
                invoice_template=raw.get("invoice_template") or settings.invoice_template,
                bill_date=parse_date(raw.get("bill_date")) or today(),
                discount_percent=to_decimal(raw.get("discount_percent"), "discount_percent"),
                gst_percent=to_decimal(raw.get("gst_percent"), "gst_percent"),
                discount_amount=round2(raw.get("discount_amount")),
                subtotal=subtotal,
                gst_total=round2(raw.get("gst_total")),
                total_without_gst=round2(raw.get("total_without_gst") or subtotal),
                total_with_gst=round2(raw.get("total_with_gst")),
                status=status,
                note=raw.get("note"),
                challan_ids=json.dumps([]),
            )
        except (BillingError, ValueError, AttributeError) as exc:
            _skip(summary, "bills", number, str(exc))
            continue

        bill.items = items
        settle_bill(bill, round2(raw.get("paid_amount")))
        db.session.add(bill)
        existing.add(number)

        # Imported numbers join the issued run so the sequencer never repeats them
        if invoice_count is not None:
            used.add(invoice_count)
            settings.used_numbers = sorted(used)
            if invoice_count >= settings.current_count:
                settings.current_count = invoice_count + 1
        _count_insert(summary, "bills", batch_size)
    db.session.commit()


def _import_payments(vendor_id: int, data: dict, summary: dict, batch_size: int) -> None:
    customers = _customer_map(vendor_id)
    existing = {
        number for (number,) in db.session.query(Payment.payment_number).filter(Payment.vendor_id == vendor_id).all()
    }
    for raw in _rows(data, "payments"):
        number = raw.get("payment_number") if isinstance(raw, dict) else None
        if not number or not raw.get("type") or not raw.get("amount") or not raw.get("payment_date"):
            _skip(summary, "payments", number)
            continue
        if number in existing:
            _skip(summary, "payments", number)
            continue

        customer_id = None
        if raw.get("customer_mobile"):
            customer_id = customers.get(str(raw["customer_mobile"]).strip())
            if not customer_id:
                _skip(summary, "payments", number, "Customer not found")
                continue

        try:
            sub_type = raw.get("sub_type") or ("customer" if customer_id else "miscellaneous")
            method = raw.get("method") or "cash"
            status = raw.get("status") or PAYMENT_COMPLETED
            if raw["type"] not in VALID_PAYMENT_TYPES:
                raise ValidationError(f"Invalid payment type: {raw['type']}")
            if sub_type not in VALID_SUB_TYPES or method not in VALID_METHODS or status not in VALID_PAYMENT_STATUSES:
                raise ValidationError("Invalid sub_type, method or status")
            if (sub_type == "customer") != (customer_id is not None):
                raise ValidationError("customer_mobile is required exactly for customer payments")
            payment = Payment(
                vendor_id=vendor_id,
                customer_id=customer_id,
                payment_number=str(number),
                type=raw["type"],
                sub_type=sub_type,
                amount=round2(raw["amount"]),
                payment_date=parse_date(raw["payment_date"]),
                method=method,
                reference=raw.get("reference"),
                note=raw.get("note"),
                status=status,
                is_opening_balance=False,
                opening_balance=ZERO,
            )
        except (BillingError, ValueError) as exc:
            _skip(summary, "payments", number, str(exc))
            continue

        db.session.add(payment)
        existing.add(number)
        _count_insert(summary, "payments", batch_size)
    db.session.commit()


# =============================================================================
# ENTRY POINTS
# =============================================================================

def process_import(vendor_id: int, data: dict) -> dict:
    """
    Run every phase for one vendor and return the per-entity summary.

    Raises ValidationError if data is not a JSON object.
    """
    if not isinstance(data, dict):
        raise ValidationError("Import data must be a JSON object")
    require_vendor(vendor_id)

    summary = _empty_summary()
    batch_size = _batch_size()
    current_app.logger.info("Starting import for vendor %s", vendor_id)

    _import_gst_slabs(vendor_id, data, summary, batch_size)
    _import_customers(vendor_id, data, summary, batch_size)
    _import_challans(vendor_id, data, summary, batch_size)
    _import_bills(vendor_id, data, summary, batch_size)
    _import_payments(vendor_id, data, summary, batch_size)

    current_app.logger.info(
        "Import for vendor %s finished: %s",
        vendor_id,
        {entity: summary[entity]["inserted"] for entity in ENTITIES},
    )
    return summary


def run_import_job(job_id: int, data: dict) -> ImportJob:
    """
    Execute an accepted job and record its outcome.

    A job that already finished is returned untouched, so a redelivered
    task message does not import twice. A job left running by a lost
    worker is run again; every phase skips rows that already exist.
    """
    job = db.session.query(ImportJob).filter_by(id=job_id).first()
    if not job:
        raise NotFound("Import job not found")
    if job.status in (JOB_COMPLETED, JOB_FAILED):
        current_app.logger.info("Import job %s already %s, skipping", job_id, job.status)
        return job

    job.status = JOB_RUNNING
    job.started_at = utcnow()
    db.session.commit()

    try:
        summary = process_import(job.vendor_id, data)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Import job %s failed", job_id)
        job = db.session.query(ImportJob).filter_by(id=job_id).first()
        job.status = JOB_FAILED
        job.error_message = exc.message if isinstance(exc, BillingError) else str(exc)
        job.completed_at = utcnow()
        db.session.commit()
        return job

    job.status = JOB_COMPLETED
    job.summary = summary
    job.completed_at = utcnow()
    db.session.commit()
    return job


# acks_late + reject_on_worker_lost: a worker that dies mid-import hands the message back to the broker
@shared_task(name=IMPORT_TASK_NAME, ignore_result=True, acks_late=True, reject_on_worker_lost=True)
def run_import_task(job_id, data):
    run_import_job(job_id, data)


def start_import(vendor_id: int, data: dict, source_file_name: str | None = None) -> ImportJob:
    """
    Accept an import and queue it on the Celery worker.

    With IMPORT_RUN_ASYNC off (tests, CLI) the job runs before returning.
    """
    if not isinstance(data, dict):
        raise ValidationError("Import data must be a JSON object")
    require_vendor(vendor_id)

    job = ImportJob(vendor_id=vendor_id, status=JOB_ACCEPTED, source_file_name=source_file_name)
    db.session.add(job)
    db.session.commit()

    if current_app.config.get("IMPORT_RUN_ASYNC", True):
        # The task registered on this Flask app's Celery instance runs in this app's context
        celery_app = current_app.extensions["celery"]
        celery_app.tasks[IMPORT_TASK_NAME].delay(job.id, data)
        current_app.logger.info("Import job %s accepted for vendor %s", job.id, vendor_id)
        return job

    return run_import_job(job.id, data)


def fail_stale_jobs(max_age_minutes: int | None = None) -> list[ImportJob]:
    """
    Fail accepted/running jobs older than max_age_minutes.

    Covers jobs whose message was lost with the broker, so pollers always
    reach a terminal status. Defaults to IMPORT_STALE_MINUTES.
    """
    if max_age_minutes is None:
        max_age_minutes = current_app.config.get("IMPORT_STALE_MINUTES", 60)
    cutoff = utcnow() - timedelta(minutes=max_age_minutes)

    stale = (
        db.session.query(ImportJob)
        .filter(ImportJob.status.in_([JOB_ACCEPTED, JOB_RUNNING]), ImportJob.created_at < cutoff)
        .order_by(ImportJob.id.asc())
        .all()
    )
    for job in stale:
        job.status = JOB_FAILED
        job.error_message = f"Import did not finish within {max_age_minutes} minutes"
        job.completed_at = utcnow()
        current_app.logger.warning("Import job %s marked failed as stale", job.id)
    db.session.commit()
    return stale


def get_import_job(job_id: int, vendor_id: int) -> ImportJob:
    job = db.session.query(ImportJob).filter_by(id=job_id, vendor_id=vendor_id).first()
    if not job:
        raise NotFound("Import job not found")
    return job
