"""Tests for display labels and formatting."""

from decimal import Decimal

import pytest

from claims_portal.services import display

from conftest import make_claim


@pytest.mark.parametrize(
    "status, expected",
    [
        ("under_review", "In Review"),
        ("pending_documents", "Pending"),
        ("APPROVED", "Approved"),
        ("appealed", "Appealed"),
        ("needs_more_info", "Needs More Info"),
        (None, "Unknown"),
    ],
)
def test_format_status(status, expected):
    assert display.format_status(status) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (12500, "₱12,500.00"),
        (Decimal("1234567.5"), "₱1,234,567.50"),
        ("99.999", "₱100.00"),
        (-250, "-₱250.00"),
        (None, "₱0.00"),
        ("", "₱0.00"),
        ("n/a", "₱0.00"),
    ],
)
def test_format_currency(value, expected):
    assert display.format_currency(value) == expected


def test_document_type_names():
    assert display.document_type_name("lto_cr") == "LTO Certificate of Registration"
    assert display.document_type_name("tow_receipt") == "Tow Receipt"
    assert display.document_type_name(None) == "Document"


def test_rejection_labels():
    assert display.rejection_reason_label("document_forged") == "Document appears to be forged"
    assert display.rejection_reason_label("Other: wrong plate") == "Other: wrong plate"
    assert display.rejection_reason_label(None) is None


def test_audit_labels():
    assert display.action_label("car_company_approval") == "Car Co. Approval"
    assert display.action_label(None) == "Other Action"
    assert display.status_label("failure") == "Failed"
    assert display.status_label("timed_out") == "Timed Out"


def test_vehicle_summary():
    assert display.vehicle_summary(make_claim()) == "2020 Toyota Vios (ABC 1234)"
    assert display.vehicle_summary(make_claim(vehicle_year=None, vehicle_make=None, vehicle_model=None)) == "ABC 1234"
    assert display.vehicle_summary(
        make_claim(vehicle_year=None, vehicle_make=None, vehicle_model=None, vehicle_plate_number=None)
    ) == "Vehicle details unavailable"
