"""Shared fixtures for the patient intake test suite."""

import io
from datetime import date

import openpyxl
import pytest

from patient_intake.adapters.decoder import FileDecoder
from patient_intake.adapters.directory import InMemoryPatientDirectory
from patient_intake.adapters.formatters import DefaultDateChecker, E164PhoneFormatter
from patient_intake.domain.services.pipeline import IngestionPipeline
from patient_intake.domain.services.value_transformer import ValueTransformer

FIXED_TODAY = date(2025, 6, 1)


def fixed_today() -> date:
    return FIXED_TODAY


def campaign_config_dict() -> dict:
    """Campaign configuration in the nested ``variables`` shape."""
    return {
        "variables": {
            "patient": {
                "fields": [
                    {
                        "key": "firstName",
                        "label": "First Name",
                        "possibleColumns": ["first name", "firstname"],
                        "transform": "text",
                        "required": True,
                    },
                    {
                        "key": "lastName",
                        "label": "Last Name",
                        "possibleColumns": ["last name", "lastname"],
                        "transform": "text",
                        "required": True,
                    },
                    {
                        "key": "dob",
                        "label": "Date of Birth",
                        "possibleColumns": ["dob", "date of birth"],
                        "transform": "short_date",
                        "required": True,
                    },
                    {
                        "key": "primaryPhone",
                        "label": "Phone",
                        "possibleColumns": ["phone", "phone number"],
                        "transform": "phone",
                        "required": True,
                    },
                ],
                "validation": {
                    "requireValidPhone": True,
                    "requireValidDOB": True,
                    "requireName": True,
                },
            },
            "campaign": {
                "fields": [
                    {
                        "key": "appointmentDate",
                        "label": "Appointment Date",
                        "possibleColumns": ["appointment date", "appt date"],
                        "transform": "long_date",
                    },
                    {
                        "key": "appointmentTime",
                        "label": "Appointment Time",
                        "possibleColumns": ["appointment time", "appt time"],
                        "transform": "time",
                    },
                    {
                        "key": "provider",
                        "label": "Provider",
                        "possibleColumns": ["provider", "doctor"],
                        "transform": "provider",
                    },
                    {
                        "key": "location",
                        "label": "Location",
                        "possibleColumns": ["location", "clinic"],
                        "defaultValue": "Main Clinic",
                    },
                ]
            },
        }
    }


def build_workbook(rows: list) -> bytes:
    """Serialise ``rows`` (header first) as an in-memory xlsx workbook."""
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def transformer():
    """ValueTransformer with the clock pinned to 2025-06-01."""
    return ValueTransformer(E164PhoneFormatter(), today=fixed_today)


@pytest.fixture
def campaign_config():
    return campaign_config_dict()


@pytest.fixture
def make_pipeline():
    """Factory building a pipeline over an in-memory directory."""

    def factory(directory=None, max_workers=2, phone_formatter=None, sample_limit=5):
        return IngestionPipeline(
            decoder=FileDecoder(),
            directory=directory if directory is not None else InMemoryPatientDirectory(),
            phone_formatter=phone_formatter or E164PhoneFormatter(),
            date_checker=DefaultDateChecker(),
            max_workers=max_workers,
            sample_limit=sample_limit,
            today=fixed_today,
        )

    return factory


@pytest.fixture
def workbook_bytes():
    """Factory serialising rows into xlsx bytes."""
    return build_workbook
