"""Parser for bulk purchase-order uploads.

Accepted layouts are a delimited text file, an Excel workbook (first sheet)
or a JSON array of objects.  Column headers are compared after lower-casing
and removing whitespace, so ``Supplier No`` and ``supplierno`` are the same
column.  Any field left empty falls back to the documented default.
"""

from __future__ import annotations

import json
import zipfile
from pathlib import Path
from typing import Any, Iterable

import pandas as pd
from pydantic import BaseModel

from p2pflow.core.errors import UnsupportedUploadError

CSV_TYPES = {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel.csv"}
XLSX_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
XLS_TYPES = {"application/vnd.ms-excel"}
JSON_TYPES = {"application/json", "text/json"}

SUFFIX_FORMATS = {
    ".csv": "csv",
    ".txt": "csv",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".xls": "xls",
    ".json": "json",
}

# field -> accepted (normalized) column names, first non-empty wins
COLUMN_SYNONYMS: dict[str, tuple[str, ...]] = {
    "supplier": ("supplier", "supplierno", "vendor"),
    "document_date": ("documentdate", "date", "docdate"),
    "purchase_org": ("purchaseorg", "purchorg", "porg"),
    "purchase_group": ("purchasegroup", "purchgroup", "pgroup"),
    "company_code": ("companycode", "company"),
    "account_assignment": ("accountassignment", "acctassign", "aa"),
    "material": ("material", "mat"),
    "quantity": ("quantity", "poquantity", "qty"),
    "unit": ("unit", "unitofmeasure", "uom"),
    "price": ("price", "netprice"),
    "plant": ("plant",),
    "gl_account": ("glaccount", "gl"),
    "cost_center": ("costcenter", "cc"),
}

FIELD_DEFAULTS: dict[str, str] = {
    "supplier": "",
    "document_date": "",
    "purchase_org": "ACS",
    "purchase_group": "ACS",
    "company_code": "ACS",
    "account_assignment": "K",
    "material": "P-A2026-3",
    "quantity": "1",
    "unit": "EA",
    "price": "1000",
    "plant": "ACS",
    "gl_account": "610010",
    "cost_center": "ACSC110",
}


class BulkPORecord(BaseModel):
    supplier: str = ""
    document_date: str = ""
    purchase_org: str = "ACS"
    purchase_group: str = "ACS"
    company_code: str = "ACS"
    account_assignment: str = "K"
    material: str = "P-A2026-3"
    quantity: str = "1"
    unit: str = "EA"
    price: str = "1000"
    plant: str = "ACS"
    gl_account: str = "610010"
    cost_center: str = "ACSC110"

    def to_params(self) -> dict[str, str]:
        """Environment-style parameters for the purchase-order step."""

        return {field.upper(): value for field, value in self.model_dump().items()}

    def in_excluded_years(self, years: Iterable[str]) -> bool:
        return bool(self.document_date) and any(year and year in self.document_date for year in years)


def _normalise_key(key: Any) -> str:
    return "".join(str(key).lower().split())


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return "" if text.lower() == "nan" else text


def map_row(row: dict[str, Any]) -> BulkPORecord:
    """Map one raw row onto a record, applying synonyms and defaults."""

    normalised = {_normalise_key(key): _cell(value) for key, value in row.items()}
    values: dict[str, str] = {}
    for field, synonyms in COLUMN_SYNONYMS.items():
        picked = next((normalised[name] for name in synonyms if normalised.get(name)), "")
        values[field] = picked or FIELD_DEFAULTS[field]
    return BulkPORecord(**values)


def detect_format(path: Path, content_type: str | None = None) -> str:
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared in XLSX_TYPES:
        return "xlsx"
    if declared in XLS_TYPES and path.suffix.lower() != ".csv":
        return "xls"
    if declared in JSON_TYPES:
        return "json"
    if declared in CSV_TYPES and path.suffix.lower() not in {".xlsx", ".xls", ".json"}:
        return "csv"
    fmt = SUFFIX_FORMATS.get(path.suffix.lower())
    if fmt is None:
        raise UnsupportedUploadError(f"Unsupported file type: {path.suffix or content_type or 'unknown'}")
    return fmt


def _read_frame(path: Path, fmt: str) -> pd.DataFrame:
    if fmt == "csv":
        return pd.read_csv(path, dtype=str, keep_default_na=False, skipinitialspace=True)
    if fmt in {"xlsx", "xls"}:
        return pd.read_excel(path, sheet_name=0, dtype=str, keep_default_na=False)
    with path.open("r", encoding="utf-8") as fp:
        data = json.load(fp)
    items = data if isinstance(data, list) else [data]
    if not all(isinstance(item, dict) for item in items):
        raise UnsupportedUploadError("JSON upload must be an object or a list of objects")
    return pd.DataFrame(items)


def parse_bulk_file(path: Path, content_type: str | None = None) -> list[BulkPORecord]:
    """Parse an uploaded file into ordered purchase-order records."""

    fmt = detect_format(path, content_type)
    try:
        dataframe = _read_frame(path, fmt)
    except (ValueError, OSError, ImportError, zipfile.BadZipFile) as exc:
        raise UnsupportedUploadError(f"Could not read {path.name} as {fmt}: {exc}") from exc

    dataframe = dataframe.dropna(how="all")
    records: list[BulkPORecord] = []
    for row in dataframe.to_dict(orient="records"):
        if not any(_cell(value) for value in row.values()):
            continue
        records.append(map_row(row))
    if not records:
        raise UnsupportedUploadError(f"No records found in {path.name}")
    return records
