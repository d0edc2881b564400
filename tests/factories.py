"""
Test data factories.

Builders for upload files and seeded reference data.
"""

import csv
from io import BytesIO, StringIO
from typing import Optional
from uuid import uuid4

import pandas as pd


def make_csv(
    headers: list[str],
    rows: list[list],
    delimiter: str = ",",
    encoding: str = "utf-8",
    bom: bool = False,
) -> bytes:
    """
    Build delimited file content.

    Usage:
        content = make_csv(["Email", "Name"], [["a@x.com", "Ann"]])
    """
    buffer = StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    content = buffer.getvalue().encode(encoding)
    return b"\xef\xbb\xbf" + content if bom else content


def make_xlsx(headers: list[str], rows: list[list], sheet_name: str = "Sheet1") -> bytes:
    """Build an .xlsx workbook with one sheet."""
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df = pd.DataFrame(rows, columns=headers) if rows else pd.DataFrame(columns=headers)
        df.to_excel(writer, sheet_name=sheet_name, index=False)
    return output.getvalue()


class ContactRowFactory:
    """
    Rows for a contacts upload with columns CONTACT_HEADERS.

    Usage:
        rows = ContactRowFactory.create_batch(3)
    """

    _counter = 0

    @classmethod
    def _next_counter(cls) -> int:
        cls._counter += 1
        return cls._counter

    @classmethod
    def create(
        cls,
        email: Optional[str] = None,
        first_name: str = "Ana",
        last_name: str = "Lopez",
        phone: str = "555-0100",
        customer: str = "",
    ) -> list:
        n = cls._next_counter()
        return [email or f"contact{n}@example.com", first_name, last_name, phone, customer]

    @classmethod
    def create_batch(cls, count: int, **kwargs) -> list[list]:
        return [cls.create(**kwargs) for _ in range(count)]


CONTACT_HEADERS = ["Email", "First Name", "Last Name", "Phone", "Customer"]

CONTACT_MAPPING = [
    {"target_field": "email", "source_column": "Email"},
    {"target_field": "first_name", "source_column": "First Name"},
    {"target_field": "last_name", "source_column": "Last Name"},
    {"target_field": "phone", "source_column": "Phone"},
    {"target_field": "customer", "source_column": "Customer"},
]


def customer_row(name: str, id: Optional[str] = None) -> dict:
    return {"id": id or str(uuid4()), "name": name}
