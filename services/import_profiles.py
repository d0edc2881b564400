"""
Import profiles: the per-entity configuration the import engine runs on.

Each supported entity type is described by one ImportProfile: its
importable fields (in display order), the natural key used to decide
create vs update, the storage table and, through its reference fields,
how foreign values are looked up. The engine itself is entity-agnostic.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from exceptions import UnknownEntityTypeError
from models.import_field import FieldDefinition, FieldType, ReferenceLookup


@dataclass(frozen=True)
class ImportProfile:
    """Field schema, natural key and storage table for one entity type."""
    entity_type: str
    label: str
    table: str
    fields: tuple[FieldDefinition, ...]
    natural_key: tuple[str, ...]
    natural_key_case_insensitive: bool = True
    id_column: str = "id"

    def __post_init__(self):
        keys = [f.key for f in self.fields]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate field keys in profile '{self.entity_type}'")
        for key in self.natural_key:
            if key not in keys:
                raise ValueError(f"Natural key '{key}' is not a field of '{self.entity_type}'")

    def field(self, key: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    @property
    def field_keys(self) -> list[str]:
        return [f.key for f in self.fields]

    @property
    def required_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.required]

    @property
    def reference_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.is_reference]

    @property
    def natural_key_columns(self) -> tuple[str, ...]:
        """Storage columns backing the natural key."""
        return tuple(self.field(k).storage_column for k in self.natural_key)

    def build_record(self, values: dict[str, Any], references: dict[str, str]) -> dict[str, Any]:
        """
        Build the storage payload for one row.

        Args:
            values: Coerced non-reference values keyed by field key
            references: Resolved entity ids keyed by reference field key

        Returns:
            Dict keyed by storage column, JSON-serializable
        """
        record: dict[str, Any] = {}
        for f in self.fields:
            if f.is_reference:
                if f.key in references:
                    record[f.storage_column] = references[f.key]
            elif f.key in values:
                record[f.storage_column] = _serialize(values[f.key])
        return record

    def to_info(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "label": self.label,
            "natural_key": list(self.natural_key),
            "fields": [f.to_metadata() for f in self.fields],
        }


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


# ===================
# REFERENCE LOOKUPS
# ===================

CUSTOMER_BY_NAME = ReferenceLookup(entity="customer", table="customers", lookup_column="name")
USER_BY_EMAIL = ReferenceLookup(entity="user", table="users", lookup_column="email")
EMPLOYEE_BY_EMAIL = ReferenceLookup(entity="employee", table="employees", lookup_column="email")
EMPLOYEE_BY_NUMBER = ReferenceLookup(
    entity="employee",
    table="employees",
    lookup_column="employee_number",
    case_insensitive=False,
)
CONTACT_BY_EMAIL = ReferenceLookup(entity="contact", table="contacts", lookup_column="email")
POSITION_BY_TITLE = ReferenceLookup(entity="job_position", table="job_positions", lookup_column="title")
ACTIVITY_TYPE_BY_NAME = ReferenceLookup(entity="activity_type", table="activity_types", lookup_column="name")


# ===================
# PROFILES
# ===================

CONTACTS = ImportProfile(
    entity_type="contacts",
    label="Contacts",
    table="contacts",
    natural_key=("email",),
    fields=(
        FieldDefinition("email", "Email", "Contact email address", required=True, field_type=FieldType.EMAIL),
        FieldDefinition("first_name", "First Name"),
        FieldDefinition("last_name", "Last Name"),
        FieldDefinition("phone", "Phone"),
        FieldDefinition("role", "Role", "Job title at the customer"),
        FieldDefinition(
            "customer", "Customer", "Customer name (must exist)",
            field_type=FieldType.REFERENCE, reference=CUSTOMER_BY_NAME, column="customer_id",
        ),
        FieldDefinition("linkedin_url", "LinkedIn URL"),
        FieldDefinition("notes", "Notes"),
    ),
)

EMPLOYEES = ImportProfile(
    entity_type="employees",
    label="Employees",
    table="employees",
    natural_key=("email",),
    fields=(
        FieldDefinition("email", "Email", "Work email address", required=True, field_type=FieldType.EMAIL),
        FieldDefinition("employee_number", "Employee Number", required=True),
        FieldDefinition("first_name", "First Name", required=True),
        FieldDefinition("last_name", "Last Name", required=True),
        FieldDefinition("job_title", "Job Title", required=True),
        FieldDefinition("department", "Department"),
        FieldDefinition(
            "status", "Status",
            field_type=FieldType.ENUM,
            choices=("ACTIVE", "ON_LEAVE", "TERMINATED", "RESIGNED"),
            default_choice="ACTIVE",
        ),
        FieldDefinition(
            "contract_type", "Contract Type",
            field_type=FieldType.ENUM,
            choices=("FULL_TIME", "PART_TIME", "CONTRACT", "INTERNSHIP"),
            default_choice="FULL_TIME",
        ),
        FieldDefinition("hire_date", "Hire Date", required=True, field_type=FieldType.DATE),
        FieldDefinition("termination_date", "Termination Date", field_type=FieldType.DATE),
        FieldDefinition("salary", "Salary", field_type=FieldType.NUMBER),
        FieldDefinition("salary_currency", "Salary Currency"),
        FieldDefinition("phone", "Phone"),
        FieldDefinition(
            "manager", "Manager Email", "Email of an existing employee",
            field_type=FieldType.REFERENCE, reference=EMPLOYEE_BY_EMAIL, column="manager_id",
        ),
    ),
)

CANDIDATES = ImportProfile(
    entity_type="candidates",
    label="Candidates",
    table="candidates",
    natural_key=("email",),
    fields=(
        FieldDefinition("email", "Email", required=True, field_type=FieldType.EMAIL),
        FieldDefinition("first_name", "First Name", required=True),
        FieldDefinition("last_name", "Last Name", required=True),
        FieldDefinition("phone", "Phone"),
        FieldDefinition("current_title", "Current Title"),
        FieldDefinition(
            "stage", "Stage",
            field_type=FieldType.ENUM,
            choices=("APPLIED", "SCREENING", "INTERVIEW", "OFFER", "HIRED", "REJECTED"),
            default_choice="APPLIED",
        ),
        FieldDefinition("expected_salary", "Expected Salary", field_type=FieldType.NUMBER),
        FieldDefinition("salary_currency", "Salary Currency"),
        FieldDefinition("source", "Source", "Where the candidate came from"),
        FieldDefinition("applied_date", "Applied Date", field_type=FieldType.DATE),
        FieldDefinition(
            "recruiter", "Recruiter Email",
            field_type=FieldType.REFERENCE, reference=USER_BY_EMAIL, column="recruiter_id",
        ),
        FieldDefinition(
            "position", "Position", "Title of an open job position",
            field_type=FieldType.REFERENCE, reference=POSITION_BY_TITLE, column="position_id",
        ),
        FieldDefinition(
            "activity_type", "Activity Type",
            field_type=FieldType.REFERENCE, reference=ACTIVITY_TYPE_BY_NAME, column="activity_type_id",
        ),
    ),
)

OPPORTUNITIES = ImportProfile(
    entity_type="opportunities",
    label="Opportunities",
    table="opportunities",
    natural_key=("title",),
    fields=(
        FieldDefinition("title", "Title", required=True),
        FieldDefinition(
            "contact", "Contact Email", "Email of an existing contact",
            required=True,
            field_type=FieldType.REFERENCE, reference=CONTACT_BY_EMAIL, column="contact_id",
        ),
        FieldDefinition(
            "customer", "Customer",
            field_type=FieldType.REFERENCE, reference=CUSTOMER_BY_NAME, column="customer_id",
        ),
        FieldDefinition(
            "owner", "Owner Email",
            field_type=FieldType.REFERENCE, reference=USER_BY_EMAIL, column="owner_id",
        ),
        FieldDefinition("value", "Value", "Deal value", field_type=FieldType.NUMBER),
        FieldDefinition(
            "type", "Type",
            field_type=FieldType.ENUM,
            choices=("STAFF_AUGMENTATION", "SOFTWARE_SUBSCRIPTION", "HYBRID"),
        ),
        FieldDefinition(
            "stage", "Stage",
            field_type=FieldType.ENUM,
            choices=("PROSPECTING", "QUALIFICATION", "PROPOSAL", "NEGOTIATION", "CLOSED_WON", "CLOSED_LOST"),
            default_choice="PROSPECTING",
        ),
        FieldDefinition("description", "Description"),
        FieldDefinition("is_won", "Won", field_type=FieldType.BOOLEAN),
        FieldDefinition("is_closed", "Closed", field_type=FieldType.BOOLEAN),
        FieldDefinition("expected_close_date", "Expected Close Date", field_type=FieldType.DATE),
    ),
)

ATTENDANCE = ImportProfile(
    entity_type="attendance",
    label="Attendance Records",
    table="attendance_records",
    natural_key=("employee", "date"),
    natural_key_case_insensitive=False,
    fields=(
        FieldDefinition(
            "employee", "Employee Number", required=True,
            field_type=FieldType.REFERENCE, reference=EMPLOYEE_BY_NUMBER, column="employee_id",
        ),
        FieldDefinition("date", "Date", required=True, field_type=FieldType.DATE),
        FieldDefinition("check_in", "Check In", "Time in HH:MM"),
        FieldDefinition("check_out", "Check Out", "Time in HH:MM"),
        FieldDefinition(
            "status", "Status",
            field_type=FieldType.ENUM,
            choices=("PRESENT", "ABSENT", "LATE", "REMOTE", "ON_LEAVE"),
            default_choice="PRESENT",
        ),
        FieldDefinition("notes", "Notes"),
    ),
)


# A lead is identified by its title together with its contact
LEADS = ImportProfile(
    entity_type="leads",
    label="Leads",
    table="leads",
    natural_key=("title", "contact"),
    fields=(
        FieldDefinition("title", "Lead Title", "Title or summary of the lead", required=True),
        FieldDefinition(
            "contact", "Contact Email", "Email of an existing contact",
            required=True,
            field_type=FieldType.REFERENCE, reference=CONTACT_BY_EMAIL, column="contact_id",
        ),
        FieldDefinition("description", "Description"),
        FieldDefinition(
            "status", "Status",
            field_type=FieldType.ENUM,
            choices=("NEW", "CONTACTED", "QUALIFIED", "PROPOSAL", "WON", "LOST"),
            default_choice="NEW",
        ),
        FieldDefinition("value", "Value", "Estimated deal value", field_type=FieldType.NUMBER),
        FieldDefinition("probability", "Probability (%)", field_type=FieldType.NUMBER),
        FieldDefinition("source", "Source", "Where the lead came from"),
        FieldDefinition("expected_close_date", "Expected Close Date", field_type=FieldType.DATE),
        FieldDefinition(
            "customer", "Customer", "Customer name (must exist)",
            field_type=FieldType.REFERENCE, reference=CUSTOMER_BY_NAME, column="converted_customer_id",
        ),
        FieldDefinition(
            "owner", "Owner Email",
            field_type=FieldType.REFERENCE, reference=USER_BY_EMAIL, column="assigned_to_id",
        ),
    ),
)

INVOICES = ImportProfile(
    entity_type="invoices",
    label="Invoices",
    table="invoices",
    natural_key=("invoice_number",),
    natural_key_case_insensitive=False,
    fields=(
        FieldDefinition("invoice_number", "Invoice Number", "Unique invoice number", required=True),
        FieldDefinition(
            "customer", "Customer", "Customer name (must exist)",
            required=True,
            field_type=FieldType.REFERENCE, reference=CUSTOMER_BY_NAME, column="customer_id",
        ),
        FieldDefinition("issue_date", "Issue Date", required=True, field_type=FieldType.DATE),
        FieldDefinition("due_date", "Due Date", required=True, field_type=FieldType.DATE),
        FieldDefinition("paid_date", "Paid Date", field_type=FieldType.DATE),
        FieldDefinition(
            "status", "Status",
            field_type=FieldType.ENUM,
            choices=("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED"),
            default_choice="DRAFT",
        ),
        FieldDefinition("subtotal", "Subtotal", "Amount before tax", field_type=FieldType.NUMBER),
        FieldDefinition("tax_rate", "Tax Rate", "Tax rate percentage", field_type=FieldType.NUMBER),
        FieldDefinition("tax_amount", "Tax Amount", field_type=FieldType.NUMBER),
        FieldDefinition("total", "Total", "Amount including tax", required=True, field_type=FieldType.NUMBER),
        FieldDefinition("currency", "Currency", "Three-letter currency code"),
        FieldDefinition("notes", "Notes"),
    ),
)


_PROFILES: dict[str, ImportProfile] = {
    p.entity_type: p
    for p in (CONTACTS, LEADS, OPPORTUNITIES, CANDIDATES, EMPLOYEES, ATTENDANCE, INVOICES)
}


def get_import_profile(entity_type: str) -> ImportProfile:
    """
    Get the profile for an entity type.

    Raises:
        UnknownEntityTypeError: If no profile is registered
    """
    profile = _PROFILES.get(entity_type)
    if profile is None:
        raise UnknownEntityTypeError(entity_type)
    return profile


def list_import_profiles() -> list[ImportProfile]:
    """All registered profiles, in registration order."""
    return list(_PROFILES.values())
