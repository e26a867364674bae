"""
Idempotent seeding of the standard CRM catalog.

Seeds the built-in object types, one default property group per type, the
default property definitions, and the HUBSPOT_DEFINED association types with
their upstream numeric ids. Every insert uses INSERT OR IGNORE, so running
`seed()` against an already seeded database changes nothing.
"""

from __future__ import annotations

from typing import Dict, List, NamedTuple, Optional, Tuple

from crm_double.infrastructure.db_factory import Database
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)


class StandardType(NamedTuple):
    id: str
    name: str
    singular: str
    plural: str
    primary_display_property: str
    group: str
    group_label: str


class PropertySeed(NamedTuple):
    name: str
    label: str
    type: str
    field_type: str
    has_unique_value: bool = False


STANDARD_TYPES: Tuple[StandardType, ...] = (
    StandardType("0-1", "contacts", "Contact", "Contacts", "email", "contactinformation", "Contact Information"),
    StandardType("0-2", "companies", "Company", "Companies", "name", "companyinformation", "Company Information"),
    StandardType("0-3", "deals", "Deal", "Deals", "dealname", "dealinformation", "Deal Information"),
    StandardType("0-5", "tickets", "Ticket", "Tickets", "subject", "ticketinformation", "Ticket Information"),
    StandardType("0-7", "products", "Product", "Products", "name", "productinformation", "Product Information"),
    StandardType("0-8", "line_items", "Line Item", "Line Items", "name", "lineiteminformation", "Line Item Information"),
    StandardType("0-14", "quotes", "Quote", "Quotes", "hs_title", "quoteinformation", "Quote Information"),
    StandardType("0-27", "tasks", "Task", "Tasks", "hs_task_subject", "engagement_info", "Task Information"),
    StandardType("0-46", "notes", "Note", "Notes", "hs_note_body", "engagement_info", "Note Information"),
    StandardType("0-47", "meetings", "Meeting", "Meetings", "hs_meeting_title", "engagement_info", "Meeting Information"),
    StandardType("0-48", "calls", "Call", "Calls", "hs_call_body", "engagement_info", "Call Information"),
    StandardType("0-49", "emails", "Email", "Emails", "hs_email_subject", "engagement_info", "Email Information"),
)

# Present on every type, built-in or custom.
COMMON_PROPERTIES: Tuple[PropertySeed, ...] = (
    PropertySeed("hs_object_id", "Object ID", "number", "number"),
    PropertySeed("hs_createdate", "Create date", "datetime", "date"),
    PropertySeed("hs_lastmodifieddate", "Last modified date", "datetime", "date"),
)

TYPE_PROPERTIES: Dict[str, Tuple[PropertySeed, ...]] = {
    "0-1": (
        PropertySeed("email", "Email", "string", "text", has_unique_value=True),
        PropertySeed("firstname", "First Name", "string", "text"),
        PropertySeed("lastname", "Last Name", "string", "text"),
        PropertySeed("phone", "Phone Number", "string", "phonenumber"),
        PropertySeed("company", "Company Name", "string", "text"),
        PropertySeed("website", "Website URL", "string", "text"),
        PropertySeed("lifecyclestage", "Lifecycle Stage", "enumeration", "radio"),
        PropertySeed("hubspot_owner_id", "Owner", "string", "text"),
    ),
    "0-2": (
        PropertySeed("name", "Name", "string", "text"),
        PropertySeed("domain", "Company Domain Name", "string", "text", has_unique_value=True),
        PropertySeed("phone", "Phone Number", "string", "phonenumber"),
        PropertySeed("website", "Website URL", "string", "text"),
        PropertySeed("industry", "Industry", "enumeration", "select"),
        PropertySeed("numberofemployees", "Number of Employees", "number", "number"),
        PropertySeed("lifecyclestage", "Lifecycle Stage", "enumeration", "radio"),
        PropertySeed("hubspot_owner_id", "Owner", "string", "text"),
    ),
    "0-3": (
        PropertySeed("dealname", "Deal Name", "string", "text"),
        PropertySeed("dealstage", "Deal Stage", "enumeration", "radio"),
        PropertySeed("pipeline", "Pipeline", "enumeration", "radio"),
        PropertySeed("amount", "Amount", "number", "number"),
        PropertySeed("closedate", "Close Date", "date", "date"),
        PropertySeed("hubspot_owner_id", "Owner", "string", "text"),
    ),
    "0-5": (
        PropertySeed("subject", "Ticket Name", "string", "text"),
        PropertySeed("content", "Ticket Description", "string", "textarea"),
        PropertySeed("hs_pipeline", "Pipeline", "enumeration", "radio"),
        PropertySeed("hs_pipeline_stage", "Ticket Status", "enumeration", "radio"),
        PropertySeed("hs_ticket_priority", "Priority", "enumeration", "select"),
        PropertySeed("hubspot_owner_id", "Owner", "string", "text"),
    ),
    "0-7": (
        PropertySeed("name", "Name", "string", "text"),
        PropertySeed("description", "Description", "string", "textarea"),
        PropertySeed("price", "Unit Price", "number", "number"),
        PropertySeed("hs_sku", "SKU", "string", "text"),
    ),
    "0-8": (
        PropertySeed("name", "Name", "string", "text"),
        PropertySeed("quantity", "Quantity", "number", "number"),
        PropertySeed("price", "Unit Price", "number", "number"),
        PropertySeed("hs_product_id", "Product ID", "string", "text"),
    ),
    "0-14": (
        PropertySeed("hs_title", "Quote Name", "string", "text"),
        PropertySeed("hs_expiration_date", "Expiration Date", "date", "date"),
        PropertySeed("hs_status", "Quote Approval Status", "enumeration", "select"),
    ),
    "0-27": (
        PropertySeed("hs_task_subject", "Task Title", "string", "text"),
        PropertySeed("hs_task_body", "Task Notes", "string", "textarea"),
        PropertySeed("hs_task_status", "Task Status", "enumeration", "select"),
        PropertySeed("hs_timestamp", "Activity Date", "datetime", "date"),
    ),
    "0-46": (
        PropertySeed("hs_note_body", "Note Body", "string", "textarea"),
        PropertySeed("hs_timestamp", "Activity Date", "datetime", "date"),
    ),
    "0-47": (
        PropertySeed("hs_meeting_title", "Meeting Name", "string", "text"),
        PropertySeed("hs_meeting_start_time", "Start Time", "datetime", "date"),
        PropertySeed("hs_meeting_end_time", "End Time", "datetime", "date"),
        PropertySeed("hs_timestamp", "Activity Date", "datetime", "date"),
    ),
    "0-48": (
        PropertySeed("hs_call_body", "Call Notes", "string", "textarea"),
        PropertySeed("hs_call_direction", "Call Direction", "enumeration", "select"),
        PropertySeed("hs_call_duration", "Call Duration", "number", "number"),
        PropertySeed("hs_timestamp", "Activity Date", "datetime", "date"),
    ),
    "0-49": (
        PropertySeed("hs_email_subject", "Email Subject", "string", "text"),
        PropertySeed("hs_email_text", "Email Body", "string", "textarea"),
        PropertySeed("hs_timestamp", "Activity Date", "datetime", "date"),
    ),
}

# (id, from type, to type, label); all HUBSPOT_DEFINED.
ASSOCIATION_TYPES: Tuple[Tuple[int, str, str, Optional[str]], ...] = (
    (1, "0-1", "0-2", None),
    (2, "0-2", "0-1", None),
    (279, "0-1", "0-2", "Primary"),
    (280, "0-2", "0-1", "Primary"),
    (3, "0-1", "0-3", None),
    (4, "0-3", "0-1", None),
    (5, "0-2", "0-3", None),
    (6, "0-3", "0-2", None),
    (15, "0-1", "0-5", None),
    (16, "0-5", "0-1", None),
    (19, "0-3", "0-8", None),
    (20, "0-8", "0-3", None),
    (25, "0-2", "0-5", None),
    (26, "0-5", "0-2", None),
    (202, "0-46", "0-1", None),
    (203, "0-1", "0-46", None),
    (204, "0-46", "0-2", None),
    (205, "0-2", "0-46", None),
    (206, "0-46", "0-3", None),
    (207, "0-3", "0-46", None),
    (208, "0-48", "0-1", None),
    (209, "0-1", "0-48", None),
    (210, "0-48", "0-2", None),
    (211, "0-2", "0-48", None),
    (212, "0-48", "0-3", None),
    (213, "0-3", "0-48", None),
    (214, "0-49", "0-1", None),
    (215, "0-1", "0-49", None),
    (216, "0-49", "0-2", None),
    (217, "0-2", "0-49", None),
    (218, "0-49", "0-3", None),
    (219, "0-3", "0-49", None),
    (220, "0-27", "0-1", None),
    (221, "0-1", "0-27", None),
    (222, "0-27", "0-2", None),
    (223, "0-2", "0-27", None),
    (224, "0-27", "0-3", None),
    (225, "0-3", "0-27", None),
    (226, "0-47", "0-1", None),
    (227, "0-1", "0-47", None),
    (228, "0-47", "0-2", None),
    (229, "0-2", "0-47", None),
    (230, "0-47", "0-3", None),
    (231, "0-3", "0-47", None),
)

_INSERT_PROPERTY = """
    INSERT OR IGNORE INTO property_definitions (
        object_type_id, name, label, type, field_type, group_name,
        has_unique_value, hubspot_defined, options, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, '[]', ?, ?)
"""


def _property_rows(type_id: str, group: str, ts: str) -> List[tuple]:
    seeds = COMMON_PROPERTIES + TYPE_PROPERTIES.get(type_id, ())
    return [
        (type_id, p.name, p.label, p.type, p.field_type, group, int(p.has_unique_value), ts, ts)
        for p in seeds
    ]


def seed(db: Database, clock: Optional[Clock] = None) -> None:
    """
    Insert the standard catalog. Existing rows are left untouched.

    Parameters
    ----------
    db : Database
        Migrated target database.
    clock : Clock, optional
        Timestamp source for created_at/updated_at columns.
    """
    ts = (clock or Clock()).timestamp()
    with db.transaction() as conn:
        for std in STANDARD_TYPES:
            conn.execute(
                """
                INSERT OR IGNORE INTO object_types (
                    id, name, label_singular, label_plural, primary_display_property,
                    is_custom, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (std.id, std.name, std.singular, std.plural, std.primary_display_property, ts, ts),
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO property_groups (object_type_id, name, label, display_order)
                VALUES (?, ?, ?, 0)
                """,
                (std.id, std.group, std.group_label),
            )
            conn.executemany(_INSERT_PROPERTY, _property_rows(std.id, std.group, ts))

        conn.executemany(
            """
            INSERT OR IGNORE INTO association_types (id, from_object_type, to_object_type, category, label)
            VALUES (?, ?, ?, 'HUBSPOT_DEFINED', ?)
            """,
            ASSOCIATION_TYPES,
        )
    log.info(
        "Seeded standard catalog",
        extra={"object_types": len(STANDARD_TYPES), "association_types": len(ASSOCIATION_TYPES)},
    )


__all__ = [
    "ASSOCIATION_TYPES",
    "COMMON_PROPERTIES",
    "STANDARD_TYPES",
    "TYPE_PROPERTIES",
    "PropertySeed",
    "StandardType",
    "seed",
]
