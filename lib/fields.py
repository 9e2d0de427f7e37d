"""
Naming rules shared by the flattener and the schema manager.

Everything that classifies a column by its name lives here: table naming,
foreign key naming, date-time detection and reserved suffix rewriting.
"""

import inflection

# *_at and *_date fields are date-times unless ignored here
IGNORED_DATE_FIELDS = frozenset({"year_to_date"})

# Date-times that don't follow the suffix convention
EXPLICIT_DATE_FIELDS = frozenset({"valid_from", "valid_to", "date_of_birth"})

DATE_SUFFIXES = ("_date", "_at")

# Suffixes used by the upsert control columns (see lib/bigquery.py)
RESERVED_SUFFIXES = ("_sel", "_set")


def table_name_for_class(class_name: str) -> str:
    """RegisterSale -> register_sales"""
    return inflection.pluralize(inflection.underscore(class_name))


def singular(table_name: str) -> str:
    return inflection.singularize(table_name)


def plural(key: str) -> str:
    return inflection.pluralize(key)


def foreign_key(table_name: str) -> str:
    """Column on a child row that points at a row of table_name."""
    return f"{singular(table_name)}_id"


def child_table_name(parent_table: str, key: str) -> str:
    """
    Table name for the elements of an array attribute.

    The key is pluralized and scoped to the parent unless it already is:
    orders.lines -> order_lines, register_sales.register_sale_products stays.
    """
    prefix = singular(parent_table)
    name = plural(key)
    if name == prefix or name.startswith(f"{prefix}_"):
        return name
    return f"{prefix}_{name}"


def is_date_time_field(key: str) -> bool:
    if key in IGNORED_DATE_FIELDS:
        return False
    return key.endswith(DATE_SUFFIXES) or key in EXPLICIT_DATE_FIELDS


def is_identifier_field(key: str) -> bool:
    return key == "id" or key.endswith("_id")


def safe_key(key: str) -> str:
    """Append _ to keys that would collide with the upsert control columns."""
    if key.endswith(RESERVED_SUFFIXES):
        return f"{key}_"
    return key
