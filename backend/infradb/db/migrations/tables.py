"""Table definitions shared by the migrations that create or rebuild them.

Each function returns the column/constraint lines of a table as it looked
when the migration that owns it was written. Later migrations add to the
table with ALTER statements; they never edit these lists.
"""

from typing import List, Sequence

from infradb.db.dialects import UNLABELED_SENTINEL, Dialect


def users_table(d: Dialect) -> List[str]:
    return [
        d.primary_key,
        f"email {d.varchar(255)} NOT NULL UNIQUE",
        f"username {d.varchar(255)} NULL",
        f"full_name {d.varchar(255)} NULL",
        f"password_hash {d.varchar(255)} NOT NULL",
        f"role {d.varchar(32)} NOT NULL DEFAULT 'USER'",
        d.created_at,
        d.updated_at,
    ]


def sites_table(d: Dialect) -> List[str]:
    return [
        d.primary_key,
        f"name {d.varchar(255)} NOT NULL",
        f"code {d.varchar(255)} NOT NULL",
        f"location {d.varchar(255)} NULL",
        "description TEXT NULL",
        f"created_by {d.integer} NULL",
        d.created_at,
        d.updated_at,
        "FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL",
    ]


def labels_table(d: Dialect, extra_columns: Sequence[str] = ()) -> List[str]:
    """``extra_columns`` are column definitions placed before the table constraints."""
    # ref_number stays nullable: legacy rows whose reference cannot be parsed keep NULL
    return [
        d.primary_key,
        f"site_id {d.integer} NOT NULL",
        f"ref_number {d.integer} NULL",
        f"ref_string {d.varchar(255)} NOT NULL",
        f"type {d.varchar(100)} NOT NULL DEFAULT 'cable'",
        "payload_json TEXT NULL",
        f"created_by {d.integer} NULL",
        d.created_at,
        d.updated_at,
        *extra_columns,
        "FOREIGN KEY (site_id) REFERENCES sites(id) ON DELETE CASCADE",
        "FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL",
    ]


def site_counters_table(d: Dialect) -> List[str]:
    return [
        f"site_id {d.integer} NOT NULL PRIMARY KEY",
        f"next_ref {d.integer} NOT NULL DEFAULT 1",
        "FOREIGN KEY (site_id) REFERENCES sites(id) ON DELETE CASCADE",
    ]


def site_locations_table(d: Dialect) -> List[str]:
    return [
        d.primary_key,
        f"site_id {d.integer} NOT NULL",
        f"template_type {d.varchar(20)} NOT NULL DEFAULT 'DATACENTRE'",
        f"floor {d.varchar(64)} NOT NULL",
        f"suite {d.varchar(64)} NULL",
        f"`row` {d.varchar(64)} NULL",
        f"rack {d.varchar(64)} NULL",
        f"area {d.varchar(64)} NULL",
        f"label {d.varchar(255)} NULL",
        d.generated_key_column("suite_key", "suite"),
        d.generated_key_column("row_key", "row"),
        d.generated_key_column("rack_key", "rack"),
        d.generated_key_column("area_key", "area"),
        d.generated_key_column("label_key", "label", UNLABELED_SENTINEL, length=255),
        d.created_at,
        d.updated_at,
        "FOREIGN KEY (site_id) REFERENCES sites(id) ON DELETE CASCADE",
    ]


def cable_types_table(d: Dialect) -> List[str]:
    return [
        d.primary_key,
        f"site_id {d.integer} NOT NULL",
        f"name {d.varchar(255)} NOT NULL",
        "description TEXT NULL",
        d.created_at,
        d.updated_at,
        "FOREIGN KEY (site_id) REFERENCES sites(id) ON DELETE CASCADE",
    ]
