import logging
import re
import sqlite3
from typing import Dict, List, Optional, Tuple

from remit_models import ElementPath, LoopLevel, ParentKind

logger = logging.getLogger(__name__)

_EIGHT_DIGIT_DATE = re.compile(r"^\d{8}$")


def _numbered(names: Tuple[str, ...], count: int, first_index: int = 1) -> Dict[int, str]:
    """Column map for element groups that repeat, e.g. CAS02-04, CAS05-07..."""
    columns: Dict[int, str] = {}
    index = first_index
    for number in range(1, count + 1):
        for name in names:
            columns[index] = f"{name}_{number}"
            index += 1
    return columns


# Top-level element index -> column, per segment kind. Anything without a
# column (composites, repetitions, unlisted indices) lands in x12_element.
SEGMENT_COLUMNS: Dict[str, Dict[int, str]] = {
    "ST": {1: "id_code", 2: "transaction_set_control", 3: "convention_reference"},
    "BPR": {
        1: "transaction_handling_code",
        2: "payment_amount",
        3: "credit_debit_flag",
        4: "payment_method_code",
        5: "payment_format_code",
        6: "odfi_id_number_qualifier",
        7: "odfi_id_number",
        8: "payer_financial_asset_type",
        9: "payer_account_number",
        10: "originating_company_id",
        11: "originating_company_supplemental_code",
        12: "rdfi_id_number_qualifier",
        13: "rdfi_id_number",
        14: "receiver_asset_type",
        15: "receiver_account_number",
        16: "payment_effective_date",
        17: "reason_for_payment",
        18: "id_number_qualifier_for_returns",
        19: "dfi_id_number_for_returns",
        20: "asset_type_for_return_account",
        21: "account_number_for_return",
    },
    "TRN": {1: "trace_type_code", 2: "transaction_id", 3: "organization_id", 4: "subdivision_id"},
    "CUR": {
        1: "entity_id_code_1",
        2: "currency_code_1",
        3: "exchange_rate_1",
        4: "entity_id_code_2",
        5: "currency_code_2",
        6: "currency_market_exchange_code",
        **_numbered(("date_time_qualifier", "date", "time"), 5, first_index=7),
    },
    "REF": {1: "id_qualifier", 2: "reference_id", 3: "description"},
    "DTM": {
        1: "date_time_qualifier",
        2: "date",
        3: "time",
        4: "time_code",
        5: "date_time_period_format_qualifier",
        6: "date_time_period",
    },
    "NTE": {1: "note_reference_code", 2: "description"},
    "N1": {
        1: "entity_identifier",
        2: "entity_name",
        3: "id_code_qualifier",
        4: "identification_code",
        5: "entity_relationship_code",
        6: "related_entity_identifier_code",
    },
    "N2": {1: "additional_name_1", 2: "additional_name_2"},
    "N3": {1: "address_information_1", 2: "address_information_2"},
    "N4": {
        1: "city_name",
        2: "state_or_province_code",
        3: "postal_code",
        4: "country_code",
        5: "location_qualifier",
        6: "location_id",
        7: "country_subdivision_code",
    },
    "PER": {
        1: "contact_function_code",
        2: "name",
        **_numbered(("communication_number_qualifier", "communication_number"), 3, first_index=3),
        9: "contact_inquiry_ref",
    },
    "RDM": {1: "report_transmission_code", 2: "third_party_remittance_processor", 3: "communication_number"},
    "LX": {1: "assigned_number"},
    "TS3": {
        1: "provider_number",
        2: "facility_code_value",
        3: "fiscal_year_end_date",
        4: "number_of_claims",
        5: "total_reported_charges",
        6: "total_covered_charge",
        7: "total_noncovered_charges",
        8: "total_denied_charges",
        9: "total_provider_payment",
        10: "total_interest_paid",
        11: "total_contractual_adjustment",
        12: "total_gramm_rudman_reduction",
        13: "total_msp_primary_payer_amount",
        14: "total_blood_deductible_amount",
        15: "non_lab_charges",
        16: "total_coinsurance_amount",
        17: "hcpcs_reported_charges",
        18: "total_hcpcs_payable_amount",
        19: "total_deductible_amount",
        20: "total_professional_component_amount",
        21: "total_msp_patient_liability_met",
        22: "total_patient_reimbursement",
        23: "total_pip_number_of_claims",
        24: "total_pip_adjustment",
    },
    "TS2": {
        1: "total_drg_amount",
        2: "total_federal_specific_amount",
        3: "total_hospital_specific_amount",
        4: "total_disproportionate_share_amount",
        5: "total_capital_amount",
        6: "total_medical_education_amount",
        7: "total_number_of_outlier_days",
        8: "total_outlier_amount",
        9: "total_cost_outlier_amount",
        10: "drg_average_length_of_stay",
        11: "total_number_of_discharges",
        12: "total_number_of_cost_report_days",
        13: "total_number_of_covered_days",
        14: "total_number_of_noncovered_days",
        15: "total_msp_pass_through_for_non_medicare",
        16: "average_drg_weight",
        17: "total_pps_capital_federal_specific_drg_amount",
        18: "total_pps_capital_hospital_specific_drg_amount",
        19: "total_pps_disproportionate_share_hospital_drg_amount",
    },
    "CLP": {
        1: "claim_submitter_id",
        2: "claim_status_code",
        3: "submitted_charges",
        4: "amount_paid",
        5: "patient_responsibility",
        6: "claim_filing_indicator_code",
        7: "payer_internal_control_number",
        8: "facility_code_value",
        9: "claim_frequency_type_code",
        10: "patient_discharge_status",
        12: "drg_weight",
        13: "discharge_fraction",
        14: "patient_authorization_to_coordinate_benefits",
        15: "exchange_rate",
        16: "source_of_payment_typology_code",
    },
    "CAS": {
        1: "claim_adjustment_group_code",
        **_numbered(("claim_adjustment_reason_code", "adjustment_amount", "units_of_service_adjusted"), 6, first_index=2),
    },
    "NM1": {
        1: "entity_id_code",
        2: "entity_type_qualifier",
        3: "last_name_or_organization_name",
        4: "first_name",
        5: "middle_name",
        6: "name_prefix",
        7: "name_suffix",
        8: "id_code_qualifier",
        9: "id_code",
        10: "entity_relationship_code",
        11: "entity_id_code_2",
        12: "last_name_or_organization_name_2",
    },
    "MIA": {
        1: "covered_days",
        2: "pps_operating_outlier_amount",
        3: "lifetime_psychiatric_days",
        4: "drg_amount",
        5: "remittance_advice_remark_code_1",
        6: "disproportionate_share_amount",
        7: "msp_pass_through_amount",
        8: "pps_capital_amount",
        9: "pps_capital_federal_specific_drg",
        10: "pps_capital_hospital_specific_drg",
        11: "pps_capital_disproportionate_share_hospital_drg",
        12: "old_capital_amount",
        13: "pps_capital_indirect_medical_education_claim",
        14: "hospital_specific_drg_amount",
        15: "cost_report_days",
        16: "federal_specific_drg_amount",
        17: "pps_capital_outlier_amount",
        18: "indirect_teaching_amount",
        19: "professional_component_non_payable_amount_billed",
        20: "remittance_advice_remark_code_2",
        21: "remittance_advice_remark_code_3",
        22: "remittance_advice_remark_code_4",
        23: "remittance_advice_remark_code_5",
        24: "capital_exception_amount",
    },
    "MOA": {
        1: "reimbursement_rate",
        2: "hcpcs_payable_amount",
        3: "remittance_advice_remark_code_1",
        4: "remittance_advice_remark_code_2",
        5: "remittance_advice_remark_code_3",
        6: "remittance_advice_remark_code_4",
        7: "remittance_advice_remark_code_5",
        8: "esrd_payment_amount",
        9: "professional_component_non_payable_billed",
    },
    "AMT": {1: "amount_qualifier_code", 2: "monetary_amount", 3: "credit_debit_flag"},
    "QTY": {1: "quantity_qualifier", 2: "quantity", 4: "free_form_information"},
    "LQ": {1: "code_list_qualifier_code", 2: "industry_code"},
    "SVC": {
        1: "procedure_code_qualifier",
        2: "line_item_charge_amount",
        3: "line_item_provider_payment_amount",
        4: "revenue_code",
        5: "units_of_service_paid",
        7: "original_units_of_service",
    },
    "RAS": {1: "amount_of_adjustment", 2: "claim_adjustment_group_code", 4: "units_of_service_adjusted"},
    "K3": {1: "fixed_format_information", 2: "record_format_code"},
    "PLB": {1: "provider_identifier", 2: "fiscal_period_date"},
    "SE": {1: "number_of_included_segments", 2: "transaction_set_control_number"},
}

# Columns stored as ISO dates when the value is a CCYYMMDD string.
DATE_COLUMNS = {
    ("BPR", "payment_effective_date"),
    ("DTM", "date"),
    ("PLB", "fiscal_period_date"),
    ("TS3", "fiscal_year_end_date"),
}

# Loop kind -> (table, parent key column, parent table)
LOOP_TABLES: Dict[LoopLevel, Tuple[str, Optional[str], Optional[str]]] = {
    LoopLevel.HEADER: ("x12_835_header", None, None),
    LoopLevel.LOOP_1000: ("x12_835_loop_1000", "x12_header_id", "x12_835_header"),
    LoopLevel.LOOP_2000: ("x12_835_loop_2000", "x12_header_id", "x12_835_header"),
    LoopLevel.LOOP_2100: ("x12_835_loop_2100", "x12_2000_id", "x12_835_loop_2000"),
    LoopLevel.LOOP_2105: ("x12_835_loop_2105", "x12_2100_id", "x12_835_loop_2100"),
    LoopLevel.LOOP_2110: ("x12_835_loop_2110", "x12_2100_id", "x12_835_loop_2100"),
}

GENERIC_SEGMENT_TABLE = "x12_segment"
ELEMENT_TABLE = "x12_element"


def segment_table(kind: str) -> str:
    return f"x12_{kind.lower()}" if kind in SEGMENT_COLUMNS else GENERIC_SEGMENT_TABLE


def format_eight_digit_date(value: str) -> str:
    if not _EIGHT_DIGIT_DATE.match(value):
        return value
    return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"


def create_tables(connection: sqlite3.Connection) -> None:
    statements: List[str] = []
    for table, parent_column, parent_table in LOOP_TABLES.values():
        if parent_column is None:
            statements.append(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "segment_order INTEGER NOT NULL DEFAULT 0, "
                "created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP)"
            )
        else:
            statements.append(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "segment_order INTEGER NOT NULL, "
                f"{parent_column} INTEGER NOT NULL REFERENCES {parent_table}(id) ON DELETE CASCADE)"
            )

    for kind, columns in SEGMENT_COLUMNS.items():
        column_ddl = "".join(f", {name} TEXT" for name in columns.values())
        statements.append(
            f"CREATE TABLE IF NOT EXISTS {segment_table(kind)} ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "parent_type TEXT NOT NULL, "
            "parent_id INTEGER NOT NULL, "
            f"segment_order INTEGER NOT NULL{column_ddl})"
        )

    statements.append(
        f"CREATE TABLE IF NOT EXISTS {GENERIC_SEGMENT_TABLE} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "segment_name TEXT NOT NULL, "
        "parent_type TEXT NOT NULL, "
        "parent_id INTEGER NOT NULL, "
        "segment_order INTEGER NOT NULL)"
    )
    statements.append(
        f"CREATE TABLE IF NOT EXISTS {ELEMENT_TABLE} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "segment_table TEXT NOT NULL, "
        "segment_id INTEGER NOT NULL, "
        "path TEXT NOT NULL, "
        "value TEXT)"
    )

    for statement in statements:
        connection.execute(statement)
    logger.debug(f"Ensured {len(statements)} 835 tables exist.")


class SqliteSink:
    """
    Sink backed by SQLite. Loop handles are row ids in the x12_835_* tables;
    attribute handles are row ids in the segment's own table.

    Use as a context manager to commit on success and roll back on error.
    """

    def __init__(self, database: str = ":memory:"):
        self.database = database
        self.connection = sqlite3.connect(database)
        self.connection.execute("PRAGMA foreign_keys = ON")
        create_tables(self.connection)
        logger.info(f"SQLite sink ready: {database}")

    def __enter__(self) -> "SqliteSink":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if exc_type is None:
            self.connection.commit()
            logger.info(f"Committed 835 load to {self.database}")
        else:
            self.connection.rollback()
            logger.warning(f"Rolled back 835 load to {self.database} after {exc_type.__name__}")
        self.close()

    def close(self) -> None:
        self.connection.close()

    def open_loop(self, kind: LoopLevel, parent_handle: Optional[int], ordinal: int) -> int:
        table, parent_column, _ = LOOP_TABLES[kind]
        if parent_column is None:
            cursor = self.connection.execute(f"INSERT INTO {table} (segment_order) VALUES (?)", (ordinal,))
        else:
            cursor = self.connection.execute(
                f"INSERT INTO {table} (segment_order, {parent_column}) VALUES (?, ?)",
                (ordinal, parent_handle),
            )
        return cursor.lastrowid

    def write_attributes(
        self,
        kind: str,
        parent_kind: ParentKind,
        parent_handle: int,
        ordinal: int,
        fields: Dict[str, str],
    ) -> int:
        columns = SEGMENT_COLUMNS.get(kind, {})
        row: Dict[str, str] = {}
        leftovers: List[Tuple[str, str]] = []
        for key, value in fields.items():
            path = ElementPath.parse(key)
            column = columns.get(path.index) if path.is_top_level else None
            if column is None:
                leftovers.append((key, value))
                continue
            row[column] = format_eight_digit_date(value) if (kind, column) in DATE_COLUMNS else value

        table = segment_table(kind)
        if table == GENERIC_SEGMENT_TABLE:
            cursor = self.connection.execute(
                f"INSERT INTO {table} (segment_name, parent_type, parent_id, segment_order) VALUES (?, ?, ?, ?)",
                (kind, parent_kind.value, parent_handle, ordinal),
            )
        else:
            names = ["parent_type", "parent_id", "segment_order", *row.keys()]
            values = [parent_kind.value, parent_handle, ordinal, *row.values()]
            placeholders = ", ".join("?" for _ in names)
            cursor = self.connection.execute(
                f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                values,
            )
        row_id = cursor.lastrowid

        if leftovers:
            self.connection.executemany(
                f"INSERT INTO {ELEMENT_TABLE} (segment_table, segment_id, path, value) VALUES (?, ?, ?, ?)",
                [(table, row_id, path, value) for path, value in leftovers],
            )
        return row_id
