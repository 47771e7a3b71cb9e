import pyarrow as pa

# -----------------------------
# Common reusable types
# -----------------------------

MONEY = pa.decimal128(18, 6)  # finance-grade, never float
UTC_TS_MS = pa.timestamp("ms", tz="UTC")
ID = pa.int64()

# Canonical relation names (dataset directory names and DuckDB table names)
DEBTORS = "debtors"
DEBTS = "debts"
COLLECTION_EFFORTS = "collection_efforts"
PAYMENTS = "payments"
UNPAID_COLLECTIONS = "unpaid_collections"

INPUT_RELATIONS = (DEBTORS, DEBTS, COLLECTION_EFFORTS, PAYMENTS)

# -----------------------------
# Inputs (externally owned, read-only)
# -----------------------------

# Duplicate rows for the same debtor_id are tolerated (data-quality defect).
DEBTORS_SCHEMA = pa.schema([
    pa.field("debtor_id", ID, nullable=False),
    pa.field("first_name", pa.string()),
    pa.field("last_name", pa.string()),
])

DEBTS_SCHEMA = pa.schema([
    pa.field("debt_id", ID, nullable=False),
    pa.field("debtor_id", ID),                   # may point at a debtor that no longer exists
])

COLLECTION_EFFORTS_SCHEMA = pa.schema([
    pa.field("effort_id", ID, nullable=False),
    pa.field("debt_id", ID),
])

# Negative amounts are refunds/reversals and net into the total.
PAYMENTS_SCHEMA = pa.schema([
    pa.field("payment_id", ID),                  # implicit identity upstream
    pa.field("debt_id", ID),
    pa.field("amount_paid", MONEY),
])

# -----------------------------
# Output: debts with collection efforts and no payment record
# -----------------------------
UNPAID_COLLECTIONS_SCHEMA = pa.schema([
    pa.field("run_id", pa.string()),
    pa.field("run_ts", UTC_TS_MS),

    pa.field("debtor_id", ID),                   # null when the debtor row is missing
    pa.field("debt_id", ID, nullable=False),
    pa.field("first_name", pa.string()),
    pa.field("last_name", pa.string()),
    pa.field("effort_count", pa.int64(), nullable=False),
    pa.field("total_paid", MONEY),               # always null by construction

    pa.field("engine", pa.string()),             # "memory" | "duckdb" | "postgres"
    pa.field("schema_version", pa.uint16()),
])

RELATION_SCHEMAS: dict[str, pa.Schema] = {
    DEBTORS: DEBTORS_SCHEMA,
    DEBTS: DEBTS_SCHEMA,
    COLLECTION_EFFORTS: COLLECTION_EFFORTS_SCHEMA,
    PAYMENTS: PAYMENTS_SCHEMA,
    UNPAID_COLLECTIONS: UNPAID_COLLECTIONS_SCHEMA,
}
