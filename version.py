"""Version constants for the collections report.

Logged at run start and written into every result row and run manifest, so a
report can be traced back to the engine and output schema that produced it.
"""

ENGINE_NAME: str = "collectionsanalyzer"
ENGINE_VERSION: str = "0.1.0"

# Bump when UNPAID_COLLECTIONS_SCHEMA changes shape
SCHEMA_VERSION: int = 1
