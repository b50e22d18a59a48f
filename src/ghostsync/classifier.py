"""
Catalog-worthiness rules for live tables.

A live table is registered in the catalog automatically only when it looks
like a table the catalog itself would have created: it carries every
required column and the row quota trigger, and it is owned by the tenant's
role. Column types are not checked.
"""

from typing import Iterable, List, Sequence, Tuple

from .config import ClassifierConfig, TenantConfig


# Each required column joined once, filtered to the quota trigger.
CATALOG_WORTHY_TABLES_QUERY = """
    WITH candidates AS (
        SELECT c.table_name, count(DISTINCT c.column_name::text) AS required_columns_count
        FROM information_schema.columns c
        JOIN pg_tables t
            ON t.tablename = c.table_name
            AND t.schemaname = c.table_schema
        JOIN pg_trigger tg
            ON tg.tgrelid = (quote_ident(t.schemaname) || '.' || quote_ident(t.tablename))::regclass::oid
        WHERE c.table_schema = $1
        AND t.tableowner = $2
        AND NOT (c.table_name = ANY($3::text[]))
        AND c.column_name = ANY($4::text[])
        AND tg.tgname = $5
        GROUP BY c.table_name
    )
    SELECT table_name
    FROM candidates
    WHERE required_columns_count = $6
    ORDER BY table_name
"""


class CatalogWorthinessClassifier:
    """Decides whether a live table should be registered in the catalog."""

    def __init__(self, config: ClassifierConfig):
        self.config = config

    @property
    def required_columns(self) -> List[str]:
        """Required columns including the geometry support column, deduplicated."""
        columns = list(self.config.required_columns)
        if self.config.geometry_column not in columns:
            columns.append(self.config.geometry_column)
        return list(dict.fromkeys(columns))

    @property
    def quota_trigger(self) -> str:
        return self.config.quota_trigger

    def is_catalog_worthy(
        self,
        columns: Iterable[str],
        triggers: Iterable[str],
        owner: str,
        tenant: TenantConfig,
    ) -> bool:
        """Evaluate the rule against an already-introspected table."""
        if owner != tenant.database_role:
            return False
        if self.quota_trigger not in set(triggers):
            return False
        return set(self.required_columns).issubset(set(columns))

    def build_query(
        self, tenant: TenantConfig, excluded_names: Sequence[str]
    ) -> Tuple[str, list]:
        """
        Build the server-side form of the rule.

        Args:
            tenant: Tenant whose schema and role scope the query
            excluded_names: Table names already present in the catalog

        Returns:
            The SQL text and its positional arguments
        """
        required = self.required_columns
        args = [
            tenant.database_schema,
            tenant.database_role,
            sorted(set(excluded_names)),
            required,
            self.quota_trigger,
            len(required),
        ]
        return CATALOG_WORTHY_TABLES_QUERY, args
