from typing import Any, Dict, List, Literal, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ColumnType = Literal["number","boolean","date","text"]
DataSourceType = Literal["memory","file","database"]

# =============================================================================
# QUERY TEMPLATES
# =============================================================================
# Operator and type are kept as plain strings on the wire so that a bad
# binding fails only its own query (metadata error) instead of the batch.

class FilterBinding(BaseModel):
    """
    How one user filter attaches to a query template.

    Example:
        {"id": "date_from", "column": "order_date", "operator": "gte", "type": "date"}
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default="", validation_alias=AliasChoices("id", "filterKey"))
    column: str = ""
    operator: str = ""
    type: str = Field(default="text", validation_alias=AliasChoices("type", "valueType"))
    table: Optional[str] = None         # alias qualifier for joined queries


class QueryTemplate(BaseModel):
    key: str
    sql: str
    filterMeta: Optional[List[FilterBinding]] = None
    lookup: bool = False                # feeds filter dropdowns, never filtered


class DataSource(BaseModel):
    type: DataSourceType = "memory"
    engine: Optional[str] = None        # database engine, e.g. postgres
    config: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_memory(self) -> bool:
        return self.type in ("memory", "file")


class FileData(BaseModel):
    """Rows to (re)load into the in-memory store before the batch runs."""
    model_config = ConfigDict(populate_by_name=True)

    tableName: str
    rows: List[Dict[str, Any]] = Field(validation_alias=AliasChoices("rows", "data"))


class ExecuteQueriesRequest(BaseModel):
    queries: List[QueryTemplate]
    filterParams: Dict[str, Any] = Field(default_factory=dict)
    dataSource: DataSource = Field(default_factory=DataSource)
    fileData: Optional[FileData] = None


class QueryErrorEntry(BaseModel):
    kind: Literal["validation","metadata","execution"]
    code: str
    message: str
    suggestion: Optional[str] = None


class ExecuteQueriesResponse(BaseModel):
    """
    Per-key outcome of a batch. Every requested key appears in exactly
    one of results or errors. executedSql never contains bound values.
    """
    results: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    executedSql: Dict[str, str] = Field(default_factory=dict)
    errors: Dict[str, QueryErrorEntry] = Field(default_factory=dict)

# =============================================================================
# IN-MEMORY TABLES
# =============================================================================

class TableLoadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(validation_alias=AliasChoices("name", "tableName"))
    rows: List[Dict[str, Any]] = Field(validation_alias=AliasChoices("rows", "data"))


class ColumnInfo(BaseModel):
    name: str
    type: ColumnType
    nullable: bool


class TableInfo(BaseModel):
    name: str
    columns: List[ColumnInfo]
    rowCount: int

# =============================================================================
# VALIDATION
# =============================================================================

class ValidateRequest(BaseModel):
    sql: str


class ValidateResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None
