from pydantic import BaseModel, Field


class SelectionRequest(BaseModel):
    selected_ids: list[str] = Field(default_factory=list)


class SelectionResult(BaseModel):
    deleted_ids: list[str]
    failed_ids: list[str]
    selected_ids: list[str]


class ExtractOptions(BaseModel):
    card_id: str | None = None
    card_name: str | None = None
    statement_month: str | None = None


class CategorizeOptions(BaseModel):
    use_ai: bool = True
    use_keywords: bool = True


class ProcessOptions(BaseModel):
    card_id: str | None = None


class StatementBulkDeleteRequest(BaseModel):
    statement_ids: list[str] = Field(default_factory=list)
