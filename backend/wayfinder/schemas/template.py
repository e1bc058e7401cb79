from pydantic import BaseModel


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str | None
    icon: str | None
    search_placeholder: str | None
    number_of_options: int

    model_config = {"from_attributes": True}


class Template(BaseModel):
    """Theme template as consumed by the orchestrators (prompts included)."""

    id: str
    name: str
    description: str | None = None
    icon: str | None = None
    search_placeholder: str | None = None
    query_template: str
    destination_criteria: str | None = None
    research_synthesis_prompt: str | None = None
    options_prompt: str | None = None
    daily_activity_prompt: str | None = None
    number_of_options: int = 3
    is_active: bool = True
    display_order: int = 0

    model_config = {"from_attributes": True}

    @property
    def option_count(self) -> int:
        return max(2, min(4, self.number_of_options))


class ModelInfo(BaseModel):
    id: str
    provider: str
    model_id: str
    input_cost_per_1m: float
    output_cost_per_1m: float
    priority: int = 100
    is_default: bool = False

    model_config = {"from_attributes": True}
