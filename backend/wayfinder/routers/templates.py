from fastapi import APIRouter, Depends

from wayfinder.dependencies import get_services
from wayfinder.schemas.template import TemplateResponse
from wayfinder.services.container import ServiceContainer

router = APIRouter()


@router.get("", response_model=list[TemplateResponse])
async def list_templates(services: ServiceContainer = Depends(get_services)):
    """Active trip themes, in display order."""
    templates = await services.store.list_templates()
    return [TemplateResponse.model_validate(t) for t in templates]
