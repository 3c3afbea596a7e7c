"""Public catalog listing used by the cart."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_store
from ..repository import PaymentStore
from ..schemas import ServiceResponse

router = APIRouter(prefix="/services", tags=["catalog"])


@router.get("", response_model=list[ServiceResponse])
async def list_services(store: PaymentStore = Depends(get_store)) -> list[ServiceResponse]:
    services = await store.list_services(active_only=True)
    return [ServiceResponse.model_validate(service) for service in services]
