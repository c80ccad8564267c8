from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps import get_storage
from ..schemas import ChartDataOut
from ..services.stats import chart_data
from ..storage.base import Storage

router = APIRouter(prefix="/api", tags=["stats"])


@router.get("/stats/chart-data", response_model=ChartDataOut)
def get_chart_data(storage: Storage = Depends(get_storage)) -> ChartDataOut:
    return ChartDataOut.model_validate(chart_data(storage.list_devices(), storage.list_branches()))
