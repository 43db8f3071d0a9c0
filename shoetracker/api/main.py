"""FastAPIアプリケーション。

靴コレクションのCRUD API + 着用記録API + 着用履歴・サマリAPIを統合。
"""

import io
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd
from fastapi import Depends, FastAPI, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shoetracker.dependencies import get_record_store, get_settings
from shoetracker.history.aggregate import (
    WearHistoryGroup,
    cost_per_wear,
    group_by_date,
    join_with_shoes,
    summarize_collection,
)
from shoetracker.interfaces.errors import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from shoetracker.interfaces.record_store import (
    RecordStoreInterface,
    Shoe,
    ShoeDraft,
    ShoeUpdate,
    WearLog,
)
from shoetracker.logging_config import configure_logging

logger = logging.getLogger(__name__)

StoreDep = Annotated[RecordStoreInterface, Depends(get_record_store)]

# CSV取り込みで読み取る列
CSV_COLUMNS = (
    "name",
    "brand",
    "price",
    "size",
    "color",
    "occasion",
    "type",
    "purchase_date",
    "image_url",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    yield


app = FastAPI(
    title="Shoe Tracker API",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------- Pydantic モデル ----------


class ShoeCreateRequest(BaseModel):
    """POST /api/shoes のリクエストボディ。"""

    name: str
    brand: str
    price: float | str | None = None
    size: str | None = None
    color: str | None = None
    occasion: str | None = None
    type: str | None = None
    purchase_date: date | None = None
    image_url: str | None = None


class ShoeUpdateRequest(BaseModel):
    """PATCH /api/shoes/{id} のリクエストボディ。送信した項目のみ更新する。"""

    name: str | None = None
    brand: str | None = None
    price: float | str | None = None
    size: str | None = None
    color: str | None = None
    occasion: str | None = None
    type: str | None = None
    purchase_date: date | None = None
    image_url: str | None = None


class WearRequest(BaseModel):
    """POST /api/shoes/{id}/wear のリクエストボディ（省略可）。"""

    worn_at: datetime | None = None


class ShoeResponse(BaseModel):
    """1足分のレスポンス。"""

    id: str
    name: str
    brand: str
    price: float
    size: str | None
    color: str | None
    occasion: str | None
    type: str | None
    purchase_date: date | None
    image_url: str | None
    wear_count: int
    created_at: datetime | None
    cost_per_wear: float | None


class WearLogResponse(BaseModel):
    """着用記録1件のレスポンス。"""

    id: str
    shoe_id: str
    worn_at: datetime


class WearEventResponse(BaseModel):
    """着用記録の結果。孤立記録では shoe は null。"""

    log: WearLogResponse
    shoe: ShoeResponse | None


class HistoryEntryResponse(BaseModel):
    """着用履歴の1件（Shoe 情報を結合済み）。"""

    log_id: str
    shoe_id: str
    worn_at: datetime
    shoe_name: str | None
    shoe_brand: str | None
    image_url: str | None


class HistoryGroupResponse(BaseModel):
    """1日分の着用履歴。"""

    day: date
    entries: list[HistoryEntryResponse]


class SummaryResponse(BaseModel):
    """コレクションのサマリ。"""

    total_shoes: int
    total_wears: int
    total_value: float
    most_worn: ShoeResponse | None


# ---------- ヘルパー ----------


def _to_shoe_response(shoe: Shoe) -> ShoeResponse:
    return ShoeResponse(
        id=shoe.id,
        name=shoe.name,
        brand=shoe.brand,
        price=shoe.price,
        size=shoe.size,
        color=shoe.color,
        occasion=shoe.occasion,
        type=shoe.type,
        purchase_date=shoe.purchase_date,
        image_url=shoe.image_url,
        wear_count=shoe.wear_count,
        created_at=shoe.created_at,
        cost_per_wear=cost_per_wear(shoe),
    )


def _to_wear_log_response(log: WearLog) -> WearLogResponse:
    return WearLogResponse(id=log.id, shoe_id=log.shoe_id, worn_at=log.worn_at)


def _to_history_group_response(group: WearHistoryGroup) -> HistoryGroupResponse:
    return HistoryGroupResponse(
        day=group.day,
        entries=[
            HistoryEntryResponse(
                log_id=e.log_id,
                shoe_id=e.shoe_id,
                worn_at=e.worn_at,
                shoe_name=e.shoe_name,
                shoe_brand=e.shoe_brand,
                image_url=e.image_url,
            )
            for e in group.entries
        ],
    )


def _require_shoe(store: RecordStoreInterface, shoe_id: str) -> Shoe:
    shoe = store.get_shoe(shoe_id)
    if shoe is None:
        raise NotFoundError("shoe", shoe_id)
    return shoe


# ---------- 例外ハンドラ ----------


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info("validation failed", extra={"field": exc.field, "path": request.url.path})
    return JSONResponse(
        status_code=422, content={"detail": exc.message, "field": exc.field}
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("persistence failure: %s", exc, extra={"path": request.url.path})
    return JSONResponse(status_code=503, content={"detail": "storage unavailable"})


# ---------- エンドポイント ----------


@app.get("/api/health")
async def health_check(store: StoreDep):
    """ヘルスチェック。"""
    return {"status": "ok", "backend": store.backend_name}


@app.get("/api/shoes")
async def list_shoes(store: StoreDep):
    """全ての靴を登録順で取得する。"""
    return {"shoes": [_to_shoe_response(s) for s in store.list_shoes()]}


@app.post("/api/shoes", status_code=201)
async def add_shoe(body: ShoeCreateRequest, store: StoreDep):
    """靴を新規登録する。"""
    shoe = store.add_shoe(ShoeDraft.from_raw(body.model_dump()))
    return _to_shoe_response(shoe)


@app.post("/api/shoes/csv")
async def add_shoes_csv(file: UploadFile, store: StoreDep):
    """CSVファイルから靴をまとめて登録する。

    name / brand 列は必須。検証に失敗した行はスキップする。
    """
    content = await file.read()
    try:
        df = pd.read_csv(io.BytesIO(content), dtype=str)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise HTTPException(status_code=400, detail=f"invalid CSV: {e}") from e

    if "name" not in df.columns or "brand" not in df.columns:
        raise HTTPException(
            status_code=400,
            detail="name and brand columns are required",
        )

    columns = [c for c in CSV_COLUMNS if c in df.columns]
    inserted = 0
    skipped = 0
    for _, row in df.iterrows():
        raw = {c: row[c] for c in columns if pd.notna(row[c])}
        try:
            store.add_shoe(ShoeDraft.from_raw(raw))
        except ValidationError as e:
            logger.info("csv row skipped", extra={"field": e.field, "reason": e.message})
            skipped += 1
            continue
        inserted += 1

    return {"inserted": inserted, "skipped": skipped}


@app.get("/api/shoes/{shoe_id}")
async def get_shoe(shoe_id: str, store: StoreDep):
    """靴を1足取得する。存在しなければ 404。"""
    return _to_shoe_response(_require_shoe(store, shoe_id))


@app.patch("/api/shoes/{shoe_id}")
async def update_shoe(shoe_id: str, body: ShoeUpdateRequest, store: StoreDep):
    """送信された項目のみ更新する。存在しなければ 404。"""
    update = ShoeUpdate.from_raw(body.model_dump(exclude_unset=True))
    shoe = store.update_shoe(shoe_id, update)
    if shoe is None:
        raise NotFoundError("shoe", shoe_id)
    return _to_shoe_response(shoe)


@app.delete("/api/shoes/{shoe_id}")
async def delete_shoe(shoe_id: str, store: StoreDep):
    """靴を削除する。着用記録もカスケード削除。存在しなくてもエラーにしない。"""
    return {"deleted": store.delete_shoe(shoe_id)}


@app.post("/api/shoes/{shoe_id}/wear")
async def log_wear(shoe_id: str, store: StoreDep, body: WearRequest | None = None):
    """「今日履いた」を記録する。存在しない靴には 404。"""
    _require_shoe(store, shoe_id)
    event = store.log_wear(shoe_id, worn_at=body.worn_at if body else None)
    return WearEventResponse(
        log=_to_wear_log_response(event.log),
        shoe=_to_shoe_response(event.shoe) if event.shoe else None,
    )


@app.get("/api/shoes/{shoe_id}/wear-logs")
async def list_wear_logs_for_shoe(shoe_id: str, store: StoreDep):
    """指定した靴の着用記録を登録順で取得する。"""
    logs = store.list_wear_logs_for_shoe(shoe_id)
    return {"wear_logs": [_to_wear_log_response(log) for log in logs]}


@app.get("/api/wear-logs")
async def list_wear_logs(store: StoreDep):
    """全ての着用記録を登録順で取得する。"""
    return {"wear_logs": [_to_wear_log_response(log) for log in store.list_wear_logs()]}


@app.get("/api/wear-logs/history")
async def wear_history(store: StoreDep, tz: str | None = None):
    """着用履歴を日付ごとにまとめて取得する（新しい日付が先）。"""
    zone = None
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"unknown time zone: {tz}") from e

    entries = join_with_shoes(store.list_wear_logs(), store.list_shoes())
    groups = group_by_date(entries, tz=zone)
    return {"history": [_to_history_group_response(g) for g in groups]}


@app.get("/api/summary")
async def summary(store: StoreDep):
    """コレクションのサマリを取得する。"""
    result = summarize_collection(store.list_shoes())
    return SummaryResponse(
        total_shoes=result.total_shoes,
        total_wears=result.total_wears,
        total_value=result.total_value,
        most_worn=_to_shoe_response(result.most_worn) if result.most_worn else None,
    )


@app.post("/api/maintenance/reconcile")
async def reconcile(store: StoreDep):
    """全ての靴の着用回数を着用記録から再計算する。"""
    return {"changed": store.reconcile_wear_counts()}


# ---------- デバッグ用エンドポイント ----------


@app.delete("/api/debug/data", tags=["debug"])
async def delete_all_data(store: StoreDep):
    """【デバッグ用】靴・着用記録を全削除する。"""
    store.delete_all_data()
    return {"deleted": "all"}
