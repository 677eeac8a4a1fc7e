from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from sqlalchemy.orm import Session

from database import SessionLocal
from periods import CycleSettings
from scheduler import SchedulerManager
from schemas import (
    BudgetAllocationIn,
    BudgetIn,
    BudgetSettingsIn,
    BudgetSettingsOut,
    CategoryIn,
    CategoryOut,
    CategoryRolloverIn,
    CycleDetailOut,
    CyclePageOut,
    ManualCycleIn,
    ManualCycleOut,
    SnapshotRebuildOut,
    TransactionIn,
)
from services import (
    BudgetService,
    BudgetSettingsService,
    CategoryService,
    HistoryService,
    TransactionService,
)

app = FastAPI(title="Budget Cycles")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def settings_out(settings: CycleSettings) -> BudgetSettingsOut:
    current = settings.current()
    return BudgetSettingsOut(
        cycle_length_days=settings.cycle_length_days,
        anchor_date=settings.anchor_date,
        current_period_start=current.start,
        current_period_end=current.end,
    )


@app.get("/api/settings", response_model=BudgetSettingsOut)
def api_get_settings(db: Session = Depends(get_db)):
    return settings_out(BudgetSettingsService(db).get())


@app.put("/api/settings", response_model=BudgetSettingsOut)
def api_update_settings(data: BudgetSettingsIn, db: Session = Depends(get_db)):
    try:
        settings = BudgetSettingsService(db).update(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return settings_out(settings)


@app.get("/api/categories", response_model=list[CategoryOut])
def api_list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.patch("/api/categories/{category_id}/rollover", response_model=CategoryOut)
def api_update_rollover(
    category_id: int, data: CategoryRolloverIn, db: Session = Depends(get_db)
):
    try:
        return CategoryService(db).update_rollover(category_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/budgets")
def api_list_budgets(
    period_start: Optional[date] = None, db: Session = Depends(get_db)
):
    try:
        budgets = BudgetService(db).list_for_period(period_start)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        {
            "id": budget.id,
            "category_id": budget.category_id,
            "period_start": budget.period_start.isoformat(),
            "period_length_days": budget.period_length_days,
            "amount": budget.amount,
        }
        for budget in budgets
    ]


@app.post("/api/budgets", status_code=201)
def api_upsert_budget(data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).upsert(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "period_start": budget.period_start.isoformat(),
        "amount": budget.amount,
    }


@app.post("/api/budgets/allocations")
def api_update_allocations(data: BudgetAllocationIn, db: Session = Depends(get_db)):
    try:
        budgets = BudgetService(db).update_allocations(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"updated": len(budgets)}


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "amount": txn.amount,
        "category_id": txn.category_id,
        "note": txn.note,
    }


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/history/snapshots", response_model=SnapshotRebuildOut)
def api_ensure_snapshots(
    through: Optional[date] = None, db: Session = Depends(get_db)
):
    try:
        return HistoryService.for_session(db).ensure_snapshots(through)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/history/snapshots/{period_start}", response_model=SnapshotRebuildOut)
def api_snapshot_single_cycle(period_start: date, db: Session = Depends(get_db)):
    try:
        return HistoryService.for_session(db).snapshot_single_cycle(period_start)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/history/manual", response_model=ManualCycleOut, status_code=201)
def api_add_manual_cycle(data: ManualCycleIn, db: Session = Depends(get_db)):
    try:
        return HistoryService.for_session(db).add_manual_cycle(
            data.period_start, data.entries
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/history/cycles", response_model=CyclePageOut)
def api_list_cycles(
    limit: Optional[int] = None,
    cursor: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
):
    return HistoryService.for_session(db).list_cycles(limit=limit, cursor=cursor)


@app.get("/api/history/cycles/{period_start}", response_model=CycleDetailOut)
def api_cycle_detail(period_start: date, db: Session = Depends(get_db)):
    return HistoryService.for_session(db).get_cycle_detail(period_start)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
