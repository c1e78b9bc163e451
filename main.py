import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import ConsistencyViolation, NotFoundOrForbidden, ValidationError
from models import TransactionType
from schemas import (
    BudgetAllocationIn,
    BudgetAllocationOut,
    BudgetProfileIn,
    BudgetProfileOut,
    BudgetStatusOut,
    DeleteScope,
    InstallmentPlanIn,
    InstallmentPlanOut,
    InstallmentPlanUpdate,
    RecurringDefinitionIn,
    RecurringDefinitionOut,
    RecurringDefinitionUpdate,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import (
    BudgetService,
    InstallmentPlanService,
    RecurringDefinitionService,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Recurring Transactions")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(x_user_id: int = Header(...)) -> int:
    return x_user_id


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError):
    return _error(422, exc)


@app.exception_handler(NotFoundOrForbidden)
def not_found_handler(request: Request, exc: NotFoundOrForbidden):
    return _error(404, exc)


@app.exception_handler(ConsistencyViolation)
def consistency_handler(request: Request, exc: ConsistencyViolation):
    logger.warning(f"consistency_violation: path={request.url.path} detail={exc}")
    return _error(409, exc)


@app.post("/recurring-definitions", status_code=201, response_model=RecurringDefinitionOut)
def create_definition(
    payload: RecurringDefinitionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).create(payload)


@app.get("/recurring-definitions", response_model=list[RecurringDefinitionOut])
def list_definitions(
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).list(type)


@app.get("/recurring-definitions/{definition_id}", response_model=RecurringDefinitionOut)
def get_definition(
    definition_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).get(definition_id)


@app.get(
    "/recurring-definitions/{definition_id}/instances",
    response_model=list[TransactionOut],
)
def list_definition_instances(
    definition_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).instances(definition_id)


@app.patch("/recurring-definitions/{definition_id}", response_model=RecurringDefinitionOut)
def update_definition(
    definition_id: int,
    payload: RecurringDefinitionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).update(definition_id, payload)


@app.delete("/recurring-definitions/{definition_id}", status_code=204)
def delete_definition(
    definition_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    RecurringDefinitionService(db, user_id).delete(definition_id)
    return Response(status_code=204)


@app.post(
    "/recurring-definitions/{definition_id}/restore",
    response_model=RecurringDefinitionOut,
)
def restore_definition(
    definition_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return RecurringDefinitionService(db, user_id).restore(definition_id)


@app.post("/installment-plans", status_code=201, response_model=InstallmentPlanOut)
def create_plan(
    payload: InstallmentPlanIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return InstallmentPlanService(db, user_id).create(payload)


@app.get("/installment-plans", response_model=list[InstallmentPlanOut])
def list_plans(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return InstallmentPlanService(db, user_id).list()


@app.get("/installment-plans/{plan_id}/instances", response_model=list[TransactionOut])
def list_plan_instances(
    plan_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return InstallmentPlanService(db, user_id).instances(plan_id)


@app.patch("/installment-plans/{plan_id}", response_model=InstallmentPlanOut)
def update_plan(
    plan_id: int,
    payload: InstallmentPlanUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return InstallmentPlanService(db, user_id).update(plan_id, payload)


@app.delete("/installment-plans/{plan_id}", status_code=204)
def delete_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    InstallmentPlanService(db, user_id).delete(plan_id)
    return Response(status_code=204)


@app.post("/installment-plans/{plan_id}/restore", response_model=InstallmentPlanOut)
def restore_plan(
    plan_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return InstallmentPlanService(db, user_id).restore(plan_id)


@app.post("/transactions", status_code=201, response_model=TransactionOut)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).create(payload)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).get(transaction_id)


@app.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).update(transaction_id, payload)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    scope: DeleteScope = Query(DeleteScope.occurrence),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    archived = TransactionService(db, user_id).delete(transaction_id, scope)
    return {"archived": archived}


@app.post("/transactions/{transaction_id}/process", response_model=TransactionOut)
def process_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).mark_processed(transaction_id)


@app.post("/transactions/{transaction_id}/restore", response_model=TransactionOut)
def restore_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).restore(transaction_id)


@app.post("/budget-profiles", status_code=201, response_model=BudgetProfileOut)
def create_budget_profile(
    payload: BudgetProfileIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return BudgetService(db, user_id).create_profile(payload)


@app.get(
    "/budget-profiles/{profile_id}/status", response_model=list[BudgetStatusOut]
)
def budget_profile_status(
    profile_id: int,
    year: int = Query(..., ge=1970, le=3000),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return BudgetService(db, user_id).status_for_month(profile_id, year, month)


@app.put("/budgets", response_model=BudgetAllocationOut)
def upsert_budget(
    payload: BudgetAllocationIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return BudgetService(db, user_id).upsert_allocation(payload)


@app.delete("/budgets/{allocation_id}", status_code=204)
def delete_budget(
    allocation_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    BudgetService(db, user_id).delete_allocation(allocation_id)
    return Response(status_code=204)


@app.get("/budgets/{allocation_id}/status", response_model=BudgetStatusOut)
def budget_status(
    allocation_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return BudgetService(db, user_id).get_budget_status(allocation_id)
