import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from allocation import (
    Allocation,
    EmployeeHours,
    RawAmount,
    TipAllocationError,
    TotalsSnapshot,
    allocate,
    build_record,
    compute_totals,
    parse_amount,
    validate_hours,
)
from settings import Settings, get_settings
from storage import Employee, RosterRepository, HistoryRepository, SqliteHistory, SqliteRoster, StoredRecord

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    roster = SqliteRoster(settings.db_path)
    roster.seed(settings.seed_employees)
    SqliteHistory(settings.db_path)
    yield


app = FastAPI(title="Tip Distribution API", lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_roster(settings: Settings = Depends(get_settings)) -> RosterRepository:
    return SqliteRoster(settings.db_path)


def get_history(settings: Settings = Depends(get_settings)) -> HistoryRepository:
    return SqliteHistory(settings.db_path)


# Pydantic models
class CashCount(BaseModel):
    fives: RawAmount = None
    tens: RawAmount = None
    twenties: RawAmount = None
    fifties: RawAmount = None
    hundreds: RawAmount = None
    registered_tips: RawAmount = None

    def denominations(self) -> Dict[int, RawAmount]:
        return {5: self.fives, 10: self.tens, 20: self.twenties, 50: self.fifties, 100: self.hundreds}


class HoursEntry(BaseModel):
    employee_id: int
    hours: RawAmount = None


class TipCalculationRequest(BaseModel):
    cash: CashCount = CashCount()
    hours: List[HoursEntry] = []


class EmployeeTipResult(BaseModel):
    employee_id: int
    employee_name: str
    hours: float
    deserved_tip: float


class CalculationResult(BaseModel):
    total_tips: float
    sales_tax: float
    net_tips: float
    tips: List[EmployeeTipResult]
    remainder: float
    remainder_unresolved: bool


class NewEmployee(BaseModel):
    name: str


class EmployeeOrder(BaseModel):
    employee_ids: List[int]


def _hours_for_roster(
    request: TipCalculationRequest, employees: List[Employee], settings: Settings
) -> List[EmployeeHours]:
    by_id = {}
    for entry in request.hours:
        by_id[entry.employee_id] = entry.hours

    unknown = set(by_id) - {e.id for e in employees}
    if unknown:
        logger.debug("Ignoring hours for unknown employee ids %s", sorted(unknown))

    return [
        EmployeeHours(
            employee_id=e.id,
            employee_name=e.name,
            hours=parse_amount(by_id.get(e.id), settings.input_policy, field=f"hours for {e.name}"),
        )
        for e in employees
    ]


def _calculate(request: TipCalculationRequest, roster: RosterRepository, settings: Settings):
    try:
        employees = roster.list()
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving employees: {str(e)}")

    try:
        totals = compute_totals(request.cash.denominations(), request.cash.registered_tips, settings.input_policy)
        hours = _hours_for_roster(request, employees, settings)
    except TipAllocationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return totals, hours, allocate(totals.net_tips, hours)


def _result(totals: TotalsSnapshot, allocation: Allocation) -> CalculationResult:
    return CalculationResult(
        total_tips=totals.total_tips,
        sales_tax=totals.sales_tax,
        net_tips=totals.net_tips,
        tips=[EmployeeTipResult(**t.model_dump()) for t in allocation.tips],
        remainder=allocation.remainder,
        remainder_unresolved=allocation.remainder_unresolved,
    )


@app.get("/")
def read_root():
    return {"message": "Tip Distribution API"}


@app.post("/calculate", response_model=CalculationResult)
def calculate_tips(
    request: TipCalculationRequest,
    roster: RosterRepository = Depends(get_roster),
    settings: Settings = Depends(get_settings),
):
    """
    Compute totals and each employee's deserved tip for the current roster
    """
    totals, _, allocation = _calculate(request, roster, settings)
    return _result(totals, allocation)


@app.post("/save")
def save_distribution(
    request: TipCalculationRequest,
    roster: RosterRepository = Depends(get_roster),
    history: HistoryRepository = Depends(get_history),
    settings: Settings = Depends(get_settings),
):
    """
    Recompute from the confirmed inputs, check hours and store the result
    """
    totals, hours, allocation = _calculate(request, roster, settings)
    try:
        validate_hours(hours)
    except TipAllocationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    record = build_record(totals, allocation)
    try:
        record_id = history.save(record)
    except sqlite3.Error as e:
        logger.error("Error saving tip calculation: %s", e)
        raise HTTPException(status_code=500, detail=f"Error saving to database: {str(e)}")

    return {
        "id": record_id,
        "message": "Tip calculation saved successfully",
        "result": _result(totals, allocation),
    }


@app.get("/history", response_model=List[StoredRecord])
def get_history_records(
    limit: Optional[int] = None,
    history: HistoryRepository = Depends(get_history),
    settings: Settings = Depends(get_settings),
):
    """
    Get saved tip calculations, most recent first
    """
    if limit is not None and limit <= 0:
        raise HTTPException(status_code=400, detail="Limit must be greater than 0")
    try:
        return history.list(limit or settings.history_limit)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving history: {str(e)}")


@app.delete("/history/{record_id}")
def delete_record(record_id: int, history: HistoryRepository = Depends(get_history)):
    """
    Delete a specific tip calculation
    """
    try:
        deleted = history.delete(record_id)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error deleting record: {str(e)}")
    if not deleted:
        raise HTTPException(status_code=404, detail="Record not found")
    return {"message": "Record deleted successfully"}


@app.get("/employees", response_model=List[Employee])
def get_employees(roster: RosterRepository = Depends(get_roster)):
    """
    Return the roster in display order
    """
    try:
        return roster.list()
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving employees: {str(e)}")


@app.post("/employees", response_model=Employee, status_code=201)
def add_employee(request: NewEmployee, roster: RosterRepository = Depends(get_roster)):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Employee name is required")
    try:
        return roster.add(name)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail=f"Employee {name} already exists")
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error adding employee: {str(e)}")


@app.put("/employees/order", response_model=List[Employee])
def reorder_employees(request: EmployeeOrder, roster: RosterRepository = Depends(get_roster)):
    try:
        return roster.reorder(request.employee_ids)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error reordering employees: {str(e)}")


@app.delete("/employees/{employee_id}")
def remove_employee(employee_id: int, roster: RosterRepository = Depends(get_roster)):
    try:
        removed = roster.remove(employee_id)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Error removing employee: {str(e)}")
    if not removed:
        raise HTTPException(status_code=404, detail="Employee not found")
    return {"message": "Employee removed successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
