"""FastAPI application for the moving-request intake engine."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.routers import estimates
from intake.flow_engine import StepNotActiveError, UnknownStepError

app = FastAPI(title="Moving Request Intake")

app.include_router(estimates.router, prefix="/estimates")


@app.exception_handler(UnknownStepError)
async def unknown_step_handler(request: Request, exc: UnknownStepError):
    return JSONResponse(status_code=404, content={"detail": f"Unknown step: {exc.args[0]}"})


@app.exception_handler(StepNotActiveError)
async def step_not_active_handler(request: Request, exc: StepNotActiveError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Invalid answers and form payloads from the intake core."""
    return JSONResponse(status_code=422, content={"detail": str(exc)})
