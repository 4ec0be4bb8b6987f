from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from risk_analyzer.errors import NotFound
from risk_analyzer.job_store import Job, JobExecutor, JobType, SqlJobRepository
from risk_analyzer.schemas import (
    BacktestRequest,
    CorrelationRequest,
    CVaRRequest,
    JobOut,
    JobStarted,
    PCARequest,
    RiskContributionRequest,
    StressTestRequest,
    VaRRequest,
)
from risk_analyzer.services.risk_service import RiskService

router = APIRouter()

_executor: JobExecutor | None = None
_service: RiskService | None = None


def get_executor() -> JobExecutor:
    global _executor
    if _executor is None:
        _executor = JobExecutor(repository=SqlJobRepository())
    return _executor


def get_service() -> RiskService:
    global _service
    if _service is None:
        _service = RiskService()
    return _service


def _started(job: Job) -> JobStarted:
    return JobStarted(job_id=job.id, status=job.status.value)


# ---------------------------------------------------------------------------
# VaR / CVaR  (async job pattern)
# ---------------------------------------------------------------------------

@router.post("/var", response_model=JobStarted)
def start_var(
    payload: VaRRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    request = payload.to_risk_request()
    job = executor.submit(
        JobType.VAR,
        lambda job_id, progress: service.compute_var(payload.portfolio_id, request, progress),
    )
    return _started(job)


@router.post("/cvar", response_model=JobStarted)
def start_cvar(
    payload: CVaRRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    request = payload.to_risk_request()
    job = executor.submit(
        JobType.CVAR,
        lambda job_id, progress: service.compute_cvar(payload.portfolio_id, request, progress),
    )
    return _started(job)


# ---------------------------------------------------------------------------
# Correlation / PCA  (async job pattern)
# ---------------------------------------------------------------------------

@router.post("/correlation", response_model=JobStarted)
def start_correlation(
    payload: CorrelationRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    symbols = [s.strip().upper() for s in payload.symbols if s.strip()]
    job = executor.submit(
        JobType.CORRELATION,
        lambda job_id, progress: service.compute_correlation(symbols, payload.window_days, progress),
    )
    return _started(job)


@router.post("/pca", response_model=JobStarted)
def start_pca(
    payload: PCARequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    symbols = [s.strip().upper() for s in payload.symbols if s.strip()]
    job = executor.submit(
        JobType.PCA,
        lambda job_id, progress: service.compute_pca(
            symbols, payload.components, payload.window_days, progress
        ),
    )
    return _started(job)


# ---------------------------------------------------------------------------
# Stress / backtest / contribution  (async job pattern)
# ---------------------------------------------------------------------------

@router.post("/stress", response_model=JobStarted)
def start_stress(
    payload: StressTestRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    specs = [s.to_spec() for s in payload.scenarios]
    job = executor.submit(
        JobType.STRESS,
        lambda job_id, progress: service.compute_stress_test(payload.portfolio_id, specs, progress),
    )
    return _started(job)


@router.post("/backtest", response_model=JobStarted)
def start_backtest(
    payload: BacktestRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    job = executor.submit(
        JobType.BACKTEST,
        lambda job_id, progress: service.compute_backtest(
            payload.portfolio_id,
            payload.confidence,
            payload.window_days,
            payload.method,
            test_days=payload.test_days,
            progress=progress,
        ),
    )
    return _started(job)


@router.post("/contribution", response_model=JobStarted)
def start_contribution(
    payload: RiskContributionRequest,
    executor: JobExecutor = Depends(get_executor),
    service: RiskService = Depends(get_service),
):
    job = executor.submit(
        JobType.RISK_CONTRIBUTION,
        lambda job_id, progress: service.compute_risk_contribution(
            payload.portfolio_id, payload.confidence, payload.window_days, progress
        ),
    )
    return _started(job)


# ---------------------------------------------------------------------------
# Shared job poll / progress endpoints
# ---------------------------------------------------------------------------

@router.get("/jobs/{job_id}", response_model=JobOut)
def poll_job(job_id: str, executor: JobExecutor = Depends(get_executor)):
    try:
        job = executor.get_job(job_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    executor.purge_finished()
    return JobOut(
        id=job.id,
        type=job.type,
        status=job.status.value,
        progress=job.progress,
        result=job.result if job.status.value == "succeeded" else None,
        error=job.error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.get("/jobs/{job_id}/progress")
def stream_progress(job_id: str, executor: JobExecutor = Depends(get_executor)):
    """Progress percentages, one per line, until the job finishes."""
    try:
        stream = executor.get_progress(job_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return StreamingResponse((f"{value}\n" for value in stream), media_type="text/plain")


# ---------------------------------------------------------------------------
# Synchronous routes (for scripting / direct API calls)
# ---------------------------------------------------------------------------

@router.post("/var/sync")
def var_sync(payload: VaRRequest, service: RiskService = Depends(get_service)):
    return service.compute_var(payload.portfolio_id, payload.to_risk_request())


@router.post("/cvar/sync")
def cvar_sync(payload: CVaRRequest, service: RiskService = Depends(get_service)):
    return service.compute_cvar(payload.portfolio_id, payload.to_risk_request())


@router.post("/correlation/sync")
def correlation_sync(payload: CorrelationRequest, service: RiskService = Depends(get_service)):
    symbols = [s.strip().upper() for s in payload.symbols if s.strip()]
    return service.compute_correlation(symbols, payload.window_days)


@router.get("/dashboard")
def dashboard(portfolio_id: int, service: RiskService = Depends(get_service)):
    return service.compute_dashboard(portfolio_id)
