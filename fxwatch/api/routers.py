"""Internal API routers — /status, /portfolio, /signals, /alerts, /tools endpoints.

No business logic, no DB access. Delegates to the monitoring loop, the
ledger and the tool table.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from fxwatch.errors import DataProviderError, FXWatchError
from fxwatch.monitor.models import Alert
from fxwatch.tools import TOOL_TABLE, invoke_tool, to_jsonable

logger = logging.getLogger("fxwatch.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_MAX_ALERTS = 100

_monitor = None   # Set via configure_routers()
_ledger = None    # Set via configure_routers()
_tools = None     # Set via configure_routers()
_alerts: list[dict] = []  # Ring buffer of recent alerts (max 100)


def configure_routers(monitor=None, ledger=None, tools=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        monitor: A ``MonitoringLoop`` instance (or duck-type for tests).
        ledger: A ``PortfolioLedger``.  Defaults to the monitor's ledger.
        tools: A ``MarketTools`` instance for the /tools endpoints.
    """
    global _monitor, _ledger, _tools  # noqa: PLW0603
    _monitor = monitor
    _ledger = ledger if ledger is not None else getattr(monitor, "ledger", None)
    _tools = tools
    _alerts.clear()


def push_alert(alert: Alert) -> None:
    """Append *alert* to the ring buffer served by ``/alerts``."""
    _alerts.append(alert.to_dict())
    if len(_alerts) > _MAX_ALERTS:
        del _alerts[0]


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return the monitoring loop's state."""
    if _monitor is None:
        return {"state": "idle", "running": False}
    return _monitor.status()


@router.get("/portfolio")
async def get_portfolio():
    """Return the paper portfolio snapshot."""
    ledger = _ledger if _ledger is not None else getattr(_monitor, "ledger", None)
    if ledger is None:
        return {"error": "No portfolio configured"}
    return to_jsonable(ledger.snapshot())


@router.get("/signals")
async def get_signals(pair: Optional[str] = Query(default=None)):
    """Return the latest signal per pair, optionally one pair only."""
    if _monitor is None:
        return {"signals": []}
    signals = _monitor.latest_signals
    if pair is not None:
        key = pair.upper().replace("_", "/")
        signals = {k: v for k, v in signals.items() if k == key}
    return {"signals": [to_jsonable(s) for _, s in sorted(signals.items())]}


@router.get("/alerts")
async def get_alerts(limit: int = Query(default=20, ge=1, le=_MAX_ALERTS)):
    """Return recent alerts, newest first."""
    return {"alerts": list(reversed(_alerts[-limit:]))}


@router.get("/tools")
async def list_tools():
    """Describe the available tools and their arguments."""
    return {"tools": [spec.schema() for spec in TOOL_TABLE.values()]}


@router.post("/tools/{name}")
async def call_tool(name: str, body: Optional[dict] = None):
    """Invoke a tool with a JSON body of arguments."""
    if _tools is None:
        raise HTTPException(status_code=503, detail="Tools are not configured")
    if name not in TOOL_TABLE:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
    try:
        result = await invoke_tool(_tools, name, body or {})
    except DataProviderError as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        status = 429 if exc.is_rate_limited else 502
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    except (FXWatchError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"tool": name, "result": result}
