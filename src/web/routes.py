import logging
from typing import Any, Dict, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from src.local.supervisor import Supervisor
from src.local.supervisor.errors import AlreadyRunning, SupervisorError
from src.local.supervisor.state import ResetMode, ResetRequest
from src.log.translations import normalize_language

log = logging.getLogger("asgi_server")


# --- Request Helpers ---
def get_supervisor(request: Request) -> Supervisor:
    return request.app.state.supervisor

def get_language(request: Request, body: Optional[Dict[str, Any]] = None) -> str:
    """
    Picks the display language for a request.

    Order: the `lang` query parameter, a `lang` body field, the first
    Accept-Language tag, then the configured default.
    """
    lang = request.query_params.get("lang") or (body or {}).get("lang")
    if lang:
        return str(lang)
    accept_language = request.headers.get("accept-language", "")
    first_tag = accept_language.split(",")[0].split(";")[0].strip()
    if first_tag:
        return normalize_language(first_tag)
    return get_supervisor(request).settings.DEFAULT_LANGUAGE

async def read_json_body(request: Request) -> Dict[str, Any]:
    """Returns the JSON object body, or an empty dict when there is none."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}

def failure(error: SupervisorError, status_code: int = 500) -> JSONResponse:
    return JSONResponse({"success": False, "message": error.message, "logs": error.logs}, status_code=status_code)


# --- Handlers ---
async def get_status(request: Request) -> JSONResponse:
    status = await get_supervisor(request).get_status(get_language(request))
    log.info(f"ComfyUI status: {'running' if status['running'] else 'stopped'}")
    return JSONResponse(status)

async def start(request: Request) -> JSONResponse:
    log.info("Received request to start ComfyUI")
    supervisor = get_supervisor(request)
    lang = get_language(request)
    try:
        result = await supervisor.start(lang)
    except AlreadyRunning as e:
        return JSONResponse({"success": True, "alreadyRunning": True, "message": e.message, "pid": e.pid})
    except SupervisorError as e:
        log.error(f"ComfyUI start failed: {e.message}")
        return failure(e)
    return JSONResponse({"success": True, "message": result.message, "pid": result.pid})

async def stop(request: Request) -> JSONResponse:
    log.info("Received request to stop ComfyUI")
    supervisor = get_supervisor(request)
    lang = get_language(request)
    try:
        result = await supervisor.stop(lang)
    except SupervisorError as e:
        log.error(f"ComfyUI stop failed: {e.message}")
        return JSONResponse({"success": False, "message": e.message, "error": e.message, "logs": e.logs},
                            status_code=500)
    except Exception as e:
        log.error(f"Unexpected error while stopping ComfyUI: {e}", exc_info=True)
        return JSONResponse({"success": False, "message": str(e), "error": str(e),
                             "logs": supervisor.get_logs(lang)}, status_code=500)
    return JSONResponse({"success": True, "message": result.message})

async def get_logs(request: Request) -> JSONResponse:
    lang = get_language(request)
    log.debug(f"Received request for ComfyUI logs (language: {lang})")
    return JSONResponse({"logs": get_supervisor(request).get_logs(lang)})

async def reset(request: Request) -> JSONResponse:
    body = await read_json_body(request)
    lang = get_language(request, body)
    mode = ResetMode.parse(body.get("mode") or request.query_params.get("mode"))
    log.warning(f"Received request to reset ComfyUI (mode: {mode.value}, language: {lang})")
    try:
        result = await get_supervisor(request).reset(ResetRequest(language=lang, mode=mode))
    except SupervisorError as e:
        log.error(f"ComfyUI reset failed: {e.message}")
        return failure(e)
    return JSONResponse({"success": True, "message": result.message, "logs": result.logs})

async def get_reset_logs(request: Request) -> JSONResponse:
    return JSONResponse(get_supervisor(request).get_reset_logs(get_language(request)))


routes = [
    Route("/api/comfyui/status", endpoint=get_status, methods=["GET"]),
    Route("/api/comfyui/start", endpoint=start, methods=["POST"]),
    Route("/api/comfyui/stop", endpoint=stop, methods=["POST"]),
    Route("/api/comfyui/logs", endpoint=get_logs, methods=["GET"]),
    Route("/api/comfyui/reset", endpoint=reset, methods=["POST"]),
    Route("/api/comfyui/reset-logs", endpoint=get_reset_logs, methods=["GET"]),
]
