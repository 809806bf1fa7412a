import json
import logging
import requests
from typing import Any, Dict, Optional, Tuple

log = logging.getLogger(__name__)

ApiResponse = Tuple[int, Dict[str, Any]]


def _base_url(host: str, port: int) -> str:
    # 0.0.0.0 is a bind address, not something we can connect to.
    if host in ("0.0.0.0", "::", ""):
        host = "127.0.0.1"
    return f"http://{host}:{port}/api/comfyui"

def _decode(response: requests.Response) -> ApiResponse:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        body = {"success": False, "message": response.text}
    return response.status_code, body if isinstance(body, dict) else {"data": body}

def get_from_launcher(host: str, port: int, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      timeout: float = 5) -> Optional[ApiResponse]:
    """
    Sends a GET request to the launcher API.

    :param host: The host the launcher API listens on.
    :param port: The port the launcher API listens on.
    :param endpoint: Path below `/api/comfyui`, e.g. 'status'.
    :param params: Optional query parameters.
    :param timeout: Request timeout in seconds.
    :return: (status code, JSON body), or None when the API is unreachable.
    """
    url = f"{_base_url(host, port)}/{endpoint}"
    try:
        response = requests.get(url, params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        log.debug(f"Launcher API unreachable at '{url}': {e}")
        return None
    return _decode(response)

def post_to_launcher(host: str, port: int, endpoint: str, payload: Optional[Dict[str, Any]] = None,
                     params: Optional[Dict[str, Any]] = None, timeout: float = 900) -> Optional[ApiResponse]:
    """
    Sends a POST request to the launcher API.

    Starting and resetting ComfyUI can take minutes, hence the long default timeout.

    :return: (status code, JSON body), or None when the API is unreachable.
    """
    url = f"{_base_url(host, port)}/{endpoint}"
    try:
        response = requests.post(url, json=payload or {}, params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        log.error(f"Failed to reach launcher API at '{url}': {e}")
        return None
    return _decode(response)
