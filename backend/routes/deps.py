from fastapi import Request, WebSocket

from backend.host import Host


def get_host(request: Request) -> Host:
    return request.app.state.host


def get_ws_host(websocket: WebSocket) -> Host:
    return websocket.app.state.host
