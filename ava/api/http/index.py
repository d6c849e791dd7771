"""HTTP API layer: shell page that issues the device cookie."""

from __future__ import annotations

import html

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from ava.api.deps import get_container, mint_device_id, read_device_id, set_device_cookie
from ava.core.container import AppContainer
from ava.infra.observability.logger import get_logger

router = APIRouter(tags=["index"])
logger = get_logger(__name__)

_SHELL_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body>
  <h1>{assistant}</h1>
  <p id="status">connecting...</p>
  <ol id="events"></ol>
  <form id="upload" action="/assistant" method="post" enctype="multipart/form-data">
    <input type="file" name="audio" accept="audio/*">
    <button type="submit">Send</button>
  </form>
  <script>
    const list = document.getElementById("events");
    const status = document.getElementById("status");
    const source = new EventSource("/events");
    source.onopen = () => {{ status.textContent = "connected"; }};
    for (const name of ["signal", "input", "reply"]) {{
      source.addEventListener(name, (msg) => {{
        const item = document.createElement("li");
        const data = JSON.parse(msg.data);
        item.className = data.severity === "error" ? "error" : name;
        item.textContent = name + ": " + msg.data;
        list.appendChild(item);
      }});
    }}
    document.getElementById("upload").addEventListener("submit", async (evt) => {{
      evt.preventDefault();
      const resp = await fetch("/assistant", {{ method: "POST", body: new FormData(evt.target) }});
      status.textContent = "upload " + (await resp.json()).status;
    }});
  </script>
</body>
</html>
"""


@router.get("/", response_class=HTMLResponse)
def index_page(request: Request, container: AppContainer = Depends(get_container)) -> HTMLResponse:
    settings = container.settings
    response = HTMLResponse(
        _SHELL_PAGE.format(
            title=html.escape(settings.app_name),
            assistant=html.escape(settings.assistant_name),
        )
    )
    if read_device_id(request, settings.device_cookie_name) is None:
        device_id = mint_device_id()
        set_device_cookie(response, container, device_id)
        logger.info("device.minted device_id=%s", device_id)
    return response
