"""Relay embedded in a FastAPI app.

One process, one port: the WebSocket endpoint, the management routes and
any routes of your own.

    pip install relay-server
    python examples/relay_basic.py

Then, from the backend, publish with the service key header:

    curl -X POST -H 'RelayServiceKey: s3cret' \
         -d '{"channel": "chat", "text": "hi"}' \
         http://localhost:8080/relay/publish

WebSocket endpoint: ws://localhost:8080/relay/ws
"""

import logging

import uvicorn

from relay_server import BackendConfig, RelayConfig, create_relay_app

from example_extension import ChatExtension

logging.basicConfig(level=logging.INFO)

config = RelayConfig(
    service_key="s3cret",
    backend=BackendConfig(host="localhost", port=8000, message_path="relay/message"),
    presence_delay=2.0,
)

app = create_relay_app(config, extensions=[ChatExtension()])


@app.get("/")
async def index() -> dict[str, str]:
    return {"websocket": config.ws_path, "management": config.base_auth_path}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
