"""Small Flask stand-in for the hosted inference API.

POST JSON to /models/<model id> with `{"inputs": "..."}` and a bearer
token; it answers with a PNG placeholder, like the real API answers with
image bytes.

Run locally for development:
    python scripts/inference_stub.py

Then point INFERENCE_API_URL to http://localhost:9090/models

Set STUB_FAIL_STATUS (and optionally STUB_FAIL_BODY) to make every request
fail, e.g. STUB_FAIL_STATUS=503 STUB_FAIL_BODY=overloaded.
"""
import os
import time
import base64
import logging

from flask import Flask, Response, request

logger = logging.getLogger(__name__)

PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

app = Flask(__name__)


@app.route("/models/<path:model_id>", methods=["POST"])
def generate(model_id):
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer ") or not auth[len("Bearer "):].strip():
        return Response('{"error":"Authorization header is correct, but the token seems invalid"}', status=401, mimetype="application/json")

    payload = request.get_json(force=True, silent=True) or {}
    if not payload.get("inputs"):
        return Response('{"error":"inputs is required"}', status=400, mimetype="application/json")

    fail_status = os.getenv("STUB_FAIL_STATUS")
    if fail_status:
        return Response(os.getenv("STUB_FAIL_BODY", "stub failure"), status=int(fail_status), mimetype="text/plain")

    # Simulate some processing time
    time.sleep(float(os.getenv("STUB_DELAY", "0.2")))

    negative = (payload.get("parameters") or {}).get("negative_prompt")
    logger.info("stub generate model=%s negative_prompt=%s", model_id, bool(negative))
    return Response(PLACEHOLDER_PNG, status=200, mimetype="image/png")


if __name__ == "__main__":
    port = int(os.getenv("INFERENCE_STUB_PORT", "9090"))
    app.run(host="0.0.0.0", port=port)
