# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/discoblocks/mutators/webhook.py

"""
AdmissionReview v1 endpoint serving the pod mutator.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from discoblocks.config.models import WebhookConfig
from discoblocks.mutators.pod import AdmissionResponse, PodMutator

log = logging.getLogger("discoblocks")

MUTATE_PATH = "/mutate-v1-pod"


def admission_review(uid: str, response: AdmissionResponse) -> Dict[str, Any]:
    """Wrap a mutator decision into an AdmissionReview response."""
    body: Dict[str, Any] = {"uid": uid, "allowed": response.allowed}

    if response.patch:
        body["patchType"] = "JSONPatch"
        body["patch"] = base64.b64encode(json.dumps(response.patch).encode("utf-8")).decode("ascii")

    if not response.allowed or response.message:
        body["status"] = {"code": response.code, "message": response.message}

    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": body,
    }


def create_app(mutator: PodMutator) -> Flask:
    app = Flask("discoblocks")

    @app.route(MUTATE_PATH, methods=["POST"])
    def mutate_pod():
        review = request.get_json(silent=True) or {}
        req = review.get("request")
        if not isinstance(req, dict):
            log.warning("[mutator] malformed AdmissionReview from %s", request.remote_addr)
            return jsonify({"error": "AdmissionReview request missing"}), 400

        if req.get("operation", "CREATE") != "CREATE":
            return jsonify(admission_review(req.get("uid", ""), AdmissionResponse(True)))

        response = mutator.handle(req)
        return jsonify(admission_review(req.get("uid", ""), response))

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return jsonify({"status": "ok"})

    return app


def serve(app: Flask, webhook: Optional[WebhookConfig] = None) -> None:
    """Serve the webhook, over TLS when a certificate pair is configured."""
    webhook = webhook or WebhookConfig()
    ssl_context = None
    if webhook.cert_file and webhook.key_file:
        ssl_context = (webhook.cert_file, webhook.key_file)
    else:
        log.warning("[mutator] no TLS certificate configured, serving plain HTTP")

    log.info("[mutator] admission webhook listening on %s:%d", webhook.host, webhook.port)
    app.run(host=webhook.host, port=webhook.port, ssl_context=ssl_context, threaded=True)
