# ira-controller/ira/main.py
# @ai-rules:
# 1. [Pattern]: Settings are read once (create_app) and validated in lifespan; ConfigError aborts startup.
# 2. [Pattern]: The webhook route is only mounted when ENABLE_WEBHOOKS != "false".
# 3. [Pattern]: PodObserver (certificate reconciliation) starts only when IRA_GENERATE_CERT=true.
# 4. [Gotcha]: TLS is terminated by uvicorn (--ssl-keyfile/--ssl-certfile); the API server only calls HTTPS webhooks.
"""
IRA Controller - FastAPI Application

Hosts:
- the mutating admission webhook that injects the Roles Anywhere credential helper
- the pod observer that keeps cert-manager Certificates in sync
- liveness/readiness probes

Run with:
    uvicorn ira.main:app --host 0.0.0.0 --port 9443 \
        --ssl-keyfile /tmp/k8s-webhook-server/serving-certs/tls.key \
        --ssl-certfile /tmp/k8s-webhook-server/serving-certs/tls.crt
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from . import __version__
from .config import ConfigError, Settings
from .dependencies import set_mutator, set_settings
from .kube import KubeClients, KubeCertificateStore, load_kube_clients, owner_lookup_factory
from .mutator import PodMutator
from .observers import PodObserver
from .reconciler import PodReconciler
from .routes import health_router, webhook_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Squelch noisy client loggers
for noisy in ("kubernetes.client.rest", "urllib3.connectionpool"):
    logging.getLogger(noisy).setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    clients_loader: Callable[[], KubeClients] = load_kube_clients,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: configuration; read from the environment when omitted
        clients_loader: builds the Kubernetes API clients at startup
    """
    if settings is None:
        try:
            settings = Settings.from_env()
        except ConfigError as e:
            logger.error(f"CRITICAL: invalid configuration: {e}")
            raise

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("IRA controller starting up...")
        try:
            settings.validate_startup()
        except ConfigError as e:
            logger.error(f"CRITICAL: invalid configuration: {e}")
            raise

        clients = clients_loader()
        lookup_factory = owner_lookup_factory(clients)

        if settings.enable_webhooks:
            set_mutator(PodMutator(settings, lookup_factory))
            logger.info("Pod mutating webhook enabled")
        else:
            logger.info("Pod mutating webhook disabled (ENABLE_WEBHOOKS=false)")

        observer: Optional[PodObserver] = None
        if settings.generate_cert:
            reconciler = PodReconciler(
                clients.core_api,
                lookup_factory,
                KubeCertificateStore(clients.custom_api),
                settings,
            )
            observer = PodObserver(clients.core_api, reconciler, settings)
            await observer.start()
            app.state.pod_observer = observer
        else:
            logger.info("Certificate generation disabled (IRA_GENERATE_CERT=false)")

        set_settings(settings)
        logger.info("IRA controller ready")

        yield  # Application runs here

        logger.info("IRA controller shutting down...")
        if observer is not None:
            await observer.stop()
        set_mutator(None)
        set_settings(None)

    app = FastAPI(
        title="IRA Controller",
        description="Injects the IAM Roles Anywhere credential helper into annotated pods",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(health_router)
    if settings.enable_webhooks:
        app.include_router(webhook_router)
    return app


app = create_app()
