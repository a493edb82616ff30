"""HTTP endpoints for product lookup by id or slug and legacy redirects."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, redirect, request

from .models import Product, ProductError
from .redirects import LegacyRedirector
from .repositories import StorageUnavailableError
from .services import (
    InvalidTokenError,
    ProductNotFoundError,
    ProductService,
    ProductServiceError,
    SlugAssignmentError,
)

logger = logging.getLogger(__name__)

PERMANENT_CACHE_CONTROL = "public, max-age=31536000"
# Fields a client may not set directly; storage and the slug hook own them.
MANAGED_FIELDS = ("id", "slug", "order", "rev")


def envelope(data: Optional[Dict[str, Any]] = None, error: Optional[str] = None, status: int = 200):
    """Build the ``{ok, data?, error?}`` response."""
    body: Dict[str, Any] = {"ok": error is None}
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    return jsonify(body), status


def _client_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidTokenError("El cuerpo de la petición debe ser un objeto JSON.")
    return {key: value for key, value in payload.items() if key not in MANAGED_FIELDS}


def create_app(service: ProductService, config: Optional[Dict[str, Any]] = None) -> Flask:
    """Create the Flask application serving the product lookup endpoints."""
    config = config or {}
    redirect_cfg = config.get("redirects", {})
    redirector = LegacyRedirector(
        service,
        canonical_prefix=redirect_cfg.get("canonical_prefix", "/products"),
        fallback_location=redirect_cfg.get("fallback_location", "/products"),
    )

    app = Flask(__name__)
    app.config["PRODUCT_SLUGS"] = config
    app.extensions["product_slugs"] = {"service": service, "redirector": redirector}

    @app.errorhandler(InvalidTokenError)
    def handle_invalid_token(exc):
        return envelope(error=str(exc), status=400)

    @app.errorhandler(ProductNotFoundError)
    def handle_not_found(exc):
        return envelope(error=str(exc), status=404)

    @app.errorhandler(SlugAssignmentError)
    def handle_slug_assignment(exc):
        logger.error(f"Asignación de slug fallida: {exc}")
        return envelope(error=str(exc), status=500)

    @app.errorhandler(StorageUnavailableError)
    def handle_storage(exc):
        logger.error(f"Almacenamiento no disponible: {exc}")
        return envelope(error="Almacenamiento no disponible.", status=503)

    @app.errorhandler(ProductServiceError)
    def handle_service_error(exc):
        logger.error(f"Error del servicio de productos: {exc}")
        return envelope(error=str(exc), status=500)

    @app.get("/api/products/<token>")
    def lookup_product(token: str):
        product = service.resolve_token(token)
        if product is None:
            return envelope(error="Producto no encontrado.", status=404)
        return envelope(product.to_dict())

    @app.get("/api/products/slug/<slug>")
    def lookup_product_by_slug(slug: str):
        product = service.get_product_by_slug(slug)
        if product is None:
            return envelope(error="Producto no encontrado.", status=404)
        return envelope(product.to_dict())

    @app.post("/api/products")
    def create_product():
        payload = _client_payload()
        try:
            product = Product.from_dict(payload)
        except (ProductError, TypeError) as exc:
            return envelope(error=str(exc), status=400)
        stored = service.add_product(product)
        return envelope(stored.to_dict(), status=201)

    @app.put("/api/products/<product_id>")
    def update_product(product_id: str):
        payload = _client_payload()
        current = service.get_product_by_id(product_id)
        if current is None:
            raise ProductNotFoundError(f"Producto no encontrado: {product_id}")
        try:
            updated = Product.from_dict({**current.to_dict(), **payload})
        except (ProductError, TypeError) as exc:
            return envelope(error=str(exc), status=400)
        stored = service.update_product(product_id, updated)
        return envelope(stored.to_dict())

    @app.delete("/api/products/<product_id>")
    def delete_product(product_id: str):
        if not service.delete_product(product_id):
            return envelope(error="Producto no encontrado.", status=404)
        return envelope({"id": product_id})

    @app.get("/product/<path:legacy_id>")
    def legacy_redirect(legacy_id: str):
        decision = redirector.resolve(legacy_id)
        response = redirect(decision.location, code=decision.status_code)
        if decision.permanent:
            response.headers["Cache-Control"] = PERMANENT_CACHE_CONTROL
        else:
            response.headers["Cache-Control"] = "no-cache"
        return response

    return app
