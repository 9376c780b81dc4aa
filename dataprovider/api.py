"""JSON/CSV HTTP surface over the resource repository.

Routes live under `/api/<resource>`; only resources named in API_RESOURCES are served
and their field lists restrict which query-string filters are honored.
`?search=` matches any of API_SEARCH_FIELDS (or the allow-list) case-insensitively.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
from flask import Blueprint, Response, abort, jsonify, request
from pydantic import ValidationError

from .auth import AuthService
from .config import Settings, get_settings
from .errors import UNKNOWN, DataProviderError
from .filters import parse_filters_from_search_params
from .repository import ResourceRepository
from .types import Pagination, QueryParams, Sort

logger = logging.getLogger(__name__)


def _resource_id(raw: str) -> Any:
    return int(raw) if raw.isascii() and raw.isdigit() else raw


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        abort(400, description="Request body must be a JSON object")
    return body


def _ids(body: Dict[str, Any]) -> List[Any]:
    ids = body.get("ids")
    if not isinstance(ids, list):
        abort(400, description="'ids' must be a list")
    return ids


class ResourceApi:
    """Builds the `/api` blueprint; request identity comes from the AuthService claims."""

    def __init__(self, repository: ResourceRepository, auth: AuthService, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.repository = repository
        self.auth = auth

    def _allowed_fields(self, resource: str) -> Optional[List[str]]:
        if resource not in self.settings.api_resources:
            abort(404, description=f"Unknown resource '{resource}'")
        fields = self.settings.api_resources[resource]
        return None if "*" in fields else fields

    def _search_fields(self, resource: str, allowed: Optional[List[str]]) -> List[str]:
        fields = self.settings.api_search_fields.get(resource) or allowed
        if not fields:
            abort(400, description=f"Search is not configured for '{resource}'")
        return fields

    def _list_params(self, resource: str, page_size: Optional[int] = None) -> QueryParams:
        args = request.args
        allowed = self._allowed_fields(resource)

        sort = None
        if args.get("sort"):
            order = (args.get("sortOrder") or "asc").lower()
            sort = [Sort(field=field, order=order) for field in args["sort"].split(",") if field]

        pagination = None
        if page_size is not None:
            pagination = Pagination(page=1, page_size=page_size)
        elif args.get("page") or args.get("pageSize"):
            pagination = Pagination(
                page=args.get("page", 1, type=int),
                page_size=args.get("pageSize", self.settings.default_page_size, type=int),
            )

        search = (args.get("search") or "").strip() or None
        search_fields = self._search_fields(resource, allowed) if search else []

        return QueryParams(
            resource=resource,
            pagination=pagination,
            sort=sort,
            filters=parse_filters_from_search_params(args, allowed),
            select=args.get("select") or "*",
            meta=self.auth.current_meta(),
            search=search,
            search_fields=search_fields,
        )

    def blueprint(self) -> Blueprint:
        bp = Blueprint("resources", __name__, url_prefix="/api")
        repo = self.repository

        @bp.errorhandler(DataProviderError)
        def provider_error(err: DataProviderError):
            status = err.status or (500 if err.code == UNKNOWN else 400)
            if status >= 500:
                logger.error("Request %s %s failed: %r", request.method, request.path, err)
            return jsonify({"error": err.message, "code": err.code}), status

        @bp.errorhandler(ValidationError)
        def invalid_params(err: ValidationError):
            details = err.errors(include_url=False, include_context=False, include_input=False)
            return jsonify({"error": "Invalid request parameters", "code": "VALIDATION", "details": details}), 400

        @bp.get("/<resource>")
        def list_records(resource: str):
            return jsonify(repo.get_list(self._list_params(resource)).model_dump())

        @bp.get("/<resource>/export.csv")
        def export_records(resource: str):
            result = repo.get_list(self._list_params(resource, page_size=self.settings.export_max_rows))
            csv = pd.DataFrame(result.data).to_csv(index=False)
            return Response(
                csv,
                mimetype="text/csv",
                headers={"Content-Disposition": f'attachment; filename="{resource}.csv"'},
            )

        @bp.get("/<resource>/<id>")
        def get_record(resource: str, id: str):
            self._allowed_fields(resource)
            select = request.args.get("select") or "*"
            return jsonify(repo.get_one(resource, _resource_id(id), select=select, meta=self.auth.current_meta()))

        @bp.post("/<resource>")
        def create_record(resource: str):
            self._allowed_fields(resource)
            record = repo.create(resource, _json_body(), meta=self.auth.current_meta())
            return jsonify(record), 201

        @bp.patch("/<resource>/<id>")
        def update_record(resource: str, id: str):
            self._allowed_fields(resource)
            return jsonify(repo.update(resource, _resource_id(id), _json_body(), meta=self.auth.current_meta()))

        @bp.delete("/<resource>/<id>")
        def delete_record(resource: str, id: str):
            self._allowed_fields(resource)
            repo.delete(resource, _resource_id(id), meta=self.auth.current_meta())
            return "", 204

        @bp.post("/<resource>/bulk-delete")
        def bulk_delete(resource: str):
            self._allowed_fields(resource)
            ids = _ids(_json_body())
            repo.delete_many(resource, ids, meta=self.auth.current_meta())
            return jsonify({"deleted": len(ids)})

        @bp.patch("/<resource>/bulk")
        def bulk_update(resource: str):
            self._allowed_fields(resource)
            body = _json_body()
            ids, data = _ids(body), body.get("data")
            if not isinstance(data, dict):
                abort(400, description="'data' must be a JSON object")
            repo.update_many(resource, ids, data, meta=self.auth.current_meta())
            return jsonify({"updated": len(ids)})

        return bp
