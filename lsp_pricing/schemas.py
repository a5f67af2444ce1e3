"""Schemas for API responses."""

from __future__ import annotations

from marshmallow import Schema, fields


class HealthStatusSchema(Schema):
    status = fields.String(required=True)
    app = fields.String()
    providers = fields.List(fields.String())


class HealthStoreSchema(Schema):
    status = fields.String(required=True)
    configured = fields.Boolean(required=True)
    connected = fields.Boolean(required=True)
    channel_sizes = fields.List(fields.Integer(), required=True)
    history_count = fields.Integer(required=True)
    last_update = fields.DateTime(allow_none=True)
    last_scheduled_refresh = fields.DateTime(allow_none=True)
    error = fields.String(allow_none=True)


class ErrorMessageSchema(Schema):
    message = fields.String(required=True)
    field_errors = fields.Dict(keys=fields.String(), values=fields.List(fields.String()))
