# SPDX-License-Identifier: AGPL-3.0-only

"""
Input validation schemas using Marshmallow for API endpoints.
"""
from marshmallow import Schema, fields, validate, validates_schema, ValidationError

from docextract.models import DocumentType


DOCUMENT_TYPES = [t.value for t in DocumentType]

QUEUE_ACTIONS = ['retry', 'retry_all', 'cancel', 'reset_stuck', 'purge']


class SubmitExtractionSchema(Schema):
    """Validation schema for extraction submissions (multipart form fields)."""
    document_type = fields.Str(
        required=True,
        validate=validate.OneOf(DOCUMENT_TYPES),
        error_messages={
            'required': 'document_type field is required',
            'invalid': 'document_type must be a string'
        }
    )
    document_ref = fields.Str(
        required=False,
        allow_none=True,
        validate=validate.Length(max=255),
        error_messages={'invalid': 'document_ref must be a string'}
    )
    priority = fields.Int(
        required=False,
        load_default=0,
        validate=validate.Range(min=-100, max=100),
        error_messages={'invalid': 'priority must be an integer'}
    )


class QueueManageSchema(Schema):
    """Validation schema for operator queue actions."""
    action = fields.Str(
        required=True,
        validate=validate.OneOf(QUEUE_ACTIONS),
        error_messages={'required': 'action field is required'}
    )
    job_id = fields.Str(required=False, allow_none=True)
    job_ids = fields.List(
        fields.Str(),
        required=False,
        allow_none=True,
        validate=validate.Length(max=500),
        error_messages={'invalid': 'job_ids must be a list of strings'}
    )
    force = fields.Bool(required=False, load_default=False)
    stale_minutes = fields.Int(required=False, allow_none=True, validate=validate.Range(min=1))
    older_than_days = fields.Int(required=False, allow_none=True, validate=validate.Range(min=1))

    @validates_schema
    def validate_targets(self, data, **kwargs):
        if data.get('action') in ('retry', 'cancel') and not (data.get('job_id') or data.get('job_ids')):
            raise ValidationError('job_id or job_ids is required for this action', 'job_ids')


class InvalidateTemplatesSchema(Schema):
    """Validation schema for template cache invalidation."""
    document_type = fields.Str(
        required=False,
        allow_none=True,
        validate=validate.OneOf(DOCUMENT_TYPES)
    )


def target_job_ids(data):
    """Combine job_id and job_ids from a loaded QueueManageSchema payload, keeping order."""
    ids = list(data.get('job_ids') or [])
    if data.get('job_id'):
        ids.insert(0, data['job_id'])
    return list(dict.fromkeys(ids))
