"""Unit tests for 6W1H audit-context normalization."""

from datetime import datetime, timezone
from types import MappingProxyType
from uuid import uuid4

import pytest

from posting_spine.domain.audit_context import (
    AuditContext,
    AuditInput,
    How,
    Where,
    Why,
    build_audit_context,
    normalize_how,
    normalize_where,
    normalize_why,
)

TIMESTAMP = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _build(**audit_fields):
    return build_audit_context(
        user_id=uuid4(),
        tenant_id=uuid4(),
        document_id=uuid4(),
        action="post",
        description="Invoice INV-001",
        timestamp=TIMESTAMP,
        document_type="invoice",
        audit=AuditInput(**audit_fields) if audit_fields else None,
    )


class TestNormalizeWhere:
    def test_string(self):
        assert normalize_where("ap-portal", "default") == Where(system="ap-portal")

    def test_structured(self):
        where = Where(system="api", ip_address="10.0.0.1")
        assert normalize_where(where, "default") is where

    def test_mapping_fills_default_system(self):
        assert normalize_where({"ip_address": "10.0.0.1"}, "default") == Where(
            system="default", ip_address="10.0.0.1"
        )

    def test_none_uses_default(self):
        assert normalize_where(None, "posting-service") == Where(system="posting-service")

    def test_read_only_mapping(self):
        value = MappingProxyType({"system": "ap-portal", "ip_address": "10.0.0.2"})
        assert normalize_where(value, "default") == Where(system="ap-portal", ip_address="10.0.0.2")

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            normalize_where(42, "default")


class TestNormalizeWhy:
    def test_string_becomes_reason(self):
        assert normalize_why("Month-end accrual") == Why(reason="Month-end accrual")

    def test_structured_keeps_refs(self):
        why = Why(reason="Correction", approval_ref="APR-7")
        assert normalize_why(why) is why

    def test_mapping(self):
        assert normalize_why({"reason": "x", "policy_ref": "P1"}) == Why(reason="x", policy_ref="P1")

    def test_read_only_mapping(self):
        value = MappingProxyType({"reason": "Accrual", "approval_ref": "APR-9"})
        assert normalize_why(value) == Why(reason="Accrual", approval_ref="APR-9")

    def test_none_uses_default_reason(self):
        assert normalize_why(None).reason == "Business operation"


class TestNormalizeHow:
    def test_string(self):
        assert normalize_how("CSV import", "default") == How(method="CSV import")

    def test_none_uses_default(self):
        how = normalize_how(None, "Document POST action")
        assert how.method == "Document POST action"
        assert how.validation == "system"

    def test_mapping_keeps_default_method(self):
        how = normalize_how({"data_source": "bank-feed"}, "Document POST action")
        assert how == How(method="Document POST action", data_source="bank-feed")

    def test_read_only_mapping(self):
        how = normalize_how(MappingProxyType({"validation": "manual"}), "CSV import")
        assert how == How(method="CSV import", validation="manual")


class TestBuildAuditContext:
    def test_defaults(self):
        context = _build()
        assert context.what.action == "post"
        assert context.what.document_type == "invoice"
        assert context.where.system == "posting-service"
        assert context.why.reason == "Business operation"
        assert context.how.method == "Document POST action"
        assert context.who.role == "system"
        assert context.when.timestamp == TIMESTAMP.isoformat()
        assert context.when.timezone == "UTC"

    def test_string_and_structured_inputs_normalize_identically(self):
        plain = _build(where="erp", why="Sale", how="UI")
        structured = _build(where=Where(system="erp"), why=Why(reason="Sale"), how=How(method="UI"))
        assert plain.where == structured.where
        assert plain.why == structured.why
        assert plain.how == structured.how

    def test_which_carries_identifiers(self):
        tenant, document = uuid4(), uuid4()
        context = build_audit_context(
            user_id=uuid4(),
            tenant_id=tenant,
            document_id=document,
            action="post",
            description="d",
            timestamp=TIMESTAMP,
            audit=AuditInput(related_entities=(uuid4(),)),
        )
        assert context.which.tenant_id == str(tenant)
        assert context.which.document_id == str(document)
        assert len(context.which.related_entities) == 1

    def test_to_dict_drops_empty_fields(self):
        data = _build().to_dict()
        assert set(data) == {"who", "what", "when", "where", "why", "which", "how"}
        assert "user_name" not in data["who"]
        assert "related_entities" not in data["which"]
        assert "ip_address" not in data["where"]

    def test_dict_round_trip(self):
        context = _build(user_name="Alice", fiscal_period="2024-01", related_entities=("po-1",))
        assert AuditContext.from_dict(context.to_dict()) == context

    def test_context_is_frozen(self):
        context = _build()
        with pytest.raises(AttributeError):
            context.who = None
