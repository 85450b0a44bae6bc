from __future__ import annotations

import pytest
from pydantic import ValidationError

from exto.apps.api.errors import classify
from exto.core import errors
from exto.domain.schema import FieldDef, parse_fields


@pytest.mark.parametrize(
    ("exc", "status_code", "code"),
    [
        (errors.InvalidInputError("bad"), 400, "BAD_REQUEST"),
        (errors.AuthError("nope"), 401, "AUTH_UNAUTHORIZED"),
        (errors.CategoryNotFoundError("missing"), 404, "NOT_FOUND"),
        (errors.IdentityExistsError("dup"), 409, "CONFLICT"),
        (errors.ExtractionParseError("junk"), 502, "EXTRACTION_PARSE_FAILED"),
        (errors.ExtractionError("down"), 502, "EXTRACTION_FAILED"),
        (errors.PaymentProviderError("declined"), 502, "PAYMENT_PROVIDER_ERROR"),
        (errors.ProviderConfigError("unset"), 503, "PROVIDER_NOT_CONFIGURED"),
        (errors.FilePathExhaustedError("full"), 503, "FILE_PATH_EXHAUSTED"),
        (errors.DatabaseError("boom"), 500, "DATABASE_ERROR"),
        (errors.ExtoError("generic"), 500, "INTERNAL_ERROR"),
    ],
)
def test_classify_maps_domain_errors(exc, status_code, code) -> None:
    assert classify(exc) == (status_code, code)


def test_duplicate_child_field_names_are_rejected() -> None:
    with pytest.raises(ValidationError):
        FieldDef(name="rows", type="table", children=[FieldDef(name="qty"), FieldDef(name="qty")])


def test_parse_fields_rejects_duplicate_top_level_names() -> None:
    with pytest.raises(ValueError):
        parse_fields([{"name": "total"}, {"name": "total"}])


def test_table_children_nest_recursively() -> None:
    fields = parse_fields(
        [
            {
                "name": "sections",
                "type": "table",
                "children": [{"name": "rows", "type": "table", "children": [{"name": "qty", "type": "number"}]}],
            }
        ]
    )
    assert fields[0].is_table
    assert fields[0].children[0].is_table
    assert fields[0].children[0].children[0].name == "qty"
