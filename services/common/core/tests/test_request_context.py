import pytest
import uuid
from services.common.core import request_context


def test_generate_request_id_creates_uuid():
    """Ensure generate_request_id() creates a UUIDv4 and sets it in context."""
    req_id = request_context.generate_request_id()

    assert req_id is not None
    assert isinstance(req_id, str)
    try:
        uuid_obj = uuid.UUID(req_id)
        assert str(uuid_obj) == req_id
    except ValueError:
        pytest.fail(f"Generated ID is not a valid UUID: {req_id}")

    assert request_context.get_request_id() == req_id


def test_generate_request_id_is_unique():
    id1 = request_context.generate_request_id()
    id2 = request_context.generate_request_id()

    assert id1 != id2


def test_execution_uuid_does_not_affect_request_id():
    """Setting the execution UUID leaves the Request ID untouched."""
    request_context.clear_request_context()

    value = request_context.set_execution_uuid()

    assert request_context.get_execution_uuid() == value
    assert request_context.get_request_id() is None


def test_set_execution_uuid_normalizes_value():
    raw = "0F8FAD5B-D9CB-469F-A165-70867728950E"

    value = request_context.set_execution_uuid(raw)

    assert value == raw.lower()
    assert request_context.get_execution_uuid() == raw.lower()


def test_set_execution_uuid_rejects_garbage():
    with pytest.raises(ValueError):
        request_context.set_execution_uuid("not-a-uuid")
