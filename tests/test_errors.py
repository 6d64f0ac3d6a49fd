import pytest
from spaceclient.errors import (
    SpaceError, AccessDeniedError, DecryptError, InvalidSignatureError,
    NotFoundError, UnknownAliasError, MalformedDeltaError, SerializationError,
    AclError, AliasTakenError, PropagationError, NothingToMineError, BatchError
)

def test_space_error_base():
    err = SpaceError("ctx", "message")
    assert err.code == "SPACE_E000"
    assert err.message == "message"
    assert err.context == "ctx"
    assert str(err) == "[SPACE_E000] message Context: ctx"

def test_default_message_without_context():
    err = NotFoundError()
    assert err.context is None
    assert str(err) == f"[SPACE_E100] {NotFoundError.default_message}"

def test_concrete_errors():
    classes = [
        AccessDeniedError, DecryptError, InvalidSignatureError, NotFoundError,
        UnknownAliasError, MalformedDeltaError, SerializationError, AclError,
        AliasTakenError, PropagationError, NothingToMineError
    ]
    codes = set()
    for cls in classes:
        err = cls("some context")
        assert isinstance(err, SpaceError)
        assert err.context == "some context"
        assert err.code.startswith("SPACE_E")
        assert "some context" in str(err)
        codes.add(err.code)
    assert len(codes) == len(classes)

def test_unknown_alias_is_not_found():
    with pytest.raises(NotFoundError):
        raise UnknownAliasError("dave")

def test_batch_error_summarizes_failures():
    failures = {"dave": UnknownAliasError("dave")}
    err = BatchError(failures, {"bob": "ref"})
    assert err.code == "SPACE_E600"
    assert err.failures == failures
    assert err.succeeded == {"bob": "ref"}
    assert "dave" in str(err)
    assert "SPACE_E101" in str(err)
