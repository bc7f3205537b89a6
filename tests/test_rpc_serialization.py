import json

import pytest

from codebox.rpc.protocol import ErrorCode, RpcRequest, RpcResponse
from codebox.rpc.serialization import (
    InvalidRequest,
    decode_message,
    encode_message,
    make_error_response,
    normalize_rpc_error,
)


def test_encode_request_shape():
    line = encode_message(RpcRequest(id=1, method="executeCode", params={"code": "return 1"}))
    payload = json.loads(line)
    assert payload == {"jsonrpc": "2.0", "id": 1, "method": "executeCode", "params": {"code": "return 1"}}
    assert "\n" not in line


def test_encode_request_without_params_omits_field():
    payload = json.loads(encode_message(RpcRequest(id="x", method="ping")))
    assert "params" not in payload


def test_encode_error_response_uses_numeric_code():
    line = encode_message(make_error_response(3, ErrorCode.METHOD_NOT_FOUND, "Method not found: nope"))
    payload = json.loads(line)
    assert payload["error"] == {"code": -32601, "message": "Method not found: nope"}
    assert "result" not in payload


def test_encode_success_response_keeps_null_result():
    payload = json.loads(encode_message(RpcResponse(id=4, result=None)))
    assert "result" in payload and payload["result"] is None


def test_decode_request_and_response():
    request = decode_message('{"jsonrpc":"2.0","id":"abc","method":"callHandler","params":{"name":"f","args":[1]}}')
    assert isinstance(request, RpcRequest)
    assert request.id == "abc"
    assert request.params == {"name": "f", "args": [1]}

    response = decode_message('{"jsonrpc":"2.0","id":2,"result":{"logs":[]}}')
    assert isinstance(response, RpcResponse)
    assert response.ok
    assert response.result == {"logs": []}


def test_decode_error_response_is_normalized():
    response = decode_message('{"jsonrpc":"2.0","id":2,"error":{"code":-32603,"message":"boom","data":{"x":1}}}')
    assert isinstance(response, RpcResponse)
    assert not response.ok
    assert response.error.code == -32603
    assert response.error.message == "boom"
    assert response.error.data == {"x": 1}


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "[1, 2]",
        '{"id":1,"method":"ping"}',
        '{"jsonrpc":"1.0","id":1,"method":"ping"}',
        '{"jsonrpc":"2.0","method":"ping"}',
        '{"jsonrpc":"2.0","id":true,"method":"ping"}',
        '{"jsonrpc":"2.0","id":[1],"result":1}',
    ],
)
def test_decode_drops_malformed_frames(line):
    assert decode_message(line) is None


def test_decode_raises_invalid_request_when_id_is_answerable():
    with pytest.raises(InvalidRequest) as exc_info:
        decode_message('{"jsonrpc":"2.0","id":9,"method":42}')
    assert exc_info.value.req_id == 9


def test_normalize_rpc_error_with_non_dict_payload():
    err = normalize_rpc_error("boom")
    assert err.code == ErrorCode.INTERNAL_ERROR
    assert err.message == "rpc failed"


def test_encode_escapes_non_ascii_and_lone_surrogates():
    line = encode_message(RpcResponse(id=1, result={"logs": ["héllo", "\ud800"]}))
    assert line.isascii()
    line.encode("utf-8")
    assert decode_message(line).result == {"logs": ["héllo", "\ud800"]}
