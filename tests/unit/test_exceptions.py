from rembg_gateway.core.exceptions import (
    ErrorKind,
    ExternalToolFailure,
    InputDecodeFailure,
    OutputDecodeFailure,
    ProcessCancelled,
    ToolTimeout,
)


def test_status_codes_per_kind():
    assert InputDecodeFailure("bad").status_code == 400
    assert ExternalToolFailure("rembg i", 1, "boom").status_code == 500
    assert OutputDecodeFailure("rembg i", 3).status_code == 502
    assert ProcessCancelled("gone").status_code == 503
    assert ToolTimeout("slow").status_code == 504


def test_chain_message_includes_causes():
    try:
        try:
            raise OSError("cannot identify image file")
        except OSError as e:
            raise OutputDecodeFailure("rembg i", 12) from e
    except OutputDecodeFailure as error:
        assert error.kind is ErrorKind.OUTPUT_DECODE_FAILURE
        assert [type(c) for c in error.causes()] == [OSError]
        assert error.chain_message() == (
            "failed to decode external tool output: cannot identify image file"
        )


def test_tool_failure_details():
    error = ExternalToolFailure("/usr/local/bin/rembg i", 2, "boom")

    assert error.details == {
        "command": "/usr/local/bin/rembg i",
        "returncode": 2,
        "stderr": "boom",
    }
    assert "status 2" in error.message
