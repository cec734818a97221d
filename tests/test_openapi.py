from fastapi.testclient import TestClient

from bulk_ingest.main import app


def test_openapi_includes_standard_error_schema() -> None:
    with TestClient(app) as client:
        schema = client.get("/openapi.json").json()

    components = schema.get("components", {}).get("schemas", {})
    assert "ErrorResponse" in components
    assert "SessionSnapshot" in components

    submit_responses = schema["paths"]["/v1/batches"]["post"]["responses"]
    assert "202" in submit_responses
    assert "401" in submit_responses
    assert submit_responses["401"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")


def test_error_response_schema_lists_every_error_field() -> None:
    with TestClient(app) as client:
        schema = client.get("/openapi.json").json()

    properties = schema["components"]["schemas"]["ErrorResponse"]["properties"]
    assert set(properties) == {"detail", "error_code", "request_id", "session_id", "trace_id"}
