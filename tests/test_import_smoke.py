import sys
import pytest
from unittest.mock import patch


@pytest.mark.parametrize("redaction", ["true", "false"])
@pytest.mark.parametrize("cors", ["", "https://ops.kudifi.test"])
def test_import_graph_smoke(redaction, cors):
    """
    Verify that the app can be imported without crashing,
    regardless of optional settings.
    """
    with patch.dict("os.environ", {
        "ENABLE_PII_REDACTION": redaction,
        "CORS_ORIGINS": cors,
    }):
        for name in ("kudifi.main", "kudifi.core.dispatcher"):
            sys.modules.pop(name, None)
        try:
            import kudifi.main
            import kudifi.core.dispatcher
        except ImportError as e:
            pytest.fail(f"Import failed with redaction={redaction} cors={cors!r}: {e}")


def test_uvicorn_importable():
    """
    Simulate uvicorn import string loading.
    """
    from kudifi.main import app
    assert app is not None
    paths = {route.path for route in app.routes}
    assert {"/", "/health", "/admin/metrics"} <= paths
