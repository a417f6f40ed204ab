import sys
import pytest
from unittest.mock import patch

MODULES = [
    "onlyone.settings",
    "onlyone.api.gateway",
    "onlyone.core.signup_flow",
    "onlyone.core.otp_controller",
    "onlyone.core.poller",
    "onlyone.core.dream_response",
    "onlyone.store.session_store",
]


@pytest.mark.parametrize("app_env", ["development", "production"])
def test_import_graph_smoke(app_env):
    """
    The package imports cleanly in every environment, without a reachable
    backend or redis.
    """
    # sys.modules is restored afterwards so later tests keep the original module objects
    with patch.dict(sys.modules), \
            patch.dict("os.environ", {"APP_ENV": app_env, "REDIS_URL": "redis://localhost:6379/0"}):
        for name in [m for m in sys.modules if m.startswith("onlyone")]:
            del sys.modules[name]
        try:
            for name in MODULES:
                __import__(name)
        except ImportError as e:
            pytest.fail(f"Import failed with APP_ENV={app_env}: {e}")

        from onlyone.settings import settings
        assert settings.APP_ENV == app_env
        assert settings.REQUEST_TIMEOUT_SEC == (15.0 if app_env == "production" else 10.0)
