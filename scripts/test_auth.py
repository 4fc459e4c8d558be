from __future__ import annotations

import asyncio
import json
import sys
import tempfile
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from genpipeline.auth import ServiceAccountTokenProvider, StaticTokenProvider, token_provider_from_config
from genpipeline.errors import AuthError
from scripts._fakes import make_config


def _expect_auth_error(provider: ServiceAccountTokenProvider, label: str) -> None:
    try:
        asyncio.run(provider.get_token())
    except AuthError:
        return
    raise RuntimeError(f"Expected AuthError for {label}")


def test_missing_credentials_file() -> None:
    _expect_auth_error(ServiceAccountTokenProvider(None), "unset credentials path")
    _expect_auth_error(ServiceAccountTokenProvider("/nonexistent/key.json"), "missing key file")


def test_malformed_credentials_files() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        broken = Path(tmp) / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        _expect_auth_error(ServiceAccountTokenProvider(broken), "invalid JSON")

        user_creds = Path(tmp) / "user.json"
        user_creds.write_text(json.dumps({"type": "authorized_user"}), encoding="utf-8")
        _expect_auth_error(ServiceAccountTokenProvider(user_creds), "non service-account key")

        partial = Path(tmp) / "partial.json"
        partial.write_text(json.dumps({"type": "service_account", "project_id": "p"}), encoding="utf-8")
        _expect_auth_error(ServiceAccountTokenProvider(partial), "key without client_email/private_key")


def test_static_token() -> None:
    if asyncio.run(StaticTokenProvider("  abc  ").get_token()) != "abc":
        raise RuntimeError("Static token should be stripped and returned.")
    try:
        StaticTokenProvider("   ")
    except AuthError:
        return
    raise RuntimeError("Blank static token should raise AuthError.")


def test_provider_selection_from_config() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        static = token_provider_from_config(make_config(Path(tmp)))
        if not isinstance(static, StaticTokenProvider):
            raise RuntimeError(f"Access token should select StaticTokenProvider, got {type(static).__name__}")
        keyed = token_provider_from_config(
            make_config(Path(tmp), access_token=None, credentials_path=Path(tmp) / "key.json")
        )
        if not isinstance(keyed, ServiceAccountTokenProvider):
            raise RuntimeError(f"Credentials path should select ServiceAccountTokenProvider, got {type(keyed).__name__}")


def main() -> int:
    tests = [
        test_missing_credentials_file,
        test_malformed_credentials_files,
        test_static_token,
        test_provider_selection_from_config,
    ]
    for test in tests:
        try:
            test()
        except RuntimeError as exc:
            print(f"auth test failed ({test.__name__}): {exc}", file=sys.stderr)
            return 1
    print(f"auth tests passed ({len(tests)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
