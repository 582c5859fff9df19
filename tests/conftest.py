"""Shared fixtures: keep request logs out of the working tree."""

import os

import pytest


@pytest.fixture(scope="session", autouse=True)
def isolated_log_dir(tmp_path_factory):
    log_dir = tmp_path_factory.mktemp("logs")
    previous = os.environ.get("MARKETPLACE_ROUTER_LOG_DIR")
    os.environ["MARKETPLACE_ROUTER_LOG_DIR"] = str(log_dir)
    yield log_dir
    if previous is None:
        os.environ.pop("MARKETPLACE_ROUTER_LOG_DIR", None)
    else:
        os.environ["MARKETPLACE_ROUTER_LOG_DIR"] = previous
