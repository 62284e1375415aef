import logging

import pytest

from fleetbuilder.utils.logger import (
    DeferredMessages,
    ServiceLogAdapter,
    _normalize_module_name,
    parse_module_levels,
)


@pytest.mark.parametrize("name, expected", [
    ("exec", "fleetbuilder.builder.executor"),
    ("api", "fleetbuilder.bases.remote"),
    ("builder.loader", "fleetbuilder.builder.loader"),
    ("bases.*", "fleetbuilder.bases"),
    ("fleetbuilder.config", "fleetbuilder.config"),
    ("urllib3", "urllib3"),
])
def test_normalize_module_name(name, expected):
    assert _normalize_module_name(name) == expected


def test_parse_module_levels():
    assert parse_module_levels(None) is None
    assert parse_module_levels("exec=debug, api=INFO,broken,") == {"exec": "DEBUG", "api": "INFO"}


def test_service_prefix(caplog):
    caplog.set_level(logging.INFO)
    ServiceLogAdapter(logging.getLogger("fleetbuilder.test"), {"service": "worker"}).info("Step 1/3")
    assert caplog.records[-1].getMessage() == "[worker] Step 1/3"


def test_deferred_flush_once(caplog):
    caplog.set_level(logging.INFO)
    deferred = DeferredMessages()
    deferred.info("first")
    deferred.warn("second")
    assert deferred.has_warnings and len(deferred) == 2

    logger = logging.getLogger("fleetbuilder.test")
    deferred.flush(logger)
    deferred.flush(logger)

    assert [r.getMessage() for r in caplog.records] == ["first", "second"]
    assert caplog.records[1].levelno == logging.WARNING
