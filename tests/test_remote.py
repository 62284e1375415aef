from unittest.mock import MagicMock

import pytest
import requests

from fleetbuilder.bases.remote import HttpResourceApi, quote
from fleetbuilder.config import Settings
from fleetbuilder.exceptions import DeviceTypeNotFoundError, FleetNotFoundError, RemoteApiError


def response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {"d": []}
    resp.text = "" if payload is None else str(payload)
    return resp


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    return session


def make_api(session, token="secret"):
    return HttpResourceApi(Settings(api_url="https://api.example.com", api_token=token), session=session)


class TestDeviceTypes:

    def test_architecture(self, session):
        session.get.return_value = response(payload={"d": [
            {"slug": "raspberrypi3", "is_of__cpu_architecture": [{"slug": "armv7hf"}]},
        ]})

        assert make_api(session).resolve_device_type_architecture("raspberrypi3") == "armv7hf"

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs['params']
        assert url == "https://api.example.com/v7/device_type(slug='raspberrypi3')"
        assert params["$expand"] == "is_of__cpu_architecture($select=slug)"

    def test_unknown(self, session):
        session.get.return_value = response(payload={"d": []})
        with pytest.raises(DeviceTypeNotFoundError, match="Invalid device type"):
            make_api(session).resolve_device_type_architecture("toaster")

    def test_http_error(self, session):
        session.get.return_value = response(status=500)
        with pytest.raises(RemoteApiError, match="500"):
            make_api(session).resolve_device_type_architecture("raspberrypi3")

    def test_connection_error(self, session):
        session.get.side_effect = requests.ConnectionError("offline")
        with pytest.raises(RemoteApiError, match="offline"):
            make_api(session).resolve_device_type_architecture("raspberrypi3")


class TestFleets:

    def test_fleet_by_slug(self, session):
        session.get.return_value = response(payload={"d": [{
            "id": 1,
            "slug": "myorg/fleet",
            "is_for__device_type": [{"slug": "raspberrypi4-64", "is_of__cpu_architecture": [{"slug": "aarch64"}]}],
            "application_type": [{"supports_multicontainer": False}],
        }]})

        fleet = make_api(session).resolve_fleet_default_device_type("MyOrg/Fleet")

        assert (fleet.device_type, fleet.architecture) == ("raspberrypi4-64", "aarch64")
        assert fleet.supports_multicontainer is False
        params = session.get.call_args.kwargs['params']
        assert params["$filter"] == "slug eq 'myorg/fleet'"

    def test_fleet_by_name(self, session):
        session.get.return_value = response(payload={"d": []})
        with pytest.raises(FleetNotFoundError):
            make_api(session).resolve_fleet_default_device_type("fleet")
        assert session.get.call_args.kwargs['params']["$filter"] == "app_name eq 'fleet'"

    def test_ambiguous_name(self, session):
        row = {"is_for__device_type": [{"slug": "x", "is_of__cpu_architecture": [{"slug": "amd64"}]}]}
        session.get.return_value = response(payload={"d": [row, row]})
        with pytest.raises(RemoteApiError, match="ambiguous"):
            make_api(session).resolve_fleet_default_device_type("fleet")


class TestAuthentication:

    def test_no_token_means_anonymous(self, session):
        assert make_api(session, token=None).is_authenticated() is False
        session.get.assert_not_called()

    def test_whoami_cached(self, session):
        session.get.return_value = response(status=200, payload={"id": 1})
        api = make_api(session)

        assert api.is_authenticated() is True
        assert api.is_authenticated() is True
        assert session.get.call_count == 1
        assert session.headers["Authorization"] == "Bearer secret"

    def test_rejected_token(self, session):
        session.get.return_value = response(status=401)
        assert make_api(session).is_authenticated() is False


def test_quote_escapes_single_quotes():
    assert quote("o'brien") == "'o''brien'"
