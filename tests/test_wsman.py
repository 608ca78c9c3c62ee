from __future__ import annotations

from xml.etree import ElementTree

import pytest
import requests
from requests.auth import HTTPDigestAuth

from rpcagent.core.errors import WsmanError
from rpcagent.core.model import Credentials, Ieee8021xProfile, WifiProfile
from rpcagent.transports import wsman
from rpcagent.transports.wsman import WsmanClient, admin_password_hash, build_envelope, element_to_dict, parse_envelope

ENVELOPE = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<a:Envelope xmlns:a="http://www.w3.org/2003/05/soap-envelope" '
    'xmlns:g="{ns}">'
    "<a:Header/><a:Body>{body}</a:Body></a:Envelope>"
)


def _envelope(body: str, ns: str = "urn:test") -> bytes:
    return ENVELOPE.format(ns=ns, body=body).encode()


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.posted: list[bytes] = []
        self.auth = None
        self.closed = False

    def post(self, url, data, headers, timeout):
        self.posted.append(data)
        return self.responses.pop(0)

    def close(self) -> None:
        self.closed = True


def _client(responses: list[FakeResponse]) -> tuple[WsmanClient, FakeSession]:
    session = FakeSession(responses)
    client = WsmanClient(Credentials("admin", "P@ssw0rd!"), session=session)
    return client, session


def test_build_envelope_headers() -> None:
    raw = build_envelope(wsman.ACTION_GET, wsman.GENERAL_SETTINGS, "http://localhost:16992/wsman", selectors={"Name": "x"})
    root = ElementTree.fromstring(raw)
    header = root.find(f"{{{wsman.NS_SOAP}}}Header")
    assert header.findtext(f"{{{wsman.NS_WSA}}}Action") == wsman.ACTION_GET
    assert header.findtext(f"{{{wsman.NS_WSMAN}}}ResourceURI") == wsman.GENERAL_SETTINGS
    assert header.findtext(f"{{{wsman.NS_WSA}}}MessageID").startswith("uuid:")
    selector = header.find(f"{{{wsman.NS_WSMAN}}}SelectorSet/{{{wsman.NS_WSMAN}}}Selector")
    assert selector.get("Name") == "Name"
    assert selector.text == "x"


def test_element_to_dict_collects_repeated_children() -> None:
    element = ElementTree.fromstring("<r><a>1</a><a>2</a><b><c>3</c></b></r>")
    assert element_to_dict(element) == {"a": ["1", "2"], "b": {"c": "3"}}


def test_parse_envelope_raises_on_fault() -> None:
    fault = (
        '<a:Fault><a:Reason><a:Text xml:lang="en-US">Access denied</a:Text></a:Reason></a:Fault>'
    )
    with pytest.raises(WsmanError, match="Access denied"):
        parse_envelope(_envelope(fault))
    with pytest.raises(WsmanError):
        parse_envelope(b"<not-xml")


def test_client_uses_digest_auth() -> None:
    client, session = _client([])
    assert isinstance(session.auth, HTTPDigestAuth)
    assert session.auth.username == "admin"
    client.close()
    assert session.closed


def test_post_maps_http_failures() -> None:
    client, _ = _client([FakeResponse(b"", status_code=401)])
    with pytest.raises(WsmanError, match="authentication"):
        client.get_general_settings()

    client, _ = _client([FakeResponse(b"", status_code=500)])
    with pytest.raises(WsmanError, match="HTTP 500"):
        client.get_general_settings()


def test_post_maps_request_exceptions() -> None:
    class BrokenSession(FakeSession):
        def post(self, url, data, headers, timeout):
            raise requests.ConnectionError("refused")

    client = WsmanClient(Credentials("admin", "x"), session=BrokenSession([]))
    with pytest.raises(WsmanError, match="refused"):
        client.get_general_settings()


def test_host_based_setup_sends_digest_hash() -> None:
    settings = _envelope("<g:AMT_GeneralSettings><g:DigestRealm>Digest:ABCD</g:DigestRealm></g:AMT_GeneralSettings>")
    setup = _envelope("<g:Setup_OUTPUT><g:ReturnValue>0</g:ReturnValue></g:Setup_OUTPUT>")
    client, session = _client([FakeResponse(settings), FakeResponse(setup)])

    client.host_based_setup("NewP@ss1")

    sent = session.posted[1].decode()
    assert admin_password_hash("Digest:ABCD", "NewP@ss1") in sent
    assert "NewP@ss1" not in sent
    assert f"{wsman.HOST_BASED_SETUP}/Setup" in sent


def test_invoke_raises_on_nonzero_return_value() -> None:
    settings = _envelope("<g:AMT_GeneralSettings><g:DigestRealm>R</g:DigestRealm></g:AMT_GeneralSettings>")
    setup = _envelope("<g:Setup_OUTPUT><g:ReturnValue>1</g:ReturnValue></g:Setup_OUTPUT>")
    client, _ = _client([FakeResponse(settings), FakeResponse(setup)])
    with pytest.raises(WsmanError, match="Setup returned 1"):
        client.host_based_setup("NewP@ss1")


def test_enumerate_public_key_certificates() -> None:
    ns = "http://schemas.xmlsoap.org/ws/2004/09/enumeration"
    start = _envelope("<g:EnumerateResponse><g:EnumerationContext>ctx-1</g:EnumerationContext></g:EnumerateResponse>", ns)
    pull = _envelope(
        "<g:PullResponse><g:Items>"
        "<c:AMT_PublicKeyCertificate xmlns:c='urn:amt'>"
        "<c:ElementName>Intel(r) AMT Certificate</c:ElementName>"
        "<c:InstanceID>Intel(r) AMT Certificate: Handle: 0</c:InstanceID>"
        "<c:Subject>CN=device</c:Subject><c:Issuer>CN=root</c:Issuer>"
        "<c:TrustedRootCertficate>true</c:TrustedRootCertficate>"
        "</c:AMT_PublicKeyCertificate>"
        "</g:Items><g:EndOfSequence/></g:PullResponse>",
        ns,
    )
    client, session = _client([FakeResponse(start), FakeResponse(pull)])

    [cert] = client.get_public_key_certificates()

    assert cert.subject == "CN=device"
    assert cert.trusted_root is True
    assert b"ctx-1" in session.posted[1]


def test_add_wifi_settings_with_ieee8021x() -> None:
    done = _envelope("<g:AddWiFiSettings_OUTPUT><g:ReturnValue>0</g:ReturnValue></g:AddWiFiSettings_OUTPUT>")
    client, session = _client([FakeResponse(done)])
    profile = WifiProfile("corp", "CorpNet", 1, authentication_method=7, encryption_method=4, ieee8021x_profile_name="eap")
    eap = Ieee8021xProfile("eap", "user", "eap-secret", authentication_protocol=2, roaming_identity="anon")

    client.add_wifi_settings(profile, eap)

    sent = session.posted[0].decode()
    assert "CorpNet" in sent
    assert "AddWiFiSettings" in sent
    assert "RoamingIdentity" in sent
    assert "WiFi Endpoint 0" in sent
