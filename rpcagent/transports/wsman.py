"""Just enough WS-Management to activate and configure AMT through LMS.

Envelopes are built with ElementTree and posted over HTTP with digest auth to
the LMS endpoint. Responses are flattened into dicts keyed by local element
name; repeated elements become lists.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any
from xml.etree import ElementTree

import requests
from requests.auth import HTTPDigestAuth

from rpcagent.core.errors import WsmanError
from rpcagent.core.model import ADMIN_USERNAME, Credentials, Ieee8021xProfile, PublicKeyCertificate, WifiProfile
from rpcagent.transports.lms import LMS_ADDRESS, LMS_PORT

NS_SOAP = "http://www.w3.org/2003/05/soap-envelope"
NS_WSA = "http://schemas.xmlsoap.org/ws/2004/08/addressing"
NS_WSMAN = "http://schemas.dmtf.org/wbem/wsman/1/wsman.xsd"
NS_WSEN = "http://schemas.xmlsoap.org/ws/2004/09/enumeration"
AMT_SCHEMA = "http://intel.com/wbem/wscim/1/amt-schema/1/"
CIM_SCHEMA = "http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/"
IPS_SCHEMA = "http://intel.com/wbem/wscim/1/ips-schema/1/"

ACTION_GET = "http://schemas.xmlsoap.org/ws/2004/09/transfer/Get"
ACTION_PUT = "http://schemas.xmlsoap.org/ws/2004/09/transfer/Put"
ACTION_ENUMERATE = f"{NS_WSEN}/Enumerate"
ACTION_PULL = f"{NS_WSEN}/Pull"
ANONYMOUS = f"{NS_WSA}/role/anonymous"

GENERAL_SETTINGS = f"{AMT_SCHEMA}AMT_GeneralSettings"
HOST_BASED_SETUP = f"{IPS_SCHEMA}IPS_HostBasedSetupService"
PUBLIC_KEY_CERTIFICATE = f"{AMT_SCHEMA}AMT_PublicKeyCertificate"
WIFI_PORT_CONFIGURATION = f"{AMT_SCHEMA}AMT_WiFiPortConfigurationService"
WIFI_ENDPOINT = f"{CIM_SCHEMA}CIM_WiFiEndpoint"
WIFI_ENDPOINT_SETTINGS = f"{CIM_SCHEMA}CIM_WiFiEndpointSettings"
IEEE8021X_SETTINGS = f"{CIM_SCHEMA}CIM_IEEE8021xSettings"

# IPS_HostBasedSetupService.Setup NetAdminPassEncryptionType: HTTP digest MD5(A1)
_DIGEST_MD5_A1 = 2
_PULL_MAX_ELEMENTS = 100
LOGGER = logging.getLogger(__name__)

ElementTree.register_namespace("s", NS_SOAP)
ElementTree.register_namespace("wsa", NS_WSA)
ElementTree.register_namespace("wsman", NS_WSMAN)
ElementTree.register_namespace("wsen", NS_WSEN)


def _qname(namespace: str, name: str) -> str:
    return f"{{{namespace}}}{name}"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _sub(parent: ElementTree.Element, namespace: str, name: str, text: str | None = None) -> ElementTree.Element:
    element = ElementTree.SubElement(parent, _qname(namespace, name))
    if text is not None:
        element.text = text
    return element


def build_envelope(
    action: str,
    resource_uri: str,
    to: str,
    *,
    body: ElementTree.Element | None = None,
    selectors: dict[str, str] | None = None,
) -> bytes:
    envelope = ElementTree.Element(_qname(NS_SOAP, "Envelope"))
    header = _sub(envelope, NS_SOAP, "Header")
    must_understand = {_qname(NS_SOAP, "mustUnderstand"): "true"}
    _sub(header, NS_WSA, "Action", action).attrib.update(must_understand)
    _sub(header, NS_WSA, "To", to).attrib.update(must_understand)
    _sub(header, NS_WSMAN, "ResourceURI", resource_uri).attrib.update(must_understand)
    _sub(header, NS_WSA, "MessageID", f"uuid:{uuid.uuid4()}").attrib.update(must_understand)
    reply_to = _sub(header, NS_WSA, "ReplyTo")
    _sub(reply_to, NS_WSA, "Address", ANONYMOUS)
    _sub(header, NS_WSMAN, "OperationTimeout", "PT60S")
    if selectors:
        selector_set = _sub(header, NS_WSMAN, "SelectorSet")
        for name, value in selectors.items():
            _sub(selector_set, NS_WSMAN, "Selector", value).set("Name", name)
    body_element = _sub(envelope, NS_SOAP, "Body")
    if body is not None:
        body_element.append(body)
    return ElementTree.tostring(envelope, encoding="utf-8", xml_declaration=True)


def element_to_dict(element: ElementTree.Element) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for child in element:
        key = _local(child.tag)
        value: Any = element_to_dict(child) if len(child) else (child.text or "")
        if key in result:
            if not isinstance(result[key], list):
                result[key] = [result[key]]
            result[key].append(value)
        else:
            result[key] = value
    return result


def parse_envelope(content: bytes) -> ElementTree.Element:
    """Return the first element of the SOAP body, raising WsmanError on faults."""
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as exc:
        raise WsmanError(f"Malformed WSMAN response: {exc}") from exc

    fault = root.find(f".//{_qname(NS_SOAP, 'Fault')}")
    if fault is not None:
        reason = fault.find(f".//{_qname(NS_SOAP, 'Text')}")
        detail = reason.text if reason is not None and reason.text else "unknown fault"
        raise WsmanError(f"WSMAN fault: {detail}")

    body = root.find(_qname(NS_SOAP, "Body"))
    if body is None or len(body) == 0:
        raise WsmanError("WSMAN response has an empty body")
    return body[0]


def admin_password_hash(realm: str, password: str) -> str:
    return hashlib.md5(f"{ADMIN_USERNAME}:{realm}:{password}".encode("utf-8")).hexdigest()


class WsmanClient:
    def __init__(
        self,
        credentials: Credentials,
        host: str = LMS_ADDRESS,
        port: int = LMS_PORT,
        *,
        timeout_s: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = f"http://{host}:{port}/wsman"
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._session.auth = HTTPDigestAuth(credentials.username, credentials.password)

    def close(self) -> None:
        self._session.close()

    def post(self, envelope: bytes) -> ElementTree.Element:
        try:
            response = self._session.post(
                self.url,
                data=envelope,
                headers={"Content-Type": "application/soap+xml;charset=UTF-8"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise WsmanError(f"WSMAN request to {self.url} failed: {exc}") from exc

        if response.status_code == 401:
            raise WsmanError("WSMAN authentication failed; check the AMT credentials")
        if response.status_code >= 400 and not response.content:
            raise WsmanError(f"WSMAN request failed with HTTP {response.status_code}")
        return parse_envelope(response.content)

    def get(self, resource_uri: str, selectors: dict[str, str] | None = None) -> ElementTree.Element:
        return self.post(build_envelope(ACTION_GET, resource_uri, self.url, selectors=selectors))

    def put(self, resource_uri: str, instance: ElementTree.Element) -> ElementTree.Element:
        return self.post(build_envelope(ACTION_PUT, resource_uri, self.url, body=instance))

    def enumerate(self, resource_uri: str) -> list[dict[str, Any]]:
        start = ElementTree.Element(_qname(NS_WSEN, "Enumerate"))
        response = self.post(build_envelope(ACTION_ENUMERATE, resource_uri, self.url, body=start))
        context = response.findtext(_qname(NS_WSEN, "EnumerationContext"))

        items: list[dict[str, Any]] = []
        while context:
            pull = ElementTree.Element(_qname(NS_WSEN, "Pull"))
            _sub(pull, NS_WSEN, "EnumerationContext", context)
            _sub(pull, NS_WSEN, "MaxElements", str(_PULL_MAX_ELEMENTS))
            response = self.post(build_envelope(ACTION_PULL, resource_uri, self.url, body=pull))
            container = response.find(_qname(NS_WSEN, "Items"))
            if container is not None:
                items.extend(element_to_dict(item) for item in container)
            if response.find(_qname(NS_WSEN, "EndOfSequence")) is not None:
                break
            context = response.findtext(_qname(NS_WSEN, "EnumerationContext"))
        return items

    def invoke(self, resource_uri: str, method: str, body: ElementTree.Element) -> dict[str, Any]:
        response = self.post(build_envelope(f"{resource_uri}/{method}", resource_uri, self.url, body=body))
        output = element_to_dict(response)
        return_value = output.get("ReturnValue", "0")
        if return_value != "0":
            raise WsmanError(f"{method} returned {return_value}")
        return output

    def get_general_settings(self) -> dict[str, Any]:
        return element_to_dict(self.get(GENERAL_SETTINGS))

    def host_based_setup(self, admin_password: str) -> None:
        realm = self.get_general_settings().get("DigestRealm", "")
        request = ElementTree.Element(_qname(HOST_BASED_SETUP, "Setup_INPUT"))
        _sub(request, HOST_BASED_SETUP, "NetAdminPassEncryptionType", str(_DIGEST_MD5_A1))
        _sub(request, HOST_BASED_SETUP, "NetworkAdminPassword", admin_password_hash(realm, admin_password))
        LOGGER.debug("invoking host based setup")
        self.invoke(HOST_BASED_SETUP, "Setup", request)

    def get_public_key_certificates(self) -> list[PublicKeyCertificate]:
        return [
            PublicKeyCertificate(
                element_name=item.get("ElementName", ""),
                instance_id=item.get("InstanceID", ""),
                subject=item.get("Subject", ""),
                issuer=item.get("Issuer", ""),
                # AMT misspells this property.
                trusted_root=item.get("TrustedRootCertficate", "false") == "true",
            )
            for item in self.enumerate(PUBLIC_KEY_CERTIFICATE)
        ]

    def set_local_profile_sync(self, enabled: bool) -> None:
        instance = self.get(WIFI_PORT_CONFIGURATION)
        field = instance.find(_qname(WIFI_PORT_CONFIGURATION, "localProfileSynchronizationEnabled"))
        if field is None:
            raise WsmanError("WiFi port configuration does not expose local profile synchronization")
        # 0 disabled, 3 unrestricted synchronization
        field.text = "3" if enabled else "0"
        self.put(WIFI_PORT_CONFIGURATION, instance)

    def add_wifi_settings(self, profile: WifiProfile, ieee8021x: Ieee8021xProfile | None = None) -> None:
        request = ElementTree.Element(_qname(WIFI_PORT_CONFIGURATION, "AddWiFiSettings_INPUT"))
        endpoint = _sub(request, WIFI_PORT_CONFIGURATION, "WiFiEndpoint")
        _sub(endpoint, NS_WSA, "Address", "/wsman")
        reference = _sub(endpoint, NS_WSA, "ReferenceParameters")
        _sub(reference, NS_WSMAN, "ResourceURI", WIFI_ENDPOINT)
        selector_set = _sub(reference, NS_WSMAN, "SelectorSet")
        _sub(selector_set, NS_WSMAN, "Selector", "WiFi Endpoint 0").set("Name", "Name")

        settings = _sub(request, WIFI_PORT_CONFIGURATION, "WiFiEndpointSettingsInput")
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "ElementName", profile.profile_name)
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "InstanceID", f"Intel(r) AMT:WiFi Endpoint Settings {profile.profile_name}")
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "AuthenticationMethod", str(profile.authentication_method))
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "EncryptionMethod", str(profile.encryption_method))
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "SSID", profile.ssid)
        _sub(settings, WIFI_ENDPOINT_SETTINGS, "Priority", str(profile.priority))
        if profile.psk_passphrase:
            _sub(settings, WIFI_ENDPOINT_SETTINGS, "PSKPassPhrase", profile.psk_passphrase)

        if ieee8021x is not None:
            eap = _sub(request, WIFI_PORT_CONFIGURATION, "IEEE8021xSettingsInput")
            _sub(eap, IEEE8021X_SETTINGS, "ElementName", ieee8021x.profile_name)
            _sub(eap, IEEE8021X_SETTINGS, "InstanceID", f"Intel(r) AMT:IEEE 802.1x Settings {ieee8021x.profile_name}")
            _sub(eap, IEEE8021X_SETTINGS, "AuthenticationProtocol", str(ieee8021x.authentication_protocol))
            _sub(eap, IEEE8021X_SETTINGS, "Username", ieee8021x.username)
            _sub(eap, IEEE8021X_SETTINGS, "Password", ieee8021x.password)
            if ieee8021x.domain:
                _sub(eap, IEEE8021X_SETTINGS, "Domain", ieee8021x.domain)
            if ieee8021x.roaming_identity:
                _sub(eap, IEEE8021X_SETTINGS, "RoamingIdentity", ieee8021x.roaming_identity)

        LOGGER.debug("adding wireless profile %s", profile.profile_name)
        self.invoke(WIFI_PORT_CONFIGURATION, "AddWiFiSettings", request)
