"""XML codec for Service Management documents.

Documents are converted between XML and plain dictionaries keyed by element
name, and the dictionaries are validated by the pydantic models in models.py.
Repeated elements inside a known container element (listed in LIST_CONTAINERS
with the name of their items) become a list under the container's name. Any
other repeated child becomes a list under its own name and is written back as
sibling elements.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any, TypeVar

from pydantic import ValidationError

from .errors import ManagementError
from .models import WINDOWS_AZURE_NAMESPACE, WireModel

M = TypeVar("M", bound=WireModel)

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'

# Byte order mark some endpoints prepend to the topology document
BYTE_ORDER_MARK = "\ufeff"

# Key holding the text of an element that also has attributes or children
TEXT_KEY = "#text"

# Container element -> item element
LIST_CONTAINERS: dict[str, str] = {
    "AffinityGroups": "AffinityGroup",
    "StorageServices": "StorageService",
    "HostedServices": "HostedService",
    "Deployments": "Deployment",
    "RoleInstanceList": "RoleInstance",
    "RoleList": "Role",
    "ConfigurationSets": "ConfigurationSet",
    "InputEndpoints": "InputEndpoint",
    "SubnetNames": "SubnetName",
    "DataVirtualHardDisks": "DataVirtualHardDisk",
    "Disks": "Disk",
    "VirtualNetworkSites": "VirtualNetworkSite",
    "LocalNetworkSites": "LocalNetworkSite",
    "Subnets": "Subnet",
    "DnsServers": "DnsServer",
    "DnsServersRef": "DnsServerRef",
    "AddressSpace": "AddressPrefix",
    "VPNClientAddressPool": "AddressPrefix",
    "ConnectionsToLocalNetwork": "LocalNetworkSiteRef",
    "ResourceExtensionReferences": "ResourceExtensionReference",
    "ResourceExtensionParameterValues": "ResourceExtensionParameterValue",
    "AvailableAddresses": "AvailableAddress",
}


class CodecError(ManagementError):
    """Raised when a document cannot be parsed or does not match its model."""

    pass


# =============================================================================
# XML -> model
# =============================================================================


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _element_to_value(element: ET.Element) -> Any:
    tag = _local_name(element.tag)
    children = list(element)

    if tag in LIST_CONTAINERS:
        item_tag = LIST_CONTAINERS[tag]
        return [_element_to_value(c) for c in children if _local_name(c.tag) == item_tag]

    if not children and not element.attrib:
        text = (element.text or "").strip()
        return text or None

    result: dict[str, Any] = {f"@{_local_name(k)}": v for k, v in element.attrib.items()}
    text = (element.text or "").strip()
    if text:
        result[TEXT_KEY] = text

    repeated: set[str] = set()
    for child in children:
        name = _local_name(child.tag)
        value = _element_to_value(child)
        if name not in result:
            result[name] = value
        elif name in repeated:
            result[name].append(value)
        else:
            result[name] = [result[name], value]
            repeated.add(name)
    return result


def _parse(text: str | bytes) -> ET.Element:
    if isinstance(text, bytes):
        text = text.decode("utf-8-sig")
    text = text.lstrip(BYTE_ORDER_MARK).strip()
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise CodecError(f"Malformed XML document: {e}") from e


def unmarshal(text: str | bytes, model: type[M]) -> M:
    """Parse a single document into `model`."""
    root = _parse(text)
    value = _element_to_value(root)
    if not isinstance(value, dict):
        value = {}
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise CodecError(
            f"Document <{_local_name(root.tag)}> does not match {model.__name__}: {e}"
        ) from e


def unmarshal_list(text: str | bytes, item_model: type[M]) -> list[M]:
    """Parse a list document (e.g. <HostedServices>) into its items."""
    root = _parse(text)
    tag = _local_name(root.tag)
    if tag not in LIST_CONTAINERS:
        raise CodecError(f"<{tag}> is not a list document")
    try:
        return [item_model.model_validate(item) for item in _element_to_value(root)]
    except ValidationError as e:
        raise CodecError(f"Item of <{tag}> does not match {item_model.__name__}: {e}") from e


# =============================================================================
# model -> XML
# =============================================================================


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _append(parent: ET.Element, tag: str, value: Any) -> None:
    child = ET.SubElement(parent, tag)
    if isinstance(value, dict):
        _fill(child, value)
    else:
        child.text = _text(value)


def _fill(element: ET.Element, data: dict[str, Any]) -> None:
    for key, value in data.items():
        if key.startswith("@"):
            element.set(key[1:], _text(value))
        elif key == TEXT_KEY:
            element.text = _text(value)
        elif isinstance(value, list):
            item_tag = LIST_CONTAINERS.get(key)
            if item_tag is None:
                for item in value:
                    _append(element, key, item)
                continue
            container = ET.SubElement(element, key)
            for item in value:
                _append(container, item_tag, item)
        else:
            _append(element, key, value)


def _document(tag: str, namespace: str) -> ET.Element:
    return ET.Element(tag, {"xmlns": namespace})


def marshal(document: WireModel) -> str:
    """Serialize a request document, including the XML declaration."""
    tag = type(document).xml_tag
    if tag is None:
        raise CodecError(f"{type(document).__name__} is not a document model")
    root = _document(tag, type(document).xml_namespace)
    _fill(root, document.model_dump(by_alias=True, exclude_none=True))
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def marshal_list(container: str, items: list[WireModel], namespace: str = WINDOWS_AZURE_NAMESPACE) -> str:
    """Serialize a list document such as <Disks>."""
    item_tag = LIST_CONTAINERS.get(container)
    if item_tag is None:
        raise CodecError(f"<{container}> is not a list document")
    root = _document(container, namespace)
    for item in items:
        _append(root, item_tag, item.model_dump(by_alias=True, exclude_none=True))
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")
