"""
Error formatters turn a failed carrier response body into a caller-facing
message. The raw body is always kept separately on the TrackingResult.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Iterator

import xmltodict
from xml.parsers.expat import ExpatError

from shipkit.services.shipping.normalize import coerce_to_sequence, get_path


class ErrorFormatter(ABC):
    """Strategy for presenting a raw error body"""

    @abstractmethod
    def format(self, body: str) -> str:
        pass


class ExactErrorFormatter(ErrorFormatter):
    """Default strategy: the raw body, unchanged"""

    def format(self, body: str) -> str:
        return body


class UPSFaultErrorFormatter(ErrorFormatter):
    """
    Summarize a UPS JSON fault, e.g.

        {"Fault": {"faultstring": "...", "detail": {"Errors": {"ErrorDetail":
            {"PrimaryErrorCode": {"Code": "151018", "Description": "Invalid tracking number"}}}}}}

    becomes ``151018: Invalid tracking number``.
    """

    def format(self, body: str) -> str:
        try:
            data = json.loads(body)
        except (TypeError, ValueError):
            return body

        fault = get_path(data, 'Fault')
        if not isinstance(fault, Mapping):
            return body

        messages = []
        for detail in coerce_to_sequence(get_path(fault, 'detail.Errors.ErrorDetail')):
            code = get_path(detail, 'PrimaryErrorCode.Code', '')
            description = get_path(detail, 'PrimaryErrorCode.Description', '')
            if code or description:
                messages.append(f"{code}: {description}" if code else description)

        if messages:
            return '; '.join(messages)
        return fault.get('faultstring') or body


class DHLStatusErrorFormatter(ErrorFormatter):
    """Summarize the ``Status/Condition`` nodes of a DHL XML response"""

    def format(self, body: str) -> str:
        try:
            data = xmltodict.parse(body)
        except (ExpatError, TypeError, ValueError):
            return body

        messages = []
        for condition in _find_nodes(data, 'Condition'):
            code = str(condition.get('ConditionCode') or '').strip()
            text = str(condition.get('ConditionData') or '').strip()
            if code or text:
                messages.append(f"{code}: {text}" if code else text)

        return '; '.join(messages) if messages else body


def _find_nodes(data: Any, name: str) -> Iterator[Mapping]:
    """Depth-first search for every mapping stored under key ``name``"""
    if isinstance(data, Mapping):
        for key, value in data.items():
            if key == name:
                for node in coerce_to_sequence(value):
                    if isinstance(node, Mapping):
                        yield node
            else:
                yield from _find_nodes(value, name)
    elif isinstance(data, list):
        for item in data:
            yield from _find_nodes(item, name)
