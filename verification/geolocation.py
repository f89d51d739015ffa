"""
Best-effort IP geolocation for verification attempts.

Only public addresses are looked up; any failure (timeout, HTTP error, bad
payload) yields None so attempt recording never depends on it.
"""

import ipaddress
import logging

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


def is_public_address(address) -> bool:
    """False for private, loopback, link-local, reserved or unparseable addresses"""
    try:
        ip = ipaddress.ip_address(address)
    except (TypeError, ValueError):
        return False
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def lookup_location(address, timeout: float = None):
    """✓ RESILIENCE: Time-boxed lookup; returns a location dict or None"""
    if not is_public_address(address):
        return None

    timeout = timeout if timeout is not None else settings.GEOLOCATION_TIMEOUT
    url = settings.GEOLOCATION_API_URL.format(ip=address)

    try:
        response = httpx.get(url, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException:
        logger.warning("Geolocation lookup timed out", extra={'timeout': timeout})
        return None
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Geolocation lookup failed: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning("Geolocation lookup returned a non-object payload")
        return None

    if data.get('status') != 'success':
        logger.info("Geolocation lookup returned no data", extra={'reason': data.get('message')})
        return None

    return {
        'country': data.get('country'),
        'country_code': data.get('countryCode'),
        'region': data.get('regionName'),
        'city': data.get('city'),
        'latitude': data.get('lat'),
        'longitude': data.get('lon'),
        'timezone': data.get('timezone'),
        'isp': data.get('isp'),
        'organization': data.get('org'),
    }
