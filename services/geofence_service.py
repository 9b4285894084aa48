"""
Geofence Service
Verifies a worker's network address against branch office IP allow-lists
"""

from typing import Dict, Iterable, Optional, Tuple
import logging

import psycopg2

from services.exceptions import ConfigurationUnavailable

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = 'unknown'

# Checked in order, first non-empty wins
CLIENT_IP_HEADERS = ('X-Forwarded-For', 'X-Real-IP', 'CF-Connecting-IP')


def extract_client_ip(headers) -> str:
    """
    Observed client address from request headers.

    Precedence: first entry of X-Forwarded-For, X-Real-IP, CF-Connecting-IP,
    else 'unknown' (never matches a branch).
    """
    forwarded_for = headers.get('X-Forwarded-For')
    if forwarded_for:
        first = forwarded_for.split(',')[0].strip()
        if first:
            return first

    for header in CLIENT_IP_HEADERS[1:]:
        value = headers.get(header)
        if value and value.strip():
            return value.strip()

    return UNKNOWN_ADDRESS


def match_branch(ip_address: str, branches: Iterable[dict]) -> Tuple[bool, Optional[Dict]]:
    """
    Exact match of ip_address against each branch's office_ips.
    Ties resolve to the first branch iterated.
    """
    if not ip_address or ip_address == UNKNOWN_ADDRESS:
        return False, None

    for branch in branches:
        office_ips = branch.get('office_ips') or []
        if ip_address in office_ips:
            return True, {"id": branch['id'], "name": branch['name']}

    return False, None


def get_branches_with_office_ips(cursor) -> list:
    cursor.execute("""
        SELECT id, name, office_ips
        FROM branches
        WHERE office_ips IS NOT NULL
        ORDER BY id
    """)
    return cursor.fetchall() or []


def verify_location(cursor, ip_address: str) -> Dict:
    """Geofence check against all branches; fails closed when branches cannot be read"""
    if not ip_address or ip_address == UNKNOWN_ADDRESS:
        return {"matched": False, "branch": None, "ip_address": ip_address or UNKNOWN_ADDRESS}

    try:
        branches = get_branches_with_office_ips(cursor)
    except psycopg2.Error as e:
        logger.error(f"❌ Failed to load branch office IPs: {e}")
        raise ConfigurationUnavailable("Branch network configuration is unavailable") from e

    matched, branch = match_branch(ip_address, branches)

    if matched:
        logger.info(f"Geofence match: {ip_address} -> branch {branch['id']} ({branch['name']})")
    else:
        logger.info(f"Geofence miss: {ip_address} not registered to any branch")

    return {"matched": matched, "branch": branch, "ip_address": ip_address}
