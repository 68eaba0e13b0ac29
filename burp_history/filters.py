"""
Noise classification for captured traffic.

Predicates that pick out tracking, analytics, CDN and other background
requests, so analysts can subtract them from a capture:

    quiet = query(store, ~noise())
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Entry
from .query import Predicate, where


# ============================================================================
# FILTER LISTS
# ============================================================================

# Analytics & Tracking Services
ANALYTICS_DOMAINS = [
    # Google Analytics & Marketing
    'google-analytics.com', 'googletagmanager.com', 'doubleclick.net',
    'analytics.google.com', 'googleadservices.com', 'googlesyndication.com',
    'googletagservices.com',

    # Facebook/Meta
    'connect.facebook.net', 'facebook.net',

    # Product analytics
    'segment.com', 'segment.io', 'mixpanel.com', 'hotjar.com', 'hotjar.io',
    'amplitude.com', 'heap.io', 'heapanalytics.com',

    # Session Replay & Heatmaps
    'fullstory.com', 'logrocket.com', 'logrocket.io', 'mouseflow.com',
    'crazyegg.com', 'smartlook.com',

    # Error Tracking
    'sentry.io', 'sentry-cdn.com', 'rollbar.com', 'bugsnag.com', 'raygun.io',

    # APM & Monitoring
    'newrelic.com', 'nr-data.net', 'datadoghq.com', 'browser-intake-datadoghq.com',

    # Advertising Networks
    'adnxs.com', 'adsrvr.org', 'criteo.com', 'criteo.net', 'outbrain.com',
    'taboola.com', 'scorecardresearch.com', 'quantserve.com',

    # Browser and OS background traffic
    'detectportal.firefox.com', 'incoming.telemetry.mozilla.org',
    'safebrowsing.googleapis.com', 'update.googleapis.com',
]

# CDN Providers (for static assets only)
CDN_DOMAINS = [
    'cloudflare.com', 'cloudfront.net', 'akamaihd.net', 'akamai.net',
    'fastly.net', 'jsdelivr.net', 'unpkg.com', 'cdnjs.cloudflare.com',
    'bootstrapcdn.com',
]

# Tracking URL Patterns (regex patterns)
TRACKING_PATTERNS = [
    r'/beacon', r'/pixel', r'/track', r'/collect', r'/telemetry',
    r'/impression', r'/pageview', r'/__utm\.gif', r'/tr\?', r'/t\.gif', r'/p\.gif',
]

STATIC_EXTENSIONS = {
    'js', 'css', 'woff', 'woff2', 'ttf', 'eot', 'otf', 'svg', 'png', 'jpg',
    'jpeg', 'gif', 'ico', 'webp', 'map',
}

# Burp's own mime classification as written to <mimetype>
STATIC_MIME_TYPES = {'script', 'css', 'image', 'font', 'png', 'jpeg', 'gif', 'svg'}

_TRACKING_RE = re.compile("|".join(TRACKING_PATTERNS), re.IGNORECASE)


# ============================================================================
# FILTER FUNCTIONS
# ============================================================================

def matches_domain(hostname: str, domain: str) -> bool:
    """
    Check if hostname matches domain exactly or is a subdomain.

    Examples:
        matches_domain('analytics.com', 'analytics.com') → True
        matches_domain('www.analytics.com', 'analytics.com') → True
        matches_domain('myanalytics.com', 'analytics.com') → False
    """
    hostname = hostname.lower()
    domain = domain.lower()
    return hostname == domain or hostname.endswith('.' + domain)


def _extension(entry: Entry) -> str:
    if entry.extension:
        return entry.extension.lower().lstrip('.')
    path = (entry.path or '').split('?', 1)[0]
    tail = path.rsplit('/', 1)[-1]
    return tail.rsplit('.', 1)[-1].lower() if '.' in tail else ''


def host_matches(domain: str) -> Predicate:
    """Host is ``domain`` or one of its subdomains."""
    return where(lambda entry: bool(entry.host) and matches_domain(entry.host, domain),
                 f"host under {domain}")


def tracking_host() -> Predicate:
    """Host belongs to a known tracking/analytics service."""
    def test(entry: Entry) -> bool:
        host = entry.host or ''
        return any(matches_domain(host, domain) for domain in ANALYTICS_DOMAINS)
    return where(test, "tracking host")


def tracking_path() -> Predicate:
    """Path looks like a beacon/pixel/collector endpoint."""
    return where(lambda entry: _TRACKING_RE.search(entry.path or '') is not None, "tracking path")


def static_asset() -> Predicate:
    """Script, stylesheet, font or image, by extension or Burp mime type."""
    def test(entry: Entry) -> bool:
        if _extension(entry) in STATIC_EXTENSIONS:
            return True
        return (entry.mime_type or '').lower() in STATIC_MIME_TYPES
    return where(test, "static asset")


def cdn_static_asset() -> Predicate:
    cdn = where(lambda entry: any(matches_domain(entry.host or '', d) for d in CDN_DOMAINS), "cdn host")
    return cdn & static_asset()


def failed_exchange() -> Predicate:
    """No usable response: never received, undecodable, or 5xx without content."""
    def test(entry: Entry) -> bool:
        if entry.response is None:
            return True
        status = entry.status_code
        if status is None or status <= 0:
            return True
        return status >= 500 and len(entry.response.body) < 10
    return where(test, "failed exchange")


NOISE_CHECKS: List[Tuple[str, Predicate]] = [
    ('tracking_domain', tracking_host()),
    ('tracking_pattern', tracking_path()),
    ('cdn_static', cdn_static_asset()),
]


def noise_reason(entry: Entry) -> Optional[str]:
    """First noise category an entry falls into, or None."""
    for reason, check in NOISE_CHECKS:
        if check(entry):
            return reason
    return None


def noise() -> Predicate:
    return where(lambda entry: noise_reason(entry) is not None, "noise")


def filter_stats(
    entries: Iterable[Entry],
    methods: Optional[List[str]] = None,
    drop_failed: bool = False,
) -> Tuple[List[int], Dict[str, object]]:
    """
    Apply the noise checks to entries and report what was removed.

    Args:
        entries: Entries to classify (a store or any query)
        methods: HTTP methods to keep (e.g. ['GET']). None = all methods
        drop_failed: Also remove exchanges without a usable response

    Returns:
        Tuple of (kept entry ids, stats dict)

        stats = {
            'original_count': int,
            'filtered_count': int,
            'removed_by_category': {reason: int, ...}
        }
    """
    kept = []
    stats = {reason: 0 for reason, _ in NOISE_CHECKS}
    stats['method_filtered'] = 0
    stats['failed_request'] = 0
    failed = failed_exchange()

    if methods:
        methods = [m.upper() for m in methods]

    total = 0
    for entry in entries:
        total += 1
        if methods and (entry.method or '').upper() not in methods:
            stats['method_filtered'] += 1
            continue

        reason = noise_reason(entry)
        if reason is not None:
            stats[reason] += 1
            continue

        if drop_failed and failed(entry):
            stats['failed_request'] += 1
            continue

        kept.append(entry.id)

    return kept, {
        'original_count': total,
        'filtered_count': len(kept),
        'removed_by_category': stats,
    }
