"""HTTP session setup shared by the dataset client and the RouterOS client."""

from __future__ import annotations

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.exceptions import InsecureRequestWarning
from urllib3.util.retry import Retry

from geosync import __version__

USER_AGENT = f"geolite2-tik-sync/{__version__}"


def create_http_session(verify_tls: bool = True) -> requests.Session:
    """
    Create an HTTP session.

    Retries are disabled: a failed call is retried on the next scheduled run.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    session.verify = verify_tls

    if not verify_tls:
        # Self-signed device certificates are expected here
        urllib3.disable_warnings(InsecureRequestWarning)

    retry_strategy = Retry(total=0, read=False, redirect=False, raise_on_status=False)

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session
