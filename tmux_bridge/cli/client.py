"""HTTP client for the bridge's local control API."""

import json
import os
from typing import Optional
import urllib.error
import urllib.request

# Default API endpoint
DEFAULT_API_URL = "http://127.0.0.1:8421"
API_TIMEOUT = 2  # seconds


class BridgeClient:
    """Client for the running bridge process."""

    def __init__(self, api_url: Optional[str] = None):
        """
        Initialize client.

        Args:
            api_url: Base URL for API (default: http://127.0.0.1:8421)
        """
        self.api_url = api_url or os.environ.get("TMUX_BRIDGE_API_URL", DEFAULT_API_URL)

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> tuple[Optional[dict], bool, bool]:
        """
        Make an HTTP request.

        Returns:
            Tuple of (response_data, success, unavailable)
            - success=True, unavailable=False: Request succeeded
            - success=False, unavailable=True: Connection error (bridge not reachable)
            - success=False, unavailable=False: API error (4xx, 5xx response)
        """
        url = f"{self.api_url}{path}"
        headers = {"Content-Type": "application/json"}
        body = json.dumps(data).encode() if data else None

        try:
            req = urllib.request.Request(url, data=body, headers=headers, method=method)
            with urllib.request.urlopen(req, timeout=API_TIMEOUT) as response:
                return json.loads(response.read().decode()), True, False
        except urllib.error.HTTPError:
            return None, False, False
        except (urllib.error.URLError, OSError, ValueError):
            return None, False, True

    def get_status(self) -> Optional[dict]:
        """Status snapshot of the running bridge, or None if unreachable."""
        data, success, _ = self._request("GET", "/status")
        return data if success else None
