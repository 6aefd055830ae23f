#!/usr/bin/env python3
"""
HTTP client for the spreadsheet-backed attendance endpoint.

The endpoint exposes a single URL: ``GET`` returns the whole snapshot and
``POST`` takes a JSON body ``{"action": ..., ...payload}`` and answers with
``{"result": "success" | "error", "data": ..., "error": ...}``.
"""
from typing import Any, Callable, Dict, Optional
import json
import logging
import time

import requests

from .config import REQUEST_TIMEOUT
from .errors import HttpError, ParseError, RemoteError, SyncError, SyncTimeoutError
from .snapshot import Snapshot


logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


class RemoteSyncClient:
    """
    Client for the remote attendance endpoint.

    Fetches return a fresh :class:`Snapshot`; mutations are fire-and-report:
    failures are logged and shown through the notifier but never raised.
    """

    def __init__(self, url: str, timeout: float = REQUEST_TIMEOUT,
                 notifier: Optional[Notifier] = None) -> None:
        """
        Initialize the client.

        Parameters
        ----------
        url : str
            Endpoint URL
        timeout : float
            Request timeout in seconds (default: 30)
        notifier : Optional[Callable[[str], None]]
            Receives user-facing failure messages
        """
        self.url = url
        self.timeout = timeout
        self.notifier = notifier
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
        })

    def notify(self, message: str) -> None:
        if self.notifier is not None:
            self.notifier(message)

    def fetch_snapshot(self, previous: Optional[Snapshot] = None) -> Snapshot:
        """
        Fetch the full snapshot.

        A cache-busting ``t`` parameter (current time in ms) is sent with
        every request.

        Parameters
        ----------
        previous : Optional[Snapshot]
            Snapshot held so far; settings missing from the response keep
            its values

        Returns
        -------
        Snapshot
            Fresh snapshot

        Raises
        ------
        SyncTimeoutError
            If the endpoint does not answer within ``timeout``
        HttpError
            On a non-2xx response
        ParseError
            If the body is not a JSON object
        SyncError
            On any other transport failure
        """
        params = {'t': int(time.time() * 1000)}
        logger.debug("Fetching snapshot from %s", self.url)
        try:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise SyncTimeoutError(self.timeout) from e
        except requests.RequestException as e:
            raise SyncError(str(e)) from e

        data = self._decode(response)
        try:
            snapshot = Snapshot.from_remote_dict(data, previous=previous)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Unexpected response shape: {e}") from e
        logger.info("Fetched %d members, %d matches, %d attendance records",
                    len(snapshot.members), len(snapshot.matches), len(snapshot.attendance))
        return snapshot

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        if not 200 <= response.status_code < 300:
            raise HttpError(response.status_code, response.reason)
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise ParseError("Response is not a JSON object")
        return data

    def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post one action and return the decoded answer.

        The body is sent as ``text/plain`` so the endpoint accepts it
        without a CORS preflight.

        Raises
        ------
        SyncError
            On transport, HTTP or decoding failure
        RemoteError
            If the endpoint reports anything but success
        """
        body = json.dumps({'action': action, **payload}, ensure_ascii=False)
        try:
            response = self.session.post(
                self.url,
                data=body.encode('utf-8'),
                headers={'Content-Type': 'text/plain;charset=utf-8'},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise SyncTimeoutError(self.timeout) from e
        except requests.RequestException as e:
            raise SyncError(str(e)) from e

        data = self._decode(response)
        if data.get('result') != 'success':
            raise RemoteError(data.get('error') or 'Unknown server error')
        return data

    def send_mutation(self, action: str, payload: Dict[str, Any]) -> bool:
        """
        Send one mutation to the endpoint.

        Parameters
        ----------
        action : str
            Action name (e.g., "update_attendance")
        payload : Dict[str, Any]
            Action fields

        Returns
        -------
        bool
            True if the endpoint accepted the mutation
        """
        try:
            self._post(action, payload)
        except SyncError as e:
            logger.error("Mutation %s failed: %s", action, e)
            self.notify(f"保存に失敗しました: {e}")
            return False
        logger.debug("Mutation %s accepted", action)
        return True

    def verify_admin(self, password: str) -> bool:
        """
        Check an admin password against the endpoint.

        Parameters
        ----------
        password : str
            Password to check

        Returns
        -------
        bool
            True if the endpoint accepts the password
        """
        try:
            data = self._post('verify_admin', {'password': password})
        except RemoteError as e:
            logger.warning("Admin verification rejected: %s", e)
            return False
        return bool((data.get('data') or {}).get('success'))

    def update_admin_password(self, old_password: str, new_password: str) -> None:
        """
        Change the admin password.

        Raises
        ------
        RemoteError
            If the endpoint rejects the change (e.g., wrong old password)
        SyncError
            On transport failure
        """
        self._post('update_admin_password', {
            'oldPassword': old_password,
            'newPassword': new_password,
        })
        logger.info("Admin password updated")

    def close(self) -> None:
        self.session.close()
